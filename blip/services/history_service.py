"""
History Service - Recent transactions, events and error-rate alerts

Rows come from the warehouse with snake_case columns and are projected into
the camelCase payloads of the history API. Contract nicknames are taken
from the requesting user's saved contracts.
"""

from datetime import datetime
import json
from typing import Any, Dict, List, Optional, Sequence

import structlog

from blip.config.settings import Settings, get_settings
from blip.metrics.comparison import round_to
from blip.services.saved_contracts_service import SavedContractsService
from blip.services.warehouse import WarehouseClient, WarehouseQueryError
from blip.services.warehouse_queries import WarehouseQueries
from blip.utils.contract_validation import parse_limit, validate_contract_ids

logger = structlog.get_logger(__name__)

ALERT_TYPE_ERROR_RATE_HIGH = "ERROR_RATE_HIGH"


class HistoryQueryError(Exception):
    """The warehouse could not produce a history listing"""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to fetch {operation}: {cause}")


def parse_topics(raw: Any, transaction_hash: Optional[str] = None) -> List[Any]:
    """Decoded topics list from the ``topics_decoded`` JSON column, [] when unusable."""
    if raw is None:
        return []
    try:
        decoded = json.loads(raw) if isinstance(raw, str) else raw
        return decoded.get("topics_decoded") or []
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning("event_topics_parse_failed", transaction_hash=transaction_hash, error=str(e))
        return []


def parse_event_data(raw: Any, transaction_hash: Optional[str] = None) -> Any:
    """``value`` of the ``data_decoded`` JSON column, None when unusable."""
    if raw is None:
        return None
    try:
        decoded = json.loads(raw) if isinstance(raw, str) else raw
        value = decoded.get("value")
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning("event_data_parse_failed", transaction_hash=transaction_hash, error=str(e))
        return None
    # falsy values are reported as missing
    return value or None


def error_rate_percent(error_rate: Optional[float]) -> float:
    return round_to((error_rate or 0) * 100, 2)


class HistoryService:
    """Recent activity and alert listings for saved or explicit contracts"""

    def __init__(
        self,
        warehouse: WarehouseClient,
        queries: WarehouseQueries,
        saved_contracts: SavedContractsService,
        settings: Optional[Settings] = None,
    ):
        self.warehouse = warehouse
        self.queries = queries
        self.saved_contracts = saved_contracts
        self.settings = settings or get_settings()

    async def _contract_ids(self, user_id: str, contract_id: Optional[str]) -> List[str]:
        if contract_id is not None:
            return validate_contract_ids([contract_id])
        return await self.saved_contracts.list_contract_ids(user_id)

    def _limit(self, limit: Any) -> int:
        return parse_limit(limit, default=self.settings.default_limit, maximum=self.settings.max_limit)

    async def _fetch(self, operation: str, sql: str, parameters: List[Any]) -> List[Dict[str, Any]]:
        try:
            return await self.warehouse.run_query(sql, parameters)
        except WarehouseQueryError as e:
            logger.error("history_query_failed", operation=operation, error=str(e))
            raise HistoryQueryError(operation, e) from e

    async def _nicknames(self, user_id: Optional[str], rows: List[Dict[str, Any]]) -> Dict[str, str]:
        if user_id is None or not rows:
            return {}
        return await self.saved_contracts.get_nicknames(user_id, {row.get("contract_id") for row in rows})

    async def recent_transactions(
        self,
        user_id: str,
        contract_id: Optional[str] = None,
        limit: Any = None,
    ) -> List[Dict[str, Any]]:
        """
        Latest contract transactions, newest first.

        Raises:
            InvalidContractIdError: If ``contract_id`` is malformed
            HistoryQueryError: If the warehouse query fails
        """
        contract_ids = await self._contract_ids(user_id, contract_id)
        if not contract_ids:
            return []
        limit = self._limit(limit)
        logger.info("recent_transactions_requested", contracts=len(contract_ids), limit=limit)

        rows = await self._fetch("recent transactions", *self.queries.recent_transactions(contract_ids, limit))
        nicknames = await self._nicknames(user_id, rows)
        return [
            {
                "contractId": row.get("contract_id"),
                "contractNickname": nicknames.get(row.get("contract_id")),
                "sourceAccount": row.get("op_source_account"),
                "transactionHash": row.get("transaction_hash"),
                "ledgerSequence": row.get("ledger_sequence"),
                "createdAt": row.get("txn_created_at"),
                "functionName": row.get("function_name"),
                "parameters": row.get("parameters"),
                "successful": row.get("successful"),
                "feeCharged": row.get("fee_charged"),
            }
            for row in rows
        ]

    async def recent_events(
        self,
        user_id: str,
        contract_id: Optional[str] = None,
        limit: Any = None,
    ) -> List[Dict[str, Any]]:
        """Latest contract events with decoded topics and data."""
        contract_ids = await self._contract_ids(user_id, contract_id)
        if not contract_ids:
            return []
        limit = self._limit(limit)
        logger.info("recent_events_requested", contracts=len(contract_ids), limit=limit)

        rows = await self._fetch("recent events", *self.queries.recent_events(contract_ids, limit))
        nicknames = await self._nicknames(user_id, rows)
        events = []
        for row in rows:
            transaction_hash = row.get("transaction_hash")
            events.append({
                "contractId": row.get("contract_id"),
                "contractNickname": nicknames.get(row.get("contract_id")),
                "transactionHash": transaction_hash,
                "ledgerSequence": row.get("ledger_sequence"),
                "createdAt": row.get("closed_at"),
                "eventType": row.get("type_string"),
                "topics": parse_topics(row.get("topics_decoded"), transaction_hash),
                "data": parse_event_data(row.get("data_decoded"), transaction_hash),
                "successful": row.get("successful"),
                "inSuccessfulContractCall": row.get("in_successful_contract_call"),
            })
        return events

    async def recent_alerts(
        self,
        user_id: str,
        contract_id: Optional[str] = None,
        limit: Any = None,
    ) -> List[Dict[str, Any]]:
        """Latest hours whose failure rate exceeded the recent-alert threshold."""
        contract_ids = await self._contract_ids(user_id, contract_id)
        if not contract_ids:
            return []
        limit = self._limit(limit)
        logger.info("recent_alerts_requested", contracts=len(contract_ids), limit=limit)

        sql, parameters = self.queries.recent_alerts(
            contract_ids, limit, threshold=self.settings.recent_alert_error_rate_threshold
        )
        rows = await self._fetch("recent alerts", sql, parameters)
        nicknames = await self._nicknames(user_id, rows)
        return [
            {
                "contractId": row.get("contract_id"),
                "contractNickname": nicknames.get(row.get("contract_id")),
                "alertTime": row.get("alert_time"),
                "totalTransactions": row.get("total_transactions"),
                "failedTransactions": row.get("failed_transactions"),
                "errorRate": error_rate_percent(row.get("error_rate")),
            }
            for row in rows
        ]

    async def hourly_alerts(
        self,
        contract_ids: Sequence[str],
        start_time: datetime,
        end_time: datetime,
        nicknames: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Error-rate alerts for each hour between ``start_time`` and ``end_time``.

        Args:
            contract_ids: Contracts to check
            start_time: Window start (UTC)
            end_time: Window end (UTC)
            nicknames: Optional contract_id -> nickname for the alert payloads

        Raises:
            InvalidContractIdError: If any contract ID is malformed
            HistoryQueryError: If the warehouse query fails
        """
        contract_ids = validate_contract_ids(contract_ids)
        if not contract_ids:
            return []
        nicknames = nicknames or {}
        logger.info(
            "hourly_alerts_requested",
            contracts=len(contract_ids),
            start_time=start_time.isoformat(),
            end_time=end_time.isoformat(),
        )

        sql, parameters = self.queries.hourly_alerts(
            contract_ids, start_time, end_time, threshold=self.settings.alert_error_rate_threshold
        )
        rows = await self._fetch("hourly alerts", sql, parameters)

        alerts = []
        for row in rows:
            contract_id = row.get("contract_id")
            alert_time = row.get("alert_time")
            error_rate = (row.get("error_rate") or 0) * 100
            alerts.append({
                "id": f"{contract_id}-{alert_time}",
                "contractId": contract_id,
                "contractNickname": nicknames.get(contract_id),
                "alertTime": alert_time,
                "alertType": ALERT_TYPE_ERROR_RATE_HIGH,
                "totalTransactions": row.get("total_transactions"),
                "failedTransactions": row.get("failed_transactions"),
                "errorRate": round_to(error_rate, 2),
                "message": f"Error rate of {error_rate:.2f}% detected for contract {contract_id}",
            })
        return alerts
