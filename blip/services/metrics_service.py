"""
Metrics Service - Period-over-period contract metrics

Resolves the requested time range, runs the matching warehouse query and
hands the rows to the comparison engine. Ranking metrics are decorated with
the nicknames the requesting user gave to their saved contracts.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from blip.config.settings import Settings, get_settings
from blip.metrics.comparison import MetricKind, build
from blip.metrics.time_range import TimeRange, resolve
from blip.services.saved_contracts_service import SavedContractsService
from blip.services.warehouse import WarehouseClient, WarehouseQueryError
from blip.services.warehouse_queries import WarehouseQueries
from blip.utils.contract_validation import parse_limit, validate_contract_ids

logger = structlog.get_logger(__name__)

MetricPayload = Union[Dict[str, Any], List[Dict[str, Any]]]


class MetricsQueryError(Exception):
    """The warehouse could not produce a metric"""

    def __init__(self, kind: MetricKind, cause: Exception):
        self.kind = kind
        self.cause = cause
        super().__init__(f"Failed to fetch {kind.value}: {cause}")


class MetricsService:
    """Computes metric payloads for one or more contracts"""

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

    async def get_metric(
        self,
        kind: MetricKind,
        user_id: str,
        contract_id: Optional[str] = None,
        time_range: Union[TimeRange, str, None] = None,
        limit: Any = None,
    ) -> MetricPayload:
        """
        Compute one metric for a contract, or for every contract the user saved.

        Args:
            kind: Metric to compute
            user_id: Requesting user (used for nicknames and saved contracts)
            contract_id: Single contract; None means all of the user's saved contracts
            time_range: Window to report on; unknown values fall back to WEEK_1
            limit: Cap for ranking metrics

        Raises:
            InvalidContractIdError: If ``contract_id`` is malformed
            MetricsQueryError: If the warehouse query fails
        """
        if contract_id is not None:
            contract_ids = validate_contract_ids([contract_id])
        else:
            contract_ids = await self.saved_contracts.list_contract_ids(user_id)

        return await self.compute(kind, contract_ids, user_id, time_range, limit)

    async def compute(
        self,
        kind: MetricKind,
        contract_ids: Sequence[str],
        user_id: Optional[str] = None,
        time_range: Union[TimeRange, str, None] = None,
        limit: Any = None,
    ) -> MetricPayload:
        """Compute ``kind`` over an explicit list of validated contract IDs."""
        interval = resolve(time_range)
        capped_limit = None
        if kind.is_ranking:
            capped_limit = parse_limit(
                limit,
                default=self.settings.default_limit,
                maximum=self.settings.max_limit,
            )

        if not contract_ids:
            logger.info("metric_no_contracts", metric=kind.value, user_id=user_id)
            return build(kind, [], limit=capped_limit).to_dict()

        logger.info(
            "metric_requested",
            metric=kind.value,
            contracts=len(contract_ids),
            current_window_hours=interval.current.total_seconds() / 3600,
            granularity=interval.granularity.value,
            limit=capped_limit,
        )

        sql, parameters = self.queries.metric(kind, contract_ids, interval, capped_limit or 0)
        try:
            rows = await self.warehouse.run_query(sql, parameters)
        except WarehouseQueryError as e:
            logger.error("metric_query_failed", metric=kind.value, error=str(e))
            raise MetricsQueryError(kind, e) from e

        nicknames = None
        if kind.is_ranking and user_id is not None:
            nicknames = await self.saved_contracts.get_nicknames(
                user_id, {row.get("contract_id") for row in rows}
            )

        return build(kind, rows, limit=capped_limit, nicknames=nicknames).to_dict()
