"""
Warehouse SQL Templates - Athena queries over Soroban operations and contract events

Every builder returns ``(sql, parameters)``. Contract IDs and timestamps are
always bound through ``?`` placeholders; only validated integers (limits)
and rendered interval literals are formatted into the SQL text.

Bucketed metric queries select FROM the single-row previous-window totals
and LEFT JOIN the current buckets, so the previous totals are returned even
when the current window has no rows (the bucket columns are then NULL).
"""

from datetime import datetime, timezone
from typing import Any, List, Sequence, Tuple

from blip.metrics.comparison import MetricKind
from blip.metrics.time_range import Granularity, IntervalSpec

Query = Tuple[str, List[Any]]


def _timestamp_parameter(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


class WarehouseQueries:
    """SQL template generator for the Soroban warehouse tables"""

    def __init__(self, operations_table: str, contract_events_table: str):
        """
        Args:
            operations_table: Table of enriched Soroban operations
            contract_events_table: Table of contract events
        """
        self.operations_table = operations_table
        self.contract_events_table = contract_events_table

    @staticmethod
    def _in_list(contract_ids: Sequence[str]) -> str:
        if not contract_ids:
            raise ValueError("At least one contract ID is required")
        return "(" + ", ".join("?" for _ in contract_ids) + ")"

    @staticmethod
    def _bucket(interval: IntervalSpec) -> str:
        """Bucket column; daily buckets are DATEs."""
        truncated = f"date_trunc('{interval.bucket_unit}', closed_at)"
        if interval.granularity == Granularity.DAILY:
            return f"CAST({truncated} AS DATE)"
        return truncated

    @staticmethod
    def _windows(interval: IntervalSpec) -> Tuple[str, str]:
        current = f"current_timestamp - {interval.sql_interval('current')}"
        previous = f"current_timestamp - {interval.sql_interval('previous')}"
        return current, previous

    def metric(
        self,
        kind: MetricKind,
        contract_ids: Sequence[str],
        interval: IntervalSpec,
        limit: int = 10,
    ) -> Query:
        """Query for one metric kind."""
        if kind == MetricKind.TX_VOLUME:
            return self.tx_volume(contract_ids, interval)
        elif kind == MetricKind.TX_SUCCESS_RATE:
            return self.tx_success_rate(contract_ids, interval)
        elif kind == MetricKind.UNIQUE_USERS:
            return self.unique_users(contract_ids, interval)
        elif kind == MetricKind.TX_FEES:
            return self.tx_fees(contract_ids, interval)
        elif kind == MetricKind.TOP_EVENTS:
            return self.top_events(contract_ids, interval, limit)
        elif kind == MetricKind.TOP_USERS:
            return self.top_users(contract_ids, interval, limit)
        raise ValueError(f"Unsupported metric kind: {kind}")

    def tx_volume(self, contract_ids: Sequence[str], interval: IntervalSpec) -> Query:
        in_list = self._in_list(contract_ids)
        current, previous = self._windows(interval)
        bucket = self._bucket(interval)
        sql = f"""
            WITH current_buckets AS (
                SELECT
                    {bucket} AS date,
                    COUNT(DISTINCT transaction_id) AS transaction_count
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {current}
                GROUP BY 1
            ),
            previous_totals AS (
                SELECT COUNT(DISTINCT transaction_id) AS previous_transaction_count
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {previous}
                    AND closed_at < {current}
            )
            SELECT
                cb.date,
                cb.transaction_count,
                COALESCE(pt.previous_transaction_count, 0) AS previous_transaction_count
            FROM previous_totals pt
            LEFT JOIN current_buckets cb ON TRUE
            ORDER BY cb.date DESC
        """
        return sql, [*contract_ids, *contract_ids]

    def tx_success_rate(self, contract_ids: Sequence[str], interval: IntervalSpec) -> Query:
        in_list = self._in_list(contract_ids)
        current, previous = self._windows(interval)
        bucket = self._bucket(interval)
        sql = f"""
            WITH current_buckets AS (
                SELECT
                    {bucket} AS date,
                    COUNT(DISTINCT transaction_id) AS total_transactions,
                    COUNT(DISTINCT IF(successful, transaction_id)) AS successful_transactions,
                    COUNT(DISTINCT IF(NOT successful, transaction_id)) AS failed_transactions
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {current}
                GROUP BY 1
            ),
            previous_totals AS (
                SELECT
                    COUNT(DISTINCT transaction_id) AS previous_total_transactions,
                    COUNT(DISTINCT IF(successful, transaction_id)) AS previous_successful_transactions,
                    COUNT(DISTINCT IF(NOT successful, transaction_id)) AS previous_failed_transactions
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {previous}
                    AND closed_at < {current}
            )
            SELECT
                cb.date,
                cb.total_transactions,
                cb.successful_transactions,
                cb.failed_transactions,
                pt.previous_total_transactions,
                pt.previous_successful_transactions,
                pt.previous_failed_transactions
            FROM previous_totals pt
            LEFT JOIN current_buckets cb ON TRUE
            ORDER BY cb.date DESC
        """
        return sql, [*contract_ids, *contract_ids]

    def unique_users(self, contract_ids: Sequence[str], interval: IntervalSpec) -> Query:
        in_list = self._in_list(contract_ids)
        current, previous = self._windows(interval)
        bucket = self._bucket(interval)
        sql = f"""
            WITH current_buckets AS (
                SELECT
                    {bucket} AS date,
                    COUNT(DISTINCT op_source_account) AS unique_users
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {current}
                GROUP BY 1
            ),
            current_total AS (
                SELECT COUNT(DISTINCT op_source_account) AS total_unique_users
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {current}
            ),
            previous_totals AS (
                SELECT COUNT(DISTINCT op_source_account) AS previous_unique_users
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {previous}
                    AND closed_at < {current}
            )
            SELECT
                cb.date,
                cb.unique_users,
                ct.total_unique_users,
                pt.previous_unique_users
            FROM previous_totals pt
            CROSS JOIN current_total ct
            LEFT JOIN current_buckets cb ON TRUE
            ORDER BY cb.date DESC
        """
        return sql, [*contract_ids, *contract_ids, *contract_ids]

    def tx_fees(self, contract_ids: Sequence[str], interval: IntervalSpec) -> Query:
        """Fees per bucket; averages are per operation over the raw rows."""
        in_list = self._in_list(contract_ids)
        current, previous = self._windows(interval)
        bucket = self._bucket(interval)
        sql = f"""
            WITH current_buckets AS (
                SELECT
                    {bucket} AS date,
                    SUM(fee_charged) AS total_fees,
                    AVG(CAST(fee_charged AS DOUBLE)) AS avg_fee,
                    COUNT(DISTINCT transaction_id) AS transaction_count
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {current}
                GROUP BY 1
            ),
            current_total AS (
                SELECT AVG(CAST(fee_charged AS DOUBLE)) AS overall_avg_fee
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {current}
            ),
            previous_totals AS (
                SELECT
                    COALESCE(SUM(fee_charged), 0) AS previous_total_fees,
                    COALESCE(AVG(CAST(fee_charged AS DOUBLE)), 0) AS previous_avg_fee,
                    COUNT(DISTINCT transaction_id) AS previous_total_transactions
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {previous}
                    AND closed_at < {current}
            )
            SELECT
                cb.date,
                cb.total_fees,
                cb.avg_fee,
                cb.transaction_count,
                ct.overall_avg_fee,
                pt.previous_total_fees,
                pt.previous_avg_fee,
                pt.previous_total_transactions
            FROM previous_totals pt
            CROSS JOIN current_total ct
            LEFT JOIN current_buckets cb ON TRUE
            ORDER BY cb.date DESC
        """
        return sql, [*contract_ids, *contract_ids, *contract_ids]

    def top_events(self, contract_ids: Sequence[str], interval: IntervalSpec, limit: int) -> Query:
        in_list = self._in_list(contract_ids)
        current, previous = self._windows(interval)
        event_name = "json_extract_scalar(topics_decoded, '$.topics_decoded[1].value')"
        sql = f"""
            WITH current_events AS (
                SELECT contract_id, {event_name} AS event_name, COUNT(*) AS event_count
                FROM {self.contract_events_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {current}
                GROUP BY 1, 2
            ),
            previous_events AS (
                SELECT contract_id, {event_name} AS event_name, COUNT(*) AS previous_event_count
                FROM {self.contract_events_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {previous}
                    AND closed_at < {current}
                GROUP BY 1, 2
            )
            SELECT
                ce.contract_id,
                ce.event_name,
                ce.event_count,
                COALESCE(pe.previous_event_count, 0) AS previous_event_count
            FROM current_events ce
            LEFT JOIN previous_events pe
                ON ce.contract_id = pe.contract_id AND ce.event_name = pe.event_name
            ORDER BY ce.event_count DESC
            LIMIT {int(limit)}
        """
        return sql, [*contract_ids, *contract_ids]

    def top_users(self, contract_ids: Sequence[str], interval: IntervalSpec, limit: int) -> Query:
        in_list = self._in_list(contract_ids)
        current, previous = self._windows(interval)
        sql = f"""
            WITH current_users AS (
                SELECT contract_id, op_source_account AS "user", COUNT(*) AS transaction_count
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {current}
                GROUP BY 1, 2
            ),
            previous_users AS (
                SELECT contract_id, op_source_account AS "user", COUNT(*) AS previous_transaction_count
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}
                    AND closed_at >= {previous}
                    AND closed_at < {current}
                GROUP BY 1, 2
            )
            SELECT
                cu.contract_id,
                cu."user",
                cu.transaction_count,
                COALESCE(pu.previous_transaction_count, 0) AS previous_transaction_count
            FROM current_users cu
            LEFT JOIN previous_users pu
                ON cu.contract_id = pu.contract_id AND cu."user" = pu."user"
            ORDER BY cu.transaction_count DESC
            LIMIT {int(limit)}
        """
        return sql, [*contract_ids, *contract_ids]

    def recent_transactions(self, contract_ids: Sequence[str], limit: int) -> Query:
        sql = f"""
            SELECT
                contract_id,
                op_source_account,
                transaction_hash,
                ledger_sequence,
                txn_created_at,
                "function" AS function_name,
                parameters_decoded AS parameters,
                successful,
                fee_charged
            FROM {self.operations_table}
            WHERE contract_id IN {self._in_list(contract_ids)}
            ORDER BY txn_created_at DESC
            LIMIT {int(limit)}
        """
        return sql, list(contract_ids)

    def recent_events(self, contract_ids: Sequence[str], limit: int) -> Query:
        sql = f"""
            SELECT
                contract_id,
                transaction_hash,
                ledger_sequence,
                closed_at,
                type_string,
                topics_decoded,
                data_decoded,
                successful,
                in_successful_contract_call
            FROM {self.contract_events_table}
            WHERE contract_id IN {self._in_list(contract_ids)}
            ORDER BY closed_at DESC
            LIMIT {int(limit)}
        """
        return sql, list(contract_ids)

    def _error_rate_by_hour(self, in_list: str, extra_filter: str, threshold: float) -> str:
        return f"""
            WITH hourly_error_rate AS (
                SELECT
                    contract_id,
                    date_trunc('hour', closed_at) AS hour,
                    COUNT(*) AS total_transactions,
                    COUNT_IF(NOT successful) AS failed_transactions,
                    CAST(COUNT_IF(NOT successful) AS DOUBLE) / COUNT(*) AS error_rate
                FROM {self.operations_table}
                WHERE contract_id IN {in_list}{extra_filter}
                GROUP BY 1, 2
                HAVING CAST(COUNT_IF(NOT successful) AS DOUBLE) / COUNT(*) > {float(threshold)}
            )
            SELECT
                contract_id,
                hour AS alert_time,
                total_transactions,
                failed_transactions,
                error_rate
            FROM hourly_error_rate
            ORDER BY alert_time DESC
        """

    def recent_alerts(self, contract_ids: Sequence[str], limit: int, threshold: float = 0.01) -> Query:
        """Most recent hours whose error rate exceeded ``threshold``."""
        sql = self._error_rate_by_hour(self._in_list(contract_ids), "", threshold)
        return f"{sql}    LIMIT {int(limit)}\n", list(contract_ids)

    def hourly_alerts(
        self,
        contract_ids: Sequence[str],
        start_time: datetime,
        end_time: datetime,
        threshold: float = 0.05,
    ) -> Query:
        """Hours between ``start_time`` and ``end_time`` (UTC) above ``threshold``."""
        extra_filter = (
            "\n                    AND closed_at BETWEEN CAST(? AS timestamp) AND CAST(? AS timestamp)"
        )
        sql = self._error_rate_by_hour(self._in_list(contract_ids), extra_filter, threshold)
        return sql, [*contract_ids, _timestamp_parameter(start_time), _timestamp_parameter(end_time)]
