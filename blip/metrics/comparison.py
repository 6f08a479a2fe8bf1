"""
Comparison Engine - Period-over-period statistics for contract metrics

Every builder takes rows as returned by the warehouse layer (snake_case
column names, one row per time bucket or ranked entity) and produces a
result object whose ``to_dict()`` is the JSON payload of the metrics API.

Bucketed queries repeat the previous-window totals on every row and always
return at least one row; a row whose ``date`` is NULL only carries those
totals (the current window was empty).

All functions here are pure and never raise on numeric input. Rates over
an empty denominator are 0.0.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_CEILING
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import math


class MetricKind(str, Enum):
    """Aggregated metrics served by the metrics API"""
    TX_VOLUME = "tx-volume"
    TX_SUCCESS_RATE = "tx-success-rate"
    UNIQUE_USERS = "unique-users"
    TX_FEES = "tx-fees"
    TOP_EVENTS = "top-events"
    TOP_USERS = "top-users"

    @property
    def is_ranking(self) -> bool:
        return self in (MetricKind.TOP_EVENTS, MetricKind.TOP_USERS)


def round_to(value: float, decimals: int = 2) -> float:
    """Round to a fixed number of decimal places; ties go towards positive infinity."""
    if value is None or not math.isfinite(value):
        return value
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_CEILING))


def rate(part: float, total: float) -> float:
    """Percentage of ``part`` in ``total`` rounded to 2 places; 0.0 when total is 0."""
    if not total:
        return 0.0
    return round_to(part / total * 100, 2)


@dataclass(frozen=True)
class ComparedMetric:
    """Change of a figure against the previous window"""
    previous_count: Optional[float]
    absolute_change: float
    percentage_change: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previousCount": self.previous_count,
            "absoluteChange": self.absolute_change,
            "percentageChange": self.percentage_change,
        }


def compare(current: float, previous: float) -> ComparedMetric:
    """
    Compare a current-window figure with the previous window.

    percentage_change is None exactly when previous is 0.
    """
    absolute_change = current - previous
    percentage_change = None
    if previous != 0:
        percentage_change = round_to(absolute_change / previous * 100, 2)
    return ComparedMetric(
        previous_count=previous,
        absolute_change=absolute_change,
        percentage_change=percentage_change,
    )


def _num(value: Any) -> float:
    """Warehouse NULLs count as zero."""
    if value is None:
        return 0
    return value


def split_buckets(rows: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """
    Separate bucket rows from the previous-window totals.

    Returns:
        (rows that have a bucket date, first row or {} for the totals)
    """
    totals = rows[0] if rows else {}
    buckets = [row for row in rows if row.get("date") is not None]
    return buckets, totals


# ---------------------------------------------------------------------------
# Transaction volume
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TxVolumeResult:
    interval_volumes: List[Dict[str, Any]]
    total_volume: float
    compared_total_volume: ComparedMetric

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intervalVolumes": self.interval_volumes,
            "totalVolume": self.total_volume,
            "comparedTotalVolume": self.compared_total_volume.to_dict(),
        }


def build_tx_volume(buckets: List[Dict[str, Any]], previous_total: float) -> TxVolumeResult:
    interval_volumes = [
        {"date": row["date"], "transactionCount": _num(row.get("transaction_count"))}
        for row in buckets
    ]
    total = sum(item["transactionCount"] for item in interval_volumes)
    return TxVolumeResult(
        interval_volumes=interval_volumes,
        total_volume=total,
        compared_total_volume=compare(total, _num(previous_total)),
    )


# ---------------------------------------------------------------------------
# Success rate
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TxSuccessRateResult:
    interval_success_rates: List[Dict[str, Any]]
    total_transactions: float
    total_successful: float
    total_failed: float
    overall_success_rate: float
    overall_failure_rate: float
    compared_total_transactions: ComparedMetric
    compared_total_successful: ComparedMetric
    compared_total_failed: ComparedMetric
    compared_overall_success_rate: ComparedMetric
    compared_overall_failure_rate: ComparedMetric

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intervalSuccessRates": self.interval_success_rates,
            "totalTransactions": self.total_transactions,
            "totalSuccessful": self.total_successful,
            "totalFailed": self.total_failed,
            "overallSuccessRate": self.overall_success_rate,
            "overallFailureRate": self.overall_failure_rate,
            "comparedTotalTransactions": self.compared_total_transactions.to_dict(),
            "comparedTotalSuccessful": self.compared_total_successful.to_dict(),
            "comparedTotalFailed": self.compared_total_failed.to_dict(),
            "comparedOverallSuccessRate": self.compared_overall_success_rate.to_dict(),
            "comparedOverallFailureRate": self.compared_overall_failure_rate.to_dict(),
        }


def build_tx_success_rate(
    buckets: List[Dict[str, Any]],
    previous: Dict[str, Any],
) -> TxSuccessRateResult:
    """
    Build per-bucket and overall success/failure rates.

    ``previous`` holds previous_total_transactions,
    previous_successful_transactions and previous_failed_transactions.
    """
    interval_success_rates = []
    total = successful = failed = 0
    for row in buckets:
        bucket_total = _num(row.get("total_transactions"))
        bucket_successful = _num(row.get("successful_transactions"))
        bucket_failed = _num(row.get("failed_transactions"))
        interval_success_rates.append({
            "date": row["date"],
            "transactionCount": bucket_total,
            "successfulTransactions": bucket_successful,
            "failedTransactions": bucket_failed,
            "intervalSuccessRate": rate(bucket_successful, bucket_total),
            "intervalFailureRate": rate(bucket_failed, bucket_total),
        })
        total += bucket_total
        successful += bucket_successful
        failed += bucket_failed

    previous_total = _num(previous.get("previous_total_transactions"))
    previous_successful = _num(previous.get("previous_successful_transactions"))
    previous_failed = _num(previous.get("previous_failed_transactions"))

    success_rate = rate(successful, total)
    failure_rate = rate(failed, total)

    return TxSuccessRateResult(
        interval_success_rates=interval_success_rates,
        total_transactions=total,
        total_successful=successful,
        total_failed=failed,
        overall_success_rate=success_rate,
        overall_failure_rate=failure_rate,
        compared_total_transactions=compare(total, previous_total),
        compared_total_successful=compare(successful, previous_successful),
        compared_total_failed=compare(failed, previous_failed),
        compared_overall_success_rate=compare(success_rate, rate(previous_successful, previous_total)),
        compared_overall_failure_rate=compare(failure_rate, rate(previous_failed, previous_total)),
    )


# ---------------------------------------------------------------------------
# Unique users
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UniqueUsersResult:
    interval_unique_users: List[Dict[str, Any]]
    total_unique_users: float
    compared_total_unique_users: ComparedMetric

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intervalUniqueUsers": self.interval_unique_users,
            "totalUniqueUsers": self.total_unique_users,
            "comparedTotalUniqueUsers": self.compared_total_unique_users.to_dict(),
        }


def build_unique_users(
    buckets: List[Dict[str, Any]],
    totals: Dict[str, Any],
) -> UniqueUsersResult:
    """
    A user active in several buckets is counted once in the window total,
    so the total comes from ``totals["total_unique_users"]`` when present.
    """
    interval_unique_users = [
        {"date": row["date"], "uniqueUsers": _num(row.get("unique_users"))}
        for row in buckets
    ]
    if buckets and totals.get("total_unique_users") is not None:
        total = totals["total_unique_users"]
    else:
        total = sum(item["uniqueUsers"] for item in interval_unique_users)
    return UniqueUsersResult(
        interval_unique_users=interval_unique_users,
        total_unique_users=total,
        compared_total_unique_users=compare(total, _num(totals.get("previous_unique_users"))),
    )


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TxFeesResult:
    interval_fees: List[Dict[str, Any]]
    overall_total_fees: float
    overall_avg_fee: float
    overall_total_transactions: float
    compared_overall_total_fees: ComparedMetric
    compared_overall_avg_fee: ComparedMetric
    compared_overall_total_transactions: ComparedMetric

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intervalFees": self.interval_fees,
            "overallTotalFees": self.overall_total_fees,
            "overallAvgFee": self.overall_avg_fee,
            "overallTotalTransactions": self.overall_total_transactions,
            "comparedOverallTotalFees": self.compared_overall_total_fees.to_dict(),
            "comparedOverallAvgFee": self.compared_overall_avg_fee.to_dict(),
            "comparedOverallTotalTransactions": self.compared_overall_total_transactions.to_dict(),
        }


def build_tx_fees(buckets: List[Dict[str, Any]], totals: Dict[str, Any]) -> TxFeesResult:
    """
    Build fee figures. Average fees are rounded before they are compared.

    ``totals`` holds overall_avg_fee for the current window plus
    previous_total_fees, previous_avg_fee and previous_total_transactions.
    """
    interval_fees = [
        {
            "date": row["date"],
            "totalFees": _num(row.get("total_fees")),
            "avgFee": round_to(_num(row.get("avg_fee")), 2),
            "transactionCount": _num(row.get("transaction_count")),
        }
        for row in buckets
    ]
    total_fees = sum(item["totalFees"] for item in interval_fees)
    total_transactions = sum(item["transactionCount"] for item in interval_fees)
    avg_fee = round_to(_num(totals.get("overall_avg_fee")), 2) if buckets else 0.0

    return TxFeesResult(
        interval_fees=interval_fees,
        overall_total_fees=total_fees,
        overall_avg_fee=avg_fee,
        overall_total_transactions=total_transactions,
        compared_overall_total_fees=compare(total_fees, _num(totals.get("previous_total_fees"))),
        compared_overall_avg_fee=compare(avg_fee, round_to(_num(totals.get("previous_avg_fee")), 2)),
        compared_overall_total_transactions=compare(
            total_transactions, _num(totals.get("previous_total_transactions"))
        ),
    )


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RankedEntry:
    """One ranked (contract, entity) pair with its comparison"""
    contract_id: str
    contract_nickname: Optional[str]
    name: str
    count: float
    compared: ComparedMetric
    name_key: str = "eventName"
    count_key: str = "eventCount"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contractId": self.contract_id,
            "contractNickname": self.contract_nickname,
            self.name_key: self.name,
            self.count_key: self.count,
            "compared": self.compared.to_dict(),
        }


@dataclass(frozen=True)
class RankingResult:
    entries: List[RankedEntry] = field(default_factory=list)

    def to_dict(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries]


def _build_ranking(
    rows: List[Dict[str, Any]],
    name_column: str,
    count_column: str,
    name_key: str,
    count_key: str,
    limit: Optional[int],
    nicknames: Optional[Dict[str, str]],
) -> RankingResult:
    nicknames = nicknames or {}
    entries = []
    for row in rows:
        current = _num(row.get(count_column))
        # absent from the previous window means zero prior occurrences
        previous = _num(row.get(f"previous_{count_column}"))
        contract_id = row.get("contract_id")
        entries.append(RankedEntry(
            contract_id=contract_id,
            contract_nickname=nicknames.get(contract_id),
            name=row.get(name_column),
            count=current,
            compared=compare(current, previous),
            name_key=name_key,
            count_key=count_key,
        ))
    # stable: ties keep warehouse order
    entries.sort(key=lambda entry: entry.count, reverse=True)
    if limit is not None:
        entries = entries[:max(limit, 0)]
    return RankingResult(entries=entries)


def build_top_events(
    rows: List[Dict[str, Any]],
    limit: Optional[int] = None,
    nicknames: Optional[Dict[str, str]] = None,
) -> RankingResult:
    return _build_ranking(rows, "event_name", "event_count", "eventName", "eventCount", limit, nicknames)


def build_top_users(
    rows: List[Dict[str, Any]],
    limit: Optional[int] = None,
    nicknames: Optional[Dict[str, str]] = None,
) -> RankingResult:
    return _build_ranking(rows, "user", "transaction_count", "user", "transactionCount", limit, nicknames)


def build(
    kind: MetricKind,
    rows: List[Dict[str, Any]],
    limit: Optional[int] = None,
    nicknames: Optional[Dict[str, str]] = None,
):
    """
    Build the result for ``kind`` from raw warehouse rows.

    Args:
        kind: Metric to build
        rows: Warehouse rows for the metric query
        limit: Cap for ranking metrics (ignored for bucketed metrics)
        nicknames: contract_id -> nickname, used by ranking metrics

    Returns:
        Result object with a ``to_dict()`` payload
    """
    if kind == MetricKind.TOP_EVENTS:
        return build_top_events(rows, limit, nicknames)
    elif kind == MetricKind.TOP_USERS:
        return build_top_users(rows, limit, nicknames)

    buckets, totals = split_buckets(rows)
    if kind == MetricKind.TX_VOLUME:
        return build_tx_volume(buckets, totals.get("previous_transaction_count"))
    elif kind == MetricKind.TX_SUCCESS_RATE:
        return build_tx_success_rate(buckets, totals)
    elif kind == MetricKind.UNIQUE_USERS:
        return build_unique_users(buckets, totals)
    elif kind == MetricKind.TX_FEES:
        return build_tx_fees(buckets, totals)
    raise ValueError(f"Unsupported metric kind: {kind}")
