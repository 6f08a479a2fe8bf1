"""
Metrics API endpoints
Period-over-period metrics for one contract or for all of a user's saved contracts.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
import structlog

from blip.api.dependencies import get_current_user_id, get_metrics_service
from blip.metrics.comparison import MetricKind
from blip.metrics.time_range import DEFAULT_TIME_RANGE
from blip.services.metrics_service import MetricsQueryError, MetricsService
from blip.utils.contract_validation import InvalidContractIdError
from blip.utils.errors import ErrorCode, raise_validation_error, raise_warehouse_error

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _get_metric(
    service: MetricsService,
    kind: MetricKind,
    user_id: str,
    contract_id: Optional[str],
    time_range: Optional[str],
    limit: Optional[int],
):
    try:
        return await service.get_metric(
            kind,
            user_id,
            contract_id=contract_id,
            time_range=time_range,
            limit=limit,
        )
    except InvalidContractIdError as e:
        raise_validation_error(str(e), field="contractId", code=ErrorCode.INVALID_CONTRACT_ID)
    except MetricsQueryError as e:
        raise_warehouse_error(f"fetch {kind.value}", e.cause)


@router.get("/{metric}")
async def get_saved_contracts_metric(
    metric: MetricKind,
    time_range: Optional[str] = Query(DEFAULT_TIME_RANGE.value, alias="timeRange"),
    limit: Optional[int] = Query(None),
    user_id: str = Depends(get_current_user_id),
    service: MetricsService = Depends(get_metrics_service),
):
    """Metric aggregated over every contract the user has saved"""
    logger.info("metric_request", metric=metric.value, user_id=user_id, time_range=time_range)
    return await _get_metric(service, metric, user_id, None, time_range, limit)


@router.get("/{metric}/{contract_id}")
async def get_contract_metric(
    metric: MetricKind,
    contract_id: str,
    time_range: Optional[str] = Query(DEFAULT_TIME_RANGE.value, alias="timeRange"),
    limit: Optional[int] = Query(None),
    user_id: str = Depends(get_current_user_id),
    service: MetricsService = Depends(get_metrics_service),
):
    """Metric for a single contract"""
    logger.info(
        "metric_request",
        metric=metric.value,
        user_id=user_id,
        contract_id=contract_id,
        time_range=time_range,
    )
    return await _get_metric(service, metric, user_id, contract_id, time_range, limit)
