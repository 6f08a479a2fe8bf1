"""
History API endpoints
Recent transactions, events and error-rate alerts.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
import structlog

from blip.api.dependencies import get_current_user_id, get_history_service
from blip.services.history_service import HistoryQueryError, HistoryService
from blip.utils.contract_validation import InvalidContractIdError
from blip.utils.errors import ErrorCode, raise_validation_error, raise_warehouse_error

router = APIRouter()
logger = structlog.get_logger(__name__)

LISTINGS = {
    "recent-tx": "recent_transactions",
    "recent-events": "recent_events",
    "recent-alerts": "recent_alerts",
}


async def _listing(
    service: HistoryService,
    listing: str,
    user_id: str,
    contract_id: Optional[str],
    limit: Optional[int],
):
    fetch = getattr(service, LISTINGS[listing])
    try:
        return await fetch(user_id, contract_id=contract_id, limit=limit)
    except InvalidContractIdError as e:
        raise_validation_error(str(e), field="contractId", code=ErrorCode.INVALID_CONTRACT_ID)
    except HistoryQueryError as e:
        raise_warehouse_error(f"fetch {e.operation}", e.cause)


@router.get("/recent-tx")
async def get_recent_transactions(
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
):
    return await _listing(service, "recent-tx", user_id, None, limit)


@router.get("/recent-tx/{contract_id}")
async def get_contract_recent_transactions(
    contract_id: str,
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
):
    return await _listing(service, "recent-tx", user_id, contract_id, limit)


@router.get("/recent-events")
async def get_recent_events(
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
):
    return await _listing(service, "recent-events", user_id, None, limit)


@router.get("/recent-events/{contract_id}")
async def get_contract_recent_events(
    contract_id: str,
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
):
    return await _listing(service, "recent-events", user_id, contract_id, limit)


@router.get("/recent-alerts")
async def get_recent_alerts(
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
):
    """Hours in which more than 1% of a contract's transactions failed"""
    return await _listing(service, "recent-alerts", user_id, None, limit)


@router.get("/recent-alerts/{contract_id}")
async def get_contract_recent_alerts(
    contract_id: str,
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
):
    return await _listing(service, "recent-alerts", user_id, contract_id, limit)
