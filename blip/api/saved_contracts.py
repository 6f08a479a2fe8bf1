"""
Saved Contracts API endpoints
Contracts a user tracks, their nicknames and the default contract.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
import structlog

from blip.api.dependencies import get_current_user_id, get_saved_contracts_service
from blip.services.saved_contracts_service import (
    SavedContractExistsError,
    SavedContractNotFoundError,
    SavedContractsService,
)
from blip.utils.contract_validation import InvalidContractIdError, validate_contract_id
from blip.utils.errors import (
    ErrorCode,
    raise_conflict,
    raise_database_error,
    raise_not_found,
    raise_validation_error,
)

router = APIRouter()
logger = structlog.get_logger(__name__)


class CreateSavedContractRequest(BaseModel):
    """Request model for saving a contract"""
    model_config = ConfigDict(populate_by_name=True)

    contract_id: str = Field(..., alias="contractId")
    nickname: Optional[str] = Field(None, min_length=1, max_length=100)

    @field_validator("contract_id")
    @classmethod
    def check_contract_id(cls, value: str) -> str:
        return validate_contract_id(value)


class UpdateSavedContractRequest(BaseModel):
    """Request model for renaming a saved contract"""
    nickname: str = Field(..., min_length=1, max_length=100)


def _contract_id(contract_id: str) -> str:
    try:
        return validate_contract_id(contract_id)
    except InvalidContractIdError as e:
        raise_validation_error(str(e), field="contractId", code=ErrorCode.INVALID_CONTRACT_ID)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_saved_contract(
    payload: CreateSavedContractRequest,
    user_id: str = Depends(get_current_user_id),
    service: SavedContractsService = Depends(get_saved_contracts_service),
):
    """Save a contract for the current user"""
    logger.info("saved_contract_create_request", user_id=user_id, contract_id=payload.contract_id)
    try:
        return await service.create(user_id, payload.contract_id, payload.nickname)
    except SavedContractExistsError:
        raise_conflict("This contract is already saved.", code=ErrorCode.CONTRACT_ALREADY_SAVED)
    except SQLAlchemyError as e:
        raise_database_error("saving contract", e)


@router.get("")
async def list_saved_contracts(
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: SavedContractsService = Depends(get_saved_contracts_service),
):
    """Paginated list of the current user's saved contracts"""
    try:
        return await service.query(user_id, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)
    except SQLAlchemyError as e:
        raise_database_error("listing saved contracts", e)


@router.get("/{contract_id}")
async def get_saved_contract(
    contract_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SavedContractsService = Depends(get_saved_contracts_service),
):
    contract_id = _contract_id(contract_id)
    try:
        return await service.get(user_id, contract_id)
    except SavedContractNotFoundError:
        raise_not_found("saved contract", contract_id, code=ErrorCode.CONTRACT_NOT_FOUND)


@router.patch("/{contract_id}")
async def update_saved_contract(
    contract_id: str,
    payload: UpdateSavedContractRequest,
    user_id: str = Depends(get_current_user_id),
    service: SavedContractsService = Depends(get_saved_contracts_service),
):
    contract_id = _contract_id(contract_id)
    try:
        return await service.update_nickname(user_id, contract_id, payload.nickname)
    except SavedContractNotFoundError:
        raise_not_found("saved contract", contract_id, code=ErrorCode.CONTRACT_NOT_FOUND)


@router.delete("/{contract_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_saved_contract(
    contract_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SavedContractsService = Depends(get_saved_contracts_service),
):
    contract_id = _contract_id(contract_id)
    try:
        await service.delete(user_id, contract_id)
    except SavedContractNotFoundError:
        raise_not_found("saved contract", contract_id, code=ErrorCode.CONTRACT_NOT_FOUND)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{contract_id}/set-default")
async def set_default_contract(
    contract_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SavedContractsService = Depends(get_saved_contracts_service),
):
    """Make a saved contract the user's default"""
    contract_id = _contract_id(contract_id)
    try:
        await service.set_default(user_id, contract_id)
    except SavedContractNotFoundError:
        raise_not_found("saved contract", contract_id, code=ErrorCode.CONTRACT_NOT_FOUND)
    return {"message": "Default contract set successfully"}
