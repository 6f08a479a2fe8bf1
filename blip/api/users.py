"""
User profile endpoints backed by the identity provider
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
import structlog

from blip.api.dependencies import get_current_user_id, get_identity_client
from blip.services.identity_service import (
    IdentityProviderClient,
    IdentityProviderError,
    UserNotFoundError,
)
from blip.utils.errors import ErrorCode, raise_not_found, raise_upstream_error

router = APIRouter()
logger = structlog.get_logger(__name__)


class UpdateMeRequest(BaseModel):
    """Profile fields the user may change; at least one is required"""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    first_name: Optional[str] = Field(None, alias="firstName", min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, alias="lastName", min_length=1, max_length=50)
    username: Optional[str] = Field(None, min_length=3, max_length=30)
    email: Optional[EmailStr] = None

    @model_validator(mode="after")
    def require_one_field(self) -> "UpdateMeRequest":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self

    def to_update(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


@router.get("/me")
async def get_me(
    user_id: str = Depends(get_current_user_id),
    identity: IdentityProviderClient = Depends(get_identity_client),
):
    """Profile of the authenticated user"""
    logger.info("user_profile_requested", user_id=user_id)
    try:
        profile = await identity.get_user(user_id)
    except UserNotFoundError:
        raise_not_found("user", user_id, code=ErrorCode.USER_NOT_FOUND)
    except IdentityProviderError as e:
        raise_upstream_error("identity provider", "fetch user", e)
    return profile.to_dict()


@router.patch("/me")
async def update_me(
    payload: UpdateMeRequest,
    user_id: str = Depends(get_current_user_id),
    identity: IdentityProviderClient = Depends(get_identity_client),
):
    """Update the authenticated user's profile"""
    logger.info("user_profile_update_requested", user_id=user_id, fields=sorted(payload.to_update()))
    try:
        profile = await identity.update_user(user_id, payload.to_update())
    except UserNotFoundError:
        raise_not_found("user", user_id, code=ErrorCode.USER_NOT_FOUND)
    except IdentityProviderError as e:
        raise_upstream_error("identity provider", "update user", e)
    return profile.to_dict()
