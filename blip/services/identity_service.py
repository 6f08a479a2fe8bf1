"""
Identity Provider Client - User profiles held by the hosted auth provider

Talks to a Clerk-compatible backend API with the server secret key. Only the
profile fields the API exposes are read or written.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp
import structlog

from blip.config.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

# camelCase API field -> provider field
UPDATABLE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "username": "username",
}


class IdentityProviderError(Exception):
    """The identity provider rejected a request or could not be reached"""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class UserNotFoundError(IdentityProviderError):
    """No user exists with the requested ID"""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found", status=404)


@dataclass(frozen=True)
class UserProfile:
    id: str
    first_name: Optional[str]
    last_name: Optional[str]
    username: Optional[str]
    email: Optional[str]
    profile_image_url: Optional[str]

    @property
    def full_name(self) -> Optional[str]:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) if parts else None

    @classmethod
    def from_provider(cls, data: Dict[str, Any]) -> "UserProfile":
        """Build a profile from the provider's user object."""
        addresses = data.get("email_addresses") or []
        primary_id = data.get("primary_email_address_id")
        email = None
        for address in addresses:
            if address.get("id") == primary_id:
                email = address.get("email_address")
                break
        if email is None and addresses:
            email = addresses[0].get("email_address")

        return cls(
            id=data["id"],
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            username=data.get("username"),
            email=email,
            profile_image_url=data.get("image_url") or data.get("profile_image_url"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "fullName": self.full_name,
            "username": self.username,
            "email": self.email,
            "profileImageUrl": self.profile_image_url,
        }


class IdentityProviderClient:
    """Async client for the identity provider's user endpoints"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.identity_api_url.rstrip("/")
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.identity_timeout_seconds),
                headers={"Authorization": f"Bearer {self.settings.identity_secret_key}"},
            )
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        user_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            session = await self._get_session()
            async with session.request(method, url, json=payload) as resp:
                if resp.status == 404:
                    raise UserNotFoundError(user_id)
                if resp.status >= 400:
                    text = await resp.text()
                    logger.error(
                        "identity_provider_http_error",
                        method=method,
                        path=path,
                        status=resp.status,
                        body=text[:500],
                    )
                    raise IdentityProviderError(
                        f"Identity provider returned HTTP {resp.status}", status=resp.status
                    )
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("identity_provider_unreachable", method=method, path=path, error=str(e))
            raise IdentityProviderError(f"Identity provider request failed: {e}") from e

    async def get_user(self, user_id: str) -> UserProfile:
        """
        Raises:
            UserNotFoundError: If the provider has no such user
            IdentityProviderError: On any other failure
        """
        data = await self._request("GET", f"/users/{user_id}", user_id)
        return UserProfile.from_provider(data)

    async def update_user(self, user_id: str, fields: Dict[str, Any]) -> UserProfile:
        """
        Update profile fields given in API (camelCase) form.

        A new email address is added as the user's verified primary address.
        """
        payload = {
            UPDATABLE_FIELDS[key]: value
            for key, value in fields.items()
            if key in UPDATABLE_FIELDS and value is not None
        }
        email = fields.get("email")

        if email:
            await self._request(
                "POST",
                "/email_addresses",
                user_id,
                {"user_id": user_id, "email_address": email, "verified": True, "primary": True},
            )

        if payload or not email:
            data = await self._request("PATCH", f"/users/{user_id}", user_id, payload)
        else:
            data = await self._request("GET", f"/users/{user_id}", user_id)

        logger.info("user_profile_updated", user_id=user_id, fields=sorted(fields))
        return UserProfile.from_provider(data)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
