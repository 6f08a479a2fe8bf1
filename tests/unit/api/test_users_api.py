"""
Tests for the /v1/users/me endpoints
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from blip.services.identity_service import (
    IdentityProviderClient,
    IdentityProviderError,
    UserNotFoundError,
    UserProfile,
)

PROFILE = UserProfile(
    id="user_123",
    first_name="Ada",
    last_name="Lovelace",
    username="ada",
    email="ada@example.com",
    profile_image_url=None,
)


@pytest.fixture
def identity_client(app):
    client = Mock()
    client.get_user = AsyncMock(return_value=PROFILE)
    client.update_user = AsyncMock(return_value=PROFILE)
    app.state.identity_client = client
    return client


class TestGetMe:
    def test_profile(self, client, auth_headers, identity_client):
        response = client.get("/v1/users/me", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {
            "id": "user_123",
            "firstName": "Ada",
            "lastName": "Lovelace",
            "fullName": "Ada Lovelace",
            "username": "ada",
            "email": "ada@example.com",
            "profileImageUrl": None,
        }
        identity_client.get_user.assert_awaited_once_with("user_123")

    def test_user_not_found(self, client, auth_headers, identity_client):
        identity_client.get_user.side_effect = UserNotFoundError("user_123")

        response = client.get("/v1/users/me", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "USER_NOT_FOUND"

    def test_provider_down(self, client, auth_headers, identity_client):
        identity_client.get_user.side_effect = IdentityProviderError("HTTP 503", status=503)

        response = client.get("/v1/users/me", headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "IDENTITY_PROVIDER_ERROR"

    def test_provider_timeout(self, app, client, auth_headers, settings):
        session = Mock()
        session.closed = False
        session.request = Mock(side_effect=asyncio.TimeoutError())
        app.state.identity_client = IdentityProviderClient(settings, session=session)

        response = client.get("/v1/users/me", headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "IDENTITY_PROVIDER_ERROR"

    def test_requires_authentication(self, client, identity_client):
        assert client.get("/v1/users/me").status_code == 401


class TestUpdateMe:
    """Test PATCH /v1/users/me"""

    def test_update(self, client, auth_headers, identity_client):
        response = client.patch(
            "/v1/users/me",
            json={"firstName": "Augusta", "email": "augusta@example.com"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        identity_client.update_user.assert_awaited_once_with(
            "user_123", {"firstName": "Augusta", "email": "augusta@example.com"}
        )

    @pytest.mark.parametrize("body", [
        {},
        {"username": "ab"},
        {"firstName": ""},
        {"lastName": "x" * 51},
        {"email": "not-an-email"},
        {"isAdmin": True},
    ])
    def test_invalid_body(self, client, auth_headers, identity_client, body):
        response = client.patch("/v1/users/me", json=body, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        identity_client.update_user.assert_not_called()

    def test_update_user_not_found(self, client, auth_headers, identity_client):
        identity_client.update_user.side_effect = UserNotFoundError("user_123")

        response = client.patch("/v1/users/me", json={"username": "ada"}, headers=auth_headers)

        assert response.status_code == 404
