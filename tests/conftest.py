import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import jwt
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

os.environ.setdefault("TESTING", "true")
os.environ.setdefault("ALERT_EMAILS_ENABLED", "false")

from blip.config.settings import Settings, clear_settings_cache
from blip.main import create_app
from blip.services.database import DatabaseService
from blip.services.saved_contracts_service import SavedContractsService
from blip.services.warehouse_queries import WarehouseQueries
from blip.utils.auth import initialize_authenticator

SECRET_KEY = "test-secret-key-that-is-long-enough-for-testing-purposes-12345"


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def secret_key():
    """Secure test secret key"""
    return SECRET_KEY


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite database"""
    return Settings(
        environment="test",
        secret_key=SECRET_KEY,
        database_url_override=f"sqlite+aiosqlite:///{tmp_path / 'blip.db'}",
        athena_output_location="s3://blip-test-results/",
        alert_emails_enabled=False,
        email_enabled=False,
        identity_secret_key="sk_test_identity",
    )


@pytest.fixture
def make_token(secret_key):
    """Factory for signed bearer tokens"""
    def _make(user_id="user_123", expires_in=timedelta(minutes=5), **claims):
        now = datetime.now(timezone.utc)
        payload = {"sub": user_id, "iat": now, "exp": now + expires_in, **claims}
        return jwt.encode(payload, secret_key, algorithm="HS256")
    return _make


@pytest_asyncio.fixture
async def db(settings):
    """Initialized database service with the schema created"""
    service = DatabaseService(settings)
    await service.initialize(max_retries=1)
    await service.create_all()
    yield service
    await service.close()


@pytest.fixture
def saved_contracts(db):
    return SavedContractsService(db)


@pytest.fixture
def queries():
    return WarehouseQueries("enriched_history_operations_soroban", "contract_events")


@pytest.fixture
def warehouse():
    """Warehouse client double; set ``run_query.return_value`` per test"""
    client = Mock()
    client.run_query = AsyncMock(return_value=[])
    client.test_connection = AsyncMock(return_value=True)
    return client


@pytest.fixture
def app(settings, secret_key):
    """Application without lifespan; tests attach service doubles to app.state"""
    initialize_authenticator(secret_key)
    return create_app(settings, with_lifespan=False)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(make_token):
    return {"Authorization": f"Bearer {make_token('user_123')}"}
