"""
Tests for application settings
"""

import pytest
from pydantic import ValidationError

from blip.config.settings import Settings, clear_settings_cache, get_settings

SECURE_KEY = "a-production-secret-key-with-plenty-of-length-0123456789"


class TestSecretKey:
    """Test SECRET_KEY handling per environment"""

    def test_production_requires_secret_key(self):
        with pytest.raises(ValidationError):
            Settings(environment="production", secret_key=None)

    @pytest.mark.parametrize("weak", ["secret", "changeme", "short-key"])
    def test_production_rejects_weak_keys(self, weak):
        with pytest.raises(ValidationError):
            Settings(environment="production", secret_key=weak)

    def test_production_accepts_strong_key(self):
        settings = Settings(environment="production", secret_key=SECURE_KEY)
        assert settings.secret_key == SECURE_KEY
        assert settings.is_production

    def test_development_generates_key(self):
        settings = Settings(environment="development", secret_key=None)
        assert settings.secret_key
        assert len(settings.secret_key) >= 32

    def test_asymmetric_keys_skip_length_check(self):
        settings = Settings(environment="production", secret_key="pem", jwt_algorithm="RS256")
        assert settings.secret_key == "pem"


class TestValidators:
    def test_log_level_normalized(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")

    def test_invalid_cron(self):
        with pytest.raises(ValidationError):
            Settings(alert_email_cron="every hour")

    def test_limits_must_be_consistent(self):
        with pytest.raises(ValidationError):
            Settings(default_limit=50, max_limit=10)


class TestDerivedProperties:
    """Test computed settings properties"""

    @pytest.mark.parametrize("raw,expected", [
        ('["https://blip.watch"]', ["https://blip.watch"]),
        ("https://a.example, https://b.example", ["https://a.example", "https://b.example"]),
        ("https://only.example", ["https://only.example"]),
    ])
    def test_allowed_origins(self, raw, expected):
        assert Settings(cors_origins=raw).allowed_origins == expected

    def test_database_url_from_parts(self):
        settings = Settings(
            postgres_host="db", postgres_port=6543, postgres_db="blipdb",
            postgres_user="u", postgres_password="p",
        )
        assert settings.database_url == "postgresql+asyncpg://u:p@db:6543/blipdb"

    def test_database_url_override(self):
        settings = Settings(database_url_override="sqlite+aiosqlite:///x.db")
        assert settings.database_url == "sqlite+aiosqlite:///x.db"

    def test_json_logs_default_by_environment(self):
        assert Settings(environment="development").render_json_logs is False
        assert Settings(environment="staging").render_json_logs is True
        assert Settings(environment="development", log_json=True).render_json_logs is True

    def test_alert_job_defaults(self):
        settings = Settings(alert_emails_enabled=True)
        assert settings.alert_email_cron == "51 * * * *"
        assert settings.alert_ingestion_lag_minutes == 30
        assert settings.alert_window_minutes == 60
        assert settings.alert_error_rate_threshold == 0.05
        assert settings.recent_alert_error_rate_threshold == 0.01


class TestWarehouseConfiguration:
    def test_missing_output_location(self):
        settings = Settings(athena_output_location=None, athena_workgroup=None)
        issues = settings.validate_warehouse_configuration()
        assert any("ATHENA_OUTPUT_LOCATION" in issue for issue in issues)

    def test_workgroup_is_enough(self):
        settings = Settings(athena_output_location=None, athena_workgroup="primary")
        assert settings.validate_warehouse_configuration() == []


class TestSettingsCache:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ATHENA_DATABASE", "stellar_testnet")
        clear_settings_cache()
        assert get_settings().athena_database == "stellar_testnet"

    def test_cached_instance(self):
        assert get_settings() is get_settings()
