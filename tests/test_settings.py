"""
Settings and database URL tests.
"""

from decimal import Decimal

import pytest

from wablast.metering.settings import Environment, Settings, get_settings, reset_settings


@pytest.mark.unit
class TestSettings:
    def test_metering_defaults(self):
        settings = Settings()
        assert settings.metering.default_divisor == 3450
        assert settings.metering.default_markup == Decimal("1.0")
        assert settings.metering.default_min_tokens == Decimal("0.01")
        assert settings.metering.purchase_reference_prefix == "TKN-"
        assert settings.metering.quota_cas_max_retries == 5

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("METERING__PRICING_CACHE_TTL_SECONDS", "5")
        monkeypatch.setenv("PAYMENT_GATEWAY__SERVER_KEY", "secret")
        settings = Settings()
        assert settings.metering.pricing_cache_ttl_seconds == 5
        assert settings.payment_gateway.server_key == "secret"

    def test_environment_is_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "PRODUCTION")
        settings = Settings()
        assert settings.environment is Environment.PRODUCTION
        assert settings.is_production is True
        assert settings.is_testing is False

    def test_get_settings_singleton(self):
        reset_settings()
        first = get_settings()
        assert get_settings() is first
        reset_settings()


@pytest.mark.unit
class TestDatabaseUrl:
    def test_postgres_url_uses_asyncpg(self, monkeypatch):
        from wablast.metering import db

        monkeypatch.setattr(db.settings.database, "url", "postgresql://u:p@db:5432/wablast")
        assert db.get_async_database_url() == "postgresql+asyncpg://u:p@db:5432/wablast"

    def test_sqlite_url_uses_aiosqlite(self, monkeypatch):
        from wablast.metering import db

        monkeypatch.setattr(db.settings.database, "url", "sqlite:///./x.sqlite")
        assert db.get_async_database_url() == "sqlite+aiosqlite:///./x.sqlite"
