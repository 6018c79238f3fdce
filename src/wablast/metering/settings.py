"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
This is the single source of truth for metering engine configuration.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, PostgresDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use double underscore: METERING__PRICING_CACHE_TTL_SECONDS=30
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Application Settings
    # ============================================================

    app_name: str = Field("wablast-metering", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Debug mode")
    testing: bool = Field(False, description="Testing mode")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: PostgresDsn | str | None = Field(None, description="Full database URL")
        host: str = Field("localhost", description="Database host")
        port: int = Field(5432, description="Database port")
        database: str = Field("wablast", description="Database name")
        username: str = Field("wablast", description="Database username")
        password: str = Field("", description="Database password")

        # Connection pool
        pool_size: int = Field(10, description="Connection pool size")
        max_overflow: int = Field(20, description="Max overflow connections")
        pool_timeout: int = Field(30, description="Pool timeout in seconds")
        pool_recycle: int = Field(3600, description="Recycle connections after seconds")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

        # Options
        echo: bool = Field(False, description="Echo SQL statements")

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Logging and metrics configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or text)")
        enable_correlation_ids: bool = Field(True, description="Enable correlation IDs")

        enable_metrics: bool = Field(True, description="Enable metrics collection")
        otel_service_name: str = Field("wablast-metering", description="Service name")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Metering Configuration
    # ============================================================

    class MeteringSettings(BaseModel):
        """Token metering and quota configuration."""

        # Pricing cache
        pricing_cache_ttl_seconds: int = Field(
            60, description="Seconds a cached pricing config may be served before refresh"
        )
        pricing_cache_size: int = Field(256, description="Max cached pricing keys")

        # Default pricing seeded when no "default" config exists
        default_divisor: int = Field(3450, description="Raw units per charged token")
        default_markup: Decimal = Field(Decimal("1.0"), description="Multiplier after division")
        default_min_tokens: Decimal = Field(
            Decimal("0.01"), description="Minimum tokens charged per request"
        )

        # Amounts
        token_scale: int = Field(2, description="Fractional digits for token amounts")

        # Quota compare-and-swap
        quota_cas_max_retries: int = Field(
            5, description="Attempts before a contended quota update gives up"
        )

        # Purchases
        pending_purchase_reuse_minutes: int = Field(
            30, description="Window in which a pending purchase is returned instead of a new one"
        )
        purchase_reference_prefix: str = Field("TKN-", description="Token purchase order prefix")
        currency: str = Field("IDR", description="Currency for token package prices")
        locale: str = Field("id_ID", description="Locale for price formatting")

    metering: MeteringSettings = MeteringSettings()  # type: ignore[call-arg]

    # ============================================================
    # Payment Gateway
    # ============================================================

    class PaymentGatewaySettings(BaseModel):
        """Payment gateway credentials used to verify status notifications."""

        server_key: str = Field("", description="Gateway server key (signature secret)")
        client_key: str = Field("", description="Gateway client key")
        is_production: bool = Field(False, description="Use production gateway environment")

    payment_gateway: PaymentGatewaySettings = PaymentGatewaySettings()  # type: ignore[call-arg]

    # ============================================================
    # Validation & Helpers
    # ============================================================

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: Any) -> Any:
        """Validate environment."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.testing or self.environment == Environment.TEST


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()
