"""
Pricing resolution.

Maps a feature key to its cost formula, falling back to the ``default`` config.
Lookups are cached per resolver instance in a TTL cache; administrative writes call
``invalidate`` so the cache is never stale beyond one refresh interval. The cache only
saves reads: balance movements never depend on it for correctness.
"""

from decimal import Decimal
from typing import Any

import structlog
from cachetools import TTLCache
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wablast.metering.billing.core.entities import PricingConfigEntity
from wablast.metering.billing.core.enums import DEFAULT_PRICING_KEY
from wablast.metering.billing.exceptions import (
    InvalidAmountError,
    NoPricingConfiguredError,
    StoreUnavailableError,
)
from wablast.metering.billing.money_utils import round_tokens
from wablast.metering.billing.pricing.models import PricingConfig
from wablast.metering.settings import settings

logger = structlog.get_logger(__name__)

_MISSING: Any = object()


def require_raw_units(raw_units: int) -> int:
    """Raw units are a vendor-reported count: a non-negative integer."""
    if isinstance(raw_units, bool) or not isinstance(raw_units, int):
        raise InvalidAmountError("Raw units must be an integer", raw_units)
    if raw_units < 0:
        raise InvalidAmountError("Raw units must not be negative", raw_units)
    return raw_units


def compute_charge(config: PricingConfig, raw_units: int) -> Decimal:
    """
    Apply a pricing formula to a raw unit count.

    ``charged = max(raw_units / divisor * markup, min_tokens)`` rounded half-up to
    two fractional digits. Zero usage still costs ``min_tokens``.
    """
    raw_units = require_raw_units(raw_units)
    computed = Decimal(raw_units) / Decimal(config.divisor) * config.markup
    return round_tokens(max(computed, config.min_tokens))


class PricingResolver:
    """Resolve feature keys to active pricing configs with a TTL cache."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_seconds: float | None = None,
        maxsize: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self._cache: TTLCache[str, PricingConfig | None] = TTLCache(
            maxsize=maxsize or settings.metering.pricing_cache_size,
            ttl=ttl_seconds if ttl_seconds is not None else settings.metering.pricing_cache_ttl_seconds,
        )

    async def resolve(self, feature_key: str | None) -> PricingConfig:
        """
        Return the active config for ``feature_key`` or the active default.

        Raises:
            NoPricingConfiguredError: neither an active feature config nor an active default exists
        """
        if feature_key and feature_key != DEFAULT_PRICING_KEY:
            config = await self._lookup(feature_key)
            if config is not None and config.is_active:
                return config

        default = await self._lookup(DEFAULT_PRICING_KEY)
        if default is not None and default.is_active:
            return default

        logger.error("pricing.not_configured", feature_key=feature_key)
        raise NoPricingConfiguredError(feature_key)

    async def calculate_charge(self, feature_key: str | None, raw_units: int) -> Decimal:
        """Quote the charge for ``raw_units`` without touching any balance."""
        config = await self.resolve(feature_key)
        return compute_charge(config, raw_units)

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key (and the default it falls back to), or the whole cache."""
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)
            self._cache.pop(DEFAULT_PRICING_KEY, None)
        logger.debug("pricing.cache_invalidated", key=key or "*")

    async def _lookup(self, key: str) -> PricingConfig | None:
        cached = self._cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(PricingConfigEntity).where(PricingConfigEntity.key == key)
                )
                entity = result.scalar_one_or_none()
        except (DBAPIError, TimeoutError) as e:
            logger.error("pricing.lookup_failed", key=key, error=str(e))
            raise StoreUnavailableError("pricing lookup", str(e)) from e

        config = PricingConfig.from_entity(entity) if entity is not None else None
        self._cache[key] = config
        return config


__all__ = ["PricingResolver", "compute_charge", "require_raw_units"]
