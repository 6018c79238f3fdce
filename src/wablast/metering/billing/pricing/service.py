"""
Administrative pricing service.

CRUD over pricing configs. Every write invalidates the resolver cache for the
affected key so the next charge sees the new formula.
"""

from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wablast.metering.billing.core.entities import PricingConfigEntity
from wablast.metering.billing.core.enums import DEFAULT_PRICING_KEY
from wablast.metering.billing.exceptions import (
    InvalidAmountError,
    PricingConfigError,
    PricingConfigNotFoundError,
)
from wablast.metering.billing.money_utils import (
    require_token_amount,
    to_decimal,
    tokens_to_minor,
)
from wablast.metering.billing.pricing.models import PricingConfig, PricingExample, PricingSummary
from wablast.metering.billing.pricing.resolver import PricingResolver, compute_charge
from wablast.metering.billing.store import unit_of_work
from wablast.metering.settings import settings

# Matches the Numeric(12, 4) markup column.
_MARKUP_STEP = Decimal("0.0001")
_MARKUP_LIMIT = Decimal("100000000")

logger = structlog.get_logger(__name__)

EXAMPLE_RAW_UNITS = (500, 1000, 2500, 5000)


class PricingService:
    """Manage pricing configs."""

    def __init__(self, db: AsyncSession, resolver: PricingResolver | None = None) -> None:
        self.db = db
        self.resolver = resolver

    async def list_configs(self) -> list[PricingConfig]:
        """All configs, active or not, ordered by key."""
        result = await self.db.execute(select(PricingConfigEntity).order_by(PricingConfigEntity.key))
        return [PricingConfig.from_entity(entity) for entity in result.scalars().all()]

    async def get_config(self, key: str) -> PricingConfig:
        entity = await self._get_entity(key)
        if entity is None:
            raise PricingConfigNotFoundError(key)
        return PricingConfig.from_entity(entity)

    async def upsert_config(
        self,
        key: str,
        divisor: int,
        markup: Decimal | str | int = Decimal("1"),
        min_tokens: Decimal | str | int = Decimal("0.01"),
        description: str | None = None,
        is_active: bool = True,
    ) -> PricingConfig:
        """
        Create or replace the config for ``key``.

        Raises:
            PricingConfigError: divisor below 1, negative markup, or invalid min_tokens
        """
        key = (key or "").strip()
        if not key:
            raise PricingConfigError("Pricing key is required")
        if isinstance(divisor, bool) or not isinstance(divisor, int) or divisor < 1:
            raise PricingConfigError("Divisor must be a positive integer", key=key)
        try:
            markup_value = to_decimal(markup)
            min_tokens_value = require_token_amount(min_tokens)
        except InvalidAmountError as e:
            raise PricingConfigError(e.message, key=key) from e
        if not markup_value.is_finite() or markup_value < 0:
            raise PricingConfigError("Markup must be a non-negative number", key=key)
        if markup_value >= _MARKUP_LIMIT or markup_value != markup_value.quantize(_MARKUP_STEP):
            raise PricingConfigError(
                "Markup may have at most 4 fractional digits and 8 integer digits", key=key
            )

        async with unit_of_work(self.db, "pricing upsert"):
            entity = await self._get_entity(key)
            created = entity is None
            if entity is None:
                entity = PricingConfigEntity(key=key)
                self.db.add(entity)
            entity.divisor = divisor
            entity.markup = markup_value
            entity.min_tokens_minor = tokens_to_minor(min_tokens_value)
            entity.description = description
            entity.is_active = is_active

        self._invalidate(key)
        logger.info(
            "pricing.config_saved",
            key=key,
            created=created,
            divisor=divisor,
            markup=str(markup_value),
            min_tokens=str(min_tokens_value),
            is_active=is_active,
        )
        return PricingConfig(
            key=key,
            divisor=divisor,
            markup=markup_value,
            min_tokens=min_tokens_value,
            is_active=is_active,
            description=description,
        )

    async def deactivate(self, key: str) -> PricingConfig:
        """Mark a config inactive. Features keyed to it fall back to the default."""
        async with unit_of_work(self.db, "pricing deactivate"):
            entity = await self._get_entity(key)
            if entity is None:
                raise PricingConfigNotFoundError(key)
            entity.is_active = False
            config = PricingConfig.from_entity(entity)

        self._invalidate(key)
        if key == DEFAULT_PRICING_KEY:
            logger.warning("pricing.default_deactivated")
        else:
            logger.info("pricing.config_deactivated", key=key)
        return config

    async def delete(self, key: str) -> None:
        if key == DEFAULT_PRICING_KEY:
            raise PricingConfigError("The default pricing config cannot be deleted", key=key)

        async with unit_of_work(self.db, "pricing delete"):
            entity = await self._get_entity(key)
            if entity is None:
                raise PricingConfigNotFoundError(key)
            await self.db.delete(entity)

        self._invalidate(key)
        logger.info("pricing.config_deleted", key=key)

    async def seed_default(self) -> PricingConfig:
        """Create the default config from settings unless one already exists."""
        existing = await self._get_entity(DEFAULT_PRICING_KEY)
        if existing is not None:
            return PricingConfig.from_entity(existing)

        return await self.upsert_config(
            DEFAULT_PRICING_KEY,
            divisor=settings.metering.default_divisor,
            markup=settings.metering.default_markup,
            min_tokens=settings.metering.default_min_tokens,
            description="Default pricing for all AI features",
        )

    async def pricing_summary(self) -> PricingSummary:
        configs = await self.list_configs()
        default = next((c for c in configs if c.key == DEFAULT_PRICING_KEY), None)
        features = [c for c in configs if c.key != DEFAULT_PRICING_KEY]

        examples: list[PricingExample] = []
        if default is not None and default.is_active:
            examples = [
                PricingExample(raw_units=units, charged=compute_charge(default, units))
                for units in EXAMPLE_RAW_UNITS
            ]
        return PricingSummary(default=default, features=features, examples=examples)

    async def _get_entity(self, key: str) -> PricingConfigEntity | None:
        result = await self.db.execute(
            select(PricingConfigEntity).where(PricingConfigEntity.key == key)
        )
        return result.scalar_one_or_none()

    def _invalidate(self, key: str) -> None:
        if self.resolver is not None:
            self.resolver.invalidate(key)


__all__ = ["PricingService", "EXAMPLE_RAW_UNITS"]
