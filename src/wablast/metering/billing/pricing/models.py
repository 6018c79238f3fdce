"""
Pricing snapshots returned by the resolver and the administrative service.
"""

from decimal import Decimal

from pydantic import Field

from wablast.metering.billing.core.entities import PricingConfigEntity
from wablast.metering.billing.core.models import MeteringBaseModel
from wablast.metering.billing.money_utils import tokens_from_minor


class PricingConfig(MeteringBaseModel):
    """Immutable view of one pricing config row."""

    key: str
    divisor: int = Field(ge=1)
    markup: Decimal = Field(ge=0)
    min_tokens: Decimal = Field(ge=0)
    is_active: bool = True
    description: str | None = None

    @classmethod
    def from_entity(cls, entity: PricingConfigEntity) -> "PricingConfig":
        return cls(
            key=entity.key,
            divisor=entity.divisor,
            markup=Decimal(str(entity.markup)),
            min_tokens=tokens_from_minor(entity.min_tokens_minor),
            is_active=entity.is_active,
            description=entity.description,
        )


class PricingExample(MeteringBaseModel):
    """Charge a given raw unit count would cost under the default config."""

    raw_units: int
    charged: Decimal


class PricingSummary(MeteringBaseModel):
    """Default formula, per-feature overrides and worked examples."""

    default: PricingConfig | None
    features: list[PricingConfig]
    examples: list[PricingExample]


__all__ = ["PricingConfig", "PricingExample", "PricingSummary"]
