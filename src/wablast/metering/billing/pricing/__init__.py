"""
Pricing: feature key to cost formula resolution and administration.
"""

from wablast.metering.billing.pricing.models import PricingConfig, PricingExample, PricingSummary
from wablast.metering.billing.pricing.resolver import (
    PricingResolver,
    compute_charge,
    require_raw_units,
)
from wablast.metering.billing.pricing.service import PricingService

__all__ = [
    "PricingConfig",
    "PricingExample",
    "PricingSummary",
    "PricingResolver",
    "PricingService",
    "compute_charge",
    "require_raw_units",
]
