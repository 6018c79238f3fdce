"""
Usage metering: raw units to token charges with an append-only usage trail.
"""

from wablast.metering.billing.usage.models import ChargeResult, UsageRecord, UsageStats
from wablast.metering.billing.usage.service import UsageMeter

__all__ = ["ChargeResult", "UsageRecord", "UsageStats", "UsageMeter"]
