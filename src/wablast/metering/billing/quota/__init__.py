"""
Subscription quotas: daily and per-billing-cycle allowances with UTC rollover.
"""

from wablast.metering.billing.quota.cycles import (
    add_months,
    as_utc,
    current_cycle_start,
    next_cycle_start,
    utc_today,
)
from wablast.metering.billing.quota.models import ConsumeResult, QuotaStatus
from wablast.metering.billing.quota.service import QuotaTracker

__all__ = [
    "ConsumeResult",
    "QuotaStatus",
    "QuotaTracker",
    "add_months",
    "as_utc",
    "current_cycle_start",
    "next_cycle_start",
    "utc_today",
]
