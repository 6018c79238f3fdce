"""
Quota results.
"""

from datetime import date, datetime

from wablast.metering.billing.core.enums import QuotaKind
from wablast.metering.billing.core.models import MeteringBaseModel


def remaining(cap: int, used: int) -> int | None:
    """Allowance left under ``cap``; None when the cap is 0 (unlimited)."""
    if cap == 0:
        return None
    return max(cap - used, 0)


class QuotaStatus(MeteringBaseModel):
    """Effective counters for one subscription quota, with pending rollovers applied."""

    subscription_id: str
    tenant_id: str
    kind: QuotaKind
    daily_cap: int
    monthly_cap: int
    used_today: int
    used_monthly: int
    remaining_daily: int | None
    remaining_monthly: int | None
    cycle_start: date
    cycle_end: date
    daily_resets_at: datetime
    end_date: datetime | None = None
    expired: bool = False

    @property
    def can_consume(self) -> bool:
        if self.expired:
            return False
        return all(value is None or value > 0 for value in (self.remaining_daily, self.remaining_monthly))


class ConsumeResult(MeteringBaseModel):
    """Counters after a successful consumption."""

    subscription_id: str
    kind: QuotaKind
    amount: int
    used_today: int
    used_monthly: int
    remaining_daily: int | None
    remaining_monthly: int | None
    attempts: int = 1


__all__ = ["QuotaStatus", "ConsumeResult", "remaining"]
