"""
Ledger results.
"""

from decimal import Decimal

from wablast.metering.billing.core.enums import CreditOutcome
from wablast.metering.billing.core.models import MeteringBaseModel


class CreditResult(MeteringBaseModel):
    """Outcome of a credit. ``already_applied`` means the idempotency key was seen before."""

    tenant_id: str
    new_balance: Decimal
    outcome: CreditOutcome

    @property
    def applied(self) -> bool:
        return self.outcome is CreditOutcome.APPLIED


class BalanceSummary(MeteringBaseModel):
    tenant_id: str
    balance: Decimal
    total_credited: Decimal
    total_used: Decimal


__all__ = ["CreditResult", "BalanceSummary"]
