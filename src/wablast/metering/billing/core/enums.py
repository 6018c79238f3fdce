"""
Metering enums.
"""

from enum import Enum


DEFAULT_PRICING_KEY = "default"


class PurchaseStatus(str, Enum):
    """Token purchase status. pending is the only non-terminal state."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not PurchaseStatus.PENDING


class QuotaKind(str, Enum):
    """Quota counter families tracked per subscription."""

    BLAST = "blast"
    AI = "ai"


class QuotaScope(str, Enum):
    """Which cap rejected a consumption."""

    DAILY = "daily"
    MONTHLY = "monthly"


class CreditOutcome(str, Enum):
    """Result of a ledger credit."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


class ReconciliationOutcome(str, Enum):
    """Result of processing one payment status notification."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


__all__ = [
    "DEFAULT_PRICING_KEY",
    "PurchaseStatus",
    "QuotaKind",
    "QuotaScope",
    "CreditOutcome",
    "ReconciliationOutcome",
]
