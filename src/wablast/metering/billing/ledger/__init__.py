"""
Token ledger: per-tenant prepaid balance with atomic debit and idempotent credit.
"""

from wablast.metering.billing.ledger.models import BalanceSummary, CreditResult
from wablast.metering.billing.ledger.service import TokenLedger

__all__ = ["BalanceSummary", "CreditResult", "TokenLedger"]
