"""Core metering types: enums, tables and result base models."""

from wablast.metering.billing.core.entities import (
    LedgerCreditEntity,
    PricingConfigEntity,
    PurchaseEntity,
    SubscriptionQuotaEntity,
    TenantBalanceEntity,
    TokenPackageEntity,
    UsageRecordEntity,
)
from wablast.metering.billing.core.enums import (
    DEFAULT_PRICING_KEY,
    CreditOutcome,
    PurchaseStatus,
    QuotaKind,
    QuotaScope,
    ReconciliationOutcome,
)
from wablast.metering.billing.core.models import MeteringBaseModel, Page

__all__ = [
    "LedgerCreditEntity",
    "PricingConfigEntity",
    "PurchaseEntity",
    "SubscriptionQuotaEntity",
    "TenantBalanceEntity",
    "TokenPackageEntity",
    "UsageRecordEntity",
    "DEFAULT_PRICING_KEY",
    "CreditOutcome",
    "PurchaseStatus",
    "QuotaKind",
    "QuotaScope",
    "ReconciliationOutcome",
    "MeteringBaseModel",
    "Page",
]
