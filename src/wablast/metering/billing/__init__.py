"""
Usage metering and quota enforcement.

Provides:
- Pricing resolution from feature key to cost formula
- Token ledger with atomic debit and idempotent credit
- Usage metering with an append-only usage trail
- Subscription quota tracking with UTC daily and billing-cycle rollover
- Token purchases reconciled from payment status notifications
"""

from wablast.metering.billing.core.enums import (
    DEFAULT_PRICING_KEY,
    CreditOutcome,
    PurchaseStatus,
    QuotaKind,
    QuotaScope,
    ReconciliationOutcome,
)
from wablast.metering.billing.exceptions import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidSignatureError,
    InvalidStatusTransitionError,
    MeteringError,
    NoPricingConfiguredError,
    PackageNotFoundError,
    PricingConfigError,
    PricingConfigNotFoundError,
    PricingError,
    PurchaseError,
    QuotaError,
    QuotaExceededError,
    QuotaNotProvisionedError,
    StoreConflictError,
    StoreUnavailableError,
    SubscriptionExpiredError,
)
from wablast.metering.billing.ledger import BalanceSummary, CreditResult, TokenLedger
from wablast.metering.billing.pricing import (
    PricingConfig,
    PricingResolver,
    PricingService,
    PricingSummary,
    compute_charge,
)
from wablast.metering.billing.purchases import (
    Purchase,
    PurchaseCreated,
    PurchaseReconciler,
    PurchaseService,
    ReconciliationResult,
    TokenPackage,
    handle_gateway_notification,
)
from wablast.metering.billing.quota import ConsumeResult, QuotaStatus, QuotaTracker
from wablast.metering.billing.usage import ChargeResult, UsageMeter, UsageRecord, UsageStats

__all__ = [
    # Enums
    "DEFAULT_PRICING_KEY",
    "CreditOutcome",
    "PurchaseStatus",
    "QuotaKind",
    "QuotaScope",
    "ReconciliationOutcome",
    # Exceptions
    "MeteringError",
    "AccountNotFoundError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidSignatureError",
    "InvalidStatusTransitionError",
    "NoPricingConfiguredError",
    "PackageNotFoundError",
    "PricingConfigError",
    "PricingConfigNotFoundError",
    "PricingError",
    "PurchaseError",
    "QuotaError",
    "QuotaExceededError",
    "QuotaNotProvisionedError",
    "StoreConflictError",
    "StoreUnavailableError",
    "SubscriptionExpiredError",
    # Pricing
    "PricingConfig",
    "PricingResolver",
    "PricingService",
    "PricingSummary",
    "compute_charge",
    # Ledger
    "BalanceSummary",
    "CreditResult",
    "TokenLedger",
    # Usage
    "ChargeResult",
    "UsageMeter",
    "UsageRecord",
    "UsageStats",
    # Quotas
    "ConsumeResult",
    "QuotaStatus",
    "QuotaTracker",
    # Purchases
    "Purchase",
    "PurchaseCreated",
    "PurchaseReconciler",
    "PurchaseService",
    "ReconciliationResult",
    "TokenPackage",
    "handle_gateway_notification",
]
