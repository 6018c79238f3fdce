"""
Metering engine exceptions.

Every failure raised by the engine is per-request and leaves shared state consistent.
Errors carry a machine-readable code, an HTTP-style status code, context and a
recovery hint so controller layers can render them without knowing the hierarchy.
"""

from decimal import Decimal
from typing import Any


class MeteringError(Exception):
    """
    Base metering error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
        transient: Whether retrying the whole operation may succeed
    """

    transient: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "METERING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


# ============================================================================
# Ledger
# ============================================================================


class InsufficientBalanceError(MeteringError):
    """Tenant balance cannot cover the requested debit."""

    def __init__(self, tenant_id: str, required: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Insufficient AI tokens. Required: {required}, Available: {available}",
            "INSUFFICIENT_BALANCE",
            status_code=402,
            context={
                "tenant_id": tenant_id,
                "required": str(required),
                "available": str(available),
            },
            recovery_hint="Purchase a token package before using this feature",
        )
        self.tenant_id = tenant_id
        self.required = required
        self.available = available


class AccountNotFoundError(MeteringError):
    """No balance account exists for the tenant."""

    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            f"No token account for tenant {tenant_id}",
            "ACCOUNT_NOT_FOUND",
            status_code=404,
            context={"tenant_id": tenant_id},
            recovery_hint="Open the tenant's token account at tenant creation",
        )


class InvalidAmountError(MeteringError):
    """Amount is negative, non-integral where required, or has too many fractional digits."""

    def __init__(self, message: str, amount: Any = None) -> None:
        super().__init__(
            message,
            "INVALID_AMOUNT",
            status_code=400,
            context={"amount": str(amount)} if amount is not None else {},
        )


# ============================================================================
# Pricing
# ============================================================================


class PricingError(MeteringError):
    """Pricing-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "PRICING_ERROR", status_code=400, context=context, recovery_hint=recovery_hint
        )


class NoPricingConfiguredError(PricingError):
    """Neither the feature config nor an active default config exists."""

    def __init__(self, feature_key: str | None) -> None:
        super().__init__(
            f"No active pricing configured for feature '{feature_key}' and no active default",
            context={"feature_key": feature_key},
            recovery_hint="Create or re-activate the 'default' pricing config",
        )
        self.error_code = "NO_PRICING_CONFIGURED"
        self.status_code = 503


class PricingConfigNotFoundError(PricingError):
    """Pricing config lookup by key failed."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Pricing config '{key}' not found", context={"key": key})
        self.error_code = "PRICING_CONFIG_NOT_FOUND"
        self.status_code = 404


class PricingConfigError(PricingError):
    """Invalid pricing config values or forbidden administrative change."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message, context={"key": key} if key else None)
        self.error_code = "INVALID_PRICING_CONFIG"


# ============================================================================
# Quotas
# ============================================================================


class QuotaError(MeteringError):
    """Quota-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "QUOTA_ERROR", status_code=400, context=context, recovery_hint=recovery_hint
        )


class QuotaExceededError(QuotaError):
    """Consuming the amount would overrun the daily or monthly cap."""

    def __init__(
        self,
        subscription_id: str,
        kind: str,
        scope: str,
        used: int,
        cap: int,
        requested: int,
    ) -> None:
        super().__init__(
            f"{scope.capitalize()} {kind} quota exceeded",
            context={
                "subscription_id": subscription_id,
                "kind": kind,
                "scope": scope,
                "used": used,
                "cap": cap,
                "requested": requested,
            },
            recovery_hint="Wait for the quota to reset or upgrade the subscription package",
        )
        self.error_code = "QUOTA_EXCEEDED"
        self.status_code = 429
        self.scope = scope
        self.kind = kind


class QuotaNotProvisionedError(QuotaError):
    """No quota row exists for the subscription and kind."""

    def __init__(self, subscription_id: str, kind: str) -> None:
        super().__init__(
            f"No {kind} quota provisioned for subscription {subscription_id}",
            context={"subscription_id": subscription_id, "kind": kind},
        )
        self.error_code = "QUOTA_NOT_PROVISIONED"
        self.status_code = 404


class SubscriptionExpiredError(QuotaError):
    """The subscription term has ended."""

    def __init__(self, subscription_id: str) -> None:
        super().__init__(
            f"Subscription {subscription_id} has expired",
            context={"subscription_id": subscription_id},
            recovery_hint="Renew the subscription",
        )
        self.error_code = "SUBSCRIPTION_EXPIRED"
        self.status_code = 403


# ============================================================================
# Purchases
# ============================================================================


class PurchaseError(MeteringError):
    """Purchase-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "PURCHASE_ERROR", status_code=400, context=context, recovery_hint=recovery_hint
        )


class PackageNotFoundError(PurchaseError):
    """Token package not found."""

    def __init__(self, package_id: str) -> None:
        super().__init__("Token package not found", context={"package_id": package_id})
        self.error_code = "PACKAGE_NOT_FOUND"
        self.status_code = 404


class InvalidStatusTransitionError(PurchaseError):
    """Purchase status machine only allows pending -> terminal."""

    def __init__(self, purchase_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move purchase {purchase_id} from {current} to {requested}",
            context={"purchase_id": purchase_id, "current": current, "requested": requested},
        )
        self.error_code = "INVALID_STATUS_TRANSITION"
        self.status_code = 409


class InvalidSignatureError(PurchaseError):
    """Gateway notification signature did not verify."""

    def __init__(self, order_id: str) -> None:
        super().__init__("Invalid signature", context={"order_id": order_id})
        self.error_code = "INVALID_SIGNATURE"
        self.status_code = 401


# ============================================================================
# Store
# ============================================================================


class StoreUnavailableError(MeteringError):
    """The backing store timed out or refused the connection."""

    transient = True

    def __init__(self, operation: str, detail: str | None = None) -> None:
        super().__init__(
            f"Store unavailable during {operation}",
            "STORE_UNAVAILABLE",
            status_code=503,
            context={"operation": operation, "detail": detail} if detail else {"operation": operation},
            recovery_hint="Retry the whole gated action",
        )


class StoreConflictError(MeteringError):
    """A compare-and-swap update kept losing to concurrent writers."""

    transient = True

    def __init__(self, operation: str, attempts: int) -> None:
        super().__init__(
            f"Concurrent update conflict during {operation}",
            "STORE_CONFLICT",
            status_code=409,
            context={"operation": operation, "attempts": attempts},
            recovery_hint="Retry the whole gated action",
        )


__all__ = [
    "MeteringError",
    "InsufficientBalanceError",
    "AccountNotFoundError",
    "InvalidAmountError",
    "PricingError",
    "NoPricingConfiguredError",
    "PricingConfigNotFoundError",
    "PricingConfigError",
    "QuotaError",
    "QuotaExceededError",
    "QuotaNotProvisionedError",
    "SubscriptionExpiredError",
    "PurchaseError",
    "PackageNotFoundError",
    "InvalidStatusTransitionError",
    "InvalidSignatureError",
    "StoreUnavailableError",
    "StoreConflictError",
]
