"""
SQLAlchemy tables for the metering engine.

Token amounts are stored as integer hundredths (``*_minor`` columns) so balance
arithmetic inside UPDATE statements is exact on every backend.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from wablast.metering.billing.core.enums import PurchaseStatus
from wablast.metering.db import Base, StrictTenantMixin, TimestampMixin


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PricingConfigEntity(TimestampMixin, Base):
    """Cost formula for one feature key (or the ``default`` fallback)."""

    __tablename__ = "metering_pricing_configs"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    divisor: Mapped[int] = mapped_column(Integer, nullable=False)
    markup: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=Decimal("1"))
    min_tokens_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("key", name="uq_metering_pricing_configs_key"),
        CheckConstraint("divisor > 0", name="ck_metering_pricing_divisor_positive"),
        CheckConstraint("markup >= 0", name="ck_metering_pricing_markup_non_negative"),
        CheckConstraint("min_tokens_minor >= 0", name="ck_metering_pricing_min_non_negative"),
    )


class TenantBalanceEntity(TimestampMixin, Base):
    """One prepaid token balance per tenant."""

    __tablename__ = "metering_tenant_balances"

    tenant_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    balance_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("balance_minor >= 0", name="ck_metering_balance_non_negative"),
    )


class LedgerCreditEntity(StrictTenantMixin, Base):
    """Applied credit, unique per idempotency key."""

    __tablename__ = "metering_ledger_credits"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_metering_ledger_credits_key"),
    )


class UsageRecordEntity(StrictTenantMixin, Base):
    """Append-only record of one successful charge."""

    __tablename__ = "metering_usage_records"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    feature_key: Mapped[str] = mapped_column(String(100), nullable=False)
    raw_units: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    charged_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    usage_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "feature_key", "reference_id", name="uq_metering_usage_reference"
        ),
        Index("ix_metering_usage_tenant_created", "tenant_id", "created_at"),
        Index("ix_metering_usage_tenant_feature", "tenant_id", "feature_key"),
    )


class TokenPackageEntity(TimestampMixin, Base):
    """Purchasable bundle of tokens."""

    __tablename__ = "metering_token_packages"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    bonus_tokens_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="IDR")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_popular: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def total_tokens_minor(self) -> int:
        return self.token_amount_minor + self.bonus_tokens_minor


class PurchaseEntity(TimestampMixin, StrictTenantMixin, Base):
    """Token package purchase driven by payment gateway notifications."""

    __tablename__ = "metering_purchases"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    package_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("metering_token_packages.id"), nullable=False
    )
    payment_reference: Mapped[str] = mapped_column(String(100), nullable=False)
    token_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="IDR")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PurchaseStatus.PENDING.value
    )
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("payment_reference", name="uq_metering_purchases_reference"),
        Index("ix_metering_purchases_tenant_created", "tenant_id", "created_at"),
        CheckConstraint(
            "status IN ('pending', 'success', 'failed', 'expired')",
            name="ck_metering_purchases_status",
        ),
    )


class SubscriptionQuotaEntity(TimestampMixin, StrictTenantMixin, Base):
    """Daily and per-cycle counters for one subscription and quota kind."""

    __tablename__ = "metering_subscription_quotas"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    subscription_id: Mapped[str] = mapped_column(String(50), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # 0 means unlimited
    monthly_cap: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_cap: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    used_monthly: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    used_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_usage_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cycle_start: Mapped[date | None] = mapped_column(Date, nullable=True)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("subscription_id", "kind", name="uq_metering_quota_subscription_kind"),
        CheckConstraint("used_monthly >= 0", name="ck_metering_quota_used_monthly"),
        CheckConstraint("used_today >= 0", name="ck_metering_quota_used_today"),
    )


__all__ = [
    "PricingConfigEntity",
    "TenantBalanceEntity",
    "LedgerCreditEntity",
    "UsageRecordEntity",
    "TokenPackageEntity",
    "PurchaseEntity",
    "SubscriptionQuotaEntity",
]
