"""
Token package and purchase views.
"""

from datetime import datetime
from decimal import Decimal

from wablast.metering.billing.core.entities import PurchaseEntity, TokenPackageEntity
from wablast.metering.billing.core.enums import PurchaseStatus, ReconciliationOutcome
from wablast.metering.billing.core.models import MeteringBaseModel
from wablast.metering.billing.money_utils import format_money, money_handler, tokens_from_minor


class TokenPackage(MeteringBaseModel):
    id: str
    name: str
    description: str | None = None
    token_amount: Decimal
    bonus_tokens: Decimal
    total_tokens: Decimal
    price: Decimal
    currency: str
    is_active: bool
    is_popular: bool
    sort_order: int

    @classmethod
    def from_entity(cls, entity: TokenPackageEntity) -> "TokenPackage":
        price = money_handler.money_from_minor_units(entity.price_minor, entity.currency)
        return cls(
            id=entity.id,
            name=entity.name,
            description=entity.description,
            token_amount=tokens_from_minor(entity.token_amount_minor),
            bonus_tokens=tokens_from_minor(entity.bonus_tokens_minor),
            total_tokens=tokens_from_minor(entity.total_tokens_minor),
            price=price.amount,
            currency=entity.currency,
            is_active=entity.is_active,
            is_popular=entity.is_popular,
            sort_order=entity.sort_order,
        )

    @property
    def formatted_price(self) -> str:
        return format_money(money_handler.create_money(self.price, self.currency))


class Purchase(MeteringBaseModel):
    id: str
    tenant_id: str
    package_id: str
    payment_reference: str
    token_amount: Decimal
    price: Decimal
    currency: str
    status: PurchaseStatus
    transaction_id: str | None = None
    payment_type: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: PurchaseEntity) -> "Purchase":
        price = money_handler.money_from_minor_units(entity.price_minor, entity.currency)
        return cls(
            id=entity.id,
            tenant_id=entity.tenant_id,
            package_id=entity.package_id,
            payment_reference=entity.payment_reference,
            token_amount=tokens_from_minor(entity.token_amount_minor),
            price=price.amount,
            currency=entity.currency,
            status=PurchaseStatus(entity.status),
            transaction_id=entity.transaction_id,
            payment_type=entity.payment_type,
            created_at=entity.created_at,
            completed_at=entity.completed_at,
        )


class PurchaseCreated(MeteringBaseModel):
    """A pending purchase ready for payment. ``reused`` marks a recent pending purchase returned again."""

    purchase: Purchase
    reused: bool = False


class ReconciliationResult(MeteringBaseModel):
    """Outcome of one payment status notification. Never raised, always returned."""

    purchase_id: str | None
    outcome: ReconciliationOutcome
    status: PurchaseStatus | None = None
    new_balance: Decimal | None = None
    message: str | None = None


__all__ = ["TokenPackage", "Purchase", "PurchaseCreated", "ReconciliationResult"]
