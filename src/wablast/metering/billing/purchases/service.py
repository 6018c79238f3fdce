"""
Token package catalog and purchase creation.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wablast.metering.billing.core.entities import PurchaseEntity, TokenPackageEntity
from wablast.metering.billing.core.enums import PurchaseStatus
from wablast.metering.billing.core.models import Page
from wablast.metering.billing.exceptions import PackageNotFoundError, PurchaseError
from wablast.metering.billing.money_utils import (
    money_handler,
    require_token_amount,
    tokens_to_minor,
)
from wablast.metering.billing.purchases.models import Purchase, PurchaseCreated, TokenPackage
from wablast.metering.billing.quota.cycles import as_utc
from wablast.metering.billing.store import unit_of_work
from wablast.metering.settings import settings

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100

DEFAULT_PACKAGES: list[dict[str, Any]] = [
    {
        "name": "Starter",
        "description": "Starter pack to try the AI features",
        "token_amount": 50,
        "bonus_tokens": 0,
        "price": 25000,
        "is_popular": False,
        "sort_order": 1,
    },
    {
        "name": "Basic",
        "description": "Value pack for regular users",
        "token_amount": 100,
        "bonus_tokens": 10,
        "price": 45000,
        "is_popular": False,
        "sort_order": 2,
    },
    {
        "name": "Pro",
        "description": "Most popular pack with extra bonus",
        "token_amount": 250,
        "bonus_tokens": 30,
        "price": 100000,
        "is_popular": True,
        "sort_order": 3,
    },
    {
        "name": "Business",
        "description": "For high-volume businesses",
        "token_amount": 500,
        "bonus_tokens": 75,
        "price": 175000,
        "is_popular": False,
        "sort_order": 4,
    },
    {
        "name": "Enterprise",
        "description": "Best value with the largest discount",
        "token_amount": 1000,
        "bonus_tokens": 200,
        "price": 300000,
        "is_popular": False,
        "sort_order": 5,
    },
]

_UPDATABLE_PACKAGE_FIELDS = frozenset(
    {
        "name",
        "description",
        "token_amount",
        "bonus_tokens",
        "price",
        "is_active",
        "is_popular",
        "sort_order",
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PurchaseService:
    """Token packages and pending purchases."""

    def __init__(self, db: AsyncSession, now: Callable[[], datetime] | None = None) -> None:
        self.db = db
        self._now = now or _utcnow

    # ==================== Packages ====================

    async def list_packages(self, include_inactive: bool = False) -> list[TokenPackage]:
        stmt = select(TokenPackageEntity).order_by(
            TokenPackageEntity.sort_order, TokenPackageEntity.name
        )
        if not include_inactive:
            stmt = stmt.where(TokenPackageEntity.is_active.is_(True))
        result = await self.db.execute(stmt)
        return [TokenPackage.from_entity(entity) for entity in result.scalars().all()]

    async def get_package(self, package_id: str) -> TokenPackage:
        return TokenPackage.from_entity(await self._get_package_entity(package_id))

    async def create_package(
        self,
        name: str,
        token_amount: Decimal | int | str,
        price: Decimal | int | str,
        bonus_tokens: Decimal | int | str = 0,
        description: str | None = None,
        currency: str | None = None,
        is_popular: bool = False,
        sort_order: int = 0,
        is_active: bool = True,
    ) -> TokenPackage:
        currency = (currency or settings.metering.currency).upper()
        entity = TokenPackageEntity(
            name=name,
            description=description,
            token_amount_minor=tokens_to_minor(require_token_amount(token_amount)),
            bonus_tokens_minor=tokens_to_minor(require_token_amount(bonus_tokens)),
            price_minor=self._price_minor(price, currency),
            currency=currency,
            is_active=is_active,
            is_popular=is_popular,
            sort_order=sort_order,
        )
        async with unit_of_work(self.db, "create package"):
            self.db.add(entity)
            await self.db.flush()
            package = TokenPackage.from_entity(entity)

        logger.info("purchase.package_created", package_id=package.id, name=name)
        return package

    async def update_package(self, package_id: str, **changes: Any) -> TokenPackage:
        unknown = set(changes) - _UPDATABLE_PACKAGE_FIELDS
        if unknown:
            raise PurchaseError(
                f"Unknown package fields: {', '.join(sorted(unknown))}",
                context={"package_id": package_id},
            )

        async with unit_of_work(self.db, "update package"):
            entity = await self._get_package_entity(package_id)
            for field, value in changes.items():
                if field == "token_amount":
                    entity.token_amount_minor = tokens_to_minor(require_token_amount(value))
                elif field == "bonus_tokens":
                    entity.bonus_tokens_minor = tokens_to_minor(require_token_amount(value))
                elif field == "price":
                    entity.price_minor = self._price_minor(value, entity.currency)
                else:
                    setattr(entity, field, value)
            await self.db.flush()
            package = TokenPackage.from_entity(entity)

        logger.info("purchase.package_updated", package_id=package_id, fields=sorted(changes))
        return package

    async def seed_default_packages(self) -> int:
        """Create the default catalog when no package exists. Returns the number created."""
        existing = await self.db.execute(select(func.count()).select_from(TokenPackageEntity))
        if existing.scalar_one() > 0:
            logger.debug("purchase.packages_exist", action="seed_skipped")
            return 0

        for package in DEFAULT_PACKAGES:
            await self.create_package(**package)

        logger.info("purchase.packages_seeded", count=len(DEFAULT_PACKAGES))
        return len(DEFAULT_PACKAGES)

    # ==================== Purchases ====================

    async def create_purchase(self, tenant_id: str, package_id: str) -> PurchaseCreated:
        """
        Create a pending purchase for a package.

        A pending purchase of the same package younger than the reuse window is
        returned instead (double-click protection); older pending ones are expired.

        Raises:
            PackageNotFoundError: unknown package
            PurchaseError: package inactive or granting no tokens
        """
        now = self._now()
        reuse_window = timedelta(minutes=settings.metering.pending_purchase_reuse_minutes)

        async with unit_of_work(self.db, "create purchase"):
            package = await self._get_package_entity(package_id)
            if not package.is_active:
                raise PurchaseError(
                    "This token package is not available", context={"package_id": package_id}
                )
            if package.total_tokens_minor <= 0:
                raise PurchaseError(
                    "This token package grants no tokens", context={"package_id": package_id}
                )

            pending = await self.db.execute(
                select(PurchaseEntity)
                .where(
                    PurchaseEntity.tenant_id == tenant_id,
                    PurchaseEntity.package_id == package_id,
                    PurchaseEntity.status == PurchaseStatus.PENDING.value,
                )
                .order_by(PurchaseEntity.created_at.desc())
                .limit(1)
                .execution_options(populate_existing=True)
            )
            existing = pending.scalar_one_or_none()
            if existing is not None:
                if as_utc(existing.created_at) > now - reuse_window:
                    logger.info(
                        "purchase.pending_reused",
                        tenant_id=tenant_id,
                        purchase_id=existing.id,
                    )
                    return PurchaseCreated(purchase=Purchase.from_entity(existing), reused=True)

                await self.db.execute(
                    update(PurchaseEntity)
                    .where(
                        PurchaseEntity.id == existing.id,
                        PurchaseEntity.status == PurchaseStatus.PENDING.value,
                    )
                    .values(status=PurchaseStatus.EXPIRED.value)
                    .execution_options(synchronize_session=False)
                )
                logger.info("purchase.stale_pending_expired", purchase_id=existing.id)

            purchase = PurchaseEntity(
                tenant_id=tenant_id,
                package_id=package.id,
                payment_reference=self.generate_reference(now),
                token_amount_minor=package.total_tokens_minor,
                price_minor=package.price_minor,
                currency=package.currency,
                status=PurchaseStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            self.db.add(purchase)
            await self.db.flush()
            created = Purchase.from_entity(purchase)

        logger.info(
            "purchase.created",
            tenant_id=tenant_id,
            purchase_id=created.id,
            package=package.name,
            payment_reference=created.payment_reference,
            token_amount=str(created.token_amount),
        )
        return PurchaseCreated(purchase=created)

    async def get_purchase_history(
        self, tenant_id: str, page: int = 1, limit: int = 20
    ) -> Page[Purchase]:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        total = await self.db.execute(
            select(func.count())
            .select_from(PurchaseEntity)
            .where(PurchaseEntity.tenant_id == tenant_id)
        )
        result = await self.db.execute(
            select(PurchaseEntity)
            .where(PurchaseEntity.tenant_id == tenant_id)
            .order_by(PurchaseEntity.created_at.desc(), PurchaseEntity.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return Page[Purchase](
            data=[Purchase.from_entity(entity) for entity in result.scalars().all()],
            total=total.scalar_one(),
            page=page,
            limit=limit,
        )

    async def get_purchase_by_reference(self, payment_reference: str) -> Purchase | None:
        result = await self.db.execute(
            select(PurchaseEntity)
            .where(PurchaseEntity.payment_reference == payment_reference)
            .execution_options(populate_existing=True)
        )
        entity = result.scalar_one_or_none()
        return Purchase.from_entity(entity) if entity is not None else None

    @staticmethod
    def generate_reference(now: datetime) -> str:
        """``TKN-<epoch-ms>-<8 hex>``"""
        epoch_ms = int(as_utc(now).timestamp() * 1000)
        return f"{settings.metering.purchase_reference_prefix}{epoch_ms}-{uuid4().hex[:8]}"

    async def _get_package_entity(self, package_id: str) -> TokenPackageEntity:
        result = await self.db.execute(
            select(TokenPackageEntity).where(TokenPackageEntity.id == package_id)
        )
        entity = result.scalar_one_or_none()
        if entity is None:
            raise PackageNotFoundError(package_id)
        return entity

    @staticmethod
    def _price_minor(price: Decimal | int | str, currency: str) -> int:
        money = money_handler.create_money(price, currency)
        if money.amount < 0:
            raise PurchaseError("Package price must not be negative")
        return money_handler.money_to_minor_units(money)


__all__ = ["PurchaseService", "DEFAULT_PACKAGES"]
