"""
Usage meter.

Converts a provider-reported raw unit count into a token charge, debits the ledger
and appends a usage record. The debit and the usage record commit together, so a
crash can never leave a debit without its record. Gated features must only run
after ``charge`` returns; a later failure of the feature is not refunded here.

A ``reference_id`` makes the charge idempotent: the usage table is unique on
``(tenant_id, feature_key, reference_id)`` and a retry with the same reference
returns the original charge instead of debiting again.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wablast.metering.billing.core.entities import UsageRecordEntity
from wablast.metering.billing.core.models import Page
from wablast.metering.billing.exceptions import InsufficientBalanceError
from wablast.metering.billing.ledger.service import TokenLedger
from wablast.metering.billing.metrics import MeteringMetrics, get_metering_metrics
from wablast.metering.billing.money_utils import tokens_from_minor, tokens_to_minor
from wablast.metering.billing.pricing.resolver import PricingResolver, compute_charge
from wablast.metering.billing.store import unit_of_work
from wablast.metering.billing.usage.models import ChargeResult, UsageRecord, UsageStats
from wablast.metering.db import insert_ignore

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100


class _ReplayDetected(Exception):
    """A usage record with the same reference id won the insert."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UsageMeter:
    """Charge tenants for metered feature usage."""

    def __init__(
        self,
        db: AsyncSession,
        resolver: PricingResolver,
        ledger: TokenLedger | None = None,
        metrics: MeteringMetrics | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        if ledger is not None and ledger.db is not db:
            raise ValueError("ledger must be bound to the same session")
        self.db = db
        self.resolver = resolver
        self.metrics = metrics or get_metering_metrics()
        self.ledger = ledger or TokenLedger(db, metrics=self.metrics)
        self._now = now or _utcnow

    async def charge(
        self,
        tenant_id: str,
        feature_key: str,
        raw_units: int,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        """
        Charge ``raw_units`` of ``feature_key`` usage against the tenant balance.

        Args:
            tenant_id: Tenant to charge
            feature_key: Pricing key of the feature (falls back to ``default``)
            raw_units: Vendor-reported unit count, non-negative integer
            reference_id: Originating request id; repeats are not charged twice
            metadata: Free-form context stored on the usage record

        Returns:
            ChargeResult with the charged amount and the balance after the debit

        Raises:
            InsufficientBalanceError: nothing is debited and no usage is recorded
            NoPricingConfiguredError: no active feature or default pricing
            InvalidAmountError: raw_units is negative or not an integer
            StoreUnavailableError: transient store failure, nothing is committed
        """
        config = await self.resolver.resolve(feature_key)
        charged = compute_charge(config, raw_units)
        charged_minor = tokens_to_minor(charged)

        if reference_id is not None:
            existing = await self._find_by_reference(tenant_id, feature_key, reference_id)
            if existing is not None:
                return await self._replayed(existing)

        usage_id = str(uuid4())
        try:
            async with unit_of_work(self.db, "charge"):
                new_minor = await self.ledger._apply_debit(tenant_id, charged_minor)
                inserted = await self.db.execute(
                    insert_ignore(
                        self.db,
                        UsageRecordEntity,
                        ["tenant_id", "feature_key", "reference_id"],
                    ).values(
                        id=usage_id,
                        tenant_id=tenant_id,
                        feature_key=feature_key,
                        raw_units=raw_units,
                        charged_minor=charged_minor,
                        reference_id=reference_id,
                        usage_metadata=metadata,
                        created_at=self._now(),
                    )
                )
                if inserted.rowcount == 0:
                    raise _ReplayDetected()
        except _ReplayDetected:
            # A concurrent retry recorded first; our debit was rolled back with the block.
            existing = await self._find_by_reference(tenant_id, feature_key, reference_id)
            if existing is None:
                raise
            return await self._replayed(existing)
        except InsufficientBalanceError:
            self.metrics.record_insufficient_balance(feature_key)
            raise

        self.metrics.record_charge(feature_key, charged_minor)
        logger.info(
            "usage.charged",
            tenant_id=tenant_id,
            feature_key=feature_key,
            pricing_key=config.key,
            raw_units=raw_units,
            charged=str(charged),
            reference_id=reference_id,
        )
        return ChargeResult(
            tenant_id=tenant_id,
            feature_key=feature_key,
            charged=charged,
            new_balance=tokens_from_minor(new_minor),
            usage_id=usage_id,
        )

    async def get_usage_history(
        self,
        tenant_id: str,
        page: int = 1,
        limit: int = 50,
        feature_key: str | None = None,
    ) -> Page[UsageRecord]:
        """Newest-first usage records for a tenant, optionally for one feature."""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        filters = [UsageRecordEntity.tenant_id == tenant_id]
        if feature_key:
            filters.append(UsageRecordEntity.feature_key == feature_key)

        total = await self.db.execute(
            select(func.count()).select_from(UsageRecordEntity).where(*filters)
        )
        result = await self.db.execute(
            select(UsageRecordEntity)
            .where(*filters)
            .order_by(UsageRecordEntity.created_at.desc(), UsageRecordEntity.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return Page[UsageRecord](
            data=[UsageRecord.from_entity(entity) for entity in result.scalars().all()],
            total=total.scalar_one(),
            page=page,
            limit=limit,
        )

    async def get_usage_stats(self, tenant_id: str) -> UsageStats:
        now = self._now().astimezone(UTC)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start_of_week = start_of_day - timedelta(days=start_of_day.weekday())
        start_of_month = start_of_day.replace(day=1)

        by_feature_rows = await self.db.execute(
            select(UsageRecordEntity.feature_key, func.sum(UsageRecordEntity.charged_minor))
            .where(UsageRecordEntity.tenant_id == tenant_id)
            .group_by(UsageRecordEntity.feature_key)
        )

        return UsageStats(
            tenant_id=tenant_id,
            today=await self._sum_since(tenant_id, start_of_day),
            this_week=await self._sum_since(tenant_id, start_of_week),
            this_month=await self._sum_since(tenant_id, start_of_month),
            by_feature={
                feature: tokens_from_minor(total or 0) for feature, total in by_feature_rows.all()
            },
        )

    async def _sum_since(self, tenant_id: str, since: datetime) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(UsageRecordEntity.charged_minor), 0)).where(
                UsageRecordEntity.tenant_id == tenant_id,
                UsageRecordEntity.created_at >= since,
            )
        )
        return tokens_from_minor(result.scalar_one())

    async def _find_by_reference(
        self, tenant_id: str, feature_key: str, reference_id: str | None
    ) -> UsageRecordEntity | None:
        result = await self.db.execute(
            select(UsageRecordEntity).where(
                UsageRecordEntity.tenant_id == tenant_id,
                UsageRecordEntity.feature_key == feature_key,
                UsageRecordEntity.reference_id == reference_id,
            )
        )
        return result.scalar_one_or_none()

    async def _replayed(self, existing: UsageRecordEntity) -> ChargeResult:
        logger.info(
            "usage.charge_replayed",
            tenant_id=existing.tenant_id,
            feature_key=existing.feature_key,
            reference_id=existing.reference_id,
            usage_id=existing.id,
        )
        return ChargeResult(
            tenant_id=existing.tenant_id,
            feature_key=existing.feature_key,
            charged=tokens_from_minor(existing.charged_minor),
            new_balance=await self.ledger.get_balance(existing.tenant_id),
            usage_id=existing.id,
            replayed=True,
        )


__all__ = ["UsageMeter", "MAX_PAGE_SIZE"]
