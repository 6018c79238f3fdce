"""
Subscription quota tracker.

Keeps daily and per-billing-cycle counters for each ``(subscription_id, kind)`` and
enforces their caps. Consumption is an optimistic compare-and-swap:

1. read the row and compute the effective counters (daily reset when the last usage
   date is not today in UTC, cycle reset when the current cycle differs from the one
   the monthly counter was accumulated under);
2. reject if either cap would be overrun, writing nothing;
3. ``UPDATE ... WHERE`` every counter still holds the value read, applying the
   rollover and the increment together.

A lost race re-reads and retries, so concurrent consumers across processes behave
like some serial order and a day or cycle boundary resets exactly once.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wablast.metering.billing.core.entities import SubscriptionQuotaEntity
from wablast.metering.billing.core.enums import QuotaKind, QuotaScope
from wablast.metering.billing.exceptions import (
    InvalidAmountError,
    QuotaExceededError,
    QuotaNotProvisionedError,
    StoreConflictError,
    SubscriptionExpiredError,
)
from wablast.metering.billing.metrics import MeteringMetrics, get_metering_metrics
from wablast.metering.billing.quota.cycles import (
    as_utc,
    current_cycle_start,
    next_cycle_start,
    next_utc_midnight,
    utc_today,
)
from wablast.metering.billing.quota.models import ConsumeResult, QuotaStatus, remaining
from wablast.metering.billing.store import unit_of_work
from wablast.metering.settings import settings

logger = structlog.get_logger(__name__)


class _CounterChanged(Exception):
    """Another writer updated the quota row between read and update."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _require_cap(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidAmountError(f"{name} must be a non-negative integer (0 = unlimited)", value)
    return value


class QuotaTracker:
    """Check-and-consume daily and monthly subscription allowances."""

    def __init__(
        self,
        db: AsyncSession,
        metrics: MeteringMetrics | None = None,
        now: Callable[[], datetime] | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.db = db
        self.metrics = metrics or get_metering_metrics()
        self._now = now or _utcnow
        self.max_retries = max_retries or settings.metering.quota_cas_max_retries

    async def provision(
        self,
        subscription_id: str,
        tenant_id: str,
        kind: QuotaKind | str,
        monthly_cap: int,
        daily_cap: int,
        start_date: datetime,
        end_date: datetime | None = None,
    ) -> QuotaStatus:
        """
        Create the quota row for a subscription, or update its caps and term.

        Counters restart when the subscription is re-termed (a new start date).
        """
        kind = QuotaKind(kind)
        _require_cap("monthly_cap", monthly_cap)
        _require_cap("daily_cap", daily_cap)
        start_date = as_utc(start_date)
        end_date = as_utc(end_date) if end_date is not None else None

        async with unit_of_work(self.db, "quota provision"):
            row = await self._load(subscription_id, kind)
            if row is None:
                row = SubscriptionQuotaEntity(
                    subscription_id=subscription_id,
                    tenant_id=tenant_id,
                    kind=kind.value,
                    used_today=0,
                    used_monthly=0,
                )
                self.db.add(row)
                action = "created"
            elif as_utc(row.start_date) != start_date:
                row.used_today = 0
                row.used_monthly = 0
                row.last_usage_date = None
                row.cycle_start = None
                action = "retermed"
            else:
                action = "updated"

            row.tenant_id = tenant_id
            row.monthly_cap = monthly_cap
            row.daily_cap = daily_cap
            row.start_date = start_date
            row.end_date = end_date
            await self.db.flush()
            status = self._status(row, self._now())

        logger.info(
            "quota.provisioned",
            subscription_id=subscription_id,
            tenant_id=tenant_id,
            kind=kind.value,
            action=action,
            monthly_cap=monthly_cap,
            daily_cap=daily_cap,
        )
        return status

    async def check_and_consume(
        self,
        subscription_id: str,
        amount: int,
        kind: QuotaKind | str,
    ) -> ConsumeResult:
        """
        Atomically apply pending rollovers, check both caps and consume ``amount``.

        Raises:
            QuotaExceededError: ``scope`` tells which cap; nothing is written
            QuotaNotProvisionedError: no quota row for the subscription and kind
            SubscriptionExpiredError: the subscription end date has passed
            InvalidAmountError: amount is not a positive integer
            StoreConflictError: the row stayed contended for every retry
            StoreUnavailableError: transient store failure
        """
        kind = QuotaKind(kind)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError("Quota amount must be a positive integer", amount)

        for attempt in range(1, self.max_retries + 1):
            try:
                async with unit_of_work(self.db, "quota consume"):
                    result = await self._try_consume(subscription_id, amount, kind, attempt)
            except _CounterChanged:
                logger.debug(
                    "quota.cas_retry",
                    subscription_id=subscription_id,
                    kind=kind.value,
                    attempt=attempt,
                )
                await asyncio.sleep(0.005 * attempt)
                continue
            except QuotaExceededError as e:
                self.metrics.record_quota_rejection(kind.value, e.scope)
                raise

            self.metrics.record_quota_consumed(kind.value, amount)
            return result

        logger.warning(
            "quota.cas_exhausted",
            subscription_id=subscription_id,
            kind=kind.value,
            attempts=self.max_retries,
        )
        raise StoreConflictError("quota consume", self.max_retries)

    async def get_status(self, subscription_id: str, kind: QuotaKind | str) -> QuotaStatus:
        """Effective counters and remaining allowances. Does not write rollovers."""
        kind = QuotaKind(kind)
        row = await self._load(subscription_id, kind)
        if row is None:
            raise QuotaNotProvisionedError(subscription_id, kind.value)
        return self._status(row, self._now())

    async def _try_consume(
        self, subscription_id: str, amount: int, kind: QuotaKind, attempt: int
    ) -> ConsumeResult:
        now = self._now()
        row = await self._load(subscription_id, kind)
        if row is None:
            raise QuotaNotProvisionedError(subscription_id, kind.value)
        if row.end_date is not None and as_utc(row.end_date) <= as_utc(now):
            raise SubscriptionExpiredError(subscription_id)

        today = utc_today(now)
        cycle = current_cycle_start(row.start_date, now)
        used_today = row.used_today if row.last_usage_date == today else 0
        used_monthly = row.used_monthly if row.cycle_start == cycle else 0

        if row.daily_cap and used_today + amount > row.daily_cap:
            self._log_rejection(row, QuotaScope.DAILY, used_today, row.daily_cap, amount)
            raise QuotaExceededError(
                subscription_id, kind.value, QuotaScope.DAILY.value, used_today, row.daily_cap, amount
            )
        if row.monthly_cap and used_monthly + amount > row.monthly_cap:
            self._log_rejection(row, QuotaScope.MONTHLY, used_monthly, row.monthly_cap, amount)
            raise QuotaExceededError(
                subscription_id,
                kind.value,
                QuotaScope.MONTHLY.value,
                used_monthly,
                row.monthly_cap,
                amount,
            )

        quota = SubscriptionQuotaEntity
        stmt = (
            update(quota)
            .where(
                quota.id == row.id,
                quota.used_today == row.used_today,
                quota.used_monthly == row.used_monthly,
                quota.last_usage_date.is_(None)
                if row.last_usage_date is None
                else quota.last_usage_date == row.last_usage_date,
                quota.cycle_start.is_(None)
                if row.cycle_start is None
                else quota.cycle_start == row.cycle_start,
            )
            .values(
                used_today=used_today + amount,
                used_monthly=used_monthly + amount,
                last_usage_date=today,
                cycle_start=cycle,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            raise _CounterChanged()

        if row.last_usage_date is not None and row.last_usage_date != today:
            logger.info("quota.daily_rollover", subscription_id=subscription_id, kind=kind.value)
        if row.cycle_start is not None and row.cycle_start != cycle:
            logger.info(
                "quota.cycle_rollover",
                subscription_id=subscription_id,
                kind=kind.value,
                cycle_start=cycle.isoformat(),
            )

        return ConsumeResult(
            subscription_id=subscription_id,
            kind=kind,
            amount=amount,
            used_today=used_today + amount,
            used_monthly=used_monthly + amount,
            remaining_daily=remaining(row.daily_cap, used_today + amount),
            remaining_monthly=remaining(row.monthly_cap, used_monthly + amount),
            attempts=attempt,
        )

    async def _load(
        self, subscription_id: str, kind: QuotaKind
    ) -> SubscriptionQuotaEntity | None:
        result = await self.db.execute(
            select(SubscriptionQuotaEntity)
            .where(
                SubscriptionQuotaEntity.subscription_id == subscription_id,
                SubscriptionQuotaEntity.kind == kind.value,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _status(self, row: SubscriptionQuotaEntity, now: datetime) -> QuotaStatus:
        today = utc_today(now)
        cycle = current_cycle_start(row.start_date, now)
        used_today = row.used_today if row.last_usage_date == today else 0
        used_monthly = row.used_monthly if row.cycle_start == cycle else 0
        end_date = as_utc(row.end_date) if row.end_date is not None else None

        return QuotaStatus(
            subscription_id=row.subscription_id,
            tenant_id=row.tenant_id,
            kind=QuotaKind(row.kind),
            daily_cap=row.daily_cap,
            monthly_cap=row.monthly_cap,
            used_today=used_today,
            used_monthly=used_monthly,
            remaining_daily=remaining(row.daily_cap, used_today),
            remaining_monthly=remaining(row.monthly_cap, used_monthly),
            cycle_start=cycle,
            cycle_end=next_cycle_start(row.start_date, now),
            daily_resets_at=next_utc_midnight(now),
            end_date=end_date,
            expired=end_date is not None and end_date <= as_utc(now),
        )

    def _log_rejection(
        self,
        row: SubscriptionQuotaEntity,
        scope: QuotaScope,
        used: int,
        cap: int,
        amount: int,
    ) -> None:
        logger.info(
            "quota.exceeded",
            subscription_id=row.subscription_id,
            tenant_id=row.tenant_id,
            kind=row.kind,
            scope=scope.value,
            used=used,
            cap=cap,
            requested=amount,
        )


__all__ = ["QuotaTracker"]
