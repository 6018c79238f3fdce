"""Tests for subscription quota enforcement."""

import asyncio
from datetime import UTC, date, datetime, timedelta

import pytest

from wablast.metering.billing.core.enums import QuotaKind
from wablast.metering.billing.exceptions import (
    InvalidAmountError,
    QuotaExceededError,
    QuotaNotProvisionedError,
    SubscriptionExpiredError,
)
from wablast.metering.billing.quota import QuotaTracker

START = datetime(2026, 1, 15, 8, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 20, 10, 0, tzinfo=UTC))


@pytest.fixture
def tracker(db_session, clock) -> QuotaTracker:
    return QuotaTracker(db_session, now=clock)


async def _provision(tracker, monthly_cap=1000, daily_cap=100, end_date=None, kind=QuotaKind.BLAST):
    return await tracker.provision(
        "sub-1",
        "tenant-1",
        kind,
        monthly_cap=monthly_cap,
        daily_cap=daily_cap,
        start_date=START,
        end_date=end_date,
    )


@pytest.mark.integration
class TestProvision:
    @pytest.mark.asyncio
    async def test_provision_creates_fresh_counters(self, tracker):
        status = await _provision(tracker)

        assert status.used_today == 0
        assert status.used_monthly == 0
        assert status.remaining_daily == 100
        assert status.remaining_monthly == 1000
        assert status.cycle_start == date(2026, 1, 15)
        assert status.cycle_end == date(2026, 2, 15)
        assert status.can_consume is True

    @pytest.mark.asyncio
    async def test_update_caps_keeps_counters(self, tracker):
        await _provision(tracker)
        await tracker.check_and_consume("sub-1", 40, QuotaKind.BLAST)

        status = await _provision(tracker, monthly_cap=2000, daily_cap=200)

        assert status.daily_cap == 200
        assert status.used_today == 40

    @pytest.mark.asyncio
    async def test_new_start_date_resets_counters(self, tracker, clock):
        await _provision(tracker)
        await tracker.check_and_consume("sub-1", 40, QuotaKind.BLAST)

        status = await tracker.provision(
            "sub-1", "tenant-1", "blast", 1000, 100, start_date=datetime(2026, 1, 20, tzinfo=UTC)
        )

        assert status.used_today == 0
        assert status.used_monthly == 0

    @pytest.mark.asyncio
    async def test_negative_cap_rejected(self, tracker):
        with pytest.raises(InvalidAmountError):
            await _provision(tracker, daily_cap=-1)

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self, tracker):
        await _provision(tracker, kind=QuotaKind.BLAST)
        await _provision(tracker, kind=QuotaKind.AI, daily_cap=5)
        await tracker.check_and_consume("sub-1", 50, QuotaKind.BLAST)

        assert (await tracker.get_status("sub-1", QuotaKind.AI)).used_today == 0


@pytest.mark.integration
class TestCheckAndConsume:
    @pytest.mark.asyncio
    async def test_consume_increments_both_counters(self, tracker):
        await _provision(tracker)

        result = await tracker.check_and_consume("sub-1", 30, "blast")

        assert result.used_today == 30
        assert result.used_monthly == 30
        assert result.remaining_daily == 70
        assert result.remaining_monthly == 970

    @pytest.mark.asyncio
    async def test_daily_cap_rejects_without_writing(self, tracker):
        await _provision(tracker)
        await tracker.check_and_consume("sub-1", 95, QuotaKind.BLAST)

        with pytest.raises(QuotaExceededError) as exc_info:
            await tracker.check_and_consume("sub-1", 10, QuotaKind.BLAST)

        assert exc_info.value.scope == "daily"
        status = await tracker.get_status("sub-1", QuotaKind.BLAST)
        assert status.used_today == 95
        assert status.used_monthly == 95

    @pytest.mark.asyncio
    async def test_exact_cap_is_allowed(self, tracker):
        await _provision(tracker)

        result = await tracker.check_and_consume("sub-1", 100, QuotaKind.BLAST)

        assert result.remaining_daily == 0
        assert (await tracker.get_status("sub-1", QuotaKind.BLAST)).can_consume is False

    @pytest.mark.asyncio
    async def test_daily_rollover_at_utc_midnight(self, tracker, clock):
        await _provision(tracker)
        clock.now = datetime(2026, 1, 20, 23, 59, tzinfo=UTC)
        await tracker.check_and_consume("sub-1", 95, QuotaKind.BLAST)

        clock.now = datetime(2026, 1, 21, 0, 1, tzinfo=UTC)
        result = await tracker.check_and_consume("sub-1", 10, QuotaKind.BLAST)

        assert result.used_today == 10
        assert result.used_monthly == 105

    @pytest.mark.asyncio
    async def test_status_reports_rollover_without_writing(self, tracker, clock):
        await _provision(tracker)
        await tracker.check_and_consume("sub-1", 60, QuotaKind.BLAST)

        clock.now += timedelta(days=1)
        status = await tracker.get_status("sub-1", QuotaKind.BLAST)

        assert status.used_today == 0
        assert status.used_monthly == 60
        assert status.daily_resets_at == datetime(2026, 1, 22, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_monthly_cap_rejects(self, tracker, clock):
        await _provision(tracker, monthly_cap=150, daily_cap=100)
        await tracker.check_and_consume("sub-1", 100, QuotaKind.BLAST)
        clock.now += timedelta(days=1)

        with pytest.raises(QuotaExceededError) as exc_info:
            await tracker.check_and_consume("sub-1", 60, QuotaKind.BLAST)

        assert exc_info.value.scope == "monthly"

    @pytest.mark.asyncio
    async def test_daily_checked_before_monthly(self, tracker):
        await _provision(tracker, monthly_cap=50, daily_cap=40)

        with pytest.raises(QuotaExceededError) as exc_info:
            await tracker.check_and_consume("sub-1", 60, QuotaKind.BLAST)

        assert exc_info.value.scope == "daily"

    @pytest.mark.asyncio
    async def test_monthly_counter_resets_with_new_cycle(self, tracker, clock):
        await _provision(tracker, monthly_cap=150, daily_cap=0)
        await tracker.check_and_consume("sub-1", 150, QuotaKind.BLAST)

        clock.now = datetime(2026, 2, 15, 0, 30, tzinfo=UTC)
        result = await tracker.check_and_consume("sub-1", 20, QuotaKind.BLAST)

        assert result.used_monthly == 20
        status = await tracker.get_status("sub-1", QuotaKind.BLAST)
        assert status.cycle_start == date(2026, 2, 15)
        assert status.cycle_end == date(2026, 3, 15)

    @pytest.mark.asyncio
    async def test_zero_caps_are_unlimited(self, tracker):
        await _provision(tracker, monthly_cap=0, daily_cap=0)

        result = await tracker.check_and_consume("sub-1", 1_000_000, QuotaKind.BLAST)

        assert result.remaining_daily is None
        assert result.remaining_monthly is None

    @pytest.mark.asyncio
    async def test_expired_subscription(self, tracker, clock):
        await _provision(tracker, end_date=clock.now + timedelta(hours=1))
        clock.now += timedelta(hours=1)

        with pytest.raises(SubscriptionExpiredError):
            await tracker.check_and_consume("sub-1", 1, QuotaKind.BLAST)
        assert (await tracker.get_status("sub-1", QuotaKind.BLAST)).expired is True

    @pytest.mark.asyncio
    async def test_not_provisioned(self, tracker):
        with pytest.raises(QuotaNotProvisionedError):
            await tracker.check_and_consume("sub-unknown", 1, QuotaKind.AI)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -3, 1.5])
    async def test_invalid_amount(self, tracker, amount):
        await _provision(tracker)

        with pytest.raises(InvalidAmountError):
            await tracker.check_and_consume("sub-1", amount, QuotaKind.BLAST)


@pytest.mark.integration
class TestConcurrentConsumption:
    @pytest.mark.asyncio
    async def test_concurrent_consumers_never_exceed_cap(self, session_factory, clock):
        async with session_factory() as session:
            await _provision(QuotaTracker(session, now=clock), monthly_cap=0, daily_cap=10)

        async def attempt() -> bool:
            async with session_factory() as session:
                tracker = QuotaTracker(session, now=clock, max_retries=50)
                try:
                    await tracker.check_and_consume("sub-1", 1, QuotaKind.BLAST)
                    return True
                except QuotaExceededError:
                    return False

        results = await asyncio.gather(*(attempt() for _ in range(15)))

        assert results.count(True) == 10
        async with session_factory() as session:
            status = await QuotaTracker(session, now=clock).get_status("sub-1", QuotaKind.BLAST)
            assert status.used_today == 10

    @pytest.mark.asyncio
    async def test_day_boundary_resets_once_under_contention(self, session_factory, clock):
        async with session_factory() as session:
            tracker = QuotaTracker(session, now=clock)
            await _provision(tracker, monthly_cap=0, daily_cap=100)
            await tracker.check_and_consume("sub-1", 90, QuotaKind.BLAST)

        clock.now += timedelta(days=1)

        async def attempt():
            async with session_factory() as session:
                return await QuotaTracker(session, now=clock, max_retries=50).check_and_consume(
                    "sub-1", 5, QuotaKind.BLAST
                )

        await asyncio.gather(*(attempt() for _ in range(4)))

        async with session_factory() as session:
            status = await QuotaTracker(session, now=clock).get_status("sub-1", QuotaKind.BLAST)
            assert status.used_today == 20
            assert status.used_monthly == 110
