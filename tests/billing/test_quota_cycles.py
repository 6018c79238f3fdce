"""Tests for UTC day and billing cycle arithmetic."""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from wablast.metering.billing.quota.cycles import (
    add_months,
    as_utc,
    current_cycle_start,
    next_cycle_start,
    next_utc_midnight,
    utc_today,
)


@pytest.mark.unit
class TestCycles:
    def test_as_utc_treats_naive_as_utc(self):
        naive = datetime(2026, 1, 1, 10, 0)
        assert as_utc(naive) == datetime(2026, 1, 1, 10, 0, tzinfo=UTC)

    def test_utc_today_converts_offsets(self):
        jakarta = timezone(timedelta(hours=7))
        assert utc_today(datetime(2026, 1, 2, 3, 0, tzinfo=jakarta)) == date(2026, 1, 1)

    def test_add_months_clamps_day(self):
        assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)
        assert add_months(date(2026, 1, 31), 2) == date(2026, 3, 31)
        assert add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)

    def test_cycle_before_first_renewal(self):
        start = datetime(2026, 1, 15, 8, 0, tzinfo=UTC)
        assert current_cycle_start(start, datetime(2026, 2, 14, 23, 59, tzinfo=UTC)) == date(2026, 1, 15)

    def test_cycle_renews_on_anchor_day(self):
        start = datetime(2026, 1, 15, 8, 0, tzinfo=UTC)
        assert current_cycle_start(start, datetime(2026, 2, 15, 0, 0, tzinfo=UTC)) == date(2026, 2, 15)
        assert next_cycle_start(start, datetime(2026, 2, 15, 0, 0, tzinfo=UTC)) == date(2026, 3, 15)

    def test_cycle_anchored_at_month_end(self):
        start = date(2026, 1, 31)
        assert current_cycle_start(start, datetime(2026, 2, 28, 1, 0, tzinfo=UTC)) == date(2026, 2, 28)
        assert current_cycle_start(start, datetime(2026, 3, 30, 1, 0, tzinfo=UTC)) == date(2026, 2, 28)
        assert current_cycle_start(start, datetime(2026, 3, 31, 1, 0, tzinfo=UTC)) == date(2026, 3, 31)

    def test_cycle_before_start_is_first_cycle(self):
        start = datetime(2026, 5, 1, tzinfo=UTC)
        assert current_cycle_start(start, datetime(2026, 4, 20, tzinfo=UTC)) == date(2026, 5, 1)

    def test_next_utc_midnight(self):
        now = datetime(2026, 3, 10, 23, 59, 59, tzinfo=UTC)
        assert next_utc_midnight(now) == datetime(2026, 3, 11, tzinfo=UTC)
