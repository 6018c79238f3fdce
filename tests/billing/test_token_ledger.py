"""Tests for the token ledger."""

import asyncio
from decimal import Decimal

import pytest

from wablast.metering.billing.core.enums import CreditOutcome
from wablast.metering.billing.exceptions import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
)
from wablast.metering.billing.ledger import TokenLedger


@pytest.mark.integration
class TestAccounts:
    @pytest.mark.asyncio
    async def test_open_account_starts_at_zero(self, db_session, tenant_id):
        ledger = TokenLedger(db_session)

        assert await ledger.open_account(tenant_id) == Decimal("0.00")
        assert await ledger.get_balance(tenant_id) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_open_account_is_idempotent(self, db_session, funded_tenant):
        ledger = TokenLedger(db_session)

        assert await ledger.open_account(funded_tenant) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_balance_of_unknown_tenant(self, db_session):
        with pytest.raises(AccountNotFoundError):
            await TokenLedger(db_session).get_balance("missing")


@pytest.mark.integration
class TestDebit:
    @pytest.mark.asyncio
    async def test_debit_reduces_balance(self, db_session, funded_tenant):
        ledger = TokenLedger(db_session)

        assert await ledger.debit(funded_tenant, Decimal("7.50")) == Decimal("92.50")
        assert await ledger.get_balance(funded_tenant) == Decimal("92.50")

    @pytest.mark.asyncio
    async def test_debit_to_exactly_zero(self, db_session, funded_tenant):
        ledger = TokenLedger(db_session)

        assert await ledger.debit(funded_tenant, "100.00") == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_insufficient_balance_changes_nothing(self, db_session, funded_tenant):
        ledger = TokenLedger(db_session)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.debit(funded_tenant, "100.01")

        assert exc_info.value.available == Decimal("100.00")
        assert exc_info.value.required == Decimal("100.01")
        assert await ledger.get_balance(funded_tenant) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_debit_unknown_tenant(self, db_session):
        with pytest.raises(AccountNotFoundError):
            await TokenLedger(db_session).debit("missing", "1.00")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["-1.00", "0.001", "abc"])
    async def test_invalid_amounts(self, db_session, funded_tenant, amount):
        with pytest.raises(InvalidAmountError):
            await TokenLedger(db_session).debit(funded_tenant, amount)

    @pytest.mark.asyncio
    async def test_concurrent_debits_never_overdraw(self, session_factory, tenant_id):
        async with session_factory() as session:
            await TokenLedger(session).credit(tenant_id, "10.00", f"seed-{tenant_id}")

        async def attempt() -> bool:
            async with session_factory() as session:
                try:
                    await TokenLedger(session).debit(tenant_id, "1.00")
                    return True
                except InsufficientBalanceError:
                    return False

        results = await asyncio.gather(*(attempt() for _ in range(15)))

        assert results.count(True) == 10
        async with session_factory() as session:
            assert await TokenLedger(session).get_balance(tenant_id) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_has_sufficient_balance(self, db_session, funded_tenant):
        ledger = TokenLedger(db_session)

        assert await ledger.has_sufficient_balance(funded_tenant, "100.00") is True
        assert await ledger.has_sufficient_balance(funded_tenant, "100.01") is False


@pytest.mark.integration
class TestCredit:
    @pytest.mark.asyncio
    async def test_credit_opens_account(self, db_session, tenant_id):
        result = await TokenLedger(db_session).credit(tenant_id, "12.34", "pay-1")

        assert result.outcome is CreditOutcome.APPLIED
        assert result.applied is True
        assert result.new_balance == Decimal("12.34")

    @pytest.mark.asyncio
    async def test_credit_is_idempotent(self, db_session, funded_tenant):
        ledger = TokenLedger(db_session)

        first = await ledger.credit(funded_tenant, "50.00", "TKN-1")
        replays = [await ledger.credit(funded_tenant, "50.00", "TKN-1") for _ in range(3)]

        assert first.new_balance == Decimal("150.00")
        assert all(r.outcome is CreditOutcome.ALREADY_APPLIED for r in replays)
        assert all(r.new_balance == Decimal("150.00") for r in replays)
        assert await ledger.get_balance(funded_tenant) == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_credits_apply_once(self, session_factory, tenant_id):
        async def attempt():
            async with session_factory() as session:
                return await TokenLedger(session).credit(tenant_id, "25.00", "TKN-dup")

        results = await asyncio.gather(*(attempt() for _ in range(5)))

        assert sum(1 for r in results if r.applied) == 1
        async with session_factory() as session:
            assert await TokenLedger(session).get_balance(tenant_id) == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_credit_requires_key(self, db_session, tenant_id):
        with pytest.raises(ValueError):
            await TokenLedger(db_session).credit(tenant_id, "1.00", "")

    @pytest.mark.asyncio
    async def test_balance_summary(self, db_session, funded_tenant):
        ledger = TokenLedger(db_session)
        await ledger.credit(funded_tenant, "20.00", "bonus-1", reason="Bonus")

        summary = await ledger.get_balance_summary(funded_tenant)

        assert summary.balance == Decimal("120.00")
        assert summary.total_credited == Decimal("120.00")
        assert summary.total_used == Decimal("0.00")
