"""Tests for payment status reconciliation."""

import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from wablast.metering.billing.core.enums import PurchaseStatus, ReconciliationOutcome
from wablast.metering.billing.ledger import TokenLedger
from wablast.metering.billing.purchases import PurchaseReconciler, PurchaseService


@pytest_asyncio.fixture
async def pending_purchase(db_session, tenant_id):
    service = PurchaseService(db_session)
    package = await service.create_package("Pro", token_amount=250, bonus_tokens=30, price=100000)
    created = await service.create_purchase(tenant_id, package.id)
    return created.purchase


@pytest.mark.integration
class TestPurchaseReconciler:
    @pytest.mark.asyncio
    async def test_success_credits_tokens(self, db_session, pending_purchase):
        reconciler = PurchaseReconciler(db_session)

        result = await reconciler.on_payment_status_changed(
            pending_purchase.id,
            PurchaseStatus.SUCCESS,
            pending_purchase.payment_reference,
            transaction_id="trx-1",
            payment_type="qris",
        )

        assert result.outcome is ReconciliationOutcome.APPLIED
        assert result.status is PurchaseStatus.SUCCESS
        assert result.new_balance == Decimal("280.00")

        purchase = await PurchaseService(db_session).get_purchase_by_reference(
            pending_purchase.payment_reference
        )
        assert purchase.status is PurchaseStatus.SUCCESS
        assert purchase.transaction_id == "trx-1"
        assert purchase.payment_type == "qris"
        assert purchase.completed_at is not None

    @pytest.mark.asyncio
    async def test_duplicate_success_credits_once(self, db_session, pending_purchase):
        reconciler = PurchaseReconciler(db_session)
        args = (pending_purchase.id, "success", pending_purchase.payment_reference)

        first = await reconciler.on_payment_status_changed(*args)
        second = await reconciler.on_payment_status_changed(*args)

        assert first.outcome is ReconciliationOutcome.APPLIED
        assert second.outcome is ReconciliationOutcome.DUPLICATE
        balance = await TokenLedger(db_session).get_balance(pending_purchase.tenant_id)
        assert balance == Decimal("280.00")

    @pytest.mark.asyncio
    async def test_concurrent_success_notifications_credit_once(
        self, session_factory, pending_purchase
    ):
        async def deliver():
            async with session_factory() as session:
                return await PurchaseReconciler(session).on_payment_status_changed(
                    pending_purchase.id, "success", pending_purchase.payment_reference
                )

        results = await asyncio.gather(*(deliver() for _ in range(4)))

        outcomes = [r.outcome for r in results]
        assert outcomes.count(ReconciliationOutcome.APPLIED) == 1
        assert outcomes.count(ReconciliationOutcome.DUPLICATE) == 3
        async with session_factory() as session:
            balance = await TokenLedger(session).get_balance(pending_purchase.tenant_id)
        assert balance == Decimal("280.00")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [PurchaseStatus.FAILED, PurchaseStatus.EXPIRED])
    async def test_failure_statuses_do_not_credit(self, db_session, pending_purchase, status):
        result = await PurchaseReconciler(db_session).on_payment_status_changed(
            pending_purchase.id, status, pending_purchase.payment_reference
        )

        assert result.outcome is ReconciliationOutcome.APPLIED
        assert result.status is status
        assert result.new_balance is None
        purchase = await PurchaseService(db_session).get_purchase_by_reference(
            pending_purchase.payment_reference
        )
        assert purchase.completed_at is None

    @pytest.mark.asyncio
    async def test_terminal_purchase_rejects_other_status(self, db_session, pending_purchase):
        reconciler = PurchaseReconciler(db_session)
        ref = pending_purchase.payment_reference
        await reconciler.on_payment_status_changed(pending_purchase.id, "failed", ref)

        result = await reconciler.on_payment_status_changed(pending_purchase.id, "success", ref)

        assert result.outcome is ReconciliationOutcome.REJECTED
        assert result.status is PurchaseStatus.FAILED
        purchase = await PurchaseService(db_session).get_purchase_by_reference(ref)
        assert purchase.status is PurchaseStatus.FAILED

    @pytest.mark.asyncio
    async def test_pending_is_ignored(self, db_session, pending_purchase):
        result = await PurchaseReconciler(db_session).on_payment_status_changed(
            pending_purchase.id, "pending", pending_purchase.payment_reference
        )

        assert result.outcome is ReconciliationOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_unknown_purchase(self, db_session):
        result = await PurchaseReconciler(db_session).on_payment_status_changed(
            "missing", "success", "TKN-0-deadbeef"
        )

        assert result.outcome is ReconciliationOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_reference_mismatch(self, db_session, pending_purchase):
        result = await PurchaseReconciler(db_session).on_payment_status_changed(
            pending_purchase.id, "success", "TKN-0-00000000"
        )

        assert result.outcome is ReconciliationOutcome.REJECTED
        assert result.status is PurchaseStatus.PENDING

    @pytest.mark.asyncio
    async def test_ledger_on_other_session_is_rejected(
        self, db_session, session_factory, pending_purchase
    ):
        async with session_factory() as other_session:
            with pytest.raises(ValueError, match="same session"):
                PurchaseReconciler(db_session, ledger=TokenLedger(other_session))

        purchase = await PurchaseService(db_session).get_purchase_by_reference(
            pending_purchase.payment_reference
        )
        assert purchase.status is PurchaseStatus.PENDING
        assert purchase.completed_at is None
