"""
Purchase reconciler.

Applies payment status notifications to purchases. The status machine is one-way,
``pending -> {success, failed, expired}``, and the move out of ``pending`` is a
compare-and-swap on the status column. Only the move into ``success`` credits the
ledger, keyed by the payment reference, in the same transaction as the status
change. A redelivered notification therefore finds the purchase terminal and
becomes a no-op; even if it raced past the status check, the ledger's idempotency
key would absorb it.

Notifications arrive at least once and possibly out of order, so nothing here is
raised to the transport: every condition is logged and returned as a
``ReconciliationResult``.
"""

from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wablast.metering.billing.core.entities import PurchaseEntity
from wablast.metering.billing.core.enums import PurchaseStatus, ReconciliationOutcome
from wablast.metering.billing.exceptions import InvalidStatusTransitionError
from wablast.metering.billing.ledger.service import TokenLedger
from wablast.metering.billing.metrics import MeteringMetrics, get_metering_metrics
from wablast.metering.billing.money_utils import tokens_from_minor
from wablast.metering.billing.purchases.models import ReconciliationResult
from wablast.metering.billing.store import unit_of_work
from wablast.metering.logging import log_audit_event

logger = structlog.get_logger(__name__)

# One retry after a lost status race; the second pass always sees a terminal status.
_MAX_PASSES = 2


class _StatusChanged(Exception):
    """The purchase left pending between read and update."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PurchaseReconciler:
    """Drive purchases through their status machine from payment notifications."""

    def __init__(
        self,
        db: AsyncSession,
        ledger: TokenLedger | None = None,
        metrics: MeteringMetrics | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        if ledger is not None and ledger.db is not db:
            raise ValueError("ledger must be bound to the same session")
        self.db = db
        self.metrics = metrics or get_metering_metrics()
        self.ledger = ledger or TokenLedger(db, metrics=self.metrics)
        self._now = now or _utcnow

    async def on_payment_status_changed(
        self,
        purchase_id: str,
        new_status: PurchaseStatus | str,
        payment_reference: str,
        transaction_id: str | None = None,
        payment_type: str | None = None,
    ) -> ReconciliationResult:
        """
        Apply ``new_status`` to the purchase.

        Returns:
            ReconciliationResult with outcome
            - ``applied``: pending moved to ``new_status`` (success also credited the ledger)
            - ``duplicate``: the purchase already had ``new_status``
            - ``rejected``: terminal purchase asked to change, or reference mismatch
            - ``not_found``: no such purchase
            - ``ignored``: ``new_status`` is pending
        """
        new_status = PurchaseStatus(new_status)
        if new_status is PurchaseStatus.PENDING:
            return self._finish(
                ReconciliationResult(
                    purchase_id=purchase_id,
                    outcome=ReconciliationOutcome.IGNORED,
                    status=PurchaseStatus.PENDING,
                    message="Payment still pending",
                )
            )

        for _ in range(_MAX_PASSES):
            try:
                async with unit_of_work(self.db, "purchase reconcile"):
                    result = await self._reconcile(
                        purchase_id, new_status, payment_reference, transaction_id, payment_type
                    )
            except _StatusChanged:
                logger.info(
                    "purchase.status_race_lost",
                    purchase_id=purchase_id,
                    requested=new_status.value,
                )
                continue
            except InvalidStatusTransitionError as e:
                logger.warning(
                    "purchase.invalid_transition",
                    purchase_id=purchase_id,
                    current=e.context.get("current"),
                    requested=new_status.value,
                )
                return self._finish(
                    ReconciliationResult(
                        purchase_id=purchase_id,
                        outcome=ReconciliationOutcome.REJECTED,
                        status=PurchaseStatus(e.context["current"]),
                        message=e.message,
                    )
                )
            return self._finish(result)

        # Unreachable in practice: a lost race leaves the purchase terminal.
        raise RuntimeError(f"Purchase {purchase_id} kept changing status during reconciliation")

    async def _reconcile(
        self,
        purchase_id: str,
        new_status: PurchaseStatus,
        payment_reference: str,
        transaction_id: str | None,
        payment_type: str | None,
    ) -> ReconciliationResult:
        purchase = await self._load(purchase_id)
        if purchase is None:
            logger.warning("purchase.not_found", purchase_id=purchase_id)
            return ReconciliationResult(
                purchase_id=purchase_id,
                outcome=ReconciliationOutcome.NOT_FOUND,
                message="Purchase not found",
            )

        if purchase.payment_reference != payment_reference:
            logger.warning(
                "purchase.reference_mismatch",
                purchase_id=purchase_id,
                expected=purchase.payment_reference,
                received=payment_reference,
            )
            return ReconciliationResult(
                purchase_id=purchase_id,
                outcome=ReconciliationOutcome.REJECTED,
                status=PurchaseStatus(purchase.status),
                message="Payment reference does not match purchase",
            )

        current = PurchaseStatus(purchase.status)
        if current.is_terminal:
            if current is new_status:
                logger.info(
                    "purchase.duplicate_notification",
                    purchase_id=purchase_id,
                    status=current.value,
                )
                return ReconciliationResult(
                    purchase_id=purchase_id,
                    outcome=ReconciliationOutcome.DUPLICATE,
                    status=current,
                    message="Status already applied",
                )
            raise InvalidStatusTransitionError(purchase_id, current.value, new_status.value)

        values: dict[str, object] = {"status": new_status.value}
        if new_status is PurchaseStatus.SUCCESS:
            values["completed_at"] = self._now()
        if transaction_id:
            values["transaction_id"] = transaction_id
        if payment_type:
            values["payment_type"] = payment_type

        changed = await self.db.execute(
            update(PurchaseEntity)
            .where(
                PurchaseEntity.id == purchase_id,
                PurchaseEntity.status == PurchaseStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if changed.rowcount != 1:
            raise _StatusChanged()

        new_balance = None
        if new_status is PurchaseStatus.SUCCESS:
            new_minor, _ = await self.ledger._apply_credit(
                purchase.tenant_id,
                purchase.token_amount_minor,
                idempotency_key=payment_reference,
                reason=f"Purchase: {purchase_id}",
            )
            new_balance = tokens_from_minor(new_minor)

        log_audit_event(
            "purchase.status_changed",
            "purchase",
            tenant_id=purchase.tenant_id,
            resource_type="token_purchase",
            resource_id=purchase_id,
            previous_status=current.value,
            new_status=new_status.value,
            payment_reference=payment_reference,
            token_amount=str(tokens_from_minor(purchase.token_amount_minor)),
        )
        return ReconciliationResult(
            purchase_id=purchase_id,
            outcome=ReconciliationOutcome.APPLIED,
            status=new_status,
            new_balance=new_balance,
        )

    async def _load(self, purchase_id: str) -> PurchaseEntity | None:
        result = await self.db.execute(
            select(PurchaseEntity)
            .where(PurchaseEntity.id == purchase_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _finish(self, result: ReconciliationResult) -> ReconciliationResult:
        self.metrics.record_purchase_transition(
            result.outcome.value, result.status.value if result.status else None
        )
        logger.info(
            "purchase.reconciled",
            purchase_id=result.purchase_id,
            outcome=result.outcome.value,
            status=result.status.value if result.status else None,
        )
        return result


__all__ = ["PurchaseReconciler"]
