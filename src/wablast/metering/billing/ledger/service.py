"""
Token ledger.

Owns the per-tenant prepaid token balance. Every movement is a single conditional
UPDATE against the balance row, so concurrent debits across processes serialize in
the store and the balance can never go negative:

    UPDATE metering_tenant_balances
       SET balance_minor = balance_minor - :amount
     WHERE tenant_id = :tenant AND balance_minor >= :amount

Credits are keyed by an idempotency key (the external payment reference). The key is
inserted with insert-or-ignore into a uniquely constrained table first; if the row
already existed the credit is a no-op success.

The ``_apply_*`` methods do not commit. Callers that must commit a balance movement
together with another write (usage record, purchase status) use them inside their own
unit of work.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wablast.metering.billing.core.entities import (
    LedgerCreditEntity,
    TenantBalanceEntity,
    UsageRecordEntity,
)
from wablast.metering.billing.core.enums import CreditOutcome
from wablast.metering.billing.exceptions import AccountNotFoundError, InsufficientBalanceError
from wablast.metering.billing.ledger.models import BalanceSummary, CreditResult
from wablast.metering.billing.metrics import MeteringMetrics, get_metering_metrics
from wablast.metering.billing.money_utils import (
    require_token_amount,
    tokens_from_minor,
    tokens_to_minor,
)
from wablast.metering.billing.store import unit_of_work
from wablast.metering.db import insert_ignore
from wablast.metering.logging import log_audit_event

logger = structlog.get_logger(__name__)


class TokenLedger:
    """Atomic debit and idempotent credit of tenant token balances."""

    def __init__(self, db: AsyncSession, metrics: MeteringMetrics | None = None) -> None:
        self.db = db
        self.metrics = metrics or get_metering_metrics()

    # ==================== Accounts ====================

    async def open_account(self, tenant_id: str) -> Decimal:
        """Create the zero balance for a tenant. Safe to call repeatedly."""
        async with unit_of_work(self.db, "open account"):
            created = await self._ensure_account(tenant_id)
            balance_minor = await self._read_balance_minor(tenant_id)

        if created:
            logger.info("ledger.account_opened", tenant_id=tenant_id)
        return tokens_from_minor(balance_minor or 0)

    # ==================== Balance Movements ====================

    async def debit(self, tenant_id: str, amount: Decimal | str | int) -> Decimal:
        """
        Subtract ``amount`` from the tenant balance and return the new balance.

        Raises:
            InvalidAmountError: negative amount or more than two fractional digits
            AccountNotFoundError: the tenant has no balance row
            InsufficientBalanceError: the balance is below ``amount``; nothing is changed
            StoreUnavailableError: the store failed; nothing is changed
        """
        amount_minor = tokens_to_minor(require_token_amount(amount))
        try:
            async with unit_of_work(self.db, "debit"):
                new_minor = await self._apply_debit(tenant_id, amount_minor)
        except InsufficientBalanceError:
            self.metrics.record_insufficient_balance(None)
            raise
        return tokens_from_minor(new_minor)

    async def credit(
        self,
        tenant_id: str,
        amount: Decimal | str | int,
        idempotency_key: str,
        reason: str | None = None,
    ) -> CreditResult:
        """
        Add ``amount`` to the tenant balance at most once per ``idempotency_key``.

        Opens the account when it does not exist yet. A repeated key returns the
        current balance with outcome ``already_applied``.
        """
        amount_minor = tokens_to_minor(require_token_amount(amount))
        async with unit_of_work(self.db, "credit"):
            new_minor, outcome = await self._apply_credit(
                tenant_id, amount_minor, idempotency_key, reason
            )
        return CreditResult(
            tenant_id=tenant_id, new_balance=tokens_from_minor(new_minor), outcome=outcome
        )

    # ==================== Reads ====================

    async def get_balance(self, tenant_id: str) -> Decimal:
        balance_minor = await self._read_balance_minor(tenant_id)
        if balance_minor is None:
            raise AccountNotFoundError(tenant_id)
        return tokens_from_minor(balance_minor)

    async def has_sufficient_balance(self, tenant_id: str, amount: Decimal | str | int) -> bool:
        """Advisory pre-check. Only ``debit`` decides whether a charge succeeds."""
        required = require_token_amount(amount)
        return await self.get_balance(tenant_id) >= required

    async def get_balance_summary(self, tenant_id: str) -> BalanceSummary:
        """Current balance with lifetime credited and used totals."""
        balance = await self.get_balance(tenant_id)

        credited = await self.db.execute(
            select(func.coalesce(func.sum(LedgerCreditEntity.amount_minor), 0)).where(
                LedgerCreditEntity.tenant_id == tenant_id
            )
        )
        used = await self.db.execute(
            select(func.coalesce(func.sum(UsageRecordEntity.charged_minor), 0)).where(
                UsageRecordEntity.tenant_id == tenant_id
            )
        )
        return BalanceSummary(
            tenant_id=tenant_id,
            balance=balance,
            total_credited=tokens_from_minor(credited.scalar_one()),
            total_used=tokens_from_minor(used.scalar_one()),
        )

    # ==================== Unit-of-work primitives ====================

    async def _apply_debit(self, tenant_id: str, amount_minor: int) -> int:
        """Conditional decrement without commit. Returns the new balance in minor units."""
        result = await self.db.execute(
            update(TenantBalanceEntity)
            .where(
                TenantBalanceEntity.tenant_id == tenant_id,
                TenantBalanceEntity.balance_minor >= amount_minor,
            )
            .values(balance_minor=TenantBalanceEntity.balance_minor - amount_minor)
            .returning(TenantBalanceEntity.balance_minor)
            .execution_options(synchronize_session=False)
        )
        new_minor = result.scalar_one_or_none()

        if new_minor is None:
            available_minor = await self._read_balance_minor(tenant_id)
            if available_minor is None:
                raise AccountNotFoundError(tenant_id)
            logger.info(
                "ledger.insufficient_balance",
                tenant_id=tenant_id,
                required=str(tokens_from_minor(amount_minor)),
                available=str(tokens_from_minor(available_minor)),
            )
            raise InsufficientBalanceError(
                tenant_id,
                required=tokens_from_minor(amount_minor),
                available=tokens_from_minor(available_minor),
            )

        log_audit_event(
            "tokens.debited",
            "ledger",
            tenant_id=tenant_id,
            resource_type="token_balance",
            resource_id=tenant_id,
            amount=str(tokens_from_minor(amount_minor)),
            new_balance=str(tokens_from_minor(new_minor)),
        )
        return new_minor

    async def _apply_credit(
        self,
        tenant_id: str,
        amount_minor: int,
        idempotency_key: str,
        reason: str | None = None,
    ) -> tuple[int, CreditOutcome]:
        """Idempotent increment without commit. Returns the new balance and the outcome."""
        if not idempotency_key:
            raise ValueError("Idempotency key is required for credits")

        await self._ensure_account(tenant_id)

        inserted = await self.db.execute(
            insert_ignore(self.db, LedgerCreditEntity, ["idempotency_key"]).values(
                id=str(uuid4()),
                tenant_id=tenant_id,
                idempotency_key=idempotency_key,
                amount_minor=amount_minor,
                reason=reason,
                created_at=datetime.now(UTC),
            )
        )
        if inserted.rowcount == 0:
            balance_minor = await self._read_balance_minor(tenant_id)
            logger.info(
                "ledger.credit_already_applied",
                tenant_id=tenant_id,
                idempotency_key=idempotency_key,
            )
            self.metrics.record_credit(CreditOutcome.ALREADY_APPLIED.value)
            return balance_minor or 0, CreditOutcome.ALREADY_APPLIED

        result = await self.db.execute(
            update(TenantBalanceEntity)
            .where(TenantBalanceEntity.tenant_id == tenant_id)
            .values(balance_minor=TenantBalanceEntity.balance_minor + amount_minor)
            .returning(TenantBalanceEntity.balance_minor)
            .execution_options(synchronize_session=False)
        )
        new_minor = result.scalar_one()

        log_audit_event(
            "tokens.credited",
            "ledger",
            tenant_id=tenant_id,
            resource_type="token_balance",
            resource_id=tenant_id,
            amount=str(tokens_from_minor(amount_minor)),
            new_balance=str(tokens_from_minor(new_minor)),
            idempotency_key=idempotency_key,
            reason=reason,
        )
        self.metrics.record_credit(CreditOutcome.APPLIED.value)
        return new_minor, CreditOutcome.APPLIED

    async def _ensure_account(self, tenant_id: str) -> bool:
        """Insert the zero balance row unless present. Returns True when it was created."""
        if not tenant_id:
            raise ValueError("tenant_id is required")
        now = datetime.now(UTC)
        result = await self.db.execute(
            insert_ignore(self.db, TenantBalanceEntity, ["tenant_id"]).values(
                tenant_id=tenant_id, balance_minor=0, created_at=now, updated_at=now
            )
        )
        return result.rowcount == 1

    async def _read_balance_minor(self, tenant_id: str) -> int | None:
        result = await self.db.execute(
            select(TenantBalanceEntity.balance_minor).where(
                TenantBalanceEntity.tenant_id == tenant_id
            )
        )
        return result.scalar_one_or_none()


__all__ = ["TokenLedger"]
