"""
Payment gateway notification handling.

Verifies the notification signature, maps the gateway's transaction and fraud
statuses onto ``PurchaseStatus`` and hands the purchase to the reconciler. Only
token purchases (order ids with the configured prefix) are handled here.

Signature: ``sha512(order_id + status_code + gross_amount + server_key)`` as hex.
"""

import hashlib
import hmac
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wablast.metering.billing.core.entities import PurchaseEntity
from wablast.metering.billing.core.enums import PurchaseStatus, ReconciliationOutcome
from wablast.metering.billing.exceptions import InvalidSignatureError
from wablast.metering.billing.ledger.service import TokenLedger
from wablast.metering.billing.purchases.models import ReconciliationResult
from wablast.metering.billing.purchases.reconciler import PurchaseReconciler
from wablast.metering.settings import settings

logger = structlog.get_logger(__name__)

SUCCESS_STATUSES = frozenset({"capture", "settlement"})
FAILED_STATUSES = frozenset({"deny", "cancel", "failure"})
EXPIRED_STATUSES = frozenset({"expire"})
ACCEPTED_FRAUD_STATUSES = frozenset({"accept"})


class GatewayNotification(BaseModel):
    """Subset of the gateway's HTTP notification body used for reconciliation."""

    model_config = ConfigDict(extra="ignore")

    order_id: str
    transaction_status: str
    fraud_status: str | None = None
    transaction_id: str | None = None
    payment_type: str | None = None
    status_code: str | None = None
    gross_amount: str | None = None
    signature_key: str | None = None

    @property
    def has_signature_fields(self) -> bool:
        return bool(self.status_code and self.gross_amount and self.signature_key)


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    payload = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(payload.encode("utf-8")).hexdigest()


def verify_signature(notification: GatewayNotification, server_key: str) -> bool:
    if not server_key or not notification.has_signature_fields:
        return False
    expected = compute_signature(
        notification.order_id,
        notification.status_code or "",
        notification.gross_amount or "",
        server_key,
    )
    return hmac.compare_digest(expected, notification.signature_key or "")


def map_gateway_status(transaction_status: str, fraud_status: str | None = None) -> PurchaseStatus | None:
    """
    Map a gateway transaction status to a purchase status.

    Returns None for statuses that leave the purchase pending (``pending``,
    ``authorize``, unknown values).
    """
    status = (transaction_status or "").lower()
    if status in SUCCESS_STATUSES:
        if not fraud_status or fraud_status.lower() in ACCEPTED_FRAUD_STATUSES:
            return PurchaseStatus.SUCCESS
        return PurchaseStatus.FAILED
    if status in FAILED_STATUSES:
        return PurchaseStatus.FAILED
    if status in EXPIRED_STATUSES:
        return PurchaseStatus.EXPIRED
    return None


async def handle_gateway_notification(
    db: AsyncSession,
    payload: GatewayNotification | dict[str, Any],
    server_key: str | None = None,
    ledger: TokenLedger | None = None,
) -> ReconciliationResult:
    """
    Verify and apply one gateway notification.

    Raises:
        InvalidSignatureError: the signature fields are present but do not verify
    """
    notification = (
        payload
        if isinstance(payload, GatewayNotification)
        else GatewayNotification.model_validate(payload)
    )
    order_id = notification.order_id

    if not order_id.startswith(settings.metering.purchase_reference_prefix):
        return ReconciliationResult(
            purchase_id=None,
            outcome=ReconciliationOutcome.IGNORED,
            message="Not a token purchase",
        )

    if not notification.has_signature_fields:
        logger.warning("gateway.missing_signature_fields", order_id=order_id)
        return ReconciliationResult(
            purchase_id=None,
            outcome=ReconciliationOutcome.IGNORED,
            message="Missing signature fields",
        )

    key = server_key if server_key is not None else settings.payment_gateway.server_key
    if not verify_signature(notification, key):
        logger.warning("gateway.invalid_signature", order_id=order_id)
        raise InvalidSignatureError(order_id)

    result = await db.execute(
        select(PurchaseEntity.id, PurchaseEntity.status).where(
            PurchaseEntity.payment_reference == order_id
        )
    )
    row = result.one_or_none()
    if row is None:
        logger.warning("gateway.purchase_not_found", order_id=order_id)
        return ReconciliationResult(
            purchase_id=None,
            outcome=ReconciliationOutcome.NOT_FOUND,
            message="Purchase not found",
        )
    purchase_id, current_status = row

    new_status = map_gateway_status(notification.transaction_status, notification.fraud_status)
    if new_status is None:
        logger.info(
            "gateway.status_ignored",
            order_id=order_id,
            transaction_status=notification.transaction_status,
        )
        return ReconciliationResult(
            purchase_id=purchase_id,
            outcome=ReconciliationOutcome.IGNORED,
            status=PurchaseStatus(current_status),
            message=f"Gateway status '{notification.transaction_status}' leaves purchase unchanged",
        )

    reconciler = PurchaseReconciler(db, ledger=ledger)
    return await reconciler.on_payment_status_changed(
        purchase_id,
        new_status,
        order_id,
        transaction_id=notification.transaction_id,
        payment_type=notification.payment_type,
    )


__all__ = [
    "GatewayNotification",
    "compute_signature",
    "verify_signature",
    "map_gateway_status",
    "handle_gateway_notification",
]
