"""
Token purchases: package catalog, pending purchases and payment reconciliation.
"""

from wablast.metering.billing.purchases.gateway import (
    GatewayNotification,
    compute_signature,
    handle_gateway_notification,
    map_gateway_status,
    verify_signature,
)
from wablast.metering.billing.purchases.models import (
    Purchase,
    PurchaseCreated,
    ReconciliationResult,
    TokenPackage,
)
from wablast.metering.billing.purchases.reconciler import PurchaseReconciler
from wablast.metering.billing.purchases.service import DEFAULT_PACKAGES, PurchaseService

__all__ = [
    "GatewayNotification",
    "compute_signature",
    "handle_gateway_notification",
    "map_gateway_status",
    "verify_signature",
    "Purchase",
    "PurchaseCreated",
    "ReconciliationResult",
    "TokenPackage",
    "PurchaseReconciler",
    "PurchaseService",
    "DEFAULT_PACKAGES",
]
