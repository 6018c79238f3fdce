"""
Metering metrics.

Counters go through the OpenTelemetry API; without a configured MeterProvider the
API hands out no-op instruments, so recording is always safe.
"""

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Meter

from wablast.metering.settings import settings


class MeteringMetrics:
    """Metering metrics collector"""

    def __init__(self, meter: Meter | None = None) -> None:
        self.enabled = settings.observability.enable_metrics
        self.meter = meter or metrics.get_meter(settings.observability.otel_service_name)

        # Charges
        self.charge_counter = self._create_counter(
            name="metering.charges",
            description="Number of successful token charges",
        )
        self.tokens_charged_counter = self._create_counter(
            name="metering.tokens_charged",
            description="Tokens debited by charges",
            unit="centitokens",
        )
        self.insufficient_balance_counter = self._create_counter(
            name="metering.insufficient_balance",
            description="Charges rejected for insufficient balance",
        )

        # Quotas
        self.quota_consumed_counter = self._create_counter(
            name="metering.quota_consumed",
            description="Units consumed from subscription quotas",
        )
        self.quota_rejection_counter = self._create_counter(
            name="metering.quota_rejections",
            description="Consumptions rejected by a daily or monthly cap",
        )

        # Credits and purchases
        self.credit_counter = self._create_counter(
            name="metering.credits",
            description="Ledger credits by outcome",
        )
        self.purchase_transition_counter = self._create_counter(
            name="metering.purchase_transitions",
            description="Payment status notifications by outcome",
        )

    def _create_counter(self, name: str, description: str, unit: str = "1") -> Counter:
        return self.meter.create_counter(name=name, description=description, unit=unit)

    def record_charge(self, feature_key: str, charged_minor: int) -> None:
        if not self.enabled:
            return
        attributes = {"feature": feature_key}
        self.charge_counter.add(1, attributes)
        self.tokens_charged_counter.add(charged_minor, attributes)

    def record_insufficient_balance(self, feature_key: str | None) -> None:
        if self.enabled:
            self.insufficient_balance_counter.add(1, {"feature": feature_key or "direct"})

    def record_quota_consumed(self, kind: str, amount: int) -> None:
        if self.enabled:
            self.quota_consumed_counter.add(amount, {"kind": kind})

    def record_quota_rejection(self, kind: str, scope: str) -> None:
        if self.enabled:
            self.quota_rejection_counter.add(1, {"kind": kind, "scope": scope})

    def record_credit(self, outcome: str) -> None:
        if self.enabled:
            self.credit_counter.add(1, {"outcome": outcome})

    def record_purchase_transition(self, outcome: str, status: str | None) -> None:
        if self.enabled:
            self.purchase_transition_counter.add(
                1, {"outcome": outcome, "status": status or "unknown"}
            )


_metering_metrics: MeteringMetrics | None = None


def get_metering_metrics() -> MeteringMetrics:
    """Get the global metering metrics instance"""
    global _metering_metrics
    if _metering_metrics is None:
        _metering_metrics = MeteringMetrics()
    return _metering_metrics


def set_metering_metrics(metrics_instance: MeteringMetrics) -> None:
    """Set the global metering metrics instance"""
    global _metering_metrics
    _metering_metrics = metrics_instance


__all__ = ["MeteringMetrics", "get_metering_metrics", "set_metering_metrics"]
