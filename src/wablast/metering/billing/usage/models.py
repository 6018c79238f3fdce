"""
Usage metering results.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from wablast.metering.billing.core.entities import UsageRecordEntity
from wablast.metering.billing.core.models import MeteringBaseModel
from wablast.metering.billing.money_utils import tokens_from_minor


class ChargeResult(MeteringBaseModel):
    """
    Outcome of one metered feature invocation.

    ``replayed`` is True when a charge with the same reference id was already
    recorded; in that case nothing was debited and the original charge is returned.
    """

    tenant_id: str
    feature_key: str
    charged: Decimal
    new_balance: Decimal
    usage_id: str
    replayed: bool = False


class UsageRecord(MeteringBaseModel):
    id: str
    tenant_id: str
    feature_key: str
    raw_units: int
    charged: Decimal
    reference_id: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime

    @classmethod
    def from_entity(cls, entity: UsageRecordEntity) -> "UsageRecord":
        return cls(
            id=entity.id,
            tenant_id=entity.tenant_id,
            feature_key=entity.feature_key,
            raw_units=entity.raw_units,
            charged=tokens_from_minor(entity.charged_minor),
            reference_id=entity.reference_id,
            metadata=entity.usage_metadata,
            created_at=entity.created_at,
        )


class UsageStats(MeteringBaseModel):
    """Tokens charged since the start of the UTC day, ISO week and month, plus all-time per feature."""

    tenant_id: str
    today: Decimal
    this_week: Decimal
    this_month: Decimal
    by_feature: dict[str, Decimal]


__all__ = ["ChargeResult", "UsageRecord", "UsageStats"]
