"""
Shared pydantic base for metering results and snapshots.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class MeteringBaseModel(BaseModel):
    """Immutable result model. Decimal fields serialize to strings in JSON mode."""

    model_config = ConfigDict(frozen=True, from_attributes=True)


class Page(MeteringBaseModel, Generic[T]):
    """One page of a newest-first listing."""

    data: list[T]
    total: int
    page: int
    limit: int


__all__ = ["MeteringBaseModel", "Page"]
