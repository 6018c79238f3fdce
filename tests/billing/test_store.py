"""Tests for the shared unit-of-work error mapping."""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from wablast.metering.billing.core.entities import PricingConfigEntity
from wablast.metering.billing.exceptions import StoreConflictError, StoreUnavailableError
from wablast.metering.billing.pricing import PricingService
from wablast.metering.billing.store import unit_of_work


@pytest.mark.integration
class TestUnitOfWork:
    @pytest.mark.asyncio
    async def test_duplicate_key_is_a_conflict(self, db_session):
        service = PricingService(db_session)
        await service.upsert_config("suggest", divisor=100)

        with pytest.raises(StoreConflictError) as exc_info:
            async with unit_of_work(db_session, "pricing upsert"):
                db_session.add(PricingConfigEntity(key="suggest", divisor=5))

        assert exc_info.value.transient is True
        assert exc_info.value.status_code == 409
        assert exc_info.value.context["operation"] == "pricing upsert"
        assert isinstance(exc_info.value.__cause__, IntegrityError)

        config = await service.get_config("suggest")
        assert config.divisor == 100

    @pytest.mark.asyncio
    async def test_integrity_error_is_not_unavailable(self, db_session):
        with pytest.raises(StoreConflictError):
            async with unit_of_work(db_session, "quota provision"):
                raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    @pytest.mark.asyncio
    async def test_driver_error_is_unavailable(self, db_session):
        with pytest.raises(StoreUnavailableError) as exc_info:
            async with unit_of_work(db_session, "debit"):
                raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        assert exc_info.value.transient is True
        assert exc_info.value.context["operation"] == "debit"

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, db_session):
        with pytest.raises(StoreUnavailableError):
            async with unit_of_work(db_session, "credit"):
                raise TimeoutError

    @pytest.mark.asyncio
    async def test_other_errors_propagate_and_roll_back(self, db_session):
        with pytest.raises(ValueError, match="boom"):
            async with unit_of_work(db_session, "pricing upsert"):
                db_session.add(PricingConfigEntity(key="analytics", divisor=7))
                await db_session.flush()
                raise ValueError("boom")

        assert await PricingService(db_session).list_configs() == []

    @pytest.mark.asyncio
    async def test_success_commits(self, db_session, session_factory):
        async with unit_of_work(db_session, "pricing upsert"):
            db_session.add(PricingConfigEntity(key="analytics", divisor=7))

        async with session_factory() as other_session:
            config = await PricingService(other_session).get_config("analytics")
        assert config.divisor == 7
