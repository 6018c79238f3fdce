"""
Unit-of-work helper shared by the metering services.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wablast.metering.billing.exceptions import StoreConflictError, StoreUnavailableError

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def unit_of_work(db: AsyncSession, operation: str) -> AsyncIterator[AsyncSession]:
    """
    Commit ``db`` when the block succeeds and roll it back otherwise.

    A unique-key race with a concurrent writer becomes the transient ``StoreConflictError``.
    Other driver and timeout failures become the transient ``StoreUnavailableError``.
    Callers can retry the whole operation on either; every other exception propagates as-is.
    """
    try:
        yield db
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning("store.conflict", operation=operation, error=str(e.orig))
        raise StoreConflictError(operation, 1) from e
    except (DBAPIError, TimeoutError) as e:
        await db.rollback()
        logger.error("store.unavailable", operation=operation, error=str(e))
        raise StoreUnavailableError(operation, str(e)) from e
    except Exception:
        await db.rollback()
        raise


__all__ = ["unit_of_work"]
