"""
Serialized unit of work.

    async with serialized(db, [vehicle_key(vehicle_id)]):
        ... read current state, check, write ...

The keys are locked (in global order) before the body touches the database.
On success the session is committed while the keys are still held; on any
error it is rolled back before they are released. Lock timeouts and
driver-level failures surface as StorageUnavailable with nothing applied.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core import locks
from fleetcore.core.config import settings
from fleetcore.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


class StalePlan(Exception):
    """
    The key set planned before locking no longer covers the data.

    Raised inside a serialized block by multi-key cascades; the caller
    re-plans and tries again.
    """


@asynccontextmanager
async def serialized(db: AsyncSession, keys: Iterable[str]) -> AsyncIterator[AsyncSession]:
    keys = list(keys)
    try:
        async with locks.lock_manager.hold(keys, timeout=settings.lock_timeout_seconds):
            try:
                yield db
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
    except locks.LockTimeout as exc:
        logger.warning("Lock timeout on %s", exc.key)
        raise StorageUnavailable(f"Timed out waiting for '{exc.key}'") from exc
    except (OperationalError, InterfaceError) as exc:
        logger.error("Storage failure inside serialized block %s: %s", keys, exc)
        raise StorageUnavailable() from exc
