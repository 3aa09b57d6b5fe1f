"""
Keyed mutual exclusion for read-check-write sequences.

Every operation names the keys it touches (vehicle:<id>, user:<id>,
stock:<location>:<item>, quota:<tenant>:<class>, integrity:<tenant>).
Keys are always acquired in sorted order, so two operations that share
keys cannot deadlock.

Two backends:
- LocalLockBackend: asyncio locks, valid within one process.
- RedisLockBackend: redis locks, valid across API workers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional

from fleetcore.core.config import settings

logger = logging.getLogger(__name__)


class LockTimeout(Exception):
    """A lock could not be acquired within the configured timeout."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Timed out waiting for lock '{key}'")


def vehicle_key(vehicle_id: str) -> str:
    return f"vehicle:{vehicle_id}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def stock_key(location: str, item_id: str) -> str:
    return f"stock:{location}:{item_id}"


def quota_key(tenant_id: str, resource_class: str) -> str:
    return f"quota:{tenant_id}:{resource_class}"


def integrity_key(tenant_id: Optional[str]) -> str:
    return f"integrity:{tenant_id or '*'}"


def lock_order(keys: Iterable[str]) -> List[str]:
    """Global acquisition order: de-duplicated, lexicographic."""
    return sorted(set(keys))


class LocalLockBackend:
    """
    In-process lock registry.

    Locks are reference counted and dropped from the registry once nobody
    holds or waits for them, so the registry does not grow with every
    vehicle or stock row ever touched.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._users.get(key, 1) - 1
        if remaining <= 0:
            self._users.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._users[key] = remaining

    def active_keys(self) -> List[str]:
        return sorted(self._locks)

    @asynccontextmanager
    async def hold(self, keys: Iterable[str], timeout: float) -> AsyncIterator[None]:
        acquired: List[str] = []
        try:
            for key in lock_order(keys):
                lock = self._checkout(key)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout)
                except asyncio.TimeoutError:
                    self._checkin(key)
                    raise LockTimeout(key)
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)


class RedisLockBackend:
    """
    Distributed locks on top of redis.asyncio.

    The lease bounds how long a crashed worker can keep a key; it must be
    longer than any single transaction.
    """

    def __init__(self, client, prefix: str = "fleetcore:lock:", lease_seconds: float = 30.0):
        self._client = client
        self._prefix = prefix
        self._lease_seconds = lease_seconds

    @asynccontextmanager
    async def hold(self, keys: Iterable[str], timeout: float) -> AsyncIterator[None]:
        acquired = []
        try:
            for key in lock_order(keys):
                lock = self._client.lock(
                    f"{self._prefix}{key}",
                    timeout=self._lease_seconds,
                    blocking_timeout=timeout,
                )
                if not await lock.acquire():
                    raise LockTimeout(key)
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                await lock.release()


def build_lock_backend():
    """Create the backend named by settings.lock_backend."""
    if settings.lock_backend == "redis":
        from fleetcore.core.redis_client import redis_client
        logger.info("Using redis lock backend")
        return RedisLockBackend(redis_client, lease_seconds=settings.lock_lease_seconds)
    return LocalLockBackend()


lock_manager = build_lock_backend()
