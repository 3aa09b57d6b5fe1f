"""
Reliability utilities.

Bounded retry with exponential backoff for transient storage failures.
Only StorageUnavailable is retried; every other error is a decision the
caller has to see.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Optional

from fleetcore.core.config import settings
from fleetcore.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


async def call_with_storage_retry(
    func: Callable[..., Awaitable[Any]],
    *args,
    attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    **kwargs
) -> Any:
    """
    Await `func(*args, **kwargs)`, retrying on StorageUnavailable.

    Args:
        func: Coroutine function performing one complete transaction
        attempts: Total attempts (defaults to settings.storage_retry_attempts)
        backoff_seconds: First delay, doubled after each failure

    Returns:
        Whatever `func` returns

    Raises:
        StorageUnavailable: If every attempt failed
    """
    attempts = attempts or settings.storage_retry_attempts
    delay = settings.storage_retry_backoff_seconds if backoff_seconds is None else backoff_seconds

    for attempt in range(1, attempts + 1):
        try:
            return await func(*args, **kwargs)
        except StorageUnavailable as exc:
            if attempt == attempts:
                logger.error("Storage still unavailable after %d attempts: %s", attempts, exc.message)
                raise
            logger.warning(
                "Storage unavailable (attempt %d/%d), retrying in %.2fs: %s",
                attempt, attempts, delay, exc.message
            )
            await asyncio.sleep(delay)
            delay *= 2


def storage_retry(attempts: Optional[int] = None, backoff_seconds: Optional[float] = None):
    """Decorator form of call_with_storage_retry."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await call_with_storage_retry(
                func, *args, attempts=attempts, backoff_seconds=backoff_seconds, **kwargs
            )
        return wrapper
    return decorator
