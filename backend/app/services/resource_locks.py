"""
Per-resource locks for assignment creation.

Locks live in Redis so they hold across worker processes. They are always
taken in the order bus, driver, conductor (then by id), which keeps two
creates over overlapping resources from deadlocking. The partial unique
indexes on ``assignments`` remain the final guard if a lock expires.
"""

import logging
from contextlib import asynccontextmanager
from typing import Iterable, Tuple

from redis.exceptions import LockError

from backend.app.core.config import settings
from backend.app.core.exceptions import ResourceBusyError

logger = logging.getLogger("bus_clearance.locks")

RESOURCE_ORDER = ("bus", "driver", "conductor")


def lock_key(resource: str, resource_id: int) -> str:
    return f"lock:assignment:{resource}:{resource_id}"


def ordered_resources(resources: Iterable[Tuple[str, int]]) -> list:
    """Global acquisition order: resource kind first, then id."""
    return sorted(set(resources), key=lambda item: (RESOURCE_ORDER.index(item[0]), item[1]))


class ResourceLocker:
    """Acquires a batch of resource locks for the duration of an atomic unit."""

    def __init__(
        self,
        redis,
        enabled: bool = settings.resource_locks_enabled,
        timeout: float = settings.resource_lock_timeout_seconds,
        wait: float = settings.resource_lock_wait_seconds,
    ):
        self.redis = redis
        self.enabled = enabled
        self.timeout = timeout
        self.wait = wait

    @asynccontextmanager
    async def hold(self, resources: Iterable[Tuple[str, int]]):
        """
        Hold every lock in ``resources`` until the block exits.

        Raises ResourceBusyError(reason="locked") when a lock cannot be
        taken within the wait window.
        """
        if not self.enabled:
            yield
            return

        acquired = []
        try:
            for resource, resource_id in ordered_resources(resources):
                lock = self.redis.lock(
                    lock_key(resource, resource_id),
                    timeout=self.timeout,
                    blocking_timeout=self.wait,
                )
                if not await lock.acquire():
                    raise ResourceBusyError(resource, resource_id, reason="locked")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                try:
                    await lock.release()
                except LockError:
                    # Expired while held; the unique indexes still guard the write
                    logger.warning("Resource lock expired before release", extra={"lock": lock.name})
