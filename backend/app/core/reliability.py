"""
Reliability Utilities.

Includes the Circuit Breaker pattern guarding the notifier and a retry
helper for transient storage failures.
"""

import time
import asyncio
import logging
from typing import Callable, Any

from sqlalchemy.exc import OperationalError

logger = logging.getLogger("bus_clearance.reliability")


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' failures occur within 'reset_timeout',
    the circuit opens and rejects calls for 'reset_timeout' seconds.
    """
    def __init__(self, failure_threshold: int = 5, reset_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED" # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError("Circuit is OPEN")

        try:
            result = await func(*args, **kwargs)
            if self.state == "HALF_OPEN":
                self.reset_state()
            return result
        except Exception:
            self.record_failure()
            raise

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.failure_threshold:
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


async def retry_transient(func: Callable, *args, retries: int = 2, delay: float = 0.05, **kwargs) -> Any:
    """
    Run an atomic unit, retrying when the storage layer drops mid-transaction.

    Only OperationalError is retried. The wrapped callable must roll back its
    own transaction on failure so a retry never follows a partial write.
    """
    attempt = 0
    while True:
        try:
            return await func(*args, **kwargs)
        except OperationalError as exc:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning(
                "Transient storage failure, retrying",
                extra={"attempt": attempt, "operation": getattr(func, "__name__", str(func)), "error": str(exc.orig)}
            )
            await asyncio.sleep(delay * attempt)
