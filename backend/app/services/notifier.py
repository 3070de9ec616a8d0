"""
Notifier - best-effort fan-out of workflow events over Redis pub/sub.

Events are published to one channel per scope (station, assignment, user,
broadcast). Delivery never rolls back a committed change: ``deliver``
swallows publish failures and hands them back as warnings.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from backend.app.core.clock import utcnow
from backend.app.core.config import settings
from backend.app.core.reliability import CircuitBreaker

logger = logging.getLogger("bus_clearance.notifier")

# Shared across requests so repeated Redis failures open the circuit
notifier_circuit_breaker = CircuitBreaker(
    failure_threshold=settings.notifier_failure_threshold,
    reset_timeout=settings.notifier_reset_timeout,
)


class Scope:
    """Subscriber scope names."""
    BROADCAST = "broadcast"

    @staticmethod
    def station(station_id: int) -> str:
        return f"station:{station_id}"

    @staticmethod
    def assignment(assignment_id: int) -> str:
        return f"assignment:{assignment_id}"

    @staticmethod
    def user(user_id: int) -> str:
        return f"user:{user_id}"


class WorkflowEvent:
    """Event names published by the managers."""
    ASSIGNMENT_CREATED = "assignment:created"
    ASSIGNMENT_STATUS_CHANGED = "assignment:status_changed"
    ASSIGNMENT_POSITION_CHANGED = "assignment:position_changed"
    REQUEST_CREATED = "request:created"
    REQUEST_APPROVED = "request:approved"
    REQUEST_REJECTED = "request:rejected"


class RedisNotifier:
    """Publishes JSON envelopes to ``<prefix>:<scope>`` channels."""

    def __init__(
        self,
        redis,
        channel_prefix: str = settings.notifier_channel_prefix,
        breaker: Optional[CircuitBreaker] = None,
        enabled: bool = settings.notifier_enabled,
    ):
        self.redis = redis
        self.channel_prefix = channel_prefix
        self.breaker = breaker or notifier_circuit_breaker
        self.enabled = enabled

    def channel(self, scope: str) -> str:
        return f"{self.channel_prefix}:{scope}"

    async def publish(self, scope: str, event: str, payload: Dict[str, Any]) -> None:
        if not self.enabled:
            return
        message = json.dumps(
            {
                "event": event,
                "scope": scope,
                "payload": payload,
                "published_at": utcnow().isoformat(),
            },
            default=str,
        )
        await self.breaker.call(self.redis.publish, self.channel(scope), message)


async def deliver(notifier, scopes: Iterable[Optional[str]], event: str, payload: Dict[str, Any]) -> List[str]:
    """
    Publish ``event`` to every scope, collecting failures instead of raising.

    ``None`` scopes are skipped and duplicates are published once.
    """
    warnings = []
    seen = set()
    for scope in scopes:
        if scope is None or scope in seen:
            continue
        seen.add(scope)
        try:
            await notifier.publish(scope, event, payload)
        except Exception as exc:
            logger.warning(
                "Event delivery failed",
                extra={"event": event, "scope": scope, "error": repr(exc)}
            )
            warnings.append(f"{event} not delivered to {scope}: {exc}")
    return warnings
