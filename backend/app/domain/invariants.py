"""
Invariants shared by the assignment lifecycle and clearance workflow.

- Status transition tables for both state machines.
- Set-once timestamp fields.
- Ordered, named pre-commit checks: every operation declares its checks as
  a list, they run in that order before anything is written, and the first
  failure is raised.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from backend.app.core.exceptions import AppException, InvalidTransitionError, ValidationError
from backend.app.models.assignment_enums import AssignmentStatus, RequestStatus


ASSIGNMENT_TRANSITIONS = {
    AssignmentStatus.ACTIVE: frozenset({AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED}),
    AssignmentStatus.COMPLETED: frozenset(),
    AssignmentStatus.CANCELLED: frozenset(),
}

REQUEST_TRANSITIONS = {
    RequestStatus.PENDING: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED}),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
}


def is_terminal(table: dict, status) -> bool:
    return not table[status]


def ensure_transition(table: dict, resource: str, resource_id: Any, current, target) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is in ``table``."""
    if target not in table.get(current, frozenset()):
        raise InvalidTransitionError(resource, resource_id, current.value, target.value)


def set_once(entity: Any, field: str, value: Any) -> bool:
    """
    Assign ``value`` to ``entity.field`` only if it is still unset.

    Returns True when the field was written.
    """
    if getattr(entity, field) is not None:
        return False
    setattr(entity, field, value)
    return True


def normalize_rejection_reason(reason: Optional[str], max_length: int) -> str:
    """Trimmed rejection reason; empty or oversized reasons are rejected."""
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("reason", "Rejection reason is required")
    if len(cleaned) > max_length:
        raise ValidationError(
            "reason",
            f"Rejection reason cannot be more than {max_length} characters"
        )
    return cleaned


CheckFn = Callable[[Dict[str, Any]], Awaitable[Optional[AppException]]]


@dataclass(frozen=True)
class Check:
    """A named pre-commit check. ``run`` returns the failure or None."""
    name: str
    run: CheckFn


async def run_checks(checks: Iterable[Check], context: Dict[str, Any]) -> List[str]:
    """
    Run checks in order against a shared context, stopping at the first failure.

    Checks may stash what they load in ``context`` for later checks and for
    the caller. Returns the names of the checks that passed.
    """
    passed = []
    for check in checks:
        failure = await check.run(context)
        if failure is not None:
            raise failure
        passed.append(check.name)
    return passed
