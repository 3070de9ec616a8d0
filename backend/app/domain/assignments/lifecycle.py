"""
Assignment Lifecycle Manager.

Owns creation and status changes of assignments and guarantees that a bus,
driver or conductor backs at most one ACTIVE assignment at any instant.

Concurrency:
- create holds the bus, driver and conductor locks (in that order) across
  checks, insert and commit. The partial unique indexes on ``assignments``
  reject whatever slips past an expired lock; that IntegrityError becomes a
  ResourceBusyError naming the resource.
- transition and advance_station load the row FOR UPDATE and write through
  the version counter, so a concurrent writer makes the loser re-read
  instead of overwriting.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backend.app.core.clock import utcnow
from backend.app.core.config import settings
from backend.app.core.exceptions import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ResourceBusyError,
    RoleMismatchError,
)
from backend.app.core.reliability import retry_transient
from backend.app.domain.invariants import (
    ASSIGNMENT_TRANSITIONS,
    Check,
    ensure_transition,
    is_terminal,
    run_checks,
    set_once,
)
from backend.app.models.assignment import Assignment, ACTIVE_INDEX_BY_RESOURCE
from backend.app.models.assignment_enums import AssignmentStatus
from backend.app.models.enums import UserRole
from backend.app.services.notifier import Scope, WorkflowEvent, deliver

logger = logging.getLogger("bus_clearance.assignments")

EXCLUSIVE_COLUMNS = {
    "bus": Assignment.bus_id,
    "driver": Assignment.driver_id,
    "conductor": Assignment.conductor_id,
}


def assignment_payload(assignment: Assignment) -> Dict[str, Any]:
    return {
        "assignment_id": assignment.id,
        "bus_id": assignment.bus_id,
        "driver_id": assignment.driver_id,
        "conductor_id": assignment.conductor_id,
        "route_id": assignment.route_id,
        "status": assignment.status.value,
        "current_station_id": assignment.current_station_id,
        "from_station_id": assignment.from_station_id,
        "in_transit": assignment.in_transit,
    }


class AssignmentLifecycleManager:
    """
    Creates assignments and moves them through ACTIVE -> COMPLETED/CANCELLED.

    One instance serves one unit of work (one HTTP request). Notification
    failures never undo a committed change; they collect in
    ``delivery_warnings``.
    """

    def __init__(
        self,
        db: AsyncSession,
        directory,
        catalog,
        notifier,
        locker,
        retries: int = settings.db_transient_retries,
    ):
        self.db = db
        self.directory = directory
        self.catalog = catalog
        self.notifier = notifier
        self.locker = locker
        self.retries = retries
        self.delivery_warnings: List[str] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, assignment_id: int) -> Assignment:
        result = await self.db.execute(
            select(Assignment)
            .where(Assignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise NotFoundError("Assignment", assignment_id)
        return assignment

    async def find_active(self, resource: str, resource_id: int) -> Optional[Assignment]:
        """The ACTIVE assignment holding a bus, driver or conductor, if any."""
        result = await self.db.execute(
            select(Assignment).where(
                EXCLUSIVE_COLUMNS[resource] == resource_id,
                Assignment.status == AssignmentStatus.ACTIVE,
            )
        )
        return result.scalars().first()

    async def active_for_user(self, user_id: int) -> Optional[Assignment]:
        """Current ACTIVE assignment of a driver or conductor."""
        result = await self.db.execute(
            select(Assignment).where(
                or_(Assignment.driver_id == user_id, Assignment.conductor_id == user_id),
                Assignment.status == AssignmentStatus.ACTIVE,
            )
        )
        return result.scalars().first()

    async def list_assignments(
        self,
        status: Optional[AssignmentStatus] = None,
        bus_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        conductor_id: Optional[int] = None,
        route_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[Assignment], int]:
        """Filtered page of assignments, newest first, with the total count."""
        filters = []
        if status is not None:
            filters.append(Assignment.status == status)
        if bus_id is not None:
            filters.append(Assignment.bus_id == bus_id)
        if driver_id is not None:
            filters.append(Assignment.driver_id == driver_id)
        if conductor_id is not None:
            filters.append(Assignment.conductor_id == conductor_id)
        if route_id is not None:
            filters.append(Assignment.route_id == route_id)

        total_result = await self.db.execute(select(func.count(Assignment.id)).where(*filters))
        total = total_result.scalar()

        offset = (page - 1) * page_size
        result = await self.db.execute(
            select(Assignment)
            .where(*filters)
            .order_by(Assignment.created_at.desc(), Assignment.id.desc())
            .offset(offset)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def _load_for_update(self, assignment_id: int) -> Assignment:
        result = await self.db.execute(
            select(Assignment)
            .where(Assignment.id == assignment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise NotFoundError("Assignment", assignment_id)
        return assignment

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create_checks(self, bus_id: int, driver_id: int, conductor_id: int, route_id: int) -> List[Check]:
        """Pre-commit checks for create, in evaluation order."""

        async def bus_exists(context):
            context["bus"] = await self.catalog.get_bus(bus_id)
            if context["bus"] is None:
                return NotFoundError("Bus", bus_id)

        async def route_exists(context):
            context["route"] = await self.catalog.get_route(route_id)
            if context["route"] is None:
                return NotFoundError("Route", route_id)

        def crew_role(party: str, user_id: int, role: UserRole):
            async def check(context):
                user = await self.directory.resolve_user(user_id)
                if user is None:
                    return NotFoundError(party.capitalize(), user_id)
                if user.role != role:
                    return RoleMismatchError(party, user_id, [role.value], user.role.value)
                context[party] = user
            return check

        def available(resource: str, resource_id: int):
            async def check(context):
                holder = await self.find_active(resource, resource_id)
                if holder is not None:
                    return ResourceBusyError(resource, resource_id, holder.id)
            return check

        return [
            Check("bus_exists", bus_exists),
            Check("route_exists", route_exists),
            Check("driver_role", crew_role("driver", driver_id, UserRole.DRIVER)),
            Check("conductor_role", crew_role("conductor", conductor_id, UserRole.CONDUCTOR)),
            Check("bus_available", available("bus", bus_id)),
            Check("driver_available", available("driver", driver_id)),
            Check("conductor_available", available("conductor", conductor_id)),
        ]

    async def create(
        self,
        bus_id: int,
        driver_id: int,
        conductor_id: int,
        route_id: int,
        start_time: datetime,
    ) -> Assignment:
        """
        Create an ACTIVE assignment.

        Raises:
            NotFoundError: bus, route, driver or conductor unresolved
            RoleMismatchError: driver/conductor has the wrong role
            ResourceBusyError: bus, driver or conductor already active elsewhere
        """
        assignment, route = await retry_transient(
            self._create_once, bus_id, driver_id, conductor_id, route_id, start_time,
            retries=self.retries,
        )

        logger.info(
            "Assignment created",
            extra={"assignment_id": assignment.id, "bus_id": bus_id, "driver_id": driver_id, "conductor_id": conductor_id}
        )
        self.delivery_warnings += await deliver(
            self.notifier,
            [
                Scope.assignment(assignment.id),
                Scope.station(route.origin_station_id),
                Scope.user(driver_id),
                Scope.user(conductor_id),
            ],
            WorkflowEvent.ASSIGNMENT_CREATED,
            assignment_payload(assignment),
        )
        return assignment

    async def _create_once(self, bus_id, driver_id, conductor_id, route_id, start_time):
        resources = {"bus": bus_id, "driver": driver_id, "conductor": conductor_id}

        async with self.locker.hold(resources.items()):
            context: Dict[str, Any] = {}
            try:
                await run_checks(self.create_checks(bus_id, driver_id, conductor_id, route_id), context)

                assignment = Assignment(
                    bus_id=bus_id,
                    driver_id=driver_id,
                    conductor_id=conductor_id,
                    route_id=route_id,
                    status=AssignmentStatus.ACTIVE,
                    in_transit=False,
                    start_time=start_time,
                )
                set_once(assignment, "started_at", utcnow())
                self.db.add(assignment)
                await self.db.commit()
            except IntegrityError as exc:
                await self.db.rollback()
                busy = await self._busy_from_integrity_error(exc, resources)
                if busy is None:
                    raise
                raise busy from exc
            except Exception:
                await self.db.rollback()
                raise

        return assignment, context["route"]

    async def _busy_from_integrity_error(self, exc: IntegrityError, resources: Dict[str, int]) -> Optional[ResourceBusyError]:
        """Name the resource whose ACTIVE-uniqueness index rejected the insert."""
        message = str(exc.orig)
        for resource, index_name in ACTIVE_INDEX_BY_RESOURCE.items():
            # PostgreSQL reports the index name, SQLite the indexed column
            if index_name in message or f"assignments.{resource}_id" in message:
                holder = await self.find_active(resource, resources[resource])
                holder_id = holder.id if holder is not None else None
                await self.db.rollback()
                return ResourceBusyError(resource, resources[resource], holder_id)
        return None

    # ------------------------------------------------------------------
    # transition
    # ------------------------------------------------------------------

    async def transition(self, assignment_id: int, new_status: AssignmentStatus) -> Assignment:
        """
        Move an ACTIVE assignment to COMPLETED or CANCELLED.

        Raises:
            NotFoundError: unknown assignment
            InvalidTransitionError: transition not allowed from the current status
        """
        assignment, old_status = await retry_transient(
            self._transition_once, assignment_id, new_status, retries=self.retries
        )

        logger.info(
            "Assignment status changed",
            extra={"assignment_id": assignment_id, "old_status": old_status.value, "new_status": new_status.value}
        )
        self.delivery_warnings += await deliver(
            self.notifier,
            [
                Scope.assignment(assignment.id),
                self._station_scope(assignment),
                Scope.user(assignment.driver_id),
                Scope.user(assignment.conductor_id),
            ],
            WorkflowEvent.ASSIGNMENT_STATUS_CHANGED,
            {
                "assignment_id": assignment.id,
                "old_status": old_status.value,
                "new_status": new_status.value,
            },
        )
        return assignment

    async def _transition_once(self, assignment_id: int, new_status: AssignmentStatus):
        for attempt in range(3):
            try:
                assignment = await self._load_for_update(assignment_id)
                old_status = assignment.status
                ensure_transition(ASSIGNMENT_TRANSITIONS, "Assignment", assignment_id, old_status, new_status)

                assignment.status = new_status
                if new_status == AssignmentStatus.COMPLETED:
                    now = utcnow()
                    set_once(assignment, "completed_at", now)
                    set_once(assignment, "end_time", now)
                await self.db.commit()
                return assignment, old_status
            except StaleDataError:
                await self.db.rollback()
                current = await self.get(assignment_id)
                current_status = current.status
                await self.db.commit()
                if is_terminal(ASSIGNMENT_TRANSITIONS, current_status):
                    raise InvalidTransitionError("Assignment", assignment_id, current_status.value, new_status.value)
                # Still ACTIVE: a position update bumped the version, load again
                if attempt == 2:
                    raise
            except Exception:
                await self.db.rollback()
                raise

    # ------------------------------------------------------------------
    # advance_station
    # ------------------------------------------------------------------

    async def advance_station(self, assignment_id: int, to_station_id: int, in_transit: bool) -> Assignment:
        """
        Record physical progress of an ACTIVE assignment.

        The station is not checked against the route; clearance approval is
        the authoritative gate for station changes.

        Raises:
            NotFoundError: unknown assignment or station
            InvalidStateError: assignment is not ACTIVE
        """
        assignment = await retry_transient(
            self._advance_once, assignment_id, to_station_id, in_transit, retries=self.retries
        )

        self.delivery_warnings += await deliver(
            self.notifier,
            [
                Scope.assignment(assignment.id),
                Scope.station(to_station_id),
                Scope.user(assignment.driver_id),
                Scope.user(assignment.conductor_id),
            ],
            WorkflowEvent.ASSIGNMENT_POSITION_CHANGED,
            assignment_payload(assignment),
        )
        return assignment

    async def _advance_once(self, assignment_id: int, to_station_id: int, in_transit: bool) -> Assignment:
        for attempt in range(2):
            try:
                if not await self.catalog.station_exists(to_station_id):
                    raise NotFoundError("Station", to_station_id)

                assignment = await self._load_for_update(assignment_id)
                if assignment.status != AssignmentStatus.ACTIVE:
                    raise InvalidStateError(
                        "Assignment", assignment_id, assignment.status.value, AssignmentStatus.ACTIVE.value
                    )

                previous = assignment.current_station_id
                if previous is not None and previous != to_station_id:
                    assignment.from_station_id = previous
                assignment.current_station_id = to_station_id
                assignment.in_transit = in_transit
                await self.db.commit()
                return assignment
            except StaleDataError:
                await self.db.rollback()
                if attempt:
                    raise
            except Exception:
                await self.db.rollback()
                raise

    @staticmethod
    def _station_scope(assignment: Assignment) -> Optional[str]:
        station_id = assignment.current_station_id or assignment.from_station_id
        if station_id is None:
            return None
        return Scope.station(station_id)
