"""
Clearance Workflow Manager.

Drivers and conductors ask for clearance to depart from or arrive at a
station on their assignment's route; officers and admins resolve each
request exactly once.

Resolution is a compare-and-set: the request (and, on approval, its
assignment) is read FOR UPDATE and written through the version counter.
Of two concurrent resolves only one commits; the other re-reads the
request and fails with AlreadyResolvedError. The request status change and
the assignment position change commit in the same transaction.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backend.app.core.clock import utcnow
from backend.app.core.config import REJECTION_REASON_COLUMN_LENGTH, settings
from backend.app.core.exceptions import (
    AlreadyResolvedError,
    InvalidStateError,
    NotFoundError,
    RoleMismatchError,
    StationNotOnRouteError,
    ValidationError,
)
from backend.app.core.reliability import retry_transient
from backend.app.domain.invariants import (
    REQUEST_TRANSITIONS,
    Check,
    ensure_transition,
    normalize_rejection_reason,
    run_checks,
    set_once,
)
from backend.app.models.assignment import Assignment
from backend.app.models.assignment_enums import AssignmentStatus, Decision, RequestStatus, RequestType
from backend.app.models.clearance_request import ClearanceRequest, PENDING_REQUEST_INDEX
from backend.app.models.enums import RESOLVER_ROLES
from backend.app.services.notifier import Scope, WorkflowEvent, deliver

logger = logging.getLogger("bus_clearance.clearance")

DECISION_OUTCOME = {
    Decision.APPROVE: RequestStatus.APPROVED,
    Decision.REJECT: RequestStatus.REJECTED,
}


def apply_clearance(assignment: Assignment, request_type: RequestType, station_id: int) -> None:
    """Move the assignment according to an approved clearance."""
    if request_type == RequestType.DEPARTURE:
        assignment.in_transit = True
        assignment.from_station_id = station_id
        assignment.current_station_id = None
    else:
        assignment.in_transit = False
        assignment.current_station_id = station_id


def request_payload(request: ClearanceRequest) -> Dict[str, Any]:
    return {
        "request_id": request.id,
        "assignment_id": request.assignment_id,
        "station_id": request.station_id,
        "request_type": request.request_type.value,
        "status": request.status.value,
        "requested_by": request.requested_by,
        "approved_by": request.approved_by,
        "rejected_by": request.rejected_by,
        "rejection_reason": request.rejection_reason,
    }


class ClearanceWorkflowManager:
    """
    Submits and resolves clearance requests.

    One instance serves one unit of work. Notification failures collect in
    ``delivery_warnings``; ``deduplicated`` tells whether the last submit
    matched an existing PENDING request.
    """

    def __init__(
        self,
        db: AsyncSession,
        directory,
        catalog,
        notifier,
        retries: int = settings.db_transient_retries,
        reason_max_length: int = settings.rejection_reason_max_length,
    ):
        self.db = db
        self.directory = directory
        self.catalog = catalog
        self.notifier = notifier
        self.retries = retries
        self.reason_max_length = min(reason_max_length, REJECTION_REASON_COLUMN_LENGTH)
        self.delivery_warnings: List[str] = []
        # True when the last submit returned an already PENDING request
        self.deduplicated = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, request_id: int) -> ClearanceRequest:
        result = await self.db.execute(
            select(ClearanceRequest)
            .where(ClearanceRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("Request", request_id)
        return request

    async def pending_for_station(
        self,
        station_id: int,
        status: Optional[RequestStatus] = RequestStatus.PENDING,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[ClearanceRequest], int]:
        """Officer dashboard: a station's requests (pending by default), newest first."""
        filters = [ClearanceRequest.station_id == station_id]
        if status is not None:
            filters.append(ClearanceRequest.status == status)

        total_result = await self.db.execute(select(func.count(ClearanceRequest.id)).where(*filters))
        total = total_result.scalar()

        offset = (page - 1) * page_size
        result = await self.db.execute(
            select(ClearanceRequest)
            .where(*filters)
            .order_by(ClearanceRequest.requested_at.desc(), ClearanceRequest.id.desc())
            .offset(offset)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def for_assignment(
        self,
        assignment_id: int,
        status: Optional[RequestStatus] = None,
    ) -> List[ClearanceRequest]:
        """Crew dashboard: every request of an assignment, newest first."""
        query = select(ClearanceRequest).where(ClearanceRequest.assignment_id == assignment_id)
        if status is not None:
            query = query.where(ClearanceRequest.status == status)
        result = await self.db.execute(
            query.order_by(ClearanceRequest.requested_at.desc(), ClearanceRequest.id.desc())
        )
        return list(result.scalars().all())

    async def _find_pending(self, assignment_id: int, station_id: int, request_type: RequestType) -> Optional[ClearanceRequest]:
        result = await self.db.execute(
            select(ClearanceRequest).where(
                ClearanceRequest.assignment_id == assignment_id,
                ClearanceRequest.station_id == station_id,
                ClearanceRequest.request_type == request_type,
                ClearanceRequest.status == RequestStatus.PENDING,
            )
        )
        return result.scalars().first()

    async def _load_assignment(self, assignment_id: int, for_update: bool = False) -> Optional[Assignment]:
        query = select(Assignment).where(Assignment.id == assignment_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # submit
    # ------------------------------------------------------------------

    def submit_checks(self, assignment_id: int, station_id: int, requested_by: int) -> List[Check]:
        """Pre-commit checks for submit, in evaluation order."""

        async def assignment_exists(context):
            context["assignment"] = await self._load_assignment(assignment_id)
            if context["assignment"] is None:
                return NotFoundError("Assignment", assignment_id)

        async def assignment_active(context):
            assignment = context["assignment"]
            if assignment.status != AssignmentStatus.ACTIVE:
                return InvalidStateError(
                    "Assignment", assignment_id, assignment.status.value, AssignmentStatus.ACTIVE.value
                )

        async def requester_exists(context):
            context["requester"] = await self.directory.resolve_user(requested_by)
            if context["requester"] is None:
                return NotFoundError("User", requested_by)

        async def station_on_route(context):
            route_id = context["assignment"].route_id
            route = await self.catalog.get_route(route_id)
            if route is None:
                return NotFoundError("Route", route_id)
            if not route.has_station(station_id):
                return StationNotOnRouteError(station_id, route_id, assignment_id)

        return [
            Check("assignment_exists", assignment_exists),
            Check("assignment_active", assignment_active),
            Check("requester_exists", requester_exists),
            Check("station_on_route", station_on_route),
        ]

    async def submit(
        self,
        assignment_id: int,
        station_id: int,
        request_type: RequestType,
        requested_by: int,
    ) -> ClearanceRequest:
        """
        Open a PENDING clearance request.

        Submitting again while an identical request (same assignment,
        station and type) is still PENDING returns that request, so a
        client retrying after a timeout does not open a duplicate.

        Raises:
            NotFoundError: assignment, requester or route unresolved
            InvalidStateError: assignment is not ACTIVE
            StationNotOnRouteError: station is not a stop of the route
        """
        request, created = await retry_transient(
            self._submit_once, assignment_id, station_id, request_type, requested_by,
            retries=self.retries,
        )
        self.deduplicated = not created
        if not created:
            return request

        logger.info(
            "Clearance requested",
            extra={"request_id": request.id, "assignment_id": assignment_id, "station_id": station_id, "request_type": request_type.value}
        )
        self.delivery_warnings += await deliver(
            self.notifier,
            [Scope.station(station_id), Scope.assignment(assignment_id), Scope.user(requested_by)],
            WorkflowEvent.REQUEST_CREATED,
            request_payload(request),
        )
        return request

    async def _submit_once(self, assignment_id, station_id, request_type, requested_by):
        try:
            await run_checks(self.submit_checks(assignment_id, station_id, requested_by), {})

            existing = await self._find_pending(assignment_id, station_id, request_type)
            if existing is not None:
                await self.db.commit()
                return existing, False

            request = ClearanceRequest(
                assignment_id=assignment_id,
                station_id=station_id,
                request_type=request_type,
                status=RequestStatus.PENDING,
                requested_by=requested_by,
            )
            set_once(request, "requested_at", utcnow())
            self.db.add(request)
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            message = str(exc.orig)
            if PENDING_REQUEST_INDEX not in message and "clearance_requests.assignment_id" not in message:
                raise
            # A concurrent identical submit won
            existing = await self._find_pending(assignment_id, station_id, request_type)
            await self.db.commit()
            if existing is None:
                raise
            return existing, False
        except Exception:
            await self.db.rollback()
            raise

        return request, True

    # ------------------------------------------------------------------
    # resolve
    # ------------------------------------------------------------------

    def resolve_checks(
        self,
        request_id: int,
        decision: Decision,
        actor_id: int,
        reason: Optional[str],
    ) -> List[Check]:
        """Pre-commit checks for resolve, in evaluation order."""

        async def request_exists(context):
            result = await self.db.execute(
                select(ClearanceRequest)
                .where(ClearanceRequest.id == request_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            context["request"] = result.scalar_one_or_none()
            if context["request"] is None:
                return NotFoundError("Request", request_id)

        async def request_pending(context):
            request = context["request"]
            if request.status != RequestStatus.PENDING:
                return AlreadyResolvedError(request_id, request.status.value)

        async def actor_role(context):
            actor = await self.directory.resolve_user(actor_id)
            if actor is None:
                return NotFoundError("User", actor_id)
            if actor.role not in RESOLVER_ROLES:
                return RoleMismatchError("actor", actor_id, [role.value for role in RESOLVER_ROLES], actor.role.value)

        async def rejection_reason(context):
            try:
                context["reason"] = normalize_rejection_reason(reason, self.reason_max_length)
            except ValidationError as exc:
                return exc

        async def assignment_active(context):
            assignment_id = context["request"].assignment_id
            assignment = await self._load_assignment(assignment_id, for_update=True)
            if assignment is None:
                return NotFoundError("Assignment", assignment_id)
            if assignment.status != AssignmentStatus.ACTIVE:
                return InvalidStateError(
                    "Assignment", assignment_id, assignment.status.value, AssignmentStatus.ACTIVE.value
                )
            context["assignment"] = assignment

        checks = [
            Check("request_exists", request_exists),
            Check("request_pending", request_pending),
            Check("actor_role", actor_role),
        ]
        if decision == Decision.REJECT:
            checks.append(Check("rejection_reason", rejection_reason))
        else:
            checks.append(Check("assignment_active", assignment_active))
        return checks

    async def resolve(
        self,
        request_id: int,
        decision: Decision,
        actor_id: int,
        reason: Optional[str] = None,
    ) -> ClearanceRequest:
        """
        Approve or reject a PENDING request.

        Approval also moves the assignment: DEPARTURE puts it in transit
        from the station, ARRIVAL places it at the station. Rejection leaves
        the assignment untouched.

        Raises:
            NotFoundError: request, actor or assignment unresolved
            AlreadyResolvedError: request already APPROVED or REJECTED
            RoleMismatchError: actor is not an officer or admin
            ValidationError: rejection reason empty or too long
            InvalidStateError: approving a request of a non-ACTIVE assignment
        """
        request = await retry_transient(
            self._resolve_once, request_id, decision, actor_id, reason, retries=self.retries
        )

        logger.info(
            "Clearance resolved",
            extra={"request_id": request_id, "status": request.status.value, "actor_id": actor_id}
        )
        event = (
            WorkflowEvent.REQUEST_APPROVED if decision == Decision.APPROVE else WorkflowEvent.REQUEST_REJECTED
        )
        self.delivery_warnings += await deliver(
            self.notifier,
            [
                Scope.station(request.station_id),
                Scope.assignment(request.assignment_id),
                Scope.user(request.requested_by),
            ],
            event,
            request_payload(request),
        )
        return request

    async def _resolve_once(self, request_id, decision, actor_id, reason) -> ClearanceRequest:
        target = DECISION_OUTCOME[decision]

        for attempt in range(3):
            context: Dict[str, Any] = {}
            try:
                await run_checks(self.resolve_checks(request_id, decision, actor_id, reason), context)
                request = context["request"]
                ensure_transition(REQUEST_TRANSITIONS, "Request", request_id, request.status, target)

                now = utcnow()
                request.status = target
                if decision == Decision.APPROVE:
                    request.approved_by = actor_id
                    set_once(request, "approved_at", now)
                    apply_clearance(context["assignment"], request.request_type, request.station_id)
                else:
                    request.rejected_by = actor_id
                    set_once(request, "rejected_at", now)
                    request.rejection_reason = context["reason"]

                await self.db.commit()
                return request
            except StaleDataError:
                await self.db.rollback()
                current = await self.get(request_id)
                current_status = current.status
                await self.db.commit()
                if current_status != RequestStatus.PENDING:
                    raise AlreadyResolvedError(request_id, current_status.value)
                # The assignment moved underneath us; run the checks again
                if attempt == 2:
                    raise
            except Exception:
                await self.db.rollback()
                raise
