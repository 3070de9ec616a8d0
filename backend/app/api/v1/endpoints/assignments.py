"""
Assignment API Endpoints.

Dispatchers create assignments and close them out; crews report their
position along the route.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status, Path, Query

from backend.app.core.dependencies import get_assignment_manager, get_clearance_manager
from backend.app.core.exceptions import NotFoundError
from backend.app.domain.assignments.lifecycle import AssignmentLifecycleManager
from backend.app.domain.clearance.workflow import ClearanceWorkflowManager
from backend.app.models.assignment_enums import AssignmentStatus, RequestStatus
from backend.app.schemas.assignment import (
    AssignmentCreate,
    AssignmentStatusUpdate,
    AssignmentPositionUpdate,
    AssignmentResponse,
    AssignmentStatusResponse,
    AssignmentMutationResponse,
    AssignmentListResponse,
    AssignmentHistoryResponse,
    AuditEntryResponse,
)
from backend.app.schemas.clearance_request import ClearanceRequestResponse
from backend.app.services.audit import record_audit, get_entity_history, AuditAction

router = APIRouter(prefix="/assignments", tags=["Assignments"])
user_router = APIRouter(prefix="/users", tags=["Assignments"])

STATUS_ACTIONS = {
    AssignmentStatus.COMPLETED: AuditAction.ASSIGNMENT_COMPLETED,
    AssignmentStatus.CANCELLED: AuditAction.ASSIGNMENT_CANCELLED,
}


@router.post("", response_model=AssignmentMutationResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    assignment_data: AssignmentCreate,
    manager: AssignmentLifecycleManager = Depends(get_assignment_manager),
):
    """
    Create an ACTIVE assignment.

    The bus, driver and conductor must each be free of any other ACTIVE
    assignment; otherwise 409 with the conflicting resource in details.
    """
    assignment = await manager.create(
        bus_id=assignment_data.bus_id,
        driver_id=assignment_data.driver_id,
        conductor_id=assignment_data.conductor_id,
        route_id=assignment_data.route_id,
        start_time=assignment_data.start_time,
    )

    body = AssignmentMutationResponse(
        assignment=AssignmentResponse.model_validate(assignment),
        delivery_warnings=manager.delivery_warnings,
    )
    await record_audit(
        manager.db,
        body.delivery_warnings,
        action=AuditAction.ASSIGNMENT_CREATED,
        entity_type="assignment",
        entity_id=assignment.id,
        actor_id=assignment_data.actor_id,
        metadata={
            "bus_id": assignment.bus_id,
            "driver_id": assignment.driver_id,
            "conductor_id": assignment.conductor_id,
            "route_id": assignment.route_id,
        }
    )
    return body


@router.get("", response_model=AssignmentListResponse)
async def list_assignments(
    status_filter: Optional[AssignmentStatus] = Query(None, alias="status"),
    bus_id: Optional[int] = Query(None, gt=0),
    driver_id: Optional[int] = Query(None, gt=0),
    conductor_id: Optional[int] = Query(None, gt=0),
    route_id: Optional[int] = Query(None, gt=0),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    manager: AssignmentLifecycleManager = Depends(get_assignment_manager),
):
    """List assignments, newest first, with optional filters."""
    assignments, total = await manager.list_assignments(
        status=status_filter,
        bus_id=bus_id,
        driver_id=driver_id,
        conductor_id=conductor_id,
        route_id=route_id,
        page=page,
        page_size=page_size,
    )
    return AssignmentListResponse(
        assignments=[AssignmentResponse.model_validate(a) for a in assignments],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: int = Path(..., description="Assignment ID"),
    manager: AssignmentLifecycleManager = Depends(get_assignment_manager),
):
    """Get assignment details."""
    assignment = await manager.get(assignment_id)
    return AssignmentResponse.model_validate(assignment)


@router.get("/{assignment_id}/status", response_model=AssignmentStatusResponse)
async def get_assignment_status(
    assignment_id: int = Path(..., description="Assignment ID"),
    manager: AssignmentLifecycleManager = Depends(get_assignment_manager),
):
    """Status and position only, for polling clients."""
    assignment = await manager.get(assignment_id)
    return AssignmentStatusResponse(
        id=assignment.id,
        status=assignment.status,
        in_transit=assignment.in_transit,
        current_station_id=assignment.current_station_id,
        from_station_id=assignment.from_station_id,
    )


@router.patch("/{assignment_id}/status", response_model=AssignmentMutationResponse)
async def update_assignment_status(
    update_data: AssignmentStatusUpdate,
    assignment_id: int = Path(..., description="Assignment ID"),
    manager: AssignmentLifecycleManager = Depends(get_assignment_manager),
):
    """
    Complete or cancel an ACTIVE assignment.

    Terminal assignments cannot change again (409).
    """
    assignment = await manager.transition(assignment_id, update_data.status)

    body = AssignmentMutationResponse(
        assignment=AssignmentResponse.model_validate(assignment),
        delivery_warnings=manager.delivery_warnings,
    )
    await record_audit(
        manager.db,
        body.delivery_warnings,
        action=STATUS_ACTIONS[update_data.status],
        entity_type="assignment",
        entity_id=assignment.id,
        actor_id=update_data.actor_id,
        metadata={"new_status": update_data.status.value}
    )
    return body


@router.patch("/{assignment_id}/position", response_model=AssignmentMutationResponse)
async def update_assignment_position(
    position_data: AssignmentPositionUpdate,
    assignment_id: int = Path(..., description="Assignment ID"),
    manager: AssignmentLifecycleManager = Depends(get_assignment_manager),
):
    """Record the bus's current station and whether it is moving."""
    assignment = await manager.advance_station(
        assignment_id, position_data.station_id, position_data.in_transit
    )

    body = AssignmentMutationResponse(
        assignment=AssignmentResponse.model_validate(assignment),
        delivery_warnings=manager.delivery_warnings,
    )
    await record_audit(
        manager.db,
        body.delivery_warnings,
        action=AuditAction.ASSIGNMENT_POSITION_UPDATED,
        entity_type="assignment",
        entity_id=assignment.id,
        actor_id=position_data.actor_id,
        metadata={
            "current_station_id": assignment.current_station_id,
            "from_station_id": assignment.from_station_id,
            "in_transit": assignment.in_transit,
        }
    )
    return body


@router.get("/{assignment_id}/requests", response_model=list[ClearanceRequestResponse])
async def list_assignment_requests(
    assignment_id: int = Path(..., description="Assignment ID"),
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    manager: AssignmentLifecycleManager = Depends(get_assignment_manager),
    clearance: ClearanceWorkflowManager = Depends(get_clearance_manager),
):
    """Clearance requests of an assignment, newest first."""
    await manager.get(assignment_id)
    requests = await clearance.for_assignment(assignment_id, status_filter)
    return [ClearanceRequestResponse.model_validate(r) for r in requests]


@router.get("/{assignment_id}/history", response_model=AssignmentHistoryResponse)
async def get_assignment_history(
    assignment_id: int = Path(..., description="Assignment ID"),
    limit: int = Query(100, ge=1, le=500),
    manager: AssignmentLifecycleManager = Depends(get_assignment_manager),
):
    """Audit trail of an assignment, newest first."""
    await manager.get(assignment_id)
    entries = await get_entity_history(manager.db, "assignment", assignment_id, limit)
    return AssignmentHistoryResponse(
        assignment_id=assignment_id,
        entries=[AuditEntryResponse.model_validate(entry) for entry in entries],
    )


@user_router.get("/{user_id}/active-assignment", response_model=AssignmentResponse)
async def get_active_assignment(
    user_id: int = Path(..., description="Driver or conductor ID"),
    manager: AssignmentLifecycleManager = Depends(get_assignment_manager),
):
    """The crew member's current ACTIVE assignment (404 when off duty)."""
    assignment = await manager.active_for_user(user_id)
    if assignment is None:
        raise NotFoundError("Active assignment for user", user_id)
    return AssignmentResponse.model_validate(assignment)
