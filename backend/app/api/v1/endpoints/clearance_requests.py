"""
Clearance Request API Endpoints.

Crews request departure/arrival clearance; station officers approve or
reject. A decision is final once made.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Response, status, Path, Query

from backend.app.core.dependencies import get_clearance_manager
from backend.app.domain.clearance.workflow import ClearanceWorkflowManager
from backend.app.models.assignment_enums import Decision, RequestStatus
from backend.app.schemas.clearance_request import (
    ClearanceRequestCreate,
    ClearanceApprove,
    ClearanceReject,
    ClearanceRequestResponse,
    ClearanceMutationResponse,
    ClearanceRequestListResponse,
)
from backend.app.services.audit import record_audit, AuditAction

router = APIRouter(prefix="/requests", tags=["Clearance Requests"])
station_router = APIRouter(prefix="/stations", tags=["Clearance Requests"])


@router.post("", response_model=ClearanceMutationResponse, status_code=status.HTTP_201_CREATED)
async def submit_request(
    request_data: ClearanceRequestCreate,
    response: Response,
    manager: ClearanceWorkflowManager = Depends(get_clearance_manager),
):
    """
    Submit a departure or arrival clearance request.

    The station must be a stop on the assignment's route. Re-submitting
    while an identical request is still PENDING returns it with 200.
    """
    request = await manager.submit(
        assignment_id=request_data.assignment_id,
        station_id=request_data.station_id,
        request_type=request_data.request_type,
        requested_by=request_data.requested_by,
    )

    body = ClearanceMutationResponse(
        request=ClearanceRequestResponse.model_validate(request),
        delivery_warnings=manager.delivery_warnings,
    )
    if manager.deduplicated:
        response.status_code = status.HTTP_200_OK
    else:
        await record_audit(
            manager.db,
            body.delivery_warnings,
            action=AuditAction.REQUEST_SUBMITTED,
            entity_type="request",
            entity_id=request.id,
            actor_id=request.requested_by,
            metadata={
                "assignment_id": request.assignment_id,
                "station_id": request.station_id,
                "request_type": request.request_type.value,
            }
        )
    return body


@router.get("/{request_id}", response_model=ClearanceRequestResponse)
async def get_request(
    request_id: int = Path(..., description="Clearance Request ID"),
    manager: ClearanceWorkflowManager = Depends(get_clearance_manager),
):
    """Get clearance request details."""
    request = await manager.get(request_id)
    return ClearanceRequestResponse.model_validate(request)


@router.post("/{request_id}/approve", response_model=ClearanceMutationResponse)
async def approve_request(
    approve_data: ClearanceApprove,
    request_id: int = Path(..., description="Clearance Request ID"),
    manager: ClearanceWorkflowManager = Depends(get_clearance_manager),
):
    """
    Approve a PENDING request (officer or admin).

    Moves the assignment: departure puts the bus in transit, arrival
    places it at the station.
    """
    request = await manager.resolve(request_id, Decision.APPROVE, approve_data.actor_id)

    body = ClearanceMutationResponse(
        request=ClearanceRequestResponse.model_validate(request),
        delivery_warnings=manager.delivery_warnings,
    )
    await record_audit(
        manager.db,
        body.delivery_warnings,
        action=AuditAction.REQUEST_APPROVED,
        entity_type="request",
        entity_id=request.id,
        actor_id=approve_data.actor_id,
        metadata={
            "assignment_id": request.assignment_id,
            "station_id": request.station_id,
            "request_type": request.request_type.value,
        }
    )
    return body


@router.post("/{request_id}/reject", response_model=ClearanceMutationResponse)
async def reject_request(
    reject_data: ClearanceReject,
    request_id: int = Path(..., description="Clearance Request ID"),
    manager: ClearanceWorkflowManager = Depends(get_clearance_manager),
):
    """
    Reject a PENDING request (officer or admin).

    A non-empty reason is required. The assignment is left unchanged.
    """
    request = await manager.resolve(
        request_id, Decision.REJECT, reject_data.actor_id, reject_data.reason
    )

    body = ClearanceMutationResponse(
        request=ClearanceRequestResponse.model_validate(request),
        delivery_warnings=manager.delivery_warnings,
    )
    await record_audit(
        manager.db,
        body.delivery_warnings,
        action=AuditAction.REQUEST_REJECTED,
        entity_type="request",
        entity_id=request.id,
        actor_id=reject_data.actor_id,
        metadata={
            "assignment_id": request.assignment_id,
            "station_id": request.station_id,
            "reason": request.rejection_reason,
        }
    )
    return body


@station_router.get("/{station_id}/requests", response_model=ClearanceRequestListResponse)
async def list_station_requests(
    station_id: int = Path(..., description="Station ID"),
    status_filter: Optional[RequestStatus] = Query(RequestStatus.PENDING, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    manager: ClearanceWorkflowManager = Depends(get_clearance_manager),
):
    """Officer dashboard: a station's requests, PENDING unless filtered otherwise."""
    requests, total = await manager.pending_for_station(
        station_id, status=status_filter, page=page, page_size=page_size
    )
    return ClearanceRequestListResponse(
        requests=[ClearanceRequestResponse.model_validate(r) for r in requests],
        total=total,
        page=page,
        page_size=page_size,
    )
