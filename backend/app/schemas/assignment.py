"""
Assignment schemas.

Schemas for creating assignments, changing their status and recording
their position along the route.
"""

from pydantic import BaseModel, Field, computed_field
from typing import List, Optional
from datetime import datetime

from backend.app.core.clock import format_duration
from backend.app.models.assignment_enums import AssignmentStatus


class AssignmentCreate(BaseModel):
    """Schema for creating an assignment."""
    bus_id: int = Field(..., gt=0)
    driver_id: int = Field(..., gt=0)
    conductor_id: int = Field(..., gt=0)
    route_id: int = Field(..., gt=0)
    start_time: datetime
    actor_id: Optional[int] = Field(None, gt=0, description="User recorded in the audit trail")


class AssignmentStatusUpdate(BaseModel):
    """Schema for terminalizing an assignment."""
    status: AssignmentStatus
    actor_id: Optional[int] = Field(None, gt=0)


class AssignmentPositionUpdate(BaseModel):
    """Schema for recording physical progress."""
    station_id: int = Field(..., gt=0)
    in_transit: bool = False
    actor_id: Optional[int] = Field(None, gt=0)


class AssignmentResponse(BaseModel):
    """Schema for assignment response."""
    id: int
    bus_id: int
    driver_id: int
    conductor_id: int
    route_id: int
    status: AssignmentStatus
    current_station_id: Optional[int]
    from_station_id: Optional[int]
    in_transit: bool
    start_time: datetime
    end_time: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def duration(self) -> str:
        # Running assignments count up to now
        return format_duration(self.started_at or self.start_time, self.completed_at)

    class Config:
        from_attributes = True


class AssignmentStatusResponse(BaseModel):
    """Light-weight status view."""
    id: int
    status: AssignmentStatus
    in_transit: bool
    current_station_id: Optional[int]
    from_station_id: Optional[int]


class AssignmentMutationResponse(BaseModel):
    """Response after a create, status change or position update."""
    assignment: AssignmentResponse
    delivery_warnings: List[str] = []


class AssignmentListResponse(BaseModel):
    """Schema for paginated assignment list."""
    assignments: List[AssignmentResponse]
    total: int
    page: int
    page_size: int


class AuditEntryResponse(BaseModel):
    """One audit trail entry."""
    id: int
    actor_id: Optional[int]
    action: str
    entity_type: str
    entity_id: int
    meta_data: Optional[dict]
    timestamp: datetime

    class Config:
        from_attributes = True


class AssignmentHistoryResponse(BaseModel):
    """Audit trail of one assignment, newest first."""
    assignment_id: int
    entries: List[AuditEntryResponse]
