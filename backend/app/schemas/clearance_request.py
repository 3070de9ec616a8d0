"""
Clearance request schemas.

Schemas for crews submitting departure/arrival requests and officers
approving or rejecting them.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from backend.app.models.assignment_enums import RequestStatus, RequestType


class ClearanceRequestCreate(BaseModel):
    """Schema for submitting a clearance request."""
    assignment_id: int = Field(..., gt=0)
    station_id: int = Field(..., gt=0)
    request_type: RequestType
    requested_by: int = Field(..., gt=0, description="Driver or conductor asking for clearance")


class ClearanceApprove(BaseModel):
    """Schema for approving a request."""
    actor_id: int = Field(..., gt=0, description="Officer or admin")


class ClearanceReject(BaseModel):
    """Schema for rejecting a request. The reason is trimmed before storing."""
    actor_id: int = Field(..., gt=0, description="Officer or admin")
    reason: Optional[str] = Field(None, description="Reason for rejection")


class ClearanceRequestResponse(BaseModel):
    """Schema for clearance request response."""
    id: int
    assignment_id: int
    station_id: int
    request_type: RequestType
    status: RequestStatus
    requested_by: int
    requested_at: datetime
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    rejected_by: Optional[int]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]

    class Config:
        from_attributes = True


class ClearanceMutationResponse(BaseModel):
    """Response after a submit or a decision."""
    request: ClearanceRequestResponse
    delivery_warnings: List[str] = []


class ClearanceRequestListResponse(BaseModel):
    """Schema for paginated request list."""
    requests: List[ClearanceRequestResponse]
    total: int
    page: int
    page_size: int
