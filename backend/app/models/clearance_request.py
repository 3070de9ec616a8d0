"""
Clearance Request database model.

A driver or conductor asks for officer approval to depart from or arrive at
a station on the assignment's route.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, Index, text
from sqlalchemy.sql import func
from backend.app.core.config import REJECTION_REASON_COLUMN_LENGTH
from backend.app.db.session import Base
from backend.app.models.assignment_enums import RequestType, RequestStatus

_PENDING_ONLY = text("status = 'PENDING'")
PENDING_REQUEST_INDEX = "uq_clearance_requests_pending"


class ClearanceRequest(Base):
    """
    Clearance Request model.

    PENDING until resolved once by an officer or admin; immutable after.
    """
    __tablename__ = "clearance_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    assignment_id = Column(Integer, ForeignKey('assignments.id'), nullable=False, index=True)
    station_id = Column(Integer, ForeignKey('stations.id'), nullable=False, index=True)

    request_type = Column(Enum(RequestType), default=RequestType.DEPARTURE, nullable=False)
    status = Column(Enum(RequestStatus), default=RequestStatus.PENDING, nullable=False, index=True)

    # Requester
    requested_by = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    requested_at = Column(DateTime(timezone=True), nullable=False)

    # Resolution
    approved_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(String(REJECTION_REASON_COLUMN_LENGTH), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Compare-and-set guard for resolution
    version = Column(Integer, nullable=False)

    __table_args__ = (
        # Officer dashboard: pending requests at a station, newest first
        Index('ix_clearance_requests_station_status', 'station_id', 'status', 'requested_at'),
        # Crew dashboard: requests of an assignment
        Index('ix_clearance_requests_assignment_status', 'assignment_id', 'status'),
        # One open request per assignment, station and direction
        Index(PENDING_REQUEST_INDEX, 'assignment_id', 'station_id', 'request_type', unique=True,
              postgresql_where=_PENDING_ONLY, sqlite_where=_PENDING_ONLY),
    )

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    def __repr__(self):
        return f"<ClearanceRequest(id={self.id}, type='{self.request_type.value}', status='{self.status.value}')>"
