"""
Assignment database model.

One bus + driver + conductor + route pairing for a single operational trip.
Exclusivity of ACTIVE assignments is enforced by partial unique indexes so
the storage layer rejects a second ACTIVE row for the same bus, driver or
conductor even when two writers race past the application checks.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, Boolean, Index, text
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.assignment_enums import AssignmentStatus

_ACTIVE_ONLY = text("status = 'ACTIVE'")

# Index name per exclusive resource, used to name the conflicting resource
# when the storage layer rejects a write.
ACTIVE_INDEX_BY_RESOURCE = {
    "bus": "uq_assignments_active_bus",
    "driver": "uq_assignments_active_driver",
    "conductor": "uq_assignments_active_conductor",
}


class Assignment(Base):
    """
    Assignment model.

    Created ACTIVE, then terminalized to COMPLETED or CANCELLED. Never deleted.
    """
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    bus_id = Column(Integer, ForeignKey('buses.id'), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    conductor_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)

    # Status
    status = Column(Enum(AssignmentStatus), default=AssignmentStatus.ACTIVE, nullable=False, index=True)

    # Physical progress along the route
    current_station_id = Column(Integer, ForeignKey('stations.id'), nullable=True, index=True)
    from_station_id = Column(Integer, ForeignKey('stations.id'), nullable=True)
    in_transit = Column(Boolean, default=False, nullable=False, index=True)

    # Timestamps
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Optimistic concurrency counter, bumped on every UPDATE
    version = Column(Integer, nullable=False)

    __table_args__ = (
        Index(ACTIVE_INDEX_BY_RESOURCE["bus"], 'bus_id', unique=True,
              postgresql_where=_ACTIVE_ONLY, sqlite_where=_ACTIVE_ONLY),
        Index(ACTIVE_INDEX_BY_RESOURCE["driver"], 'driver_id', unique=True,
              postgresql_where=_ACTIVE_ONLY, sqlite_where=_ACTIVE_ONLY),
        Index(ACTIVE_INDEX_BY_RESOURCE["conductor"], 'conductor_id', unique=True,
              postgresql_where=_ACTIVE_ONLY, sqlite_where=_ACTIVE_ONLY),
        Index('ix_assignments_status_created', 'status', 'created_at'),
    )

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    def __repr__(self):
        return f"<Assignment(id={self.id}, bus_id={self.bus_id}, status='{self.status.value}')>"
