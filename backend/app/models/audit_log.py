"""
Audit Log Database Model.

Keeps a trail of committed assignment and clearance changes.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking workflow events.

    Events logged:
    - ASSIGNMENT_CREATED / ASSIGNMENT_COMPLETED / ASSIGNMENT_CANCELLED
    - ASSIGNMENT_POSITION_UPDATED
    - REQUEST_SUBMITTED / REQUEST_APPROVED / REQUEST_REJECTED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system or unauthenticated actions)
    actor_id = Column(Integer, index=True, nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which entity was affected
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, index=True, nullable=False)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
