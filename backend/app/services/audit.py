"""
Audit logging service for tracking committed workflow changes.

Audit rows are written after the workflow change has committed, in their
own transaction. A failed audit write never undoes or fails the change it
describes; it is reported next to the delivery warnings instead.
"""

import logging
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from backend.app.models.audit_log import AuditLog

logger = logging.getLogger("bus_clearance.audit")


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    ASSIGNMENT_COMPLETED = "ASSIGNMENT_COMPLETED"
    ASSIGNMENT_CANCELLED = "ASSIGNMENT_CANCELLED"
    ASSIGNMENT_POSITION_UPDATED = "ASSIGNMENT_POSITION_UPDATED"

    REQUEST_SUBMITTED = "REQUEST_SUBMITTED"
    REQUEST_APPROVED = "REQUEST_APPROVED"
    REQUEST_REJECTED = "REQUEST_REJECTED"


async def log_event(
    db: AsyncSession,
    action: str,
    entity_type: str,
    entity_id: int,
    actor_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Log a workflow event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        entity_type: "assignment" or "request"
        entity_id: ID of the affected entity
        actor_id: ID of user performing the action, when known
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def record_audit(
    db: AsyncSession,
    warnings: List[str],
    action: str,
    entity_type: str,
    entity_id: int,
    actor_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """Write an audit row for a committed change; failures land in ``warnings``."""
    try:
        return await log_event(db, action, entity_type, entity_id, actor_id, metadata)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning(
            "Audit write failed",
            extra={"action": action, "entity_type": entity_type, "entity_id": entity_id, "error": repr(exc)}
        )
        warnings.append(f"{action} not recorded in audit log: {exc.__class__.__name__}")
        return None


async def get_entity_history(
    db: AsyncSession,
    entity_type: str,
    entity_id: int,
    limit: int = 100,
) -> List[AuditLog]:
    """Audit entries for one entity, newest first."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
        .limit(limit)
    )
    return list(result.scalars().all())
