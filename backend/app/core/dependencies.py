"""
Workflow manager dependencies for FastAPI.

Each request gets managers bound to its own database session; Redis is
shared through ``get_redis``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.redis_client import get_redis
from backend.app.db.session import get_db
from backend.app.domain.assignments.lifecycle import AssignmentLifecycleManager
from backend.app.domain.clearance.workflow import ClearanceWorkflowManager
from backend.app.services.catalog import RouteCatalog
from backend.app.services.directory import Directory
from backend.app.services.notifier import RedisNotifier
from backend.app.services.resource_locks import ResourceLocker


async def get_notifier(redis=Depends(get_redis)) -> RedisNotifier:
    return RedisNotifier(redis)


async def get_assignment_manager(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    notifier: RedisNotifier = Depends(get_notifier),
) -> AssignmentLifecycleManager:
    """Assignment lifecycle manager for the current request."""
    return AssignmentLifecycleManager(
        db=db,
        directory=Directory(db),
        catalog=RouteCatalog(db),
        notifier=notifier,
        locker=ResourceLocker(redis),
    )


async def get_clearance_manager(
    db: AsyncSession = Depends(get_db),
    notifier: RedisNotifier = Depends(get_notifier),
) -> ClearanceWorkflowManager:
    """Clearance workflow manager for the current request."""
    return ClearanceWorkflowManager(
        db=db,
        directory=Directory(db),
        catalog=RouteCatalog(db),
        notifier=notifier,
    )
