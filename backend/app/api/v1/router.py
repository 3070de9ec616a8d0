"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import assignments, clearance_requests

router = APIRouter()

# Assignment lifecycle
router.include_router(assignments.router)
router.include_router(assignments.user_router)

# Clearance workflow
router.include_router(clearance_requests.router)
router.include_router(clearance_requests.station_router)
