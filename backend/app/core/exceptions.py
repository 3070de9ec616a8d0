"""
Custom exceptions and error handlers for consistent error responses.

Domain failures of the assignment and clearance workflow are raised as
AppException subclasses. Each carries the violated invariant and the
identifying keys of the conflicting resource in ``details`` so the HTTP
layer (or any other caller) can decide whether to retry.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("bus_clearance.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(AppException):
    """Raised when a referenced entity does not exist."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"invariant": "reference_exists", "resource": resource, "id": resource_id}
        )


class RoleMismatchError(AppException):
    """Raised when an actor or referenced party has the wrong role."""

    def __init__(self, party: str, user_id: Any, expected: list, actual: str):
        super().__init__(
            message=f"{party} {user_id} must have role {' or '.join(expected)}, got {actual}",
            error_code="ERR_ROLE_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "invariant": "role_matches",
                "party": party,
                "id": user_id,
                "expected_roles": expected,
                "actual_role": actual,
            }
        )


class ResourceBusyError(AppException):
    """Raised when a bus, driver or conductor already backs an ACTIVE assignment."""

    def __init__(self, resource: str, resource_id: Any, assignment_id: Any = None, reason: str = "active_assignment"):
        if reason == "locked":
            message = f"{resource.capitalize()} {resource_id} is being assigned by another request"
        else:
            message = f"{resource.capitalize()} {resource_id} already has an active assignment"
        super().__init__(
            message=message,
            error_code="ERR_BUSY_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "invariant": "single_active_assignment",
                "resource": resource,
                "id": resource_id,
                "assignment_id": assignment_id,
                "reason": reason,
            }
        )


class InvalidStateError(AppException):
    """Raised when an operation is not valid for the entity's current status."""

    def __init__(self, resource: str, resource_id: Any, current_status: str, required_status: str):
        super().__init__(
            message=f"{resource} {resource_id} is {current_status}, operation requires {required_status}",
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "invariant": "status_allows_operation",
                "resource": resource,
                "id": resource_id,
                "current_status": current_status,
                "required_status": required_status,
            }
        )


class InvalidTransitionError(AppException):
    """Raised when a requested status change is not in the allowed set."""

    def __init__(self, resource: str, resource_id: Any, from_status: str, to_status: str):
        super().__init__(
            message=f"Cannot move {resource} {resource_id} from {from_status} to {to_status}",
            error_code="ERR_TRANSITION_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "invariant": "allowed_transition",
                "resource": resource,
                "id": resource_id,
                "from": from_status,
                "to": to_status,
            }
        )


class StationNotOnRouteError(AppException):
    """Raised when a request's station is not a stop of the assignment's route."""

    def __init__(self, station_id: Any, route_id: Any, assignment_id: Any):
        super().__init__(
            message=f"Station {station_id} is not a stop on route {route_id}",
            error_code="ERR_ROUTE_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "invariant": "station_on_route",
                "station_id": station_id,
                "route_id": route_id,
                "assignment_id": assignment_id,
            }
        )


class AlreadyResolvedError(AppException):
    """Raised when resolving a request that already left PENDING."""

    def __init__(self, request_id: Any, current_status: str):
        super().__init__(
            message=f"Request {request_id} already resolved with status: {current_status}",
            error_code="ERR_RESOLVED_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "invariant": "one_way_resolution",
                "id": request_id,
                "current_status": current_status,
            }
        )


class ValidationError(AppException):
    """Raised for field-level failures such as a missing rejection reason."""

    def __init__(self, field: str, message: str):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"invariant": "field_valid", "field": field}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
