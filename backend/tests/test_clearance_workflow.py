"""
Clearance workflow tests.

Submitting requests against the route, resolving them once, and the
assignment position changes an approval causes.
"""

import json

import pydantic
import pytest

from backend.app.core.config import REJECTION_REASON_COLUMN_LENGTH, Settings
from backend.app.core.exceptions import (
    AlreadyResolvedError,
    InvalidStateError,
    NotFoundError,
    RoleMismatchError,
    StationNotOnRouteError,
    ValidationError,
)
from backend.app.domain.clearance.workflow import ClearanceWorkflowManager
from backend.app.models.assignment_enums import AssignmentStatus, Decision, RequestStatus, RequestType
from backend.app.models.clearance_request import ClearanceRequest
from backend.app.services.catalog import RouteCatalog
from backend.app.services.directory import Directory


async def submit(clearance, assignment, station_id, request_type=RequestType.DEPARTURE, requested_by=None):
    return await clearance.submit(
        assignment_id=assignment.id,
        station_id=station_id,
        request_type=request_type,
        requested_by=requested_by or assignment.driver_id,
    )


@pytest.mark.asyncio
async def test_submit_creates_pending_request(clearance, active_assignment, network, redis_client):
    request = await submit(clearance, active_assignment, network.station_a)

    assert request.status == RequestStatus.PENDING
    assert request.requested_at is not None
    assert request.approved_at is None and request.rejected_at is None
    assert clearance.deduplicated is False

    channels = redis_client.channels()
    assert f"test:station:{network.station_a}" in channels
    assert f"test:assignment:{active_assignment.id}" in channels
    assert f"test:user:{network.driver}" in channels


@pytest.mark.asyncio
async def test_submit_for_station_off_route(clearance, active_assignment, network):
    assignment_id = active_assignment.id

    with pytest.raises(StationNotOnRouteError) as exc_info:
        await submit(clearance, active_assignment, network.station_d)

    details = exc_info.value.details
    assert details["station_id"] == network.station_d
    assert details["route_id"] == network.route
    assert details["assignment_id"] == assignment_id

    requests = await clearance.for_assignment(assignment_id)
    assert requests == []


@pytest.mark.asyncio
async def test_submit_for_unknown_assignment(clearance, network):
    with pytest.raises(NotFoundError) as exc_info:
        await clearance.submit(9999, network.station_a, RequestType.DEPARTURE, network.driver)

    assert exc_info.value.details["resource"] == "Assignment"


@pytest.mark.asyncio
async def test_submit_for_unknown_requester(clearance, active_assignment, network):
    with pytest.raises(NotFoundError) as exc_info:
        await submit(clearance, active_assignment, network.station_a, requested_by=9999)

    assert exc_info.value.details["resource"] == "User"


@pytest.mark.asyncio
async def test_submit_on_finished_assignment(clearance, assignments, active_assignment, network):
    await assignments.transition(active_assignment.id, AssignmentStatus.COMPLETED)

    with pytest.raises(InvalidStateError) as exc_info:
        await submit(clearance, active_assignment, network.station_b)

    assert exc_info.value.details["current_status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_conductor_can_submit(clearance, active_assignment, network):
    request = await submit(
        clearance, active_assignment, network.station_c, RequestType.ARRIVAL, requested_by=network.conductor
    )

    assert request.requested_by == network.conductor


@pytest.mark.asyncio
async def test_identical_pending_submit_returns_existing(clearance, active_assignment, network, redis_client):
    first = await submit(clearance, active_assignment, network.station_a)
    published = len(redis_client.published)

    again = await submit(clearance, active_assignment, network.station_a)

    assert again.id == first.id
    assert clearance.deduplicated is True
    assert len(redis_client.published) == published

    # A different direction is a different request
    arrival = await submit(clearance, active_assignment, network.station_a, RequestType.ARRIVAL)
    assert arrival.id != first.id


@pytest.mark.asyncio
async def test_resubmit_after_rejection_opens_new_request(clearance, active_assignment, network):
    first = await submit(clearance, active_assignment, network.station_a)
    await clearance.resolve(first.id, Decision.REJECT, network.officer, "Brake check pending")

    second = await submit(clearance, active_assignment, network.station_a)

    assert second.id != first.id
    assert second.status == RequestStatus.PENDING


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_approve_departure_puts_bus_in_transit(clearance, assignments, active_assignment, network, redis_client):
    request = await submit(clearance, active_assignment, network.station_a)

    approved = await clearance.resolve(request.id, Decision.APPROVE, network.officer)

    assert approved.status == RequestStatus.APPROVED
    assert approved.approved_by == network.officer
    assert approved.approved_at is not None
    assert approved.rejected_by is None

    assignment = await assignments.get(active_assignment.id)
    assert assignment.in_transit is True
    assert assignment.from_station_id == network.station_a
    assert assignment.current_station_id is None

    events = [json.loads(message)["event"] for _, message in redis_client.published]
    assert "request:approved" in events


@pytest.mark.asyncio
async def test_approve_arrival_places_bus_at_station(clearance, assignments, active_assignment, network):
    departure = await submit(clearance, active_assignment, network.station_a)
    await clearance.resolve(departure.id, Decision.APPROVE, network.officer)

    arrival = await submit(clearance, active_assignment, network.station_b, RequestType.ARRIVAL)
    await clearance.resolve(arrival.id, Decision.APPROVE, network.admin)

    assignment = await assignments.get(active_assignment.id)
    assert assignment.in_transit is False
    assert assignment.current_station_id == network.station_b
    assert assignment.from_station_id == network.station_a


@pytest.mark.asyncio
async def test_reject_leaves_assignment_unchanged(clearance, assignments, active_assignment, network):
    request = await submit(clearance, active_assignment, network.station_a)

    rejected = await clearance.resolve(request.id, Decision.REJECT, network.officer, "  Tyre pressure low  ")

    assert rejected.status == RequestStatus.REJECTED
    assert rejected.rejected_by == network.officer
    assert rejected.rejected_at is not None
    assert rejected.rejection_reason == "Tyre pressure low"
    assert rejected.approved_by is None

    assignment = await assignments.get(active_assignment.id)
    assert assignment.in_transit is False
    assert assignment.current_station_id is None
    assert assignment.from_station_id is None


@pytest.mark.asyncio
async def test_second_resolution_is_refused(clearance, active_assignment, network):
    request = await submit(clearance, active_assignment, network.station_a)
    request_id = request.id
    await clearance.resolve(request_id, Decision.APPROVE, network.officer)

    with pytest.raises(AlreadyResolvedError) as exc_info:
        await clearance.resolve(request_id, Decision.REJECT, network.admin, "Too late")

    assert exc_info.value.details["current_status"] == "APPROVED"
    unchanged = await clearance.get(request_id)
    assert unchanged.status == RequestStatus.APPROVED
    assert unchanged.rejection_reason is None


@pytest.mark.asyncio
@pytest.mark.parametrize("actor", ["driver", "conductor"])
async def test_crew_cannot_resolve(clearance, active_assignment, network, actor):
    request = await submit(clearance, active_assignment, network.station_a)
    request_id = request.id

    with pytest.raises(RoleMismatchError) as exc_info:
        await clearance.resolve(request_id, Decision.APPROVE, getattr(network, actor))

    assert exc_info.value.details["expected_roles"] == ["officer", "admin"]
    assert (await clearance.get(request_id)).status == RequestStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.parametrize("reason", [None, "", "   ", "x" * 501])
async def test_reject_requires_valid_reason(clearance, active_assignment, network, reason):
    request = await submit(clearance, active_assignment, network.station_a)
    request_id = request.id

    with pytest.raises(ValidationError) as exc_info:
        await clearance.resolve(request_id, Decision.REJECT, network.officer, reason)

    assert exc_info.value.details["field"] == "reason"
    assert (await clearance.get(request_id)).status == RequestStatus.PENDING


@pytest.mark.asyncio
async def test_reject_accepts_reason_at_limit(clearance, active_assignment, network):
    request = await submit(clearance, active_assignment, network.station_a)

    rejected = await clearance.resolve(request.id, Decision.REJECT, network.officer, "x" * 500)

    assert len(rejected.rejection_reason) == 500


def test_reason_limit_cannot_exceed_column_width():
    assert ClearanceRequest.__table__.c.rejection_reason.type.length == REJECTION_REASON_COLUMN_LENGTH

    with pytest.raises(pydantic.ValidationError):
        Settings(rejection_reason_max_length=REJECTION_REASON_COLUMN_LENGTH + 1)


@pytest.mark.asyncio
async def test_oversized_reason_limit_is_clamped_to_column(db_session, notifier, active_assignment, network):
    clearance = ClearanceWorkflowManager(
        db=db_session,
        directory=Directory(db_session),
        catalog=RouteCatalog(db_session),
        notifier=notifier,
        reason_max_length=2000,
    )
    request = await submit(clearance, active_assignment, network.station_a)
    request_id = request.id

    with pytest.raises(ValidationError):
        await clearance.resolve(request_id, Decision.REJECT, network.officer, "x" * (REJECTION_REASON_COLUMN_LENGTH + 1))

    assert (await clearance.get(request_id)).status == RequestStatus.PENDING


@pytest.mark.asyncio
async def test_approve_after_assignment_cancelled(clearance, assignments, active_assignment, network):
    request = await submit(clearance, active_assignment, network.station_a)
    request_id = request.id
    await assignments.transition(active_assignment.id, AssignmentStatus.CANCELLED)

    with pytest.raises(InvalidStateError):
        await clearance.resolve(request_id, Decision.APPROVE, network.officer)

    assert (await clearance.get(request_id)).status == RequestStatus.PENDING


@pytest.mark.asyncio
async def test_reject_after_assignment_cancelled(clearance, assignments, active_assignment, network):
    request = await submit(clearance, active_assignment, network.station_a)
    await assignments.transition(active_assignment.id, AssignmentStatus.CANCELLED)

    rejected = await clearance.resolve(request.id, Decision.REJECT, network.officer, "Trip cancelled")

    assert rejected.status == RequestStatus.REJECTED


@pytest.mark.asyncio
async def test_resolve_unknown_request(clearance, network):
    with pytest.raises(NotFoundError):
        await clearance.resolve(9999, Decision.APPROVE, network.officer)


# ---------------------------------------------------------------------------
# Dashboards
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_station_dashboard_lists_pending_only(clearance, active_assignment, network):
    first = await submit(clearance, active_assignment, network.station_a)
    second = await submit(clearance, active_assignment, network.station_a, RequestType.ARRIVAL)
    await clearance.resolve(first.id, Decision.APPROVE, network.officer)

    pending, total = await clearance.pending_for_station(network.station_a)
    assert total == 1
    assert [r.id for r in pending] == [second.id]

    everything, total = await clearance.pending_for_station(network.station_a, status=None)
    assert total == 2

    elsewhere, total = await clearance.pending_for_station(network.station_b)
    assert total == 0


@pytest.mark.asyncio
async def test_assignment_requests_filter_by_status(clearance, active_assignment, network):
    first = await submit(clearance, active_assignment, network.station_a)
    await submit(clearance, active_assignment, network.station_b, RequestType.ARRIVAL)
    await clearance.resolve(first.id, Decision.REJECT, network.officer, "Doors faulty")

    rejected = await clearance.for_assignment(active_assignment.id, RequestStatus.REJECTED)
    assert [r.id for r in rejected] == [first.id]
    assert len(await clearance.for_assignment(active_assignment.id)) == 2
