"""
Test data and manager builders shared by the test modules.
"""

from datetime import datetime, timezone
from types import SimpleNamespace

from backend.app.domain.assignments.lifecycle import AssignmentLifecycleManager
from backend.app.domain.clearance.workflow import ClearanceWorkflowManager
from backend.app.models.bus import Bus
from backend.app.models.enums import UserRole
from backend.app.models.route import Route, RouteStop
from backend.app.models.station import Station
from backend.app.models.user import User
from backend.app.services.catalog import RouteCatalog
from backend.app.services.directory import Directory
from backend.app.services.resource_locks import ResourceLocker

START_TIME = datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)


def build_assignment_manager(db, redis, notifier, **locker_options):
    return AssignmentLifecycleManager(
        db=db,
        directory=Directory(db),
        catalog=RouteCatalog(db),
        notifier=notifier,
        locker=ResourceLocker(redis, **locker_options),
    )


def build_clearance_manager(db, notifier):
    return ClearanceWorkflowManager(
        db=db,
        directory=Directory(db),
        catalog=RouteCatalog(db),
        notifier=notifier,
    )


async def create_assignment(manager, network, **overrides):
    params = dict(
        bus_id=network.bus,
        driver_id=network.driver,
        conductor_id=network.conductor,
        route_id=network.route,
        start_time=START_TIME,
    )
    params.update(overrides)
    return await manager.create(**params)


async def seed_network(session) -> SimpleNamespace:
    """
    Three stations on one route (A -> B -> C), one off-route station (D),
    two buses, two drivers, two conductors, an officer and an admin.
    """
    stations = [
        Station(name="Central Terminal", code="A", station_type="terminal"),
        Station(name="Market Square", code="B"),
        Station(name="Airport", code="C", station_type="terminal"),
        Station(name="Depot North", code="D", station_type="depot"),
    ]
    session.add_all(stations)
    await session.flush()
    a, b, c, d = stations

    route = Route(
        name="A-C Express",
        origin_station_id=a.id,
        destination_station_id=c.id,
        total_distance=30.0,
        estimated_duration=60,
    )
    session.add(route)
    await session.flush()
    session.add_all([
        RouteStop(route_id=route.id, station_id=a.id, order=1, estimated_time=0, distance=0),
        RouteStop(route_id=route.id, station_id=b.id, order=2, estimated_time=25, distance=12.5),
        RouteStop(route_id=route.id, station_id=c.id, order=3, estimated_time=60, distance=30.0),
    ])

    buses = [Bus(registration_number="KA-01-1001", capacity=52), Bus(registration_number="KA-01-1002", capacity=40)]
    users = {
        "driver": User(name="Dev Driver", email="driver1@test.com", role=UserRole.DRIVER, license_number="DL-1"),
        "driver2": User(name="Dana Driver", email="driver2@test.com", role=UserRole.DRIVER, license_number="DL-2"),
        "conductor": User(name="Cal Conductor", email="conductor1@test.com", role=UserRole.CONDUCTOR),
        "conductor2": User(name="Cora Conductor", email="conductor2@test.com", role=UserRole.CONDUCTOR),
        "officer": User(name="Olu Officer", email="officer@test.com", role=UserRole.OFFICER),
        "admin": User(name="Ada Admin", email="admin@test.com", role=UserRole.ADMIN),
    }
    session.add_all(buses)
    session.add_all(users.values())
    await session.commit()

    return SimpleNamespace(
        station_a=a.id,
        station_b=b.id,
        station_c=c.id,
        station_d=d.id,
        route=route.id,
        bus=buses[0].id,
        bus2=buses[1].id,
        **{name: user.id for name, user in users.items()},
    )
