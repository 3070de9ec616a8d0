"""
Database seeding script for a demo network.

Creates three stations on one route, a bus, a driver, a conductor, an
officer and an admin. Run this script after the database is set up.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.bus import Bus
from backend.app.models.enums import UserRole
from backend.app.models.route import Route, RouteStop
from backend.app.models.station import Station
from backend.app.models.user import User
# Registered with Base so create_all builds every table
from backend.app.models.assignment import Assignment
from backend.app.models.clearance_request import ClearanceRequest
from backend.app.models.audit_log import AuditLog
from backend.app.services.catalog import RouteSnapshot, StopRef

STATIONS = [
    # name, code, type, minutes from origin, km from origin
    ("Central Terminal", "CTL", "terminal", 0, 0.0),
    ("Market Square", "MKT", "intermediate", 25, 12.5),
    ("Airport", "APT", "terminal", 60, 30.0),
]

USERS = [
    ("Ada Admin", "admin@busclearance.dev", UserRole.ADMIN, "EMP-001", None),
    ("Olu Officer", "officer@busclearance.dev", UserRole.OFFICER, "EMP-002", None),
    ("Dev Driver", "driver@busclearance.dev", UserRole.DRIVER, "EMP-003", "DL-0042"),
    ("Cal Conductor", "conductor@busclearance.dev", UserRole.CONDUCTOR, "EMP-004", None),
]


async def seed_demo_data():
    """
    Seed a minimal network.

    Creates:
    - 3 stations and 1 route through them
    - 1 bus
    - ADMIN, OFFICER, DRIVER and CONDUCTOR users
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting demo data seeding...")

        result = await db.execute(select(Route).where(Route.name == "CTL-APT Express"))
        if result.scalar_one_or_none():
            print("ℹ️  Demo route already exists, skipping seeding")
            return

        stations = [Station(name=name, code=code, station_type=kind) for name, code, kind, _, _ in STATIONS]
        db.add_all(stations)
        await db.flush()

        route = Route(
            name="CTL-APT Express",
            origin_station_id=stations[0].id,
            destination_station_id=stations[-1].id,
            total_distance=STATIONS[-1][4],
            estimated_duration=STATIONS[-1][3],
        )
        db.add(route)
        await db.flush()

        stops = [
            RouteStop(route_id=route.id, station_id=station.id, order=order, estimated_time=minutes, distance=km)
            for order, (station, (_, _, _, minutes, km)) in enumerate(zip(stations, STATIONS), start=1)
        ]
        snapshot = RouteSnapshot(
            id=route.id,
            origin_station_id=route.origin_station_id,
            destination_station_id=route.destination_station_id,
            stops=tuple(StopRef(station_id=s.station_id, order=s.order) for s in stops),
        )
        problems = snapshot.validate_topology()
        if problems:
            print(f"❌ Demo route is malformed: {'; '.join(problems)}")
            await db.rollback()
            return
        db.add_all(stops)
        print(f"✅ Created route {route.name} with {len(stops)} stops")

        db.add(Bus(registration_number="KA-01-F-1001", capacity=52))
        print("✅ Created bus KA-01-F-1001")

        for name, email, role, employee_id, license_number in USERS:
            db.add(User(
                name=name,
                email=email,
                role=role,
                employee_id=employee_id,
                license_number=license_number,
                is_active=True,
            ))
            print(f"✅ Created {role.value.upper()} user ({email})")

        await db.commit()

        print("\n🎉 Demo data seeding completed successfully!")


if __name__ == "__main__":
    asyncio.run(seed_demo_data())
