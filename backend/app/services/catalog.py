"""
Route Catalog - read-only access to routes and buses.

Routes are returned as immutable snapshots of their ordered stops. Station
membership is by exact station id, never by name or code.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.app.models.bus import Bus
from backend.app.models.route import Route
from backend.app.models.station import Station


@dataclass(frozen=True)
class StopRef:
    station_id: int
    order: int
    estimated_time: int = 0
    distance: float = 0.0


@dataclass(frozen=True)
class RouteSnapshot:
    id: int
    origin_station_id: int
    destination_station_id: int
    stops: Tuple[StopRef, ...] = field(default_factory=tuple)

    @property
    def station_ids(self) -> frozenset:
        return frozenset(stop.station_id for stop in self.stops)

    def has_station(self, station_id: int) -> bool:
        return station_id in self.station_ids

    def validate_topology(self) -> List[str]:
        """
        List the route shape problems, empty when the route is well formed.

        A route needs at least two stops, orders 1..n, no repeated station,
        the origin first and the destination last.
        """
        problems = []
        if self.origin_station_id == self.destination_station_id:
            problems.append("Origin and destination cannot be the same")
        if len(self.stops) < 2:
            problems.append("Route must have at least 2 stops (origin and destination)")
            return problems

        orders = sorted(stop.order for stop in self.stops)
        if orders != list(range(1, len(orders) + 1)):
            problems.append(
                f"Stop orders must be sequential starting from 1. Found {', '.join(map(str, orders))}"
            )

        station_ids = [stop.station_id for stop in self.stops]
        if len(station_ids) != len(set(station_ids)):
            problems.append("Stops cannot have duplicate stations")

        ordered = sorted(self.stops, key=lambda stop: stop.order)
        if ordered[0].station_id != self.origin_station_id:
            problems.append("First stop must match origin station")
        if ordered[-1].station_id != self.destination_station_id:
            problems.append("Last stop must match destination station")
        return problems


@dataclass(frozen=True)
class BusRef:
    id: int
    registration_number: str


class RouteCatalog:
    """Route and bus lookups backed by the routes/route_stops/buses tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_route(self, route_id: int) -> Optional[RouteSnapshot]:
        result = await self.db.execute(
            select(Route)
            .where(Route.id == route_id)
            .options(selectinload(Route.stops))
            .execution_options(populate_existing=True)
        )
        route = result.scalar_one_or_none()
        if route is None:
            return None
        return RouteSnapshot(
            id=route.id,
            origin_station_id=route.origin_station_id,
            destination_station_id=route.destination_station_id,
            stops=tuple(
                StopRef(
                    station_id=stop.station_id,
                    order=stop.order,
                    estimated_time=stop.estimated_time,
                    distance=stop.distance,
                )
                for stop in route.stops
            ),
        )

    async def station_exists(self, station_id: int) -> bool:
        result = await self.db.execute(select(Station.id).where(Station.id == station_id))
        return result.scalar_one_or_none() is not None

    async def get_bus(self, bus_id: int) -> Optional[BusRef]:
        result = await self.db.execute(
            select(Bus.id, Bus.registration_number).where(Bus.id == bus_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return BusRef(id=row.id, registration_number=row.registration_number)
