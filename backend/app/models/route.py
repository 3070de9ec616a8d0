"""
Route and Route Stop database models.

A route is an ordered sequence of stops between an origin and a
destination station.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.app.db.session import Base


class Route(Base):
    """
    Route model.

    The first stop's station is the origin and the last stop's station is
    the destination.
    """
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), unique=True, nullable=False)

    origin_station_id = Column(Integer, ForeignKey('stations.id'), nullable=False, index=True)
    destination_station_id = Column(Integer, ForeignKey('stations.id'), nullable=False, index=True)

    total_distance = Column(Float, nullable=True)
    estimated_duration = Column(Integer, nullable=True)  # minutes

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    stops = relationship(
        "RouteStop",
        order_by="RouteStop.order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Route(id={self.id}, name='{self.name}')>"


class RouteStop(Base):
    """
    Route Stop model.

    Orders run 1, 2, 3, ... and a station appears at most once per route.
    """
    __tablename__ = "route_stops"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)
    station_id = Column(Integer, ForeignKey('stations.id'), nullable=False, index=True)

    order = Column(Integer, nullable=False)
    estimated_time = Column(Integer, default=0, nullable=False)  # minutes from origin
    distance = Column(Float, default=0, nullable=False)  # km from origin

    __table_args__ = (
        UniqueConstraint('route_id', 'station_id', name='uq_route_stops_station'),
        UniqueConstraint('route_id', 'order', name='uq_route_stops_order'),
    )

    def __repr__(self):
        return f"<RouteStop(route_id={self.route_id}, station_id={self.station_id}, order={self.order})>"
