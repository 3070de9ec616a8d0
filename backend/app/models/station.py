"""
Station database model.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from backend.app.db.session import Base


class Station(Base):
    """
    Station model.

    A physical stop where officers grant departure and arrival clearance.
    """
    __tablename__ = "stations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), unique=True, nullable=False)
    code = Column(String(20), unique=True, nullable=False, index=True)
    station_type = Column(String(50), default="intermediate", nullable=False)  # terminal, intermediate, depot

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Station(id={self.id}, code='{self.code}', active={self.is_active})>"
