"""
Route, bus and live bus location models.

Key design decisions:
- Routes and buses are never deleted; `is_active` is flipped instead so
  schedules and bookings keep valid references
- One location row per bus (unique bus_id), updated in place on every report
"""

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, Numeric, String, func,
)

from busline.db.base import Base


class Route(Base):
    __tablename__ = "routes"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    from_location = Column(String(255), nullable=False)
    to_location = Column(String(255), nullable=False)
    distance = Column(Numeric(8, 2), nullable=False)
    estimated_duration = Column(Integer, nullable=False)  # minutes
    stops = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("estimated_duration > 0", name="check_route_duration_positive"),
    )

    def __repr__(self) -> str:
        return f"<Route(id={self.id}, {self.from_location} -> {self.to_location})>"


class Bus(Base):
    __tablename__ = "buses"

    id = Column(String(36), primary_key=True)
    number = Column(String(32), unique=True, index=True, nullable=False)
    operator = Column(String(255), nullable=False)
    capacity = Column(Integer, nullable=False)
    amenities = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_bus_capacity_positive"),
    )

    def __repr__(self) -> str:
        return f"<Bus(id={self.id}, number={self.number}, capacity={self.capacity})>"


class BusLocation(Base):
    __tablename__ = "bus_locations"

    id = Column(String(36), primary_key=True)
    bus_id = Column(String(36), ForeignKey("buses.id"), unique=True, nullable=False)
    schedule_id = Column(String(36), ForeignKey("schedules.id"), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    current_stop = Column(String(255), nullable=True)
    occupancy = Column(Integer, nullable=False, default=0)
    delay = Column(Integer, nullable=False, default=0)  # minutes
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("occupancy >= 0", name="check_occupancy_non_negative"),
        CheckConstraint("delay >= 0", name="check_delay_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<BusLocation(bus={self.bus_id}, lat={self.latitude}, lng={self.longitude})>"
