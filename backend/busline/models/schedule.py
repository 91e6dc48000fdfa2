"""
Schedule model with seat inventory tracking.

Key design decisions:
- `available_seats` is the authoritative remaining inventory; it only moves
  through booking commits and cancellations
- `version` column enables optimistic locking for concurrent booking
- Index on (route_id, departure_time) for schedule search by day
"""

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String,
)
from sqlalchemy.orm import relationship

from busline.db.base import Base


class Schedule(Base):
    __tablename__ = "schedules"

    id = Column(String(36), primary_key=True)
    bus_id = Column(String(36), ForeignKey("buses.id"), nullable=False, index=True)
    route_id = Column(String(36), ForeignKey("routes.id"), nullable=False)
    departure_time = Column(DateTime(timezone=True), nullable=False)
    arrival_time = Column(DateTime(timezone=True), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    available_seats = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="scheduled")
    is_optimized = Column(Boolean, nullable=False, default=False)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    bus = relationship("Bus", lazy="selectin")
    route = relationship("Route", lazy="selectin")

    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="check_available_seats_non_negative"),
        CheckConstraint("price >= 0", name="check_price_non_negative"),
        CheckConstraint("arrival_time > departure_time", name="check_arrival_after_departure"),
        CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed', 'cancelled')",
            name="check_schedule_status",
        ),
        Index("ix_schedules_route_departure", "route_id", "departure_time"),
    )

    def __repr__(self) -> str:
        return f"<Schedule(id={self.id}, bus={self.bus_id}, available={self.available_seats})>"
