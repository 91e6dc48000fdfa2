"""
Booking model representing a user's seat reservation on a schedule.

Key design decisions:
- Status field allows cancellation without deleting records
- `seat_numbers` keeps the booked labels as history, even after cancellation
- `seat_assignments` holds one row per seat currently held; its primary key
  (schedule_id, seat_label) makes double-selling a seat impossible at the
  database level. Rows are deleted when the booking is cancelled.
"""

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import relationship

from busline.db.base import Base


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    schedule_id = Column(String(36), ForeignKey("schedules.id"), nullable=False, index=True)
    seat_numbers = Column(JSON, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default="confirmed")
    passenger_details = Column(JSON, nullable=False)
    payment_status = Column(String(20), nullable=False, default="completed")
    transaction_id = Column(String(64), nullable=True)
    booked_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    schedule = relationship("Schedule", lazy="selectin")

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="check_booking_amount_non_negative"),
        CheckConstraint("status IN ('confirmed', 'cancelled', 'completed')", name="check_booking_status"),
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed')", name="check_payment_status"
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, schedule={self.schedule_id}, status={self.status})>"


class SeatAssignment(Base):
    __tablename__ = "seat_assignments"

    schedule_id = Column(String(36), ForeignKey("schedules.id"), primary_key=True)
    seat_label = Column(String(16), primary_key=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<SeatAssignment(schedule={self.schedule_id}, seat={self.seat_label}, booking={self.booking_id})>"
