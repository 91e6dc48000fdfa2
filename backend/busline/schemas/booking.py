"""
Pydantic schemas for booking-related request/response validation.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, EmailStr, Field, field_validator

from busline.schemas.base import CamelModel, UTCDateTime
from busline.schemas.schedule import ScheduleWithDetails

MAX_SEATS_PER_BOOKING = 10
MAX_SEAT_LABEL_LENGTH = 16


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Bookings in these states hold their seats
ACTIVE_BOOKING_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.COMPLETED})


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PassengerDetails(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=1, max_length=32)
    email: EmailStr


def normalise_seat_labels(labels: list[str]) -> list[str]:
    """Strip labels and reject blanks or repeats within one request."""
    cleaned = [label.strip() for label in labels]
    if any(not label for label in cleaned):
        raise ValueError("seat labels must be non-empty")
    if any(len(label) > MAX_SEAT_LABEL_LENGTH for label in cleaned):
        raise ValueError(f"seat labels must be at most {MAX_SEAT_LABEL_LENGTH} characters")
    if len(set(cleaned)) != len(cleaned):
        raise ValueError("seat labels must be unique")
    return cleaned


class BookingCreate(CamelModel):
    """Client booking request; the user id comes from the resolved identity."""
    schedule_id: str
    seat_numbers: list[str] = Field(
        ...,
        min_length=1,
        max_length=MAX_SEATS_PER_BOOKING,
        validation_alias=AliasChoices("seatNumbers", "seatLabels", "seat_numbers"),
    )
    passenger_details: PassengerDetails

    @field_validator("seat_numbers")
    @classmethod
    def check_seats(cls, value: list[str]) -> list[str]:
        return normalise_seat_labels(value)


class NewBooking(CamelModel):
    """Input to the store's atomic commit."""
    user_id: str
    schedule_id: str
    seat_numbers: list[str] = Field(..., min_length=1)
    passenger_details: PassengerDetails
    payment_status: PaymentStatus = PaymentStatus.COMPLETED
    transaction_id: Optional[str] = None
    # When set, the commit fails if the schedule price moved since the quote
    quoted_price: Optional[Decimal] = None

    @field_validator("seat_numbers")
    @classmethod
    def check_seats(cls, value: list[str]) -> list[str]:
        return normalise_seat_labels(value)


class Booking(CamelModel):
    id: str
    user_id: str
    schedule_id: str
    seat_numbers: list[str]
    total_amount: Decimal
    status: BookingStatus = BookingStatus.CONFIRMED
    passenger_details: PassengerDetails
    payment_status: PaymentStatus = PaymentStatus.COMPLETED
    transaction_id: Optional[str] = None
    booked_at: UTCDateTime

    @property
    def holds_seats(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES


class BookingWithDetails(Booking):
    schedule: ScheduleWithDetails


class BookingStatusUpdate(CamelModel):
    status: BookingStatus


class PaymentRequest(CamelModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    booking_id: Optional[str] = None


class PaymentResult(CamelModel):
    success: bool
    transaction_id: Optional[str] = None
    message: str
