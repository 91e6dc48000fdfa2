"""
Booking endpoints with concurrency-safe seat reservation.
"""

from fastapi import APIRouter, Depends, status

from busline.api.deps import get_identity, get_services
from busline.schemas.booking import Booking, BookingCreate, BookingStatusUpdate, BookingWithDetails
from busline.schemas.user import Identity
from busline.services.bootstrap import Services

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=Booking, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    """
    Book seats on a schedule.

    The quoted amount is charged first; the seats are committed only after
    the payment succeeds. A commit that fails after payment is refunded.
    Failures are distinguishable by `code`: capacity_exceeded,
    seat_unavailable, schedule_not_bookable, payment_failed, validation_error.
    """
    return await services.bookings.checkout(identity, booking_data)


@router.get("/user", response_model=list[BookingWithDetails])
async def list_user_bookings(
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    """Get all bookings for the authenticated user, newest first."""
    return await services.bookings.list_user_bookings(identity)


@router.get("/{booking_id}", response_model=BookingWithDetails)
async def get_booking(
    booking_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.bookings.get_booking(identity, booking_id)


@router.delete("/{booking_id}", response_model=Booking)
async def cancel_booking(
    booking_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    """Cancel a booking and release its seats. Repeating the call is a no-op."""
    return await services.bookings.cancel_booking(identity, booking_id)


@router.patch("/{booking_id}/status", response_model=Booking)
async def update_booking_status(
    booking_id: str,
    update: BookingStatusUpdate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.bookings.update_status(identity, booking_id, update.status)
