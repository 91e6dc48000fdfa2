"""
Booking engine.

CONSISTENCY MODEL
=================

The inventory rules themselves (bookable status, seats left, seat labels not
held by another active booking) are evaluated by the store inside its
per-schedule critical section, so a commit is atomic with respect to every
other commit or cancellation on the same schedule:

  - MemoryStore: one asyncio.Lock per schedule
  - SqlStore: conditional UPDATE (available_seats >= n, still bookable),
    plus a (schedule_id, seat_label) primary key for held seats

This service adds what sits around the commit:

  Checkout (POST /bookings):
    1. Quote: read the schedule, reject early if it obviously cannot succeed
    2. Charge the quoted amount (bounded by the payment timeout)
    3. Commit at the quoted price
    4. If the commit loses a race after the charge, refund and re-raise

  A failed or timed-out payment never calls the commit.

  Every committed state change is followed by a domain event on the hub
  (`booking_created`, `booking_cancelled`). Events are best effort; the store
  is the source of truth.
"""

import time
from decimal import Decimal
from typing import Optional, Union

from busline.core.errors import (
    DomainError, NotFoundError, PaymentFailedError, PermissionDeniedError,
)
from busline.core.logging import get_logger
from busline.core.metrics import booking_latency, record_booking_attempt, record_cancellation
from busline.core.security import require_admin
from busline.schemas.base import to_money
from busline.schemas.booking import (
    Booking,
    BookingCreate,
    BookingStatus,
    BookingWithDetails,
    NewBooking,
    PassengerDetails,
    PaymentStatus,
)
from busline.schemas.realtime import booking_cancelled, booking_created
from busline.schemas.schedule import Schedule
from busline.schemas.user import Identity
from busline.services.hub import SubscriptionHub
from busline.services.payment_service import PaymentService
from busline.store.base import EntityStore, check_commit, check_seat_clash, coerce

logger = get_logger(__name__)


class BookingService:

    def __init__(self, store: EntityStore, hub: SubscriptionHub, payments: PaymentService):
        self.store = store
        self.hub = hub
        self.payments = payments

    async def create_booking(
        self,
        user_id: str,
        schedule_id: str,
        seat_numbers: list[str],
        passenger_details: Union[PassengerDetails, dict],
        payment_status: PaymentStatus = PaymentStatus.COMPLETED,
        transaction_id: Optional[str] = None,
        quoted_price: Optional[Decimal] = None,
    ) -> Booking:
        """
        Atomically reserve `seat_numbers` on a schedule.

        Raises ValidationError, NotFoundError (ScheduleNotBookableError for a
        cancelled/completed schedule), CapacityExceededError or
        SeatConflictError. None of them leave partial state.
        """
        start = time.perf_counter()
        data = None
        try:
            data = coerce(NewBooking, {
                "user_id": user_id,
                "schedule_id": schedule_id,
                "seat_numbers": seat_numbers,
                "passenger_details": passenger_details,
                "payment_status": payment_status,
                "transaction_id": transaction_id,
                "quoted_price": quoted_price,
            })
            booking = await self.store.commit_booking(data)
        except DomainError as e:
            record_booking_attempt(e.code)
            logger.warning(
                "booking_rejected",
                user_id=user_id,
                schedule_id=schedule_id,
                seats=len(data.seat_numbers) if data else None,
                reason=e.code,
                detail=e.message,
            )
            raise
        finally:
            booking_latency.observe(time.perf_counter() - start)

        record_booking_attempt("success")
        logger.info(
            "booking_created",
            booking_id=booking.id,
            user_id=user_id,
            schedule_id=schedule_id,
            seats=len(booking.seat_numbers),
            total_amount=str(booking.total_amount),
        )
        await self.hub.broadcast(booking_created(booking.id, booking.schedule_id))
        return booking

    async def quote(self, schedule_id: str, seat_numbers: list[str]) -> tuple[Schedule, Decimal]:
        """Price a request and reject what would certainly fail at commit."""
        schedule = await self.store.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found")

        check_commit(schedule, len(seat_numbers))
        held = set()
        for booking in await self.store.list_schedule_bookings(schedule_id):
            if booking.holds_seats:
                held.update(booking.seat_numbers)
        check_seat_clash(seat_numbers, held)
        return schedule, to_money(schedule.price * len(seat_numbers))

    async def checkout(self, identity: Identity, request: BookingCreate) -> Booking:
        """Quote, charge, then commit. Refunds if the commit fails after payment."""
        try:
            schedule, amount = await self.quote(request.schedule_id, request.seat_numbers)
        except DomainError as e:
            record_booking_attempt(e.code)
            logger.warning(
                "booking_rejected",
                user_id=identity.id,
                schedule_id=request.schedule_id,
                reason=e.code,
                stage="quote",
            )
            raise

        try:
            transaction_id = await self.payments.charge(amount, reference=schedule.id)
        except PaymentFailedError:
            record_booking_attempt("payment_failed")
            raise

        try:
            return await self.create_booking(
                user_id=identity.id,
                schedule_id=schedule.id,
                seat_numbers=request.seat_numbers,
                passenger_details=request.passenger_details,
                payment_status=PaymentStatus.COMPLETED,
                transaction_id=transaction_id,
                quoted_price=schedule.price,
            )
        except DomainError:
            logger.info("booking_commit_failed_after_payment", transaction_id=transaction_id)
            try:
                await self.payments.refund(transaction_id)
            except Exception as e:
                # The commit error still goes back to the client
                logger.error("booking_refund_pending", transaction_id=transaction_id, error=str(e))
            raise

    async def cancel_booking(self, identity: Identity, booking_id: str) -> Booking:
        """Owner or admin. Cancelling an already-cancelled booking is a no-op."""
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        if booking.user_id != identity.id and not identity.is_admin:
            raise PermissionDeniedError("Not allowed to cancel this booking", booking_id=booking_id)
        return await self._cancel(booking_id, identity)

    async def _cancel(self, booking_id: str, identity: Identity) -> Booking:
        booking, changed = await self.store.cancel_booking(booking_id)
        record_cancellation(changed)
        if changed:
            logger.info(
                "booking_cancelled",
                booking_id=booking.id,
                schedule_id=booking.schedule_id,
                seats_restored=len(booking.seat_numbers),
                cancelled_by=identity.id,
            )
            await self.hub.broadcast(booking_cancelled(booking.id, booking.schedule_id))
        else:
            logger.info("booking_cancel_noop", booking_id=booking.id)
        return booking

    async def get_booking(self, identity: Identity, booking_id: str) -> BookingWithDetails:
        booking = await self.store.get_booking_with_details(booking_id)
        # Other users' bookings are reported as missing
        if booking is None or (booking.user_id != identity.id and not identity.is_admin):
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def list_user_bookings(self, identity: Identity) -> list[BookingWithDetails]:
        return await self.store.list_user_bookings(identity.id)

    async def update_status(self, identity: Identity, booking_id: str, status: BookingStatus) -> Booking:
        require_admin(identity, "update_booking_status")
        status = BookingStatus(status)
        if status == BookingStatus.CANCELLED:
            return await self._cancel(booking_id, identity)
        booking = await self.store.update_booking_status(booking_id, status)
        logger.info("booking_status_updated", booking_id=booking_id, status=status.value, updated_by=identity.id)
        return booking
