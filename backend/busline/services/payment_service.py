"""
Payment step in front of the booking commit.

The gateway is an external collaborator. Every call is bounded by
PAYMENT_TIMEOUT_SECONDS; a call that does not answer in time counts as a
decline. A declined or timed-out payment never reaches the booking commit.
"""

import asyncio
import random
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from busline.core.errors import PaymentFailedError
from busline.core.logging import get_logger
from busline.core.metrics import record_payment
from busline.schemas.booking import PaymentResult

logger = get_logger(__name__)


class PaymentGateway(ABC):

    @abstractmethod
    async def charge(self, amount: Decimal, reference: Optional[str] = None) -> PaymentResult:
        """Charge `amount`. Declines are returned, not raised."""

    @abstractmethod
    async def refund(self, transaction_id: str) -> None:
        pass


class SimulatedPaymentGateway(PaymentGateway):
    """
    Stand-in gateway: approves with probability `success_rate` after
    `latency` seconds.
    """

    def __init__(
        self,
        success_rate: float = 0.9,
        latency: float = 2.0,
        rng: Optional[random.Random] = None,
    ):
        self.success_rate = success_rate
        self.latency = latency
        self.rng = rng or random.Random()
        self.refunded: list[str] = []

    async def charge(self, amount: Decimal, reference: Optional[str] = None) -> PaymentResult:
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.rng.random() < self.success_rate:
            return PaymentResult(
                success=True,
                transaction_id=f"txn_{uuid.uuid4().hex[:16]}",
                message="Payment processed successfully",
            )
        return PaymentResult(success=False, message="Payment failed. Please try again.")

    async def refund(self, transaction_id: str) -> None:
        self.refunded.append(transaction_id)


class PaymentService:

    def __init__(self, gateway: PaymentGateway, timeout: float = 5.0):
        self.gateway = gateway
        self.timeout = timeout

    async def process(self, amount: Decimal, reference: Optional[str] = None) -> PaymentResult:
        """Run one payment; timeouts come back as an unsuccessful result."""
        try:
            result = await asyncio.wait_for(self.gateway.charge(amount, reference), timeout=self.timeout)
        except asyncio.TimeoutError:
            record_payment("timeout")
            logger.warning("payment_timeout", amount=str(amount), reference=reference, timeout=self.timeout)
            return PaymentResult(success=False, message="Payment timed out. Please try again.")

        if result.success:
            record_payment("approved")
            logger.info("payment_approved", amount=str(amount), transaction_id=result.transaction_id)
        else:
            record_payment("declined")
            logger.warning("payment_declined", amount=str(amount), reference=reference)
        return result

    async def charge(self, amount: Decimal, reference: Optional[str] = None) -> str:
        """Like `process`, but raises PaymentFailedError; returns the transaction id."""
        result = await self.process(amount, reference)
        if not result.success:
            raise PaymentFailedError(result.message, amount=str(amount))
        return result.transaction_id

    async def refund(self, transaction_id: str) -> None:
        try:
            await asyncio.wait_for(self.gateway.refund(transaction_id), timeout=self.timeout)
        except Exception as e:
            # Money is held with no booking; needs manual follow-up
            logger.error("payment_refund_failed", transaction_id=transaction_id, error=str(e))
            raise
        record_payment("refunded")
        logger.info("payment_refunded", transaction_id=transaction_id)
