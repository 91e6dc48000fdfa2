"""
Standalone payment endpoint (the booking checkout charges on its own).
"""

from fastapi import APIRouter, Depends, Response, status

from busline.api.deps import get_identity, get_services
from busline.schemas.booking import PaymentRequest, PaymentResult
from busline.schemas.user import Identity
from busline.services.bootstrap import Services

router = APIRouter(prefix="/payment", tags=["Payments"])


@router.post("/process", response_model=PaymentResult)
async def process_payment(
    payment: PaymentRequest,
    response: Response,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    """Declines and timeouts answer 402 with `success: false`."""
    result = await services.payments.process(payment.amount, reference=payment.booking_id)
    if not result.success:
        response.status_code = status.HTTP_402_PAYMENT_REQUIRED
    return result
