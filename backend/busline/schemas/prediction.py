"""
Demand prediction records. The forecast itself is computed elsewhere; the
service only stores it and derives accuracy once actual demand is known.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import Field

from busline.schemas.base import CamelModel, UTCDateTime


class DemandPredictionCreate(CamelModel):
    route_id: str
    date: date
    hour: int = Field(..., ge=0, le=23)
    predicted_demand: int = Field(..., ge=0)
    actual_demand: Optional[int] = Field(None, ge=0)


class DemandPrediction(DemandPredictionCreate):
    id: str
    accuracy: Optional[Decimal] = None
    created_at: UTCDateTime


class ActualDemandUpdate(CamelModel):
    actual_demand: int = Field(..., ge=0)


def compute_accuracy(predicted: int, actual: int) -> Decimal:
    """Percentage accuracy of a forecast, clamped to [0, 100]."""
    if predicted == 0:
        return Decimal("100.00") if actual == 0 else Decimal("0.00")
    error = Decimal(abs(predicted - actual)) / Decimal(predicted) * 100
    accuracy = max(Decimal(0), min(Decimal(100), Decimal(100) - error))
    return accuracy.quantize(Decimal("0.01"))
