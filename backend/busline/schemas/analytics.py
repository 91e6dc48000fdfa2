"""
Pydantic schemas for the admin dashboard.
"""

from decimal import Decimal
from typing import Literal

from busline.schemas.base import CamelModel, UTCDateTime


class RidershipSeries(CamelModel):
    labels: list[str]
    forecasted: list[int]
    actual: list[int]


class ScheduleSeries(CamelModel):
    labels: list[str]
    original: list[int]
    optimized: list[int]


class Analytics(CamelModel):
    active_buses: int
    today_passengers: int
    today_revenue: Decimal
    route_efficiency: int  # average load factor, percent
    ridership_data: RidershipSeries
    schedule_data: ScheduleSeries


class Alert(CamelModel):
    id: str
    title: str
    description: str
    timestamp: UTCDateTime
    type: Literal["info", "warning", "success"]
