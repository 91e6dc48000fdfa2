"""
Admin dashboard: aggregate analytics, live alerts and demand prediction records.

Everything here is derived from the store's current state on each call;
nothing is cached or precomputed. All operations are admin-only.
"""

from collections import Counter
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from busline.core.logging import get_logger
from busline.core.security import require_admin
from busline.schemas.analytics import Alert, Analytics, RidershipSeries, ScheduleSeries
from busline.schemas.base import to_money, utcnow
from busline.schemas.prediction import DemandPrediction, DemandPredictionCreate
from busline.schemas.schedule import ScheduleStatus
from busline.schemas.user import Identity
from busline.store.base import EntityStore

logger = get_logger(__name__)

# Ridership chart buckets: start hour of each 3-hour window
RIDERSHIP_HOURS = (6, 9, 12, 15, 18, 21)
RIDERSHIP_WINDOW = 3


def hour_label(hour: int) -> str:
    suffix = "AM" if hour < 12 else "PM"
    return f"{hour % 12 or 12} {suffix}"


class AnalyticsService:

    def __init__(self, store: EntityStore, delay_minutes: int = 10, occupancy_ratio: float = 0.9):
        self.store = store
        self.delay_minutes = delay_minutes
        self.occupancy_ratio = occupancy_ratio

    async def analytics(self, identity: Identity, today: Optional[date] = None) -> Analytics:
        require_admin(identity, "view_analytics")
        today = today or utcnow().date()

        buses = await self.store.list_buses_with_locations()
        active_buses = sum(1 for bus in buses if bus.is_active and bus.location is not None)

        schedules = await self.store.list_schedules()
        todays = [
            s for s in schedules
            if s.departure_time.date() == today and s.status != ScheduleStatus.CANCELLED
        ]

        passengers = 0
        revenue = Decimal(0)
        load_factors = []
        for schedule in todays:
            for booking in await self.store.list_schedule_bookings(schedule.id):
                if booking.holds_seats:
                    passengers += len(booking.seat_numbers)
                    revenue += booking.total_amount
            capacity = schedule.bus.capacity
            load_factors.append((capacity - schedule.available_seats) / capacity)

        efficiency = round(sum(load_factors) / len(load_factors) * 100) if load_factors else 0

        return Analytics(
            active_buses=active_buses,
            today_passengers=passengers,
            today_revenue=to_money(revenue),
            route_efficiency=efficiency,
            ridership_data=await self._ridership(today),
            schedule_data=await self._schedule_series(schedules),
        )

    async def _ridership(self, day: date) -> RidershipSeries:
        forecasted = Counter()
        actual = Counter()
        for prediction in await self.store.list_demand_predictions(None, day):
            for start in RIDERSHIP_HOURS:
                if start <= prediction.hour < start + RIDERSHIP_WINDOW:
                    forecasted[start] += prediction.predicted_demand
                    actual[start] += prediction.actual_demand or 0
                    break
        return RidershipSeries(
            labels=[hour_label(h) for h in RIDERSHIP_HOURS],
            forecasted=[forecasted[h] for h in RIDERSHIP_HOURS],
            actual=[actual[h] for h in RIDERSHIP_HOURS],
        )

    async def _schedule_series(self, schedules) -> ScheduleSeries:
        routes = await self.store.list_routes(active_only=True)
        original = Counter()
        optimized = Counter()
        for schedule in schedules:
            if schedule.status == ScheduleStatus.CANCELLED:
                continue
            if schedule.is_optimized:
                optimized[schedule.route_id] += 1
            else:
                original[schedule.route_id] += 1
        return ScheduleSeries(
            labels=[route.name for route in routes],
            original=[original[route.id] for route in routes],
            optimized=[optimized[route.id] for route in routes],
        )

    async def alerts(self, identity: Identity, now: Optional[datetime] = None) -> list[Alert]:
        """Live alerts: delayed buses, near-capacity buses, cancellations today."""
        require_admin(identity, "view_alerts")
        now = now or utcnow()
        alerts = []

        for bus in await self.store.list_buses_with_locations():
            location = bus.location
            if location is None or not bus.is_active:
                continue
            if location.delay >= self.delay_minutes:
                alerts.append(Alert(
                    id=f"delay-{bus.id}",
                    title=f"Bus {bus.number} Delayed",
                    description=f"Bus running {location.delay} minutes late"
                    + (f" near {location.current_stop}." if location.current_stop else "."),
                    timestamp=location.updated_at,
                    type="warning",
                ))
            if location.occupancy >= bus.capacity * self.occupancy_ratio:
                load = round(location.occupancy / bus.capacity * 100)
                alerts.append(Alert(
                    id=f"demand-{bus.id}",
                    title="High Demand Detected",
                    description=f"Bus {bus.number} at {load}% of capacity.",
                    timestamp=location.updated_at,
                    type="info",
                ))

        for schedule in await self.store.list_schedules():
            if schedule.status == ScheduleStatus.CANCELLED and schedule.departure_time.date() == now.date():
                alerts.append(Alert(
                    id=f"cancelled-{schedule.id}",
                    title=f"{schedule.route.name} Departure Cancelled",
                    description=(
                        f"The {schedule.departure_time:%H:%M} UTC departure on bus "
                        f"{schedule.bus.number} was cancelled."
                    ),
                    timestamp=now,
                    type="warning",
                ))

        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        return alerts

    # Demand predictions

    async def list_predictions(
        self, identity: Identity, route_id: Optional[str], on_date: date
    ) -> list[DemandPrediction]:
        require_admin(identity, "list_predictions")
        return await self.store.list_demand_predictions(route_id, on_date)

    async def create_prediction(self, identity: Identity, data: DemandPredictionCreate) -> DemandPrediction:
        require_admin(identity, "create_prediction")
        prediction = await self.store.create_demand_prediction(data)
        logger.info(
            "prediction_created",
            prediction_id=prediction.id,
            route_id=prediction.route_id,
            date=str(prediction.date),
            hour=prediction.hour,
        )
        return prediction

    async def record_actual(self, identity: Identity, prediction_id: str, actual_demand: int) -> DemandPrediction:
        require_admin(identity, "record_actual_demand")
        prediction = await self.store.record_actual_demand(prediction_id, actual_demand)
        logger.info("prediction_actual_recorded", prediction_id=prediction_id, accuracy=str(prediction.accuracy))
        return prediction
