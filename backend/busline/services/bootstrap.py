"""
Wires the store, hub and services together for one application instance.
"""

from dataclasses import dataclass
from typing import Optional

from busline.core.config import Settings
from busline.core.logging import get_logger
from busline.services.analytics_service import AnalyticsService
from busline.services.booking_service import BookingService
from busline.services.cache_service import CacheService
from busline.services.catalog_service import CatalogService
from busline.services.hub import SubscriptionHub
from busline.services.location_service import LocationIngestLoop, PositionSource, RandomWalkSource
from busline.services.payment_service import PaymentGateway, PaymentService, SimulatedPaymentGateway
from busline.store.base import EntityStore
from busline.store.factory import create_store

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    store: EntityStore
    hub: SubscriptionHub
    cache: CacheService
    payments: PaymentService
    bookings: BookingService
    catalog: CatalogService
    analytics: AnalyticsService
    ingest: LocationIngestLoop

    async def close(self) -> None:
        await self.ingest.stop()
        await self.hub.close()
        await self.cache.close()
        await self.store.close()
        logger.info("services_closed")


def build_services(
    settings: Settings,
    store: Optional[EntityStore] = None,
    gateway: Optional[PaymentGateway] = None,
    source: Optional[PositionSource] = None,
) -> Services:
    store = store or create_store(settings)
    hub = SubscriptionHub(send_timeout=settings.WS_SEND_TIMEOUT_SECONDS)
    cache = CacheService(settings)
    payments = PaymentService(
        gateway or SimulatedPaymentGateway(
            success_rate=settings.PAYMENT_SUCCESS_RATE,
            latency=settings.PAYMENT_LATENCY_SECONDS,
        ),
        timeout=settings.PAYMENT_TIMEOUT_SECONDS,
    )
    source = source or RandomWalkSource(
        jitter_degrees=settings.LOCATION_JITTER_DEGREES,
        occupancy_jitter=settings.OCCUPANCY_JITTER,
    )
    return Services(
        settings=settings,
        store=store,
        hub=hub,
        cache=cache,
        payments=payments,
        bookings=BookingService(store, hub, payments),
        catalog=CatalogService(store, cache, hub),
        analytics=AnalyticsService(
            store,
            delay_minutes=settings.ALERT_DELAY_MINUTES,
            occupancy_ratio=settings.ALERT_OCCUPANCY_RATIO,
        ),
        ingest=LocationIngestLoop(store, hub, source=source, interval=settings.LOCATION_TICK_SECONDS),
    )
