"""
Tests for health, metrics and request middleware.
"""

import pytest
from httpx import AsyncClient
from starlette.requests import Request
from starlette.routing import Route

from busline.api.middleware import route_template
from busline.core.config import Settings
from busline.core.logging import service_context
from busline.store.factory import create_store
from busline.store.memory import MemoryStore


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["store"] == "memory"
    assert data["cache"] == {"status": "disabled"}
    assert data["realtime"] == {"subscribers": 0}
    assert data["locationIngest"]["running"] is False


@pytest.mark.asyncio
async def test_metrics_exposed(client: AsyncClient, auth_headers, test_schedule):
    await client.post("/api/v1/bookings", json={
        "scheduleId": test_schedule.id,
        "seatNumbers": ["1A", "1B", "1C"],
        "passengerDetails": {"name": "A", "phone": "1", "email": "a@example.com"},
    }, headers=auth_headers)

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert 'booking_attempts_total{status="capacity_exceeded"}' in response.text
    assert "realtime_subscribers" in response.text


@pytest.mark.asyncio
async def test_request_id_assigned_and_echoed(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.headers["X-Request-ID"]
    assert response.headers["X-Response-Time"].endswith("ms")

    echoed = await client.get("/", headers={"X-Request-ID": "trace-123"})
    assert echoed.headers["X-Request-ID"] == "trace-123"


def test_store_factory():
    assert isinstance(create_store(Settings(STORE_BACKEND="memory")), MemoryStore)
    with pytest.raises(ValueError):
        create_store(Settings(STORE_BACKEND="cassandra"))


def test_service_context_stamps_events():
    add_context = service_context(Settings(STORE_BACKEND="sql"))
    event = add_context(None, "info", {"event": "location_tick_completed"})
    assert event["service"] == "Busline Booking API"
    assert event["store"] == "sql"

    overridden = add_context(None, "info", {"event": "x", "store": "memory"})
    assert overridden["store"] == "memory"


def test_route_template_prefers_matched_route():
    scope = {"type": "http", "method": "GET", "path": "/api/v1/bookings/abc", "headers": []}
    assert route_template(Request(scope)) == "/api/v1/bookings/abc"

    scope["route"] = Route("/api/v1/bookings/{booking_id}", endpoint=lambda request: None)
    assert route_template(Request(scope)) == "/api/v1/bookings/{booking_id}"
