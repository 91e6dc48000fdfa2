"""
Tests for routes, buses and schedules, including the route cache.
"""

import fnmatch

import pytest
from httpx import AsyncClient

from conftest import FakeTransport, tomorrow_at


class InMemoryRedis:
    """Test double for the few redis.asyncio calls the cache makes."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)

    async def scan_iter(self, match="*", count=None):
        for key in list(self.data):
            if fnmatch.fnmatch(key, match):
                yield key

    async def aclose(self):
        pass


ROUTE_BODY = {
    "name": "Harbor Shuttle",
    "fromLocation": "Harbor",
    "toLocation": "Old Town",
    "distance": "8.40",
    "estimatedDuration": 30,
    "stops": ["Pier 3"],
}


@pytest.mark.asyncio
async def test_list_and_search_routes(client: AsyncClient, test_route):
    response = await client.get("/api/v1/routes")
    assert response.status_code == 200
    assert [r["id"] for r in response.json()] == [test_route.id]
    assert response.json()[0]["fromLocation"] == "Downtown Terminal"

    found = await client.get("/api/v1/routes/search", params={"from": "Downtown Terminal", "to": "Airport Terminal"})
    assert [r["id"] for r in found.json()] == [test_route.id]

    none = await client.get("/api/v1/routes/search", params={"from": "Airport Terminal", "to": "Downtown Terminal"})
    assert none.json() == []


@pytest.mark.asyncio
async def test_route_writes_are_admin_only(client: AsyncClient, auth_headers, admin_headers):
    denied = await client.post("/api/v1/routes", json=ROUTE_BODY, headers=auth_headers)
    assert denied.status_code == 403
    assert denied.json()["code"] == "forbidden"

    created = await client.post("/api/v1/routes", json=ROUTE_BODY, headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["isActive"] is True


@pytest.mark.asyncio
async def test_deactivated_route_leaves_active_listing(client: AsyncClient, admin_headers, test_route):
    response = await client.post(f"/api/v1/routes/{test_route.id}/deactivate", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["isActive"] is False

    active = await client.get("/api/v1/routes", params={"activeOnly": "true"})
    assert active.json() == []
    everything = await client.get("/api/v1/routes")
    assert len(everything.json()) == 1


@pytest.mark.asyncio
async def test_route_cache_serves_and_invalidates(client: AsyncClient, services, store, admin_headers, test_route):
    """Listings are served from the cache until a route write clears it."""
    fake = InMemoryRedis()
    services.cache.enabled = True
    services.cache._client = fake

    first = await client.get("/api/v1/routes")
    assert len(first.json()) == 1
    assert "routes:list:active=False" in fake.data

    # Written behind the cache's back: still served from the cached listing
    await store.create_route({**ROUTE_BODY, "name": "Uncached"})
    cached = await client.get("/api/v1/routes")
    assert len(cached.json()) == 1

    await client.post("/api/v1/routes", json=ROUTE_BODY, headers=admin_headers)
    assert fake.data == {}
    fresh = await client.get("/api/v1/routes")
    assert len(fresh.json()) == 3


@pytest.mark.asyncio
async def test_cache_disabled_reports_status(services):
    assert await services.cache.get_json("routes:list:active=False") is None
    assert await services.cache.stats() == {"status": "disabled"}


@pytest.mark.asyncio
async def test_create_bus_and_duplicate_number(client: AsyncClient, admin_headers, test_bus):
    body = {"number": "450", "operator": "Metro", "capacity": 40, "amenities": ["WiFi", "WiFi", "AC"]}
    created = await client.post("/api/v1/buses", json=body, headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["amenities"] == ["WiFi", "AC"]

    duplicate = await client.post("/api/v1/buses", json={**body, "number": "101"}, headers=admin_headers)
    assert duplicate.status_code == 409

    listed = await client.get("/api/v1/buses")
    assert {b["number"] for b in listed.json()} == {"101", "450"}


@pytest.mark.asyncio
async def test_bus_locations(client: AsyncClient, admin_headers, auth_headers, test_bus):
    before = await client.get("/api/v1/buses/locations")
    assert before.json()[0]["location"] is None
    missing = await client.get(f"/api/v1/buses/{test_bus.id}/location")
    assert missing.status_code == 404

    report = {"latitude": 40.75, "longitude": -73.98, "occupancy": 2, "currentStop": "Central Plaza"}
    denied = await client.put(f"/api/v1/buses/{test_bus.id}/location", json=report, headers=auth_headers)
    assert denied.status_code == 403

    saved = await client.put(f"/api/v1/buses/{test_bus.id}/location", json=report, headers=admin_headers)
    assert saved.status_code == 200
    assert saved.json()["currentStop"] == "Central Plaza"

    too_full = await client.put(
        f"/api/v1/buses/{test_bus.id}/location", json={**report, "occupancy": 3}, headers=admin_headers
    )
    assert too_full.status_code == 400

    after = await client.get("/api/v1/buses/locations")
    assert after.json()[0]["location"]["occupancy"] == 2
    single = await client.get(f"/api/v1/buses/{test_bus.id}/location")
    assert single.json()["latitude"] == 40.75


@pytest.mark.asyncio
async def test_create_schedule_starts_at_capacity(client: AsyncClient, admin_headers, test_bus, test_route):
    response = await client.post("/api/v1/schedules", json={
        "busId": test_bus.id,
        "routeId": test_route.id,
        "departureTime": tomorrow_at(16).isoformat(),
        "arrivalTime": tomorrow_at(17).isoformat(),
        "price": "7.25",
        "availableSeats": 999,
    }, headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["availableSeats"] == test_bus.capacity
    assert response.json()["status"] == "scheduled"


@pytest.mark.asyncio
async def test_create_schedule_rejects_bad_times(client: AsyncClient, admin_headers, test_bus, test_route):
    response = await client.post("/api/v1/schedules", json={
        "busId": test_bus.id,
        "routeId": test_route.id,
        "departureTime": tomorrow_at(17).isoformat(),
        "arrivalTime": tomorrow_at(16).isoformat(),
        "price": "7.25",
    }, headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_search_schedules(client: AsyncClient, test_schedule, test_route):
    day = tomorrow_at(0).date().isoformat()
    response = await client.get("/api/v1/schedules/search", params={"routeId": test_route.id, "date": day})
    assert response.status_code == 200
    results = response.json()
    assert [s["id"] for s in results] == [test_schedule.id]
    assert results[0]["bus"]["capacity"] == 2
    assert results[0]["route"]["name"] == "Downtown Express"

    other_day = await client.get("/api/v1/schedules/search", params={"routeId": test_route.id, "date": "2001-01-01"})
    assert other_day.json() == []


@pytest.mark.asyncio
async def test_get_schedule(client: AsyncClient, test_schedule):
    response = await client.get(f"/api/v1/schedules/{test_schedule.id}")
    assert response.status_code == 200
    assert response.json()["price"] == "10.00"
    assert response.json()["departureTime"].startswith(tomorrow_at(9, 30).date().isoformat())

    missing = await client.get("/api/v1/schedules/missing")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_update_schedule_broadcasts(client: AsyncClient, services, admin_headers, auth_headers, test_schedule):
    transport = FakeTransport()
    await services.hub.subscribe(transport)

    denied = await client.patch(f"/api/v1/schedules/{test_schedule.id}", json={"status": "cancelled"}, headers=auth_headers)
    assert denied.status_code == 403

    response = await client.patch(
        f"/api/v1/schedules/{test_schedule.id}", json={"status": "cancelled"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert transport.events == [{
        "type": "schedule_updated",
        "data": {"scheduleId": test_schedule.id, "status": "cancelled", "availableSeats": 2},
    }]
