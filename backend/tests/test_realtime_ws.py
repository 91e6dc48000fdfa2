"""
End-to-end tests for the WebSocket channel, run with the full application
lifespan and demo data.
"""

import pytest
from starlette.testclient import TestClient

from busline.main import create_app
from busline.services.bootstrap import build_services
from busline.store.memory import MemoryStore

from conftest import PASSENGER, FakeGateway


@pytest.fixture
def live_app(settings):
    seeded = settings.model_copy(update={"SEED_DEMO_DATA": True})
    services = build_services(seeded, store=MemoryStore(), gateway=FakeGateway())
    return create_app(settings=seeded, services=services)


def register_and_login(tc: TestClient) -> dict:
    tc.post("/api/v1/auth/register", json={
        "email": "ws@example.com",
        "username": "wsuser",
        "password": "wspassword123",
        "firstName": "Web",
        "lastName": "Socket",
    })
    token = tc.post("/api/v1/auth/login", json={
        "email": "ws@example.com",
        "password": "wspassword123",
    }).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def test_ping_pong(live_app):
    with TestClient(live_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong", "data": None}

            health = tc.get("/health").json()
            assert health["realtime"] == {"subscribers": 1}


def test_booking_events_reach_subscribers(live_app):
    with TestClient(live_app) as tc:
        headers = register_and_login(tc)
        schedule = tc.get("/api/v1/schedules").json()[0]

        with tc.websocket_connect("/ws") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

            created = tc.post("/api/v1/bookings", json={
                "scheduleId": schedule["id"],
                "seatNumbers": ["3C"],
                "passengerDetails": PASSENGER,
            }, headers=headers)
            assert created.status_code == 201
            booking_id = created.json()["id"]
            assert ws.receive_json() == {
                "type": "booking_created",
                "data": {"bookingId": booking_id, "scheduleId": schedule["id"]},
            }

            tc.delete(f"/api/v1/bookings/{booking_id}", headers=headers)
            assert ws.receive_json()["type"] == "booking_cancelled"


def test_location_tick_reaches_subscribers(live_app):
    with TestClient(live_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            ws.send_json({"type": "ping"})
            ws.receive_json()

            tc.portal.call(live_app.state.services.ingest.tick)

            event = ws.receive_json()
            assert event["type"] == "bus_locations_update"
            assert len(event["data"]) == 2
            for update in event["data"]:
                assert 0 <= update["occupancy"] <= 45


def test_seeded_fleet(live_app):
    with TestClient(live_app) as tc:
        routes = tc.get("/api/v1/routes").json()
        assert {r["name"] for r in routes} == {"Downtown Express", "University Loop"}
        buses = tc.get("/api/v1/buses/locations").json()
        assert {b["number"] for b in buses} == {"101", "205"}
        assert all(b["location"] is not None for b in buses)

        login = tc.post("/api/v1/auth/login", json={
            "email": "admin@example.com",
            "password": "change-me-admin",
        })
        assert login.status_code == 200
        me = tc.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {login.json()['access_token']}"})
        assert me.json()["isAdmin"] is True
