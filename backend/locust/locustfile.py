"""
Locust Load Test Suite

Run against a server started with demo data (SEED_DEMO_DATA=true). For the
concurrency scenario set PAYMENT_LATENCY_SECONDS=0 and PAYMENT_SUCCESS_RATE=1
so every request reaches the seat commit.

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test overbooking / double-selling
  locust -f locustfile.py --tags throughput   # Test route cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import random
import string
from datetime import datetime, timezone

from locust import HttpUser, between, events, tag, task

# Shared state
SCHEDULE_IDS = []
ROUTE_IDS = []
SEAT_LABELS = [f"{row}{col}" for row in range(1, 13) for col in "ABCD"]


def random_email():
    return f"load_{random.randint(10000, 99999)}_{random.randint(0, 999)}@example.com"


def random_username():
    return "u_" + "".join(random.choices(string.ascii_lowercase, k=8))


def passenger():
    return {"name": "Load Tester", "phone": "555-0100", "email": "load@example.com"}


def register_and_login(client) -> dict:
    email = random_email()
    client.post("/api/v1/auth/register", json={
        "email": email,
        "username": random_username(),
        "password": "loadtest123",
        "firstName": "Load",
        "lastName": "Tester",
    })
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": "loadtest123"})
    if resp.status_code == 200:
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return {}


def discover_schedules(client) -> None:
    if SCHEDULE_IDS:
        return
    resp = client.get("/api/v1/schedules")
    if resp.status_code == 200:
        for schedule in resp.json():
            SCHEDULE_IDS.append(schedule["id"])
            if schedule["routeId"] not in ROUTE_IDS:
                ROUTE_IDS.append(schedule["routeId"])


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("Using seeded schedules; run with SEED_DEMO_DATA=true")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - many users -> one schedule's seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT seat_label, COUNT(*) FROM seat_assignments
      WHERE schedule_id = X GROUP BY seat_label HAVING COUNT(*) > 1;
    Should return no rows, and available_seats should be >= 0.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = register_and_login(self.client)
        discover_schedules(self.client)

    @tag("concurrency")
    @task
    def book_contended_seats(self):
        """All users fight for the same schedule, often for the same seat."""
        if not SCHEDULE_IDS or not self.headers:
            return

        with self.client.post("/api/v1/bookings",
            json={
                "scheduleId": SCHEDULE_IDS[0],
                "seatNumbers": random.sample(SEAT_LABELS[:8], k=random.randint(1, 2)),
                "passengerDetails": passenger(),
            },
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code in (402, 409):
                resp.success()  # Expected: declined, sold out or seat taken
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Route cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        discover_schedules(self.client)

    @tag("throughput", "read")
    @task(10)
    def list_routes_cached(self):
        self.client.get("/api/v1/routes", name="/api/v1/routes [cached]")

    @tag("throughput", "read")
    @task(5)
    def search_routes_cached(self):
        self.client.get(
            "/api/v1/routes/search?from=Downtown%20Terminal&to=Airport%20Terminal",
            name="/api/v1/routes/search [cached]",
        )

    @tag("throughput", "read")
    @task(3)
    def search_schedules(self):
        if ROUTE_IDS:
            today = datetime.now(timezone.utc).date().isoformat()
            self.client.get(f"/api/v1/schedules/search?routeId={random.choice(ROUTE_IDS)}&date={today}",
                name="/api/v1/schedules/search")

    @tag("throughput", "read")
    @task(3)
    def bus_locations(self):
        self.client.get("/api/v1/buses/locations")

    @tag("throughput")
    @task(1)
    def health_check(self):
        """Monitor system health."""
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = register_and_login(self.client)
        discover_schedules(self.client)

    def _expect(self, json_body, allowed, headers=None):
        with self.client.post("/api/v1/bookings",
            json=json_body,
            headers=self.headers if headers is None else headers,
            catch_response=True
        ) as resp:
            if resp.status_code in allowed:
                resp.success()
            else:
                resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_schedule(self):
        self._expect(
            {"scheduleId": "no-such-schedule", "seatNumbers": ["1A"], "passengerDetails": passenger()},
            [404],
        )

    @tag("edge")
    @task
    def empty_seats(self):
        if SCHEDULE_IDS:
            self._expect(
                {"scheduleId": SCHEDULE_IDS[0], "seatNumbers": [], "passengerDetails": passenger()},
                [400, 422],
            )

    @tag("edge")
    @task
    def duplicate_seats(self):
        if SCHEDULE_IDS:
            self._expect(
                {"scheduleId": SCHEDULE_IDS[0], "seatNumbers": ["1A", "1A"], "passengerDetails": passenger()},
                [400, 422],
            )

    @tag("edge")
    @task
    def malformed_json(self):
        """Send garbage data."""
        with self.client.post("/api/v1/bookings",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        """Try booking without auth."""
        self._expect(
            {"scheduleId": "x", "seatNumbers": ["1A"], "passengerDetails": passenger()},
            [401],
            headers={},
        )


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly browsing and tracking
      - Some bookings and cancellations
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = register_and_login(self.client)
        discover_schedules(self.client)
        self.booking_ids = []

    @task(40)
    def browse_schedules(self):
        self.client.get("/api/v1/schedules")

    @task(30)
    def track_buses(self):
        self.client.get("/api/v1/buses/locations")

    @task(10)
    def book_seat(self):
        if SCHEDULE_IDS and self.headers:
            resp = self.client.post("/api/v1/bookings",
                json={
                    "scheduleId": random.choice(SCHEDULE_IDS),
                    "seatNumbers": [random.choice(SEAT_LABELS)],
                    "passengerDetails": passenger(),
                },
                headers=self.headers)
            if resp.status_code == 201:
                self.booking_ids.append(resp.json()["id"])

    @task(5)
    def my_bookings(self):
        if self.headers:
            self.client.get("/api/v1/bookings/user", headers=self.headers)

    @task(2)
    def cancel_booking(self):
        if self.booking_ids:
            booking_id = self.booking_ids.pop()
            self.client.delete(f"/api/v1/bookings/{booking_id}", headers=self.headers,
                name="/api/v1/bookings/{id}")
