"""
Pytest fixtures for the store, services, HTTP client, and authentication.

Every test gets a fresh in-memory store and a fresh set of services, so no
state leaks between tests. Payments go through a scripted gateway and
real-time subscribers are in-process fake transports.
"""

import asyncio
import json
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from busline.core.config import Settings
from busline.core.security import create_access_token
from busline.main import create_app
from busline.schemas.booking import PaymentResult
from busline.schemas.fleet import Bus, BusCreate, Route, RouteCreate
from busline.schemas.schedule import Schedule, ScheduleCreate
from busline.schemas.user import Identity, User, UserCreate
from busline.services.auth_service import register_user
from busline.services.bootstrap import Services, build_services
from busline.services.payment_service import PaymentGateway
from busline.store.memory import MemoryStore

PASSENGER = {"name": "Ada Rider", "phone": "555-0100", "email": "ada@example.com"}


class FakeGateway(PaymentGateway):
    """Scripted payment collaborator: approve/decline, optional delay, hooks."""

    def __init__(self):
        self.approve = True
        self.delay = 0.0
        self.charges: list[Decimal] = []
        self.refunded: list[str] = []
        self.before_approve = None
        self.refund_error: Optional[Exception] = None

    async def charge(self, amount: Decimal, reference: Optional[str] = None) -> PaymentResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.charges.append(amount)
        if not self.approve:
            return PaymentResult(success=False, message="Card declined")
        if self.before_approve is not None:
            await self.before_approve()
        return PaymentResult(
            success=True,
            transaction_id=f"txn_test_{len(self.charges)}",
            message="Payment processed successfully",
        )

    async def refund(self, transaction_id: str) -> None:
        if self.refund_error is not None:
            raise self.refund_error
        self.refunded.append(transaction_id)


class FakeTransport:
    """In-process subscriber connection."""

    def __init__(self, fail: bool = False, hang: bool = False):
        self.fail = fail
        self.hang = hang
        self.open = True
        self.accepted = False
        self.sent: list[str] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        if self.hang:
            await asyncio.sleep(3600)
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(text)

    def is_open(self) -> bool:
        return self.open

    async def close(self) -> None:
        self.open = False

    @property
    def events(self) -> list[dict]:
        return [json.loads(text) for text in self.sent]


def tomorrow_at(hour: int, minute: int = 0) -> datetime:
    day = datetime.now(timezone.utc).date() + timedelta(days=1)
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        STORE_BACKEND="memory",
        REDIS_ENABLED=False,
        SEED_DEMO_DATA=False,
        LOCATION_INGEST_ENABLED=False,
        PAYMENT_TIMEOUT_SECONDS=0.5,
        WS_SEND_TIMEOUT_SECONDS=0.5,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def services(settings: Settings, store: MemoryStore, gateway: FakeGateway) -> Services:
    return build_services(settings, store=store, gateway=gateway)


@pytest.fixture
def app(settings: Settings, services: Services):
    return create_app(settings=settings, services=services)


@pytest_asyncio.fixture(scope="function")
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app's services (lifespan not run)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def test_user(store: MemoryStore) -> User:
    """Create a regular test user."""
    return await register_user(store, UserCreate(
        email="test@example.com",
        username="testuser",
        password="testpassword123",
        first_name="Test",
        last_name="User",
    ))


@pytest_asyncio.fixture
async def other_user(store: MemoryStore) -> User:
    return await register_user(store, UserCreate(
        email="other@example.com",
        username="otheruser",
        password="otherpassword123",
        first_name="Other",
        last_name="Rider",
    ))


@pytest_asyncio.fixture
async def admin_user(store: MemoryStore) -> User:
    return await register_user(store, UserCreate(
        email="admin@example.com",
        username="admin",
        password="adminpassword123",
        first_name="Fleet",
        last_name="Admin",
    ), is_admin=True)


@pytest.fixture
def identity(test_user: User) -> Identity:
    return Identity(id=test_user.id, is_admin=False)


@pytest.fixture
def admin_identity(admin_user: User) -> Identity:
    return Identity(id=admin_user.id, is_admin=True)


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Authorization headers with Bearer token."""
    return {"Authorization": f"Bearer {create_access_token(data={'sub': test_user.id})}"}


@pytest.fixture
def other_headers(other_user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': other_user.id})}"}


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': admin_user.id})}"}


@pytest_asyncio.fixture
async def test_route(store: MemoryStore) -> Route:
    return await store.create_route(RouteCreate(
        name="Downtown Express",
        from_location="Downtown Terminal",
        to_location="Airport Terminal",
        distance=Decimal("25.5"),
        estimated_duration=105,
        stops=["Central Plaza", "Business District"],
    ))


@pytest_asyncio.fixture
async def test_bus(store: MemoryStore) -> Bus:
    """A small bus so capacity limits are easy to hit."""
    return await store.create_bus(BusCreate(
        number="101",
        operator="Metro Transit Authority",
        capacity=2,
        amenities=["WiFi"],
    ))


@pytest_asyncio.fixture
async def test_schedule(store: MemoryStore, test_bus: Bus, test_route: Route) -> Schedule:
    """Two seats at 10.00, departing tomorrow."""
    return await store.create_schedule(ScheduleCreate(
        bus_id=test_bus.id,
        route_id=test_route.id,
        departure_time=tomorrow_at(9, 30),
        arrival_time=tomorrow_at(11, 15),
        price=Decimal("10.00"),
    ))
