"""
Shared test fixtures.

Uses a throw-away SQLite database file (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models are SQLite-friendly
(the spatial bin is a plain H3 cell string), so the real repositories are
exercised.  Redis is replaced by in-process locks and a recording publisher;
the payment processor by a scripted fake.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from roadside.domain.entities import Provider, ServiceRequest
from roadside.domain.enums import ServiceType
from roadside.domain.errors import SettlementInitiationFailed
from roadside.infrastructure.database import Base
from roadside.infrastructure.payments import PaymentProcessor, TransferResult
from roadside.infrastructure.repositories import ProviderRepository
from roadside.services.lifecycle import RequestLifecycleService
from roadside.services.tracking import TrackingRegistry
from roadside.workers import auto_assign

# Accra city centre
CUSTOMER_LAT, CUSTOMER_LNG = 5.6037, -0.1870


# ── Fakes ─────────────────────────────────────────────────────────────


class LocalLocks:
    """Per-key ``asyncio.Lock`` standing in for the Redis lock."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.keys: list[str] = []

    def __call__(self, key: str) -> asyncio.Lock:
        self.keys.append(key)
        return self._locks[key]


class NoLocks:
    """Lets concurrent writers through so only the version check guards them."""

    def __call__(self, key: str) -> "NoLocks":
        return self

    async def __aenter__(self):
        await asyncio.sleep(0)
        return self

    async def __aexit__(self, *args):
        return None


class RecordingPublisher:
    def __init__(self):
        self.events: list[dict[str, Any]] = []

    async def publish(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def names(self, request_id: Optional[int] = None) -> list[str]:
        return [
            e["event"]
            for e in self.events
            if request_id is None or e["request_id"] == request_id
        ]


class FakePaymentProcessor(PaymentProcessor):
    def __init__(self):
        self.transfers: list[tuple[int, str, float]] = []
        self.fail_with: Optional[str] = None

    async def initiate_transfer(
        self, request_id: int, provider_account: str, amount: float
    ) -> TransferResult:
        if self.fail_with:
            raise SettlementInitiationFailed(self.fail_with)
        self.transfers.append((request_id, provider_account, amount))
        return TransferResult(success=True, transfer_id=f"TRF_{len(self.transfers)}")


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables in a fresh SQLite file, yield a session factory, then dispose."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def payments() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture
def locks() -> LocalLocks:
    return LocalLocks()


@pytest_asyncio.fixture
async def tracking() -> AsyncGenerator[TrackingRegistry, None]:
    registry = TrackingRegistry(
        history_size=15, min_delta_deg=0.0001, stale_after_seconds=120
    )
    yield registry
    await registry.close_all()


@pytest_asyncio.fixture
async def service(
    session_factory, locks, publisher, payments, tracking
) -> AsyncGenerator[RequestLifecycleService, None]:
    yield RequestLifecycleService(
        session_factory,
        locks,
        publisher,
        payments,
        tracking,
        default_radius_km=10.0,
        provider_percentage=85.0,
        h3_resolution=7,
        retry_delay_seconds=0.0,
    )
    await auto_assign.stop()


# ── Helpers ───────────────────────────────────────────────────────────


async def add_provider(
    session_factory,
    lat: Optional[float] = CUSTOMER_LAT,
    lng: Optional[float] = CUSTOMER_LNG,
    **overrides,
) -> Provider:
    values = {
        "id": 0,
        "full_name": "Test Provider",
        "current_lat": lat,
        "current_lng": lng,
        "payout_recipient_code": "RCP_test",
    }
    values.update(overrides)
    async with session_factory() as session:
        provider = await ProviderRepository(session, 7).create(Provider(**values))
        await session.commit()
    return provider


async def create_assigned(
    service: RequestLifecycleService, provider: Provider, **overrides
) -> ServiceRequest:
    values = {
        "service_type": ServiceType.TOWING,
        "location": "Ring Road Central",
        "customer_id": "cust-1",
        "customer_lat": CUSTOMER_LAT,
        "customer_lng": CUSTOMER_LNG,
        "provider_id": provider.id,
    }
    values.update(overrides)
    return await service.create_request(**values)


async def drive_to_awaiting_confirmation(
    service: RequestLifecycleService, provider: Provider, amount: float = 150.0
) -> ServiceRequest:
    request = await create_assigned(service, provider)
    await service.submit_quote(request.id, provider.id, amount, "Tow to garage")
    approved = await service.approve_quote(request.id, "cust-1")
    await service.record_payment(approved.payment_reference)
    await service.start_trip(request.id, provider.id)
    await service.mark_arrived(request.id, provider.id)
    return await service.finish_work(request.id, provider.id)
