"""Test configuration and fixtures.

Each test gets its own throwaway SQLite database (via aiosqlite) with tables
created from the ORM metadata. Set TEST_DATABASE_URL to run against another
backend instead. HTTP tests open a fresh session per request, like
production, so concurrent requests really use independent sessions.
"""

import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from marketplace.config import settings
from marketplace.database import Base, get_db
from marketplace.main import app
from marketplace.models.job import Job
from marketplace.models.proposal import DurationUnit, Proposal
from marketplace.models.service_listing import ServiceListing
from marketplace.models.user import User, UserRole
from marketplace.redis import get_redis
from marketplace.schemas.job import GuestContact, JobCreate
from marketplace.schemas.proposal import DurationIn, ProposalCreate
from marketplace.schemas.service_listing import ListingCreate
from marketplace.services import job as job_service
from marketplace.services import notifications, storage
from marketplace.services import proposal as proposal_service
from marketplace.services import service_listing as listing_service
from marketplace.services.storage import set_blob_store
from marketplace.utils.crypto import create_access_token, hash_password

PASSWORD = "secret123"
# bcrypt is deliberately slow; hash once for every fixture user
_PASSWORD_HASH = hash_password(PASSWORD)


# ---------------------------------------------------------------------------
# Settings isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "rate_limit_enabled", False)
    object.__setattr__(settings, "email_backend", "log")
    object.__setattr__(settings, "blob_backend", "log")
    set_blob_store(None)
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)
    set_blob_store(None)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    url = settings.test_database_url or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
    await notifications.drain()
    await storage.drain()


class InMemoryBlobStore:
    """Blob store that keeps uploads in a dict so tests can inspect them."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.deleted: list[str] = []

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = (data, content_type)

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    store = InMemoryBlobStore()
    set_blob_store(store)
    return store


class FakeRedis:
    """In-memory stand-in for the token bucket script used by the rate limiter."""

    def __init__(self) -> None:
        self.buckets: dict[str, tuple[float, float]] = {}
        self.calls = 0

    async def eval(self, script: str, numkeys: int, key: str, capacity, refill_rate, now) -> list[int]:  # type: ignore[no-untyped-def]
        self.calls += 1
        capacity, refill_rate, now = float(capacity), float(refill_rate), float(now)
        tokens, last = self.buckets.get(key, (capacity, now))
        tokens = min(capacity, tokens + (now - last) * (refill_rate / 60.0))
        if tokens >= 1:
            tokens -= 1
            self.buckets[key] = (tokens, now)
            return [1, int(tokens), 0]
        self.buckets[key] = (tokens, now)
        retry = 60 if refill_rate <= 0 else int(-(-(1 - tokens) * 60 // refill_rate))
        return [0, 0, retry]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: FakeRedis,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with overridden DB and Redis dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_redis() -> AsyncGenerator[FakeRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await notifications.drain()
    await storage.drain()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def make_user(
    db: AsyncSession,
    role: UserRole | str = UserRole.CUSTOMER,
    name: str | None = None,
    email: str | None = None,
) -> User:
    role = UserRole(role)
    suffix = uuid.uuid4().hex[:8]
    user = User(
        user_id=uuid.uuid4(),
        name=name or f"{role.value.title()} {suffix}",
        email=email or f"{role.value}-{suffix}@example.com",
        password_hash=_PASSWORD_HASH,
        role=role,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.user_id, user.role.value)
    return {"Authorization": f"Bearer {token}"}


def job_payload(**overrides) -> dict:  # type: ignore[no-untyped-def]
    """Factory for job creation payload."""
    data = {
        "title": "Paint the living room",
        "description": "Two walls, white, materials provided",
        "category": "painting",
        "city": "Istanbul",
        "district": "Kadikoy",
        "budget_min": "3000",
        "budget_max": "6000",
        "estimated_duration": "1 week",
    }
    data.update(overrides)
    return data


def proposal_payload(price: str = "5000", value: int = 2, unit: str = "hafta", **overrides) -> dict:  # type: ignore[no-untyped-def]
    data = {
        "description": "Experienced painter, can start Monday",
        "price": price,
        "duration": {"value": value, "unit": unit},
    }
    data.update(overrides)
    return data


async def make_job(
    db: AsyncSession,
    owner: User | None = None,
    approve: bool = True,
    guest: GuestContact | None = None,
    **overrides,
) -> Job:  # type: ignore[no-untyped-def]
    """Create a job through the service; approved unless ``approve=False``."""
    data = job_payload(**overrides)
    if owner is None:
        guest = guest or GuestContact(name="Guest Customer", email="guest@example.com")
        data.update(guest=guest.model_dump(), kvkk_accepted=True)
    job = await job_service.create_job(db, JobCreate(**data), owner)
    if approve:
        job = await job_service.approve_job(db, job.job_id)
    return job


async def make_proposal(
    db: AsyncSession,
    job: Job,
    provider: User,
    price: str = "5000",
    value: int = 2,
    unit: DurationUnit = DurationUnit.WEEK,
) -> Proposal:
    data = ProposalCreate(
        description="I can do this",
        price=Decimal(price),
        duration=DurationIn(value=value, unit=unit),
    )
    return await proposal_service.submit_proposal(db, job.job_id, provider, data)


async def make_completed_job(
    db: AsyncSession, customer: User, provider: User, price: str = "5000"
) -> Job:
    """Run a job through post, approve, bid, accept and deliver."""
    job = await make_job(db, customer)
    proposal = await make_proposal(db, job, provider, price=price)
    await proposal_service.accept_proposal(db, job.job_id, proposal.proposal_id, customer.user_id)
    return await job_service.deliver_job(db, job.job_id, provider.user_id)


async def reload(db: AsyncSession, model, ident):  # type: ignore[no-untyped-def]
    """Fetch a row bypassing the session's identity map cache."""
    return await db.get(model, ident, populate_existing=True)



def listing_payload(**overrides) -> dict:  # type: ignore[no-untyped-def]
    data = {
        "title": "Interior painting",
        "description": "Walls and ceilings, own equipment",
        "category": "painting",
        "pricing": {"amount": "1500", "price_type": "starting_from"},
        "service_areas": [{"city": "Istanbul", "districts": ["Kadikoy", "Besiktas"]}],
    }
    data.update(overrides)
    return data


async def make_listing(db: AsyncSession, provider: User, **overrides) -> ServiceListing:  # type: ignore[no-untyped-def]
    return await listing_service.create_listing(db, provider, ListingCreate(**listing_payload(**overrides)))
