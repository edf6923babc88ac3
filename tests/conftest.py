"""Shared test fixtures."""
import asyncio
import os
from decimal import Decimal

# Settings are read at import time
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("BUSINESS_TIMEZONE", "UTC")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backoffice.db.base import Base
from backoffice.db.session import get_session
from backoffice.main import create_app
from backoffice.middleware.auth import TokenManager
from backoffice.models import PostbackConfiguration, Product, User
from backoffice.services.postback_dispatcher import PostbackDispatcher, SendOutcome


class FakeSender:
    """Postback sender that records calls instead of doing HTTP."""

    def __init__(self, outcomes=None, delay=0.0):
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls = []

    async def send(self, url, payload):
        self.calls.append((url, payload))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return SendOutcome(True, 200, "OK")


async def no_sleep(_seconds):
    return None


def bearer_headers(user):
    token = TokenManager.create_access_token({"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def admin(db_session):
    user = User(username="admin", email="admin@example.com", role="admin", status="active")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def affiliate(db_session):
    user = User(
        username="affiliate",
        email="affiliate@example.com",
        role="user",
        status="active",
        api_key="aff-key-1",
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def other_affiliate(db_session):
    user = User(
        username="other",
        email="other@example.com",
        role="user",
        status="active",
        api_key="aff-key-2",
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def inactive_affiliate(db_session):
    user = User(username="pending", role="user", status="pending", api_key="aff-key-pending")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def product(db_session):
    item = Product(name="Crema Facial", sku="CREMA-01", price=Decimal("100.00"), payout_po=Decimal("20.00"))
    db_session.add(item)
    await db_session.commit()
    return item


@pytest_asyncio.fixture
async def product_without_payout(db_session):
    item = Product(name="Sin Payout", sku="NOPAY-01", price=Decimal("50.00"), payout_po=None)
    db_session.add(item)
    await db_session.commit()
    return item


@pytest_asyncio.fixture
async def postback_config(db_session, affiliate):
    config = PostbackConfiguration(
        user_id=affiliate.id,
        is_enabled=True,
        sale_url="https://tracker.example.com/pb?id={leadId}&s={status}&p={payout}&pub={publisherId}&prod={product}",
        hold_url="https://tracker.example.com/hold?id={leadid}",
        rejected_url=None,
        trash_url="  ",
    )
    db_session.add(config)
    await db_session.commit()
    return config


@pytest.fixture
def auth_headers():
    return bearer_headers


@pytest.fixture
def make_sender():
    return FakeSender


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def dispatcher(session_factory, fake_sender):
    return PostbackDispatcher(
        session_factory,
        fake_sender,
        max_retries=3,
        retry_delays=[1, 5, 15],
        sleep=no_sleep,
    )


@pytest_asyncio.fixture
async def app(session_factory, fake_sender):
    application = create_app(postback_sender=fake_sender, session_factory=session_factory)

    async def _override_session():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_session] = _override_session
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
