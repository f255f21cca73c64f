import sys
import os
import itertools
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

# Ensure project root is on sys.path so `import app` works
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from database.base import Base
import database.models  # noqa: F401
from database.models import ReferrerClass, TransactionType
from services.commission_settings import CommissionSettingsService
from services.earning_ledger import EarningLedgerService
from services.notifications import ReferralNotifier


class FakeClock:
    """Controllable naive-UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def database_url(tmp_path) -> str:
    """SQLite file per test unless TEST_DATABASE_URL points at PostgreSQL."""
    return os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"


@pytest_asyncio.fixture(scope="function")
async def async_engine(database_url):
    """Create async engine for tests."""
    engine = create_async_engine(
        database_url,
        echo=False,
        poolclass=NullPool,  # Disable pooling for tests
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(async_engine) -> async_sessionmaker:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 5, 12, 0, 0))


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock(spec=ReferralNotifier)


@pytest_asyncio.fixture
async def referrer(db_session: AsyncSession, clock: FakeClock) -> str:
    """A normal-class referrer with default 20%/10% rates."""
    await CommissionSettingsService(db_session, clock=clock).initialize_for_referrer(
        "referrer-1", ReferrerClass.NORMAL
    )
    return "referrer-1"


@pytest.fixture
def credit(db_session, clock):
    """
    Credit an initial earning (20% of ``gross``) from a fresh buyer.

    The clock moves one minute after each credit so earnings have a
    strict creation order.
    """
    counter = itertools.count(1)

    async def _credit(referrer_id: str, gross, currency: str = "USD"):
        n = next(counter)
        result = await EarningLedgerService(db_session, clock=clock).credit_earning(
            f"buyer-{n}",
            f"txn-{n}",
            TransactionType.SUBSCRIPTION,
            Decimal(str(gross)),
            currency,
            referrer_id=referrer_id,
        )
        clock.advance(minutes=1)
        return result.earning

    return _credit
