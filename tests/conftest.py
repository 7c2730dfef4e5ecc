"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- HTTP test client with dependency overrides
- Fake payment processor, fake Redis, recording realtime connections
- Test data factories
"""
# Settings are read at import time; the validator refuses an empty JWT secret when DEBUG=False
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from decimal import Decimal
from itertools import count
from typing import AsyncGenerator
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from manpower.api.dependencies.services import get_hub, get_processor
from manpower.core.config import settings
from manpower.db.database import Base, get_db
from manpower.db.models.job import Job
from manpower.db.models.payment import Payment, PaymentMethod, PaymentStatus
from manpower.db.models.user import User, UserRole
from manpower.db.models.worker_wallet import WorkerWallet
from manpower.domain.services.realtime import RealtimeHub
from manpower.main import app
from tests.helpers import FakePaymentProcessor, FakeRedis


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Fakes for external collaborators
# ============================================================================


@pytest.fixture
def fake_processor() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replaces get_redis with FakeRedis for every test"""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("manpower.core.redis_client.get_redis", _get_fake_redis):
        yield _fake


@pytest.fixture
def hub(fake_redis) -> RealtimeHub:
    """Local-only hub; tests join RecordingConnections to observe broadcasts"""

    async def _factory():
        return fake_redis

    return RealtimeHub(fanout=False, redis_factory=_factory)


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, fake_processor, hub):
    """Create test client with database, processor and hub overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_processor] = lambda: fake_processor
    app.dependency_overrides[get_hub] = lambda: hub

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================

_email_counter = count(1)


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        name: str = "Test User",
        role: UserRole = UserRole.WORKER,
        email: str | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            name=name,
            email=email or f"user{next(_email_counter)}@example.com",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        # Detached: a rollback inside a service must not expire it under the test
        db_session.expunge(user)
        return user

    return _create_user


@pytest.fixture
def job_factory(db_session: AsyncSession):
    """Factory for creating test jobs"""
    async def _create_job(business_id: int, title: str = "Warehouse shift") -> Job:
        job = Job(business_id=business_id, title=title)
        db_session.add(job)
        await db_session.commit()
        await db_session.refresh(job)
        db_session.expunge(job)
        return job

    return _create_job


@pytest.fixture
def wallet_factory(db_session: AsyncSession):
    """Factory for creating test wallets"""
    async def _create_wallet(
        worker_id: int,
        balance: Decimal | str = "0.00",
        pending_balance: Decimal | str = "0.00",
        total_earnings: Decimal | str | None = None,
    ) -> WorkerWallet:
        wallet = WorkerWallet(
            worker_id=worker_id,
            balance=Decimal(balance),
            pending_balance=Decimal(pending_balance),
            total_earnings=Decimal(total_earnings if total_earnings is not None else balance),
            total_withdrawals=Decimal("0.00"),
        )
        db_session.add(wallet)
        await db_session.commit()
        await db_session.refresh(wallet)
        return wallet

    return _create_wallet


@pytest.fixture
def payment_factory(db_session: AsyncSession):
    """Factory for creating payments directly, bypassing the processor"""
    async def _create_payment(
        job_id: int,
        worker_id: int,
        business_id: int,
        amount: Decimal | str = "100.00",
        status: PaymentStatus = PaymentStatus.PENDING,
    ) -> Payment:
        payment = Payment(
            job_id=job_id,
            worker_id=worker_id,
            business_id=business_id,
            amount=Decimal(amount),
            payment_method=PaymentMethod.STRIPE,
            status=status,
        )
        db_session.add(payment)
        await db_session.commit()
        await db_session.refresh(payment)
        return payment

    return _create_payment


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def worker(user_factory) -> User:
    return await user_factory(name="Dana Worker", role=UserRole.WORKER)


@pytest.fixture
async def business(user_factory) -> User:
    return await user_factory(name="Acme Logistics", role=UserRole.BUSINESS)


@pytest.fixture
async def admin(user_factory) -> User:
    return await user_factory(name="Ops Admin", role=UserRole.ADMIN)


@pytest.fixture
async def job(job_factory, business) -> Job:
    return await job_factory(business_id=business.id)


# ============================================================================
# Settings / Circuit Breaker Reset
# ============================================================================

@pytest.fixture(autouse=True)
def ledger_settings():
    """Pin the ledger policy regardless of the environment"""
    with patch.object(settings, "PLATFORM_COMMISSION_RATE", Decimal("10")), \
         patch.object(settings, "MIN_WITHDRAWAL_AMOUNT", Decimal("10")), \
         patch.object(settings, "PAYMENT_CURRENCY", "usd"):
        yield


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from manpower.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()
