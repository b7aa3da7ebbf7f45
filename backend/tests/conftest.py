"""Pytest configuration and shared fixtures."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest-only-0123456789abcdef")
os.environ.setdefault("ENVIRONMENT", "development")

# IMPORTANT: Monkey-patch UUID support for SQLite BEFORE importing any models
import uuid as uuid_module

from sqlalchemy import String, TypeDecorator
from sqlalchemy.dialects import postgresql as pg_dialect


# Create SQLite-compatible UUID type
class SQLiteUUID(TypeDecorator):
    """Platform-independent UUID type for tests."""
    impl = String(36)
    cache_ok = True

    def __init__(self, *args, **kwargs):
        # Accept (and ignore) postgresql.UUID's as_uuid argument
        kwargs.pop("as_uuid", None)
        super().__init__(*args, **kwargs)

    def load_dialect_impl(self, dialect):
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid_module.UUID):
            return value
        return uuid_module.UUID(value)


# Replace PostgreSQL UUID with our SQLite-compatible version
pg_dialect.UUID = SQLiteUUID

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.security import create_access_token
from app.crud.user import user_crud
from app.main import app
from app.models.user import User
from app.services.email_verification_service import (
    EmailVerificationPolicy,
    EmailVerificationService,
    VerificationState,
    get_email_verification_service,
)
from app.services.password_reset_service import PasswordResetService, get_password_reset_service
from app.services.rate_limit_service import RateLimitResult

# Test database URL — use StaticPool so in-memory SQLite shares one connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FROZEN_NOW = datetime(2026, 3, 2, 9, 30, 0)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeEmailSender:
    """Records verification and password reset emails instead of sending them."""

    def __init__(self):
        self.sent = []
        self.reset_links = []
        self.fail = False

    async def send_verification_code_email(self, to_email, display_name, code, expires_in_minutes):
        if self.fail:
            return False
        self.sent.append(
            {
                "to_email": to_email,
                "display_name": display_name,
                "code": code,
                "expires_in_minutes": expires_in_minutes,
            }
        )
        return True

    async def send_password_reset_email(self, to_email, display_name, token, expires_in_minutes):
        if self.fail:
            return False
        self.reset_links.append(
            {
                "to_email": to_email,
                "display_name": display_name,
                "token": token,
                "expires_in_minutes": expires_in_minutes,
            }
        )
        return True

    @property
    def last_code(self) -> str:
        return self.sent[-1]["code"]

    @property
    def last_reset_token(self) -> str:
        return self.reset_links[-1]["token"]


@dataclass
class Registration:
    """A user created the way /register creates one."""

    user: User
    state: VerificationState


def auth_headers_for(user: User) -> dict:
    """Bearer headers for *user*."""
    access_token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {access_token}"}


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    # Import models so they're registered with Base.metadata
    from app.models import user  # noqa: F401

    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def outbox() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def rate_limiter():
    """Rate limiter stub that allows everything unless reconfigured by a test."""
    limiter = AsyncMock()
    limiter.check_email_verification_rate_limit = AsyncMock(
        return_value=RateLimitResult(allowed=True)
    )
    return limiter


@pytest.fixture
def verification_service(clock, outbox, rate_limiter) -> EmailVerificationService:
    """Service with production TTLs, a frozen clock and fake collaborators."""
    return EmailVerificationService(
        policy=EmailVerificationPolicy(
            code_ttl=timedelta(minutes=5),
            session_ttl=timedelta(minutes=30),
            resend_cooldown=timedelta(seconds=60),
        ),
        email_sender=outbox,
        rate_limiter=rate_limiter,
        clock=clock,
    )


@pytest.fixture
def password_reset_service(clock, outbox) -> PasswordResetService:
    """Reset service with a frozen clock and fake email sender."""
    return PasswordResetService(
        email_sender=outbox,
        token_ttl=timedelta(hours=1),
        max_per_hour=3,
        clock=clock,
    )


@pytest_asyncio.fixture
async def registration(db_session: AsyncSession, verification_service) -> Registration:
    """An unverified user holding a freshly issued code and session."""
    state = await verification_service.issue_state()
    user = await user_crud.create(
        db=db_session,
        email="reader@example.com",
        password="Correct horse battery 9",
        name="Reader",
        **state.storage_fields(),
    )
    return Registration(user=user, state=state)


@pytest_asyncio.fixture
async def verified_user(db_session: AsyncSession, clock) -> User:
    """A user whose email is already verified."""
    user = await user_crud.create(
        db=db_session,
        email="verified@example.com",
        password="Correct horse battery 9",
    )
    await user_crud.mark_email_verified(db_session, user.id, clock())
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def async_client(db_session, verification_service, password_reset_service) -> AsyncGenerator[AsyncClient, None]:
    """Async test client wired to the test database and verification service."""

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_email_verification_service] = lambda: verification_service
    app.dependency_overrides[get_password_reset_service] = lambda: password_reset_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
