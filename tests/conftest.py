"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (reconciliation, timekeeping, cdo).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test settings before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SOURCE_FETCH_CONCURRENCY", "1")

import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from dtr_portal.auth.dependencies import Actor
from dtr_portal.common.constants import ShiftMode, UserRole
from dtr_portal.common.rate_limit import limiter
from dtr_portal.config import settings
from dtr_portal.database import Base, get_db, get_session_factory
from dtr_portal.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import dtr_portal.cdo.models  # noqa: F401
import dtr_portal.common.audit  # noqa: F401
import dtr_portal.timekeeping.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def _override_get_session_factory() -> async_sessionmaker[AsyncSession]:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def local(day: date, hh: int, mm: int = 0) -> datetime:
    """Wall-clock instant in the portal timezone."""
    return datetime.combine(day, time(hh, mm), tzinfo=settings.tz)


async def seed_shift(
    db: AsyncSession,
    employee_id: uuid.UUID,
    *,
    name: str = "Regular 8-5",
    mode: ShiftMode = ShiftMode.ampm,
    checkin: Optional[time] = time(8, 0),
    checkout: Optional[time] = time(17, 0),
    break_out: Optional[time] = time(12, 0),
    break_in: Optional[time] = time(13, 0),
    credits: float = 1.0,
    grace_minutes: int = 0,
    effective_from: Optional[date] = None,
    effective_to: Optional[date] = None,
):
    """Insert a shift schedule and assign it to ``employee_id``."""
    from dtr_portal.timekeeping.models import EmployeeShiftAssignment, ShiftSchedule

    shift = ShiftSchedule(
        id=uuid.uuid4(),
        name=name,
        mode=mode,
        checkin_time=checkin,
        checkout_time=checkout,
        break_out_time=break_out,
        break_in_time=break_in,
        credits=credits,
        grace_minutes=grace_minutes,
        is_active=True,
    )
    db.add(shift)
    db.add(
        EmployeeShiftAssignment(
            id=uuid.uuid4(),
            employee_id=employee_id,
            shift_id=shift.id,
            effective_from=effective_from,
            effective_to=effective_to,
            is_active=True,
        )
    )
    await db.flush()
    return shift


async def seed_punches(
    db: AsyncSession,
    employee_id: uuid.UUID,
    day: date,
    *times: tuple[int, int],
) -> None:
    from dtr_portal.timekeeping.models import PunchLog

    for hh, mm in times:
        db.add(
            PunchLog(
                id=uuid.uuid4(),
                employee_id=employee_id,
                punched_at=local(day, hh, mm),
                source="biometric",
            )
        )
    await db.flush()


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def bearer(employee_id: uuid.UUID, role: UserRole = UserRole.employee) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id, role)}"}


@pytest.fixture
def employee_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def employee(employee_id) -> Actor:
    return Actor(employee_id=employee_id, role=UserRole.employee)


@pytest.fixture
def hr_admin() -> Actor:
    return Actor(employee_id=uuid.uuid4(), role=UserRole.hr_admin)


@pytest.fixture
def auth_headers(employee_id) -> dict[str, str]:
    """Bearer headers for the test employee."""
    return bearer(employee_id)


@pytest.fixture
def hr_headers(hr_admin) -> dict[str, str]:
    return bearer(hr_admin.employee_id, UserRole.hr_admin)
