"""Shared test fixtures — async DB, workflow, client, auth helpers, factories.

Uses a throwaway SQLite file + aiosqlite instead of PostgreSQL. The
workflow opens its own sessions, so every test database connection is
a separate NullPool connection to the same file.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Set test settings before any other import touches pydantic-settings
_DB_FILE = Path(tempfile.mkdtemp(prefix="leave-portal-tests-")) / "test.db"
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{_DB_FILE}"
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from leave_portal.common.constants import LeaveStatus, UserRole
from leave_portal.config import settings
from leave_portal.database import Base, get_db
from leave_portal.leave.schemas import LeaveRequestOut
from leave_portal.leave.service import ApprovalWorkflow
from leave_portal.main import create_app
from leave_portal.users.models import User

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import leave_portal.calendar.models  # noqa: F401
import leave_portal.ledger.models  # noqa: F401
import leave_portal.leave.models  # noqa: F401
import leave_portal.notifications.models  # noqa: F401
import leave_portal.users.models  # noqa: F401


# ── Test database (SQLite file) ─────────────────────────────────────

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
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


# ── Notification sink doubles ───────────────────────────────────────

class RecordingSink:
    """Keeps every notice in memory; raises instead when ``fail`` is set."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[LeaveRequestOut, LeaveStatus]] = []

    async def leave_status_changed(
        self,
        leave_request: LeaveRequestOut,
        previous_status: LeaveStatus,
    ) -> None:
        if self.fail:
            raise RuntimeError("notification backend unavailable")
        self.calls.append((leave_request, previous_status))


@pytest.fixture
def notifier() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def workflow(notifier) -> ApprovalWorkflow:
    """Workflow over the test database with the holiday calendar enabled."""
    return ApprovalWorkflow(TestSessionFactory, notifier, holidays_enabled=True)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance bound to the test database."""
    application = create_app(session_factory=TestSessionFactory)
    application.dependency_overrides[get_db] = _override_get_db
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

async def seed_user(
    *,
    username: Optional[str] = None,
    name: str = "Test User",
    role: UserRole = UserRole.employee,
    total_days: int = 26,
    used_days: int = 0,
) -> User:
    """Insert and commit a user so that workflow sessions can see it."""
    username = username or f"user-{uuid.uuid4().hex[:8]}"
    user = User(
        id=uuid.uuid4(),
        username=username,
        name=name,
        email=f"{username}@example.com",
        role=role,
        total_days=total_days,
        used_days=used_days,
        created_at=datetime.now(timezone.utc),
    )
    async with TestSessionFactory() as session:
        session.add(user)
        await session.commit()
    return user


async def fetch_user(user_id: uuid.UUID) -> User:
    """Re-read a user through a fresh session."""
    async with TestSessionFactory() as session:
        return await session.get(User, user_id)


@pytest.fixture
async def employee() -> User:
    return await seed_user(username="mario", name="Mario Rossi")


@pytest.fixture
async def manager() -> User:
    return await seed_user(username="laura", name="Laura Bianchi", role=UserRole.manager)


@pytest.fixture
async def admin() -> User:
    return await seed_user(username="admin", name="Administrator", role=UserRole.admin)


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: uuid.UUID,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
