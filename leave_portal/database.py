"""Async SQLAlchemy engine and session management."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from leave_portal.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {
        "echo": settings.ENVIRONMENT == "development",
        "pool_pre_ping": True,
    }
    # SQLite uses a singleton/static pool that rejects sizing arguments
    if not url.startswith("sqlite"):
        options.update(pool_size=10, max_overflow=20)
    return options


# Async engine for FastAPI
engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# Async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncSession:
    """FastAPI dependency: yield an async database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
