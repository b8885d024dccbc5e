"""Leave Portal — FastAPI Application Factory."""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_portal import __version__
from leave_portal.calendar.router import router as holidays_router
from leave_portal.common.exceptions import register_exception_handlers
from leave_portal.config import LOG_FORMAT, settings
from leave_portal.database import async_session_factory
from leave_portal.leave.router import router as requests_router
from leave_portal.leave.service import ApprovalWorkflow
from leave_portal.notifications.router import router as notifications_router
from leave_portal.notifications.service import DatabaseNotificationSink
from leave_portal.users.router import router as users_router


def configure_logging(level: Optional[str] = None) -> None:
    """Root logging for the service process, driven by ``LOG_LEVEL``."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    factory = session_factory or async_session_factory

    app = FastAPI(
        title="Leave Portal",
        description="Leave requests, approvals and day-balance accounting",
        version=__version__,
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
    )

    # One workflow per app: its per-user locks must be shared by all requests
    app.state.workflow = ApprovalWorkflow(factory, DatabaseNotificationSink(factory))

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(requests_router, prefix="/api/v1/requests", tags=["requests"])
    app.include_router(users_router, prefix="/api/v1", tags=["users"])
    app.include_router(holidays_router, prefix="/api/v1/holidays", tags=["holidays"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["notifications"])

    return app


configure_logging()
app = create_app()
