"""
Orgboard API Server

Entry point for the FastAPI application.
"""

from pathlib import Path

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session, ping_db
from app.core.errors import StorageUnavailable, register_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import (
    CSRFMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from app.core.redis import close_redis
from app.api.v1 import router as api_v1_router
from app.api.v1.auth import router as auth_router

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Orgboard",
        description="Organizations, memberships, invitations and boards.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    register_exception_handlers(app)

    # Middleware (last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-CSRF-Token", "X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # Auth routes (not org-scoped)
    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    # Uploaded logos
    app.mount(
        "/storage",
        StaticFiles(directory=Path(settings.storage_dir), check_dir=False),
        name="storage",
    )

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check(session: AsyncSession = Depends(get_session)):
        """Readiness check: the database must answer."""
        try:
            await ping_db(session)
        except SQLAlchemyError as exc:
            log.error("ready.database_unreachable", error=str(exc))
            raise StorageUnavailable("Database is unreachable") from exc
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        Path(settings.storage_dir).mkdir(parents=True, exist_ok=True)
        log.info("Orgboard starting", debug=settings.debug)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Orgboard shutting down")
        await close_redis()

    return app


app = create_app()
