"""DTR Portal — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from dtr_portal.cdo.router import router as cdo_router
from dtr_portal.common.exceptions import register_exception_handlers
from dtr_portal.common.log_config import configure_logging
from dtr_portal.common.rate_limit import limiter
from dtr_portal.config import settings
from dtr_portal.database import engine
from dtr_portal.reconciliation.router import router as dtr_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("DTR portal starting (environment=%s, tz=%s)", settings.ENVIRONMENT, settings.TIMEZONE)
    yield
    await engine.dispose()
    logger.info("DTR portal stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="DTR Portal",
        description="Daily time record reconciliation and CDO credit ledger",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

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
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(dtr_router, prefix="/api/v1/dtr", tags=["dtr"])
    app.include_router(cdo_router, prefix="/api/v1/cdo", tags=["cdo"])

    return app


app = create_app()
