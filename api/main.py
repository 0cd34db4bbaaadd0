"""
Main FastAPI application for the Clinic Inbox.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import ai_settings, auth, channels, console, knowledge, realtime, webhooks
from .services import Services
from .middleware.metrics import MetricsMiddleware, metrics_endpoint
from config.settings import get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Clinic Inbox starting up...")
    services: Services = app.state.services
    await services.start()
    if not services.settings.api_key:
        logger.warning("API key authentication disabled - no key configured")
    logger.info("Clinic Inbox ready")
    yield
    logger.info("Clinic Inbox shutting down...")
    await services.stop()


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Pre-wired service container; built from settings when omitted
    """
    settings = services.settings if services else get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.api_title,
        description="Unified LINE and Facebook inbox with knowledge-grounded AI replies and staff handoff.",
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services or Services(settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    # --- Platform webhooks ---
    app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])

    # --- Staff console ---
    app.include_router(console.router, prefix="/api/v1", tags=["Console"])
    app.include_router(realtime.router, prefix="/api/v1", tags=["Realtime"])
    app.include_router(auth.router, prefix="/api/v1", tags=["Auth"])

    # --- Administration ---
    app.include_router(channels.router, prefix="/api/v1", tags=["Channels"])
    app.include_router(knowledge.router, prefix="/api/v1", tags=["Knowledge"])
    app.include_router(ai_settings.router, prefix="/api/v1", tags=["Settings"])

    # --- Prometheus metrics endpoint ---
    app.get("/metrics", tags=["Monitoring"])(metrics_endpoint)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "service": "Clinic Inbox",
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
        }

    # Health check
    @app.get("/health")
    async def health():
        services = app.state.services
        return {
            "status": "healthy" if services.is_ready else "degraded",
            "services": services.health(),
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
