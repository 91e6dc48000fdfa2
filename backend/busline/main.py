"""
Busline Booking API - Main Application Entry Point

Bus booking and fleet visibility service demonstrating:
- Inventory-consistent seat reservation (per-schedule locks / optimistic locking)
- Live bus locations broadcast over a WebSocket subscription hub
- Redis caching of the route catalog with prefix invalidation
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from busline.api.middleware import RequestLoggingMiddleware
from busline.api.router import api_router
from busline.api.routes import realtime
from busline.core.config import Settings, get_settings
from busline.core.errors import AuthenticationError, DomainError
from busline.core.logging import get_logger, setup_logging
from busline.core.metrics import metrics_endpoint
from busline.services.bootstrap import Services, build_services
from busline.services.seed import seed_demo_data

logger = get_logger(__name__)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("domain_error", code=exc.code, detail=exc.message, **exc.context)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle: startup and shutdown hooks."""
        setup_logging(settings)

        logger.info(
            "application_starting",
            app=settings.APP_NAME,
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            store=settings.STORE_BACKEND,
        )

        if app.state.services is None:
            app.state.services = build_services(settings)
        svc: Services = app.state.services

        if settings.REDIS_ENABLED:
            if await svc.cache.get_redis():
                logger.info("redis_ready")
            else:
                logger.warning("redis_unavailable", message="Running without cache")

        if settings.SEED_DEMO_DATA:
            await seed_demo_data(svc.store, settings)
        if settings.LOCATION_INGEST_ENABLED:
            svc.ingest.start()

        yield

        await svc.close()
        logger.info("application_shutdown")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Bus booking API with inventory-consistent reservations and live fleet tracking",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    # Set up front so tests can drive the app without running the lifespan
    app.state.services = services

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Custom middleware
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(DomainError, domain_error_handler)

    # Routes
    app.include_router(api_router)
    app.include_router(realtime.router)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for Docker and load balancers."""
        svc: Services = app.state.services
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "store": settings.STORE_BACKEND,
            "cache": await svc.cache.stats(),
            "realtime": svc.hub.stats(),
            "locationIngest": {"running": svc.ingest.running, "interval": svc.ingest.interval},
        }

    @app.get("/metrics", tags=["Health"], include_in_schema=False)
    async def metrics():
        return metrics_endpoint()

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "message": f"Welcome to {settings.APP_NAME}",
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "realtime": "/ws",
        }

    return app


app = create_app()
