"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import Settings, get_settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── Dispatch engine ──
from backend.app.alerts.alert_service import AlertDispatchService
from backend.app.alerts.channels.base import ChannelProviders, build_providers
from backend.app.alerts.risk_monitor import RiskMonitor
from backend.app.alerts.store import build_store
from backend.app.alerts.store.base import AlertStore
from backend.app.alerts.store.sql import SqlAlchemyAlertStore

# ── API routers ──
from backend.app.api.v1.alerts import router as alert_router
from backend.app.api.v1.devices import router as device_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[AlertStore] = None,
    providers: Optional[ChannelProviders] = None,
) -> FastAPI:
    """
    Build the application.

    ``store`` and ``providers`` override what configuration would pick;
    tests inject an in-memory store and deterministic simulated providers.
    """
    settings = settings or get_settings()

    # ── Application lifespan (startup / shutdown) ──

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        app_store = store if store is not None else build_store(settings)
        if isinstance(app_store, SqlAlchemyAlertStore):
            await app_store.init()
        app_providers = providers if providers is not None else build_providers(settings)
        dispatcher = AlertDispatchService.from_settings(app_store, app_providers, settings)

        app.state.settings = settings
        app.state.store = app_store
        app.state.providers = app_providers
        app.state.dispatcher = dispatcher
        monitor = RiskMonitor.from_settings(dispatcher, settings)
        app.state.monitor = monitor
        if settings.ALERT_CACHE_CLEANUP_INTERVAL_SECONDS > 0:
            await monitor.start(settings.ALERT_CACHE_CLEANUP_INTERVAL_SECONDS)
        yield
        # Shutdown: stop background work, close connections
        await monitor.stop()
        await app_providers.close()
        if isinstance(app_store, SqlAlchemyAlertStore):
            await app_store.close()
        logger.info("Shutting down %s", settings.APP_NAME)

    # ── Create application ──

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Rockfall alert notification dispatch engine for open-pit mines. "
            "Converts zone risk scores into tiered alerts, resolves the "
            "devices to notify by zone, adjacency or site-wide broadcast, "
            "applies per-device preferences and quiet hours, and delivers "
            "over push, SMS and email with live or simulated providers and "
            "per-channel delivery tracking."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (order matters — outermost first) ──

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app, settings)

    # ── Register routers ──
    app.include_router(alert_router)
    app.include_router(device_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "risk-evaluation",
                "target-resolution",
                "preference-filter",
                "message-templates",
                "channel-providers",
                "delivery-tracking",
            ],
            "channels": app.state.providers.modes(),
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — store reachability and channel modes."""
        report = await run_health_check(app.state.store, app.state.providers, settings)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(app.state.store, app.state.providers, settings)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
