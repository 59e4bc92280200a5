import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import auth, colours, health, monitoring
from app.core.config import Settings, settings
from app.core.errors import register_exception_handlers
from app.core.logging import AppLogger, setup_logging
from app.core.middleware import MonitoringMiddleware
from app.core.monitoring import MonitoringOptions, Telemetry
from app.db.session import Database
from app.services.telemetry_store import TelemetryStore

logger = logging.getLogger(__name__)


# =============================================================================
# OpenAPI Tags Metadata
# =============================================================================
tags_metadata = [
    {
        "name": "auth",
        "description": "**Authentication** - Username/password login, token refresh and logout. Sets the session cookies read by request monitoring.",
    },
    {
        "name": "monitoring",
        "description": "**Monitoring** - Admin dashboard over request performance, system logs, user activity and the audit trail.",
    },
    {
        "name": "colours",
        "description": "**Colours** - Colour master data. Every change is written to the audit trail.",
    },
    {
        "name": "health",
        "description": "**Health** - Database reachability probe.",
    },
]


def build_telemetry(database: Database, app_settings: Settings = settings) -> Telemetry:
    return Telemetry(
        store=TelemetryStore(database),
        logger=AppLogger(),
        options=MonitoringOptions.from_settings(app_settings),
    )


def create_app(
    app_settings: Settings = settings,
    database: Optional[Database] = None,
    telemetry: Optional[Telemetry] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    ``database`` and ``telemetry`` default to instances built from
    ``app_settings``; tests inject their own.
    """
    database = database or Database.from_settings(app_settings)
    telemetry = telemetry or build_telemetry(database, app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        # Startup
        if configure_logging:
            setup_logging(app_settings)
        logger.info(f"Starting {app_settings.PROJECT_NAME} v{app_settings.VERSION}")
        logger.info(f"Environment: {app_settings.ENVIRONMENT}")
        if app_settings.DB_AUTO_CREATE:
            database.create_all()

        yield

        # Shutdown
        logger.info("Shutting down...")
        database.dispose()

    app = FastAPI(
        title=app_settings.PROJECT_NAME,
        version=app_settings.VERSION,
        description="""
## HPS Operations API

Manufacturing operations backend with request monitoring, user activity
tracking and an audit trail of every data change.
        """,
        openapi_tags=tags_metadata,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url=f"{app_settings.API_V1_PREFIX}/openapi.json",
    )
    app.state.settings = app_settings
    app.state.database = database
    app.state.telemetry = telemetry

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request monitoring: request id, timing, error capture, performance rows
    app.add_middleware(
        MonitoringMiddleware,
        telemetry=telemetry,
        exclude_paths=app_settings.MONITOR_EXCLUDE_PATHS,
    )

    # Register global exception handlers
    register_exception_handlers(app)

    # Include routers
    app.include_router(health.router)
    app.include_router(
        auth.router, prefix=f"{app_settings.API_V1_PREFIX}/auth", tags=["auth"]
    )
    app.include_router(
        monitoring.router,
        prefix=f"{app_settings.API_V1_PREFIX}/monitoring",
        tags=["monitoring"],
    )
    app.include_router(
        colours.router, prefix=f"{app_settings.API_V1_PREFIX}/colours", tags=["colours"]
    )

    return app


app = create_app()
