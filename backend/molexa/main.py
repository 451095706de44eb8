from fastapi import FastAPI
from contextlib import asynccontextmanager
from typing import Optional
import logging

from molexa.core.config import Settings, settings as default_settings
from molexa.core.scheduler import ArchiveScheduler
from molexa.core.usage_middleware import AnalyticsMiddleware
from molexa.api import analytics
from molexa.api import websocket as ws_router
from molexa.services.analytics import AnalyticsService

# ─── Logging ───
logging.basicConfig(
    level=default_settings.log_level.upper(),
    format="%(asctime)s | %(name)-20s | %(levelname)-7s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("molexa.main")

VERSION = "1.0.0"


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    service = AnalyticsService(settings)

    # ─── Lifecycle ───

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown lifecycle."""
        logger.info("moleXa analytics starting up…")
        await service.initialize()
        scheduler = ArchiveScheduler(service)
        app.state.scheduler = scheduler
        if settings.scheduler_enabled:
            scheduler.start()
            # Catch up on any month that closed while the process was down
            await service.archive_previous_period_if_rolled()
        service.publisher.start()
        yield
        logger.info("moleXa analytics shutting down…")
        scheduler.stop()
        await service.shutdown()

    app = FastAPI(
        title="moleXa Analytics",
        description="Request analytics for the moleXa PubChem educational proxy",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.analytics = service
    app.state.scheduler = None

    # Records every completed request; classification decides what is kept
    app.add_middleware(AnalyticsMiddleware)

    # Register routers
    app.include_router(analytics.router)
    app.include_router(ws_router.router)

    @app.get("/")
    def root():
        return {
            "name": "moleXa Analytics",
            "version": VERSION,
            "endpoints": {
                "analytics": "/analytics",
                "recent": "/analytics/recent?limit=20",
                "monthly": "/analytics/monthly/{YYYY-MM}",
                "report": "/analytics/report/{YYYY-MM}",
                "stream": "/analytics/stream",
                "archive": "POST /analytics/archive/{YYYY-MM}",
                "websocket": "ws://host/ws/analytics",
                "health": "/health",
                "docs": "/docs",
            },
        }

    @app.get("/health")
    def health():
        scheduler = app.state.scheduler
        return {
            "status": "healthy" if service.database_connected else "degraded",
            "analytics": service.summary().model_dump(by_alias=True, mode="json"),
            "pipeline": service.health(),
            "scheduler": scheduler.get_status() if scheduler else {"running": False, "jobs": []},
        }

    return app


app = create_app()
