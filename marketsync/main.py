# marketsync/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from marketsync import __version__
from marketsync.core.config import Settings, get_settings
from marketsync.core.logging_config import configure_logging
from marketsync.database import dispose_engine, new_session
from marketsync.integrations.base import InventoryStore
from marketsync.integrations.sql_store import SqlInventoryStore
from marketsync.routes import analytics, monitoring, replenishment, sync, webhook
from marketsync.scheduler import start_scheduler, stop_scheduler
from marketsync.schemas.sync import ReconciliationThresholds
from marketsync.services.analytics import AnalyticsService
from marketsync.services.cache_service import IntelligentCache
from marketsync.services.mercadolivre import MercadoLivreClient, MercadoLivreService, MLAuthManager
from marketsync.services.monitoring import MonitoringService
from marketsync.services.replenishment import ReplenishmentService
from marketsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)


def build_services(app: FastAPI, settings: Settings, store: InventoryStore, client: MercadoLivreClient = None):
    """Wire the shared cache, gateway and services onto ``app.state``"""
    cache = IntelligentCache(max_size=settings.CACHE_MAX_SIZE)
    client = client or MercadoLivreClient()
    auth = MLAuthManager(store, client)
    gateway = MercadoLivreService(client, auth, store, cache, settings)
    thresholds = ReconciliationThresholds.from_settings(settings)

    app.state.settings = settings
    app.state.cache = cache
    app.state.store = store
    app.state.gateway = gateway
    app.state.sync_service = SyncService(store, gateway, cache, settings)
    app.state.monitoring_service = MonitoringService(store, cache, thresholds)
    app.state.replenishment_service = ReplenishmentService(
        store,
        gateway,
        thresholds,
        batch_size=settings.SYNC_BATCH_SIZE,
        concurrency=settings.SYNC_CONCURRENCY,
    )
    app.state.analytics_service = AnalyticsService(store, gateway, cache, thresholds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await start_scheduler(app.state.sync_service, app.state.cache, app.state.settings)
    try:
        yield  # This is where the app runs
    finally:
        await stop_scheduler()
        await dispose_engine()


def create_app(settings: Optional[Settings] = None, store: Optional[InventoryStore] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="Mercado Livre Sync", version=__version__, lifespan=lifespan)
    build_services(app, settings, store or SqlInventoryStore(new_session))

    app.include_router(sync.router)
    app.include_router(monitoring.router)
    app.include_router(replenishment.router)
    app.include_router(analytics.router)
    app.include_router(webhook.router)  # Mercado Livre posts without basic auth

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "marketsync", "version": __version__}

    logger.info(f"Application created ({settings.ENVIRONMENT})")
    return app


app = create_app()
