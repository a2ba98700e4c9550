"""FastAPI dependencies. Services are built once in ``create_app`` and live on ``app.state``."""
from fastapi import Depends, HTTPException, Request

from marketsync.core.security import verify_request
from marketsync.integrations.base import InventoryStore
from marketsync.schemas.inventory import AccountRecord
from marketsync.services.analytics import AnalyticsService
from marketsync.services.cache_service import IntelligentCache
from marketsync.services.monitoring import MonitoringService
from marketsync.services.replenishment import ReplenishmentService
from marketsync.services.sync_service import SyncService


def get_cache(request: Request) -> IntelligentCache:
    return request.app.state.cache


def get_store(request: Request) -> InventoryStore:
    return request.app.state.store


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def get_monitoring_service(request: Request) -> MonitoringService:
    return request.app.state.monitoring_service


def get_replenishment_service(request: Request) -> ReplenishmentService:
    return request.app.state.replenishment_service


def get_analytics_service(request: Request) -> AnalyticsService:
    return request.app.state.analytics_service


async def require_account(
    account_id: int,
    tenant_id: str,
    store: InventoryStore,
) -> AccountRecord:
    """Account owned by ``tenant_id``. Someone else's account looks exactly like a missing one."""
    account = await store.get_account(account_id)
    if account is None or account.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail=f"Account {account_id} not found")
    return account


async def get_tenant_account(
    account_id: int,
    tenant_id: str = Depends(verify_request),
    store: InventoryStore = Depends(get_store),
) -> AccountRecord:
    """Query-parameter flavour of ``require_account`` for GET routes"""
    return await require_account(account_id, tenant_id, store)
