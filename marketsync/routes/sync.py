# marketsync/routes/sync.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from marketsync.core.exceptions import AccountNotFoundError, MarketplaceAuthError, MarketplaceAPIError
from marketsync.core.security import verify_request
from marketsync.dependencies import get_store, get_sync_service, get_tenant_account, require_account
from marketsync.integrations.base import InventoryStore
from marketsync.schemas.inventory import AccountRecord
from marketsync.schemas.sync import (
    PriceRefreshRequest,
    PriceRefreshResult,
    SyncHistoryRecord,
    SyncOverview,
    SyncRequest,
    SyncSummary,
)
from marketsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/ml", tags=["sync"])


@router.post("/sync", response_model=SyncSummary)
async def run_sync(
    payload: SyncRequest,
    tenant_id: str = Depends(verify_request),
    store: InventoryStore = Depends(get_store),
    service: SyncService = Depends(get_sync_service),
):
    """Run a sync pass for one account and return its summary"""
    await require_account(payload.account_id, tenant_id, store)
    try:
        return await service.run_sync(
            payload.account_id,
            strategy=payload.strategy,
            max_items=payload.max_items,
            item_ids=payload.item_ids,
        )
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MarketplaceAuthError as e:
        raise HTTPException(status_code=502, detail=f"Mercado Livre authorization failed: {e}")
    except MarketplaceAPIError as e:
        raise HTTPException(status_code=502, detail=f"Mercado Livre unavailable: {e}")


@router.get("/sync/history", response_model=List[SyncHistoryRecord])
async def sync_history(
    limit: int = Query(20, ge=1, le=100),
    account: AccountRecord = Depends(get_tenant_account),
    service: SyncService = Depends(get_sync_service),
):
    return await service.get_sync_history(account.id, limit=limit)


@router.get("/sync/status", response_model=SyncOverview)
async def sync_status(
    account: AccountRecord = Depends(get_tenant_account),
    service: SyncService = Depends(get_sync_service),
):
    return await service.sync_overview(account.id)


@router.post("/prices/refresh", response_model=PriceRefreshResult)
async def refresh_prices(
    payload: PriceRefreshRequest,
    tenant_id: str = Depends(verify_request),
    store: InventoryStore = Depends(get_store),
    service: SyncService = Depends(get_sync_service),
):
    await require_account(payload.account_id, tenant_id, store)
    try:
        return await service.refresh_prices(payload.account_id, force=payload.force)
    except MarketplaceAuthError as e:
        raise HTTPException(status_code=502, detail=f"Mercado Livre authorization failed: {e}")
    except MarketplaceAPIError as e:
        raise HTTPException(status_code=502, detail=f"Mercado Livre unavailable: {e}")
