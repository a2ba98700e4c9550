# marketsync/routes/monitoring.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from marketsync.core.enums import AlertSeverity, AlertType, MonitoringPeriod
from marketsync.core.exceptions import AccountNotFoundError
from marketsync.core.security import verify_request
from marketsync.dependencies import get_cache, get_monitoring_service, get_store, get_tenant_account, require_account
from marketsync.integrations.base import InventoryStore
from marketsync.scheduler import get_scheduler_status
from marketsync.schemas.inventory import AccountRecord
from marketsync.schemas.monitoring import AlertsResponse, CacheStatsResponse, DismissAlertRequest, HealthReport
from marketsync.services.cache_service import IntelligentCache
from marketsync.services.monitoring import MonitoringService

router = APIRouter(prefix="/api/ml", tags=["monitoring"])


@router.get("/alerts", response_model=AlertsResponse)
async def list_alerts(
    type: str = Query("all"),
    severity: str = Query("all"),
    account: AccountRecord = Depends(get_tenant_account),
    service: MonitoringService = Depends(get_monitoring_service),
):
    """Active alerts for an account, most severe first"""
    try:
        alert_type = None if type == "all" else AlertType(type)
        alert_severity = None if severity == "all" else AlertSeverity(severity)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return await service.get_alerts(account.id, alert_type, alert_severity)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/alerts/dismiss")
async def dismiss_alert(
    payload: DismissAlertRequest,
    tenant_id: str = Depends(verify_request),
    store: InventoryStore = Depends(get_store),
    service: MonitoringService = Depends(get_monitoring_service),
):
    await require_account(payload.account_id, tenant_id, store)
    await service.dismiss_alert(payload.account_id, payload.alert_id)
    return {"status": "dismissed", "alert_id": payload.alert_id}


@router.get("/health", response_model=HealthReport)
async def account_health(
    period: MonitoringPeriod = Query(MonitoringPeriod.DAY),
    account: AccountRecord = Depends(get_tenant_account),
    service: MonitoringService = Depends(get_monitoring_service),
):
    return await service.get_health(account.id, period)


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(
    user_id: Optional[str] = None,
    tenant_id: str = Depends(verify_request),
    cache: IntelligentCache = Depends(get_cache),
):
    stats = cache.get_stats()
    user_stats = cache.get_user_stats(user_id or tenant_id)
    return CacheStatsResponse(
        size=stats.size,
        max_size=stats.max_size,
        hits=stats.hits,
        misses=stats.misses,
        hit_rate=stats.hit_rate,
        efficiency=stats.efficiency,
        user_entries=user_stats.entries,
        user_memory_kb=user_stats.memory_kb,
    )


@router.get("/scheduler/status")
async def scheduler_status(tenant_id: str = Depends(verify_request)):
    return get_scheduler_status()
