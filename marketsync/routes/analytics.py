# marketsync/routes/analytics.py
from fastapi import APIRouter, Depends, HTTPException, Query

from marketsync.core.exceptions import AccountNotFoundError
from marketsync.dependencies import get_analytics_service, get_tenant_account
from marketsync.schemas.analytics import SalesMetrics
from marketsync.schemas.inventory import AccountRecord
from marketsync.services.analytics import MAX_WINDOW_DAYS, AnalyticsService

router = APIRouter(prefix="/api/ml", tags=["analytics"])


@router.get("/analytics/sales", response_model=SalesMetrics)
async def sales_metrics(
    days: int = Query(7, ge=1, le=MAX_WINDOW_DAYS),
    account: AccountRecord = Depends(get_tenant_account),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Revenue, units, average ticket and growth against the previous window"""
    try:
        return await service.get_sales_metrics(account.id, days)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
