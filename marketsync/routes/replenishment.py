# marketsync/routes/replenishment.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from marketsync.core.exceptions import ProductNotFoundError
from marketsync.core.security import verify_request
from marketsync.dependencies import get_replenishment_service
from marketsync.schemas.monitoring import RestockBatchReport, RestockSuggestion
from marketsync.services.replenishment import ReplenishmentService

router = APIRouter(prefix="/api/ml", tags=["replenishment"])


@router.get("/replenishment", response_model=RestockBatchReport)
async def restock_batch(
    product_ids: Optional[List[int]] = Query(None),
    tenant_id: str = Depends(verify_request),
    service: ReplenishmentService = Depends(get_replenishment_service),
):
    """Products that need a transfer or a purchase, most urgent first"""
    return await service.suggest_restock_batch(tenant_id, product_ids)


@router.get("/replenishment/{product_id}", response_model=RestockSuggestion)
async def restock_suggestion(
    product_id: int,
    tenant_id: str = Depends(verify_request),
    service: ReplenishmentService = Depends(get_replenishment_service),
):
    """Transfer and purchase suggestion for one product"""
    try:
        return await service.suggest_restock(tenant_id, product_id)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
