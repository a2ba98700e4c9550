"""
Records the sync core reads from and writes to the inventory store.
"""
from datetime import datetime
from typing import Dict, Optional

from pydantic import Field, computed_field

from marketsync.core.enums import FULFILLMENT_LOGISTIC_TYPE, ListingStatus, SyncStatus
from marketsync.schemas.base import BaseSchema


class AccountRecord(BaseSchema):
    id: int
    tenant_id: str
    ml_user_id: int
    access_token: str
    refresh_token: str
    expires_at: datetime
    is_active: bool = True
    nickname: Optional[str] = None
    site_id: str = "MLB"


class ProductRecord(BaseSchema):
    id: int
    tenant_id: str
    sku: str
    title: str = ""
    cost_cents: Optional[int] = None
    is_active: bool = True


class LocalStockSnapshot(BaseSchema):
    """Per-warehouse quantities for one product at read time"""
    product_id: int
    per_warehouse: Dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def total(self) -> int:
        return sum(max(0, quantity) for quantity in self.per_warehouse.values())


class ListingLinkRecord(BaseSchema):
    id: int
    account_id: int
    item_id: str
    product_id: Optional[int] = None
    title: str = ""
    price_cents: int = 0
    original_price_cents: Optional[int] = None
    available_quantity: int = 0
    sold_quantity: int = 0
    sold_last_90d: int = 0
    status: str = ListingStatus.ACTIVE.value
    remote_updated_at: Optional[datetime] = None
    shipping_mode: Optional[str] = None
    logistic_type: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    sync_status: str = SyncStatus.PENDING.value
    sync_error: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_linked(self) -> bool:
        return self.product_id is not None

    @property
    def is_active(self) -> bool:
        return self.status == ListingStatus.ACTIVE.value

    @property
    def is_fulfillment(self) -> bool:
        return self.logistic_type == FULFILLMENT_LOGISTIC_TYPE


class ReplenishmentConfigRecord(BaseSchema):
    avg_delivery_days: int = 7
    full_release_days: int = 3
    safety_stock: int = 10
    min_coverage_days: int = 30
    low_stock_floor: Optional[int] = None
    divergence_ratio: Optional[float] = None
    critical_band: Optional[float] = None
    attention_band: Optional[float] = None
