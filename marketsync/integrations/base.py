from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Set

from marketsync.schemas.inventory import (
    AccountRecord,
    ListingLinkRecord,
    LocalStockSnapshot,
    ProductRecord,
    ReplenishmentConfigRecord,
)
from marketsync.schemas.marketplace import RemoteListing
from marketsync.schemas.sync import SyncHistoryRecord, SyncTask


class InventoryStore(ABC):
    """
    Persistence the sync core depends on.

    The relational inventory (products, warehouses, orders) is owned by the
    rest of the system; this interface is the narrow slice the core needs.
    """

    # Accounts

    @abstractmethod
    async def get_account(self, account_id: int) -> Optional[AccountRecord]:
        pass

    @abstractmethod
    async def get_account_by_ml_user(self, ml_user_id: int) -> Optional[AccountRecord]:
        """Account for a Mercado Livre seller id, used to route notifications"""
        pass

    @abstractmethod
    async def list_active_accounts(self) -> List[AccountRecord]:
        pass

    @abstractmethod
    async def save_tokens(self, account_id: int, access_token: str, refresh_token: str, expires_at: datetime) -> None:
        """Persist a freshly refreshed token pair"""
        pass

    @abstractmethod
    async def deactivate_account(self, account_id: int) -> None:
        pass

    # Local catalogue

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[ProductRecord]:
        pass

    @abstractmethod
    async def list_products(self, tenant_id: str, active_only: bool = True) -> List[ProductRecord]:
        pass

    @abstractmethod
    async def find_product_by_sku(self, tenant_id: str, sku: str) -> Optional[ProductRecord]:
        pass

    @abstractmethod
    async def get_stock_snapshot(self, product_id: int) -> Optional[LocalStockSnapshot]:
        """Per-warehouse stock, or None when the product no longer exists"""
        pass

    # Listing links

    @abstractmethod
    async def get_link(self, account_id: int, item_id: str) -> Optional[ListingLinkRecord]:
        pass

    @abstractmethod
    async def list_links(
        self,
        account_id: int,
        linked_only: bool = False,
        active_only: bool = False,
        sync_status: Optional[str] = None,
        max_quantity: Optional[int] = None,
        min_sold: Optional[int] = None,
        item_ids: Optional[List[str]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[ListingLinkRecord]:
        """
        Query links for an account.

        ``order_by`` is one of "quantity_asc", "last_synced_asc", "sold_desc"
        or None for insertion order.
        """
        pass

    @abstractmethod
    async def list_links_for_product(self, product_id: int) -> List[ListingLinkRecord]:
        pass

    @abstractmethod
    async def create_link(
        self, account_id: int, product_id: Optional[int], listing: RemoteListing, synced_at: datetime
    ) -> ListingLinkRecord:
        pass

    @abstractmethod
    async def update_link(self, link_id: int, **fields) -> None:
        pass

    # Sync history

    @abstractmethod
    async def create_sync_history(self, task: SyncTask) -> int:
        """Store a sealed task. Returns the history id."""
        pass

    @abstractmethod
    async def list_sync_history(
        self, account_id: int, limit: int = 20, since: Optional[datetime] = None
    ) -> List[SyncHistoryRecord]:
        pass

    # Replenishment and alerts

    @abstractmethod
    async def get_replenishment_config(
        self, tenant_id: str, product_id: Optional[int] = None
    ) -> Optional[ReplenishmentConfigRecord]:
        pass

    @abstractmethod
    async def dismiss_alert(self, account_id: int, alert_id: str) -> None:
        pass

    @abstractmethod
    async def list_dismissed_alerts(self, account_id: int) -> Set[str]:
        pass
