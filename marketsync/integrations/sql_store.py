# marketsync/integrations/sql_store.py
"""
SQLAlchemy implementation of InventoryStore.

Each call opens its own short-lived session so a long sync run never holds a
connection across upstream HTTP calls.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketsync.core.enums import ListingStatus, SyncStatus
from marketsync.core.exceptions import StoreError
from marketsync.integrations.base import InventoryStore
from marketsync.models import (
    DismissedAlert,
    ListingLink,
    MarketplaceAccount,
    Product,
    ReplenishmentConfig,
    StockLevel,
    SyncHistory,
)
from marketsync.schemas.inventory import (
    AccountRecord,
    ListingLinkRecord,
    LocalStockSnapshot,
    ProductRecord,
    ReplenishmentConfigRecord,
)
from marketsync.schemas.marketplace import RemoteListing
from marketsync.schemas.sync import SyncHistoryRecord, SyncTask

logger = logging.getLogger(__name__)

LINK_ORDERINGS = {
    "quantity_asc": (ListingLink.available_quantity.asc(),),
    "last_synced_asc": (ListingLink.last_synced_at.asc().nulls_first(),),
    "sold_desc": (ListingLink.sold_quantity.desc(),),
}


class SqlInventoryStore(InventoryStore):

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    # Accounts

    async def get_account(self, account_id: int) -> Optional[AccountRecord]:
        async with self._session_factory() as session:
            account = await session.get(MarketplaceAccount, account_id)
            return AccountRecord.model_validate(account) if account else None

    async def get_account_by_ml_user(self, ml_user_id: int) -> Optional[AccountRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MarketplaceAccount).where(MarketplaceAccount.ml_user_id == ml_user_id).limit(1)
            )
            account = result.scalars().first()
            return AccountRecord.model_validate(account) if account else None

    async def list_active_accounts(self) -> List[AccountRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MarketplaceAccount).where(MarketplaceAccount.is_active.is_(True)).order_by(MarketplaceAccount.id)
            )
            return [AccountRecord.model_validate(row) for row in result.scalars().all()]

    async def save_tokens(self, account_id: int, access_token: str, refresh_token: str, expires_at: datetime) -> None:
        await self._execute_update(
            update(MarketplaceAccount)
            .where(MarketplaceAccount.id == account_id)
            .values(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at, is_active=True)
        )

    async def deactivate_account(self, account_id: int) -> None:
        await self._execute_update(
            update(MarketplaceAccount).where(MarketplaceAccount.id == account_id).values(is_active=False)
        )

    # Local catalogue

    async def get_product(self, product_id: int) -> Optional[ProductRecord]:
        async with self._session_factory() as session:
            product = await session.get(Product, product_id)
            return ProductRecord.model_validate(product) if product else None

    async def list_products(self, tenant_id: str, active_only: bool = True) -> List[ProductRecord]:
        query = select(Product).where(Product.tenant_id == tenant_id)
        if active_only:
            query = query.where(Product.is_active.is_(True))
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(Product.id))
            return [ProductRecord.model_validate(row) for row in result.scalars().all()]

    async def find_product_by_sku(self, tenant_id: str, sku: str) -> Optional[ProductRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Product).where(Product.tenant_id == tenant_id, Product.sku == sku).limit(1)
            )
            product = result.scalars().first()
            return ProductRecord.model_validate(product) if product else None

    async def get_stock_snapshot(self, product_id: int) -> Optional[LocalStockSnapshot]:
        async with self._session_factory() as session:
            product = await session.get(Product, product_id)
            if product is None:
                return None
            result = await session.execute(select(StockLevel).where(StockLevel.product_id == product_id))
            levels = result.scalars().all()
            return LocalStockSnapshot(
                product_id=product_id,
                per_warehouse={level.warehouse_id: level.quantity for level in levels},
            )

    # Listing links

    async def get_link(self, account_id: int, item_id: str) -> Optional[ListingLinkRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ListingLink).where(ListingLink.account_id == account_id, ListingLink.item_id == item_id)
            )
            link = result.scalars().first()
            return ListingLinkRecord.model_validate(link) if link else None

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
        query = select(ListingLink).where(ListingLink.account_id == account_id)
        if linked_only:
            query = query.where(ListingLink.product_id.is_not(None))
        if active_only:
            query = query.where(ListingLink.status == ListingStatus.ACTIVE.value)
        if sync_status is not None:
            query = query.where(ListingLink.sync_status == sync_status)
        if max_quantity is not None:
            query = query.where(ListingLink.available_quantity <= max_quantity)
        if min_sold is not None:
            query = query.where(ListingLink.sold_quantity >= min_sold)
        if item_ids is not None:
            query = query.where(ListingLink.item_id.in_(item_ids))

        query = query.order_by(*LINK_ORDERINGS.get(order_by, (ListingLink.id.asc(),)))
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [ListingLinkRecord.model_validate(row) for row in result.scalars().all()]

    async def list_links_for_product(self, product_id: int) -> List[ListingLinkRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ListingLink).where(ListingLink.product_id == product_id).order_by(ListingLink.id)
            )
            return [ListingLinkRecord.model_validate(row) for row in result.scalars().all()]

    async def create_link(
        self, account_id: int, product_id: Optional[int], listing: RemoteListing, synced_at: datetime
    ) -> ListingLinkRecord:
        link = ListingLink(
            account_id=account_id,
            item_id=listing.item_id,
            product_id=product_id,
            title=listing.title,
            price_cents=listing.price_cents,
            original_price_cents=listing.original_price_cents,
            available_quantity=listing.available_quantity,
            sold_quantity=listing.sold_quantity,
            status=listing.status.value,
            remote_updated_at=listing.last_updated,
            shipping_mode=listing.shipping_mode,
            logistic_type=listing.logistic_type,
            last_synced_at=synced_at,
            sync_status=SyncStatus.SYNCED.value,
        )
        async with self._session_factory() as session:
            try:
                session.add(link)
                await session.commit()
                await session.refresh(link)
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to create link for {listing.item_id}: {e}", exc_info=True)
                raise StoreError(f"Failed to create link for {listing.item_id}: {e}")
            return ListingLinkRecord.model_validate(link)

    async def update_link(self, link_id: int, **fields) -> None:
        if not fields:
            return
        await self._execute_update(update(ListingLink).where(ListingLink.id == link_id).values(**fields))

    # Sync history

    async def create_sync_history(self, task: SyncTask) -> int:
        history = SyncHistory(
            account_id=task.account_id,
            strategy=task.strategy.value,
            processed=task.processed,
            updated=task.updated,
            created=task.created,
            errored=task.errored,
            errors=list(task.errors),
            skipped=list(task.skipped),
            success=task.success,
            fatal_error=task.fatal_error,
            duration_seconds=task.duration_seconds,
            started_at=task.started_at,
            finished_at=task.finished_at,
        )
        async with self._session_factory() as session:
            try:
                session.add(history)
                await session.commit()
                await session.refresh(history)
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to store sync history for account {task.account_id}: {e}", exc_info=True)
                raise StoreError(f"Failed to store sync history: {e}")
            return history.id

    async def list_sync_history(
        self, account_id: int, limit: int = 20, since: Optional[datetime] = None
    ) -> List[SyncHistoryRecord]:
        query = select(SyncHistory).where(SyncHistory.account_id == account_id)
        if since is not None:
            query = query.where(SyncHistory.started_at >= since)
        query = query.order_by(SyncHistory.started_at.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [SyncHistoryRecord.model_validate(row) for row in result.scalars().all()]

    # Replenishment and alerts

    async def get_replenishment_config(
        self, tenant_id: str, product_id: Optional[int] = None
    ) -> Optional[ReplenishmentConfigRecord]:
        query = select(ReplenishmentConfig).where(ReplenishmentConfig.tenant_id == tenant_id)
        if product_id is not None:
            query = query.where(
                (ReplenishmentConfig.product_id == product_id) | ReplenishmentConfig.product_id.is_(None)
            ).order_by(ReplenishmentConfig.product_id.desc().nulls_last())
        else:
            query = query.where(ReplenishmentConfig.product_id.is_(None))

        async with self._session_factory() as session:
            result = await session.execute(query.limit(1))
            config = result.scalars().first()
            return ReplenishmentConfigRecord.model_validate(config) if config else None

    async def dismiss_alert(self, account_id: int, alert_id: str) -> None:
        async with self._session_factory() as session:
            existing = await session.execute(
                select(DismissedAlert.id).where(
                    DismissedAlert.account_id == account_id, DismissedAlert.alert_id == alert_id
                )
            )
            if existing.scalar() is not None:
                return
            session.add(DismissedAlert(account_id=account_id, alert_id=alert_id))
            await session.commit()

    async def list_dismissed_alerts(self, account_id: int) -> Set[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DismissedAlert.alert_id).where(DismissedAlert.account_id == account_id)
            )
            return set(result.scalars().all())

    async def _execute_update(self, statement) -> None:
        async with self._session_factory() as session:
            try:
                await session.execute(statement)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database update failed: {e}", exc_info=True)
                raise StoreError(f"Database update failed: {e}")
