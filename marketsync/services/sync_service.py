# marketsync/services/sync_service.py
"""
Runs stock sync passes for a marketplace account.

A pass picks listings with one strategy (or all of them in sequence for
``auto``), fetches their remote state, refreshes the local mirror, asks the
reconciliation rules whether the remote quantity needs correcting and pushes
the correction. Per-listing failures are recorded on the task and never stop
the pass; an auth failure stops it but keeps whatever was already done.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from marketsync.core.batching import ItemResult, run_batched
from marketsync.core.config import Settings, get_settings
from marketsync.core.enums import SyncStatus, SyncStrategy
from marketsync.core.exceptions import (
    AccountNotFoundError,
    DataInconsistencyError,
    MarketplaceAPIError,
    MarketplaceAuthError,
    StoreError,
)
from marketsync.core.utils import ensure_aware, utcnow
from marketsync.integrations.base import InventoryStore
from marketsync.schemas.inventory import AccountRecord, ListingLinkRecord
from marketsync.schemas.marketplace import RemoteListing
from marketsync.schemas.sync import (
    ListingOutcome,
    PriceRefreshResult,
    ReconciliationThresholds,
    SyncHistoryRecord,
    SyncOverview,
    SyncSummary,
    SyncTask,
    WebhookNotification,
)
from marketsync.services.analytics import analytics_cache_key
from marketsync.services.cache_service import IntelligentCache, create_cache_key
from marketsync.services.mercadolivre.service import CACHE_PREFIX, MercadoLivreService
from marketsync.services.monitoring import alerts_cache_key, monitoring_cache_key
from marketsync.services.reconciliation import decide, is_remote_newer, is_stale, select_links

logger = logging.getLogger(__name__)

PRICE_REFRESH_AFTER = timedelta(minutes=30)
SALES_WINDOW_DAYS = 90

# (link or None, remote listing)
WorkItem = Tuple[Optional[ListingLinkRecord], RemoteListing]


def monitoring_cache_patterns(account_id: int) -> List[str]:
    return [
        alerts_cache_key(account_id, ""),
        monitoring_cache_key(account_id, ""),
        analytics_cache_key(account_id, ""),
    ]


class SyncService:

    def __init__(
        self,
        store: InventoryStore,
        gateway: MercadoLivreService,
        cache: IntelligentCache,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.gateway = gateway
        self.cache = cache
        self.settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep

    # Public operations

    async def run_sync(
        self,
        account_id: int,
        strategy: SyncStrategy = SyncStrategy.AUTO,
        max_items: Optional[int] = None,
        item_ids: Optional[List[str]] = None,
    ) -> SyncSummary:
        """
        Run one sync pass and return its sealed summary.

        Raises only when the account is unknown or no access token can be
        obtained at all. Everything after that is reported in the summary.
        """
        max_items = max_items or self.settings.SYNC_MAX_ITEMS
        account = await self._get_account(account_id)

        # No token means no connection at all: hard failure for the caller
        await self.gateway.get_token(account_id)

        thresholds = await self.thresholds_for(account.tenant_id)
        task = SyncTask(account_id=account_id, strategy=strategy, scope=item_ids, started_at=self._clock())
        strategies = SyncStrategy.auto_sequence() if strategy == SyncStrategy.AUTO else [strategy]

        logger.info(f"Starting {strategy.value} sync for account {account_id} (max_items={max_items})")
        for current in strategies:
            try:
                await self._run_strategy(task, account, current, max_items, thresholds, item_ids)
            except MarketplaceAuthError as e:
                logger.error(f"Auth failure during {current.value} sync for account {account_id}: {e}")
                task.fail(str(e))
                break
            except (MarketplaceAPIError, StoreError) as e:
                logger.error(f"{current.value} sync failed for account {account_id}: {e}")
                task.add_error(f"{current.value}: {e}")
                continue
            task.mark_strategy(current)

        task.seal(self._clock())
        await self._record_history(task)

        if task.updated or task.created:
            for pattern in monitoring_cache_patterns(account_id):
                self.cache.invalidate_pattern(pattern)

        summary = task.summary()
        logger.info(
            f"Finished {strategy.value} sync for account {account_id}: processed={summary.processed} "
            f"updated={summary.updated} created={summary.created} errored={summary.errored} "
            f"success={summary.success} in {summary.duration_seconds}s"
        )
        return summary

    async def thresholds_for(self, tenant_id: str) -> ReconciliationThresholds:
        """Defaults from settings, overridden by the tenant's replenishment config."""
        thresholds = ReconciliationThresholds.from_settings(self.settings)
        config = await self.store.get_replenishment_config(tenant_id)
        if config is None:
            return thresholds

        overrides = {
            name: getattr(config, name)
            for name in ("low_stock_floor", "divergence_ratio", "critical_band", "attention_band")
            if getattr(config, name) is not None
        }
        return thresholds.model_copy(update=overrides) if overrides else thresholds

    async def get_sync_history(self, account_id: int, limit: int = 20) -> List[SyncHistoryRecord]:
        return await self.store.list_sync_history(account_id, limit=limit)

    async def sync_overview(self, account_id: int) -> SyncOverview:
        account = await self._get_account(account_id)
        thresholds = await self.thresholds_for(account.tenant_id)
        now = self._clock()

        links = await self.store.list_links(account_id)
        in_error = [link for link in links if link.sync_status == SyncStatus.ERROR.value]
        needs_sync = [
            link for link in links
            if link.sync_status != SyncStatus.ERROR.value and is_stale(link.last_synced_at, now, thresholds)
        ]
        healthy = len(links) - len(in_error) - len(needs_sync)

        history = await self.store.list_sync_history(account_id, limit=1)

        recommendations = []
        if in_error:
            recommendations.append(f"{len(in_error)} listings failed to sync. Run an 'errors' sync to retry them.")
        if needs_sync:
            recommendations.append(f"{len(needs_sync)} listings have not been checked recently. Run an 'auto' sync.")
        unlinked = [link for link in links if not link.is_linked]
        if unlinked:
            recommendations.append(f"{len(unlinked)} listings are not linked to a local product.")
        if not links:
            recommendations.append("No listings mirrored yet. Run a 'modified' sync to import them.")

        return SyncOverview(
            account_id=account_id,
            total_listings=len(links),
            needs_sync=len(needs_sync),
            in_error=len(in_error),
            healthy=healthy,
            last_sync=history[0] if history else None,
            recommendations=recommendations,
        )

    async def refresh_prices(self, account_id: int, force: bool = False) -> PriceRefreshResult:
        """
        Re-read the effective price of active listings and update the mirror.

        Without ``force`` only listings not checked in the last 30 minutes are
        refreshed.
        """
        await self._get_account(account_id)
        await self.gateway.get_token(account_id)
        now = self._clock()

        links = await self.store.list_links(account_id, active_only=True)
        if not force:
            links = [
                link for link in links
                if link.last_synced_at is None or now - ensure_aware(link.last_synced_at) > PRICE_REFRESH_AFTER
            ]

        result = PriceRefreshResult(account_id=account_id)

        async def _refresh(link: ListingLinkRecord) -> Optional[RemoteListing]:
            if force:
                self.gateway.invalidate_item(account_id, link.item_id)
            listing = await self.gateway.fetch_listing(account_id, link.item_id, context="realtime")
            if listing.price_cents == link.price_cents and listing.original_price_cents == link.original_price_cents:
                return None
            await self.store.update_link(
                link.id,
                price_cents=listing.price_cents,
                original_price_cents=listing.original_price_cents,
            )
            return listing

        outcomes = await run_batched(
            links,
            _refresh,
            batch_size=self.settings.SYNC_BATCH_SIZE,
            concurrency=self.settings.SYNC_CONCURRENCY,
            delay_seconds=self.settings.ML_BATCH_DELAY_SECONDS,
            stop_on=(MarketplaceAuthError,),
            sleep=self._sleep,
        )

        for outcome in outcomes:
            result.checked += 1
            if not outcome.ok:
                if isinstance(outcome.error, MarketplaceAuthError):
                    raise outcome.error
                result.errors.append(f"{outcome.item.item_id}: {outcome.error}")
                continue
            if outcome.value is not None:
                result.updated += 1
                if outcome.value.has_promotion:
                    result.promotions += 1

        if result.updated:
            for pattern in monitoring_cache_patterns(account_id):
                self.cache.invalidate_pattern(pattern)

        logger.info(
            f"Price refresh for account {account_id}: checked={result.checked} updated={result.updated} "
            f"errors={len(result.errors)}"
        )
        return result

    async def refresh_sales_history(self, account_id: int, days: int = SALES_WINDOW_DAYS) -> int:
        """Write units sold over the last ``days`` onto every mirrored listing. Returns rows changed."""
        await self._get_account(account_id)
        sales = await self.gateway.sales_by_item(account_id, days=days)
        links = await self.store.list_links(account_id)

        changed = 0
        for link in links:
            sold = sales[link.item_id].quantity if link.item_id in sales else 0
            if sold != link.sold_last_90d:
                await self.store.update_link(link.id, sold_last_90d=sold)
                changed += 1

        logger.info(f"Updated {days}-day sales for {changed} listings on account {account_id}")
        return changed

    async def process_notification(self, notification: WebhookNotification) -> Dict[str, Any]:
        """
        Handle a marketplace notification.

        ``items`` refreshes the listing mirror, ``orders``/``orders_v2``
        drops cached orders, alerts and analytics plus the cached copies of the
        listings the order sold. Other topics are acknowledged and ignored.
        """
        account = await self.store.get_account_by_ml_user(notification.user_id)
        if account is None:
            logger.warning(f"Notification for unknown seller {notification.user_id}: {notification.resource}")
            return {"status": "ignored", "reason": "unknown seller"}

        topic = notification.topic
        if topic == "items":
            item_id = notification.resource.rstrip("/").split("/")[-1]
            self.gateway.invalidate_item(account.id, item_id)
            listing = await self.gateway.fetch_listing(account.id, item_id, context="realtime")
            link = await self.store.get_link(account.id, item_id)
            if link is None:
                return {"status": "processed", "item_id": item_id, "linked": False}
            await self.store.update_link(link.id, **self._mirror_fields(listing))
            for pattern in monitoring_cache_patterns(account.id):
                self.cache.invalidate_pattern(pattern)
            return {"status": "processed", "item_id": item_id, "linked": link.is_linked}

        if topic in ("orders", "orders_v2"):
            removed = self.cache.invalidate_pattern(create_cache_key(CACHE_PREFIX, account.id, "orders"))
            for pattern in monitoring_cache_patterns(account.id):
                removed += self.cache.invalidate_pattern(pattern)

            # Sold listings have new remote quantities
            order_id = notification.resource.rstrip("/").split("/")[-1]
            item_ids: List[str] = []
            try:
                remote_order = await self.gateway.fetch_order(account.id, order_id)
            except MarketplaceAPIError as e:
                logger.warning(f"Could not load order {order_id} for account {account.id}: {e}")
            else:
                item_ids = [item.item_id for item in remote_order.items]
                for item_id in item_ids:
                    removed += self.gateway.invalidate_item(account.id, item_id)
            return {"status": "processed", "invalidated": removed, "order_id": order_id, "item_ids": item_ids}

        logger.debug(f"Ignoring notification topic '{topic}' for account {account.id}")
        return {"status": "ignored", "reason": f"topic {topic} not handled"}

    # Strategy execution

    async def _run_strategy(
        self,
        task: SyncTask,
        account: AccountRecord,
        strategy: SyncStrategy,
        max_items: int,
        thresholds: ReconciliationThresholds,
        item_ids: Optional[List[str]],
    ):
        if strategy == SyncStrategy.MODIFIED:
            await self._run_modified(task, account, max_items, thresholds, item_ids)
            return

        links = await select_links(self.store, account.id, strategy, max_items, thresholds, item_ids)
        if item_ids is not None:
            wanted = set(item_ids)
            links = [link for link in links if link.item_id in wanted]
        links = [link for link in links if task.claim(link.item_id)]
        logger.info(f"{strategy.value}: {len(links)} listings selected for account {account.id}")
        if not links:
            return

        fetched = await self.gateway.fetch_listings(account.id, [link.item_id for link in links], context="realtime")
        work: List[WorkItem] = []
        for link in links:
            if link.item_id in fetched.errors:
                task.record_error(f"{link.item_id}: {fetched.errors[link.item_id]}")
                await self._mark_link_error(link, fetched.errors[link.item_id])
            elif link.item_id in fetched.listings:
                work.append((link, fetched.listings[link.item_id]))

        await self._process(task, account, work, thresholds, full=strategy == SyncStrategy.FULL)

    async def _run_modified(
        self,
        task: SyncTask,
        account: AccountRecord,
        max_items: int,
        thresholds: ReconciliationThresholds,
        item_ids: Optional[List[str]],
    ):
        if item_ids is not None:
            candidate_ids = list(item_ids)[:max_items]
        else:
            candidate_ids = await self.gateway.list_recently_modified(account.id, limit=max_items)
        candidate_ids = [item_id for item_id in candidate_ids if not task.already_handled(item_id)]
        if not candidate_ids:
            return

        fetched = await self.gateway.fetch_listings(account.id, candidate_ids, context="realtime")
        links = {
            link.item_id: link
            for link in await self.store.list_links(account.id, item_ids=candidate_ids)
        }

        work: List[WorkItem] = []
        for item_id in candidate_ids:
            link = links.get(item_id)
            if item_id in fetched.errors:
                task.claim(item_id)
                task.record_error(f"{item_id}: {fetched.errors[item_id]}")
                if link is not None:
                    await self._mark_link_error(link, fetched.errors[item_id])
                continue

            listing = fetched.listings.get(item_id)
            if listing is None:
                continue
            # Only listings that changed since our mirror (or that we have never seen)
            if link is not None and link.is_linked and not is_remote_newer(listing.last_updated, link.remote_updated_at):
                continue
            if task.claim(item_id):
                work.append((link, listing))

        logger.info(f"modified: {len(work)} listings changed remotely for account {account.id}")
        await self._process(task, account, work, thresholds, full=False)

    async def _process(
        self,
        task: SyncTask,
        account: AccountRecord,
        work: List[WorkItem],
        thresholds: ReconciliationThresholds,
        full: bool,
    ):
        if not work:
            return

        async def _worker(entry: WorkItem) -> Tuple[ListingOutcome, Optional[str]]:
            link, listing = entry
            return await self._sync_listing(account, link, listing, thresholds, full)

        results = await run_batched(
            work,
            _worker,
            batch_size=self.settings.SYNC_BATCH_SIZE,
            concurrency=self.settings.SYNC_CONCURRENCY,
            delay_seconds=self.settings.ML_BATCH_DELAY_SECONDS,
            stop_on=(MarketplaceAuthError,),
            sleep=self._sleep,
        )
        await self._fold(task, results)

    async def _fold(self, task: SyncTask, results: List[ItemResult]):
        auth_error = None
        for result in results:
            link, listing = result.item
            if result.ok:
                outcome, reason = result.value
                task.record(outcome, reason)
                continue

            error = result.error
            if isinstance(error, MarketplaceAuthError):
                auth_error = auth_error or error
            elif not isinstance(error, (MarketplaceAPIError, StoreError)):
                logger.error(f"Unexpected error syncing {listing.item_id}: {error}", exc_info=error)
            task.record_error(f"{listing.item_id}: {error}")
            if isinstance(error, MarketplaceAuthError):
                continue
            if link is None:
                # The link may have been created by this very run before the push failed
                link = await self.store.get_link(task.account_id, listing.item_id)
            if link is not None:
                await self._mark_link_error(link, str(error))

        if auth_error is not None:
            raise auth_error

    async def _sync_listing(
        self,
        account: AccountRecord,
        link: Optional[ListingLinkRecord],
        listing: RemoteListing,
        thresholds: ReconciliationThresholds,
        full: bool,
    ) -> Tuple[ListingOutcome, Optional[str]]:
        """Mirror, link and reconcile one listing. Returns the outcome and a skip reason."""
        now = self._clock()
        created = False

        if link is None or not link.is_linked:
            try:
                product_id = await self._match_product(account, listing)
            except DataInconsistencyError as e:
                if link is None:
                    link = await self.store.create_link(account.id, None, listing, now)
                await self.store.update_link(link.id, **self._mirror_fields(listing), sync_error=str(e))
                return ListingOutcome.SKIPPED, str(e)

            if link is None:
                link = await self.store.create_link(account.id, product_id, listing, now)
            else:
                await self.store.update_link(link.id, product_id=product_id)
                link = link.model_copy(update={"product_id": product_id})
            created = True

        snapshot = await self.store.get_stock_snapshot(link.product_id)
        if snapshot is None:
            reason = f"{listing.item_id}: linked product {link.product_id} no longer exists locally"
            logger.warning(reason)
            await self.store.update_link(link.id, **self._mirror_fields(listing), sync_error=reason)
            return ListingOutcome.SKIPPED, reason

        last_checked = None if created else link.last_synced_at
        decision = decide(snapshot.total, listing.available_quantity, last_checked, now, thresholds, full=full)

        fields = self._mirror_fields(listing)
        fields.update(last_synced_at=now, sync_status=SyncStatus.SYNCED.value, sync_error=None)

        if decision.should_update:
            await self.gateway.push_stock(account.id, listing.item_id, decision.target_quantity)
            fields["available_quantity"] = decision.target_quantity
            logger.info(
                f"{listing.item_id}: remote {listing.available_quantity} -> {decision.target_quantity} "
                f"({decision.reason.value}, {decision.status.value})"
            )

        await self.store.update_link(link.id, **fields)

        if created:
            return ListingOutcome.CREATED, None
        if decision.should_update:
            return ListingOutcome.UPDATED, None
        return ListingOutcome.UNCHANGED, None

    async def _match_product(self, account: AccountRecord, listing: RemoteListing) -> int:
        if not listing.seller_sku:
            raise DataInconsistencyError(f"{listing.item_id}: listing has no seller SKU to match")
        product = await self.store.find_product_by_sku(account.tenant_id, listing.seller_sku)
        if product is None:
            raise DataInconsistencyError(f"{listing.item_id}: no local product with SKU {listing.seller_sku}")
        return product.id

    @staticmethod
    def _mirror_fields(listing: RemoteListing) -> Dict[str, Any]:
        return {
            "title": listing.title,
            "price_cents": listing.price_cents,
            "original_price_cents": listing.original_price_cents,
            "available_quantity": listing.available_quantity,
            "sold_quantity": listing.sold_quantity,
            "status": listing.status.value,
            "remote_updated_at": listing.last_updated,
            "shipping_mode": listing.shipping_mode,
            "logistic_type": listing.logistic_type,
        }

    async def _mark_link_error(self, link: ListingLinkRecord, message: str):
        try:
            await self.store.update_link(link.id, sync_status=SyncStatus.ERROR.value, sync_error=message[:500])
        except StoreError as e:
            logger.error(f"Could not mark {link.item_id} as errored: {e}", exc_info=True)

    async def _record_history(self, task: SyncTask):
        try:
            await self.store.create_sync_history(task)
        except StoreError as e:
            # The summary is still returned to the caller
            logger.error(f"Failed to store sync history for account {task.account_id}: {e}", exc_info=True)

    async def _get_account(self, account_id: int) -> AccountRecord:
        account = await self.store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Marketplace account {account_id} not found")
        return account
