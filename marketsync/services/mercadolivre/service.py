# marketsync/services/mercadolivre/service.py
"""
Gateway facade over the Mercado Livre API.

Callers ask for listings, orders and stock pushes by account id; token
refresh, pagination, chunking, price resolution and caching all happen here.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from marketsync.core.batching import run_batched
from marketsync.core.config import Settings, get_settings
from marketsync.core.enums import CacheCategory
from marketsync.core.exceptions import AccountNotFoundError, MarketplaceAPIError, MarketplaceAuthError, RateLimitError
from marketsync.core.utils import ensure_aware, utcnow
from marketsync.integrations.base import InventoryStore
from marketsync.schemas.marketplace import (
    BatchFetchResult,
    ItemSales,
    OrderFetchResult,
    PriceResolution,
    RemoteListing,
    RemoteOrder,
)
from marketsync.services.cache_service import IntelligentCache, create_cache_key, with_cache
from marketsync.services.mercadolivre.auth import MLAuthManager
from marketsync.services.mercadolivre.client import MercadoLivreClient

logger = logging.getLogger(__name__)

CACHE_PREFIX = "ml"
HISTORICAL_WINDOW_DAYS = 90


def item_cache_key(account_id: int, item_id: str) -> str:
    return create_cache_key(CACHE_PREFIX, account_id, "item", item_id)


def price_cache_key(item_id: str) -> str:
    return create_cache_key(CACHE_PREFIX, "prices", item_id)


class MercadoLivreService:

    def __init__(
        self,
        client: MercadoLivreClient,
        auth: MLAuthManager,
        store: InventoryStore,
        cache: IntelligentCache,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.auth = auth
        self.store = store
        self.cache = cache
        self.settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep

    async def get_token(self, account_id: int) -> str:
        return await self.auth.get_valid_token(account_id)

    # Listings

    async def fetch_listing(
        self, account_id: int, item_id: str, context: Optional[str] = "realtime", resolve_price: bool = True
    ) -> RemoteListing:
        """Single listing with its effective price, cached under products."""

        async def _produce() -> RemoteListing:
            token = await self.get_token(account_id)
            listing = await self.client.get_item(item_id, token)
            if resolve_price:
                resolution = await self.resolve_price(listing, token)
                listing = listing.with_price(resolution)
            return listing

        return await with_cache(
            self.cache, item_cache_key(account_id, item_id), _produce, CacheCategory.PRODUCTS, context
        )

    async def fetch_listings(
        self, account_id: int, item_ids: List[str], context: Optional[str] = "listing"
    ) -> BatchFetchResult:
        """
        Bulk fetch through multiget. Ids already in cache are served from it;
        the rest are fetched in chunks, price-resolved like ``fetch_listing``
        and cached individually under the same key.
        """
        result = BatchFetchResult()
        missing = []
        for item_id in dict.fromkeys(item_ids):
            cached = self.cache.get(item_cache_key(account_id, item_id))
            if cached is not None:
                result.listings[item_id] = cached
            else:
                missing.append(item_id)

        if not missing:
            return result

        token = await self.get_token(account_id)
        fetched = await self.client.get_multiple_items(missing, token)

        async def _resolve(listing: RemoteListing) -> RemoteListing:
            return listing.with_price(await self.resolve_price(listing, token))

        resolved = await run_batched(
            list(fetched.listings.values()),
            _resolve,
            batch_size=self.settings.ML_MULTIGET_CHUNK_SIZE,
            concurrency=self.settings.SYNC_CONCURRENCY,
            stop_on=(MarketplaceAuthError,),
            sleep=self._sleep,
        )
        for outcome in resolved:
            if not outcome.ok:
                raise outcome.error
            listing = outcome.value
            self.cache.set(item_cache_key(account_id, listing.item_id), listing, CacheCategory.PRODUCTS, context)
            result.listings[listing.item_id] = listing
        result.errors.update(fetched.errors)

        if fetched.errors:
            logger.warning(f"Account {account_id}: {len(fetched.errors)} of {len(missing)} items failed to fetch")
        return result

    async def resolve_price(self, listing: RemoteListing, token: str) -> PriceResolution:
        """
        Effective price for a listing.

        The prices endpoint is only consulted when the item payload shows no
        discount, and any failure there falls back to the item's own fields.
        Auth errors still propagate.
        """
        if listing.has_promotion:
            return PriceResolution.from_listing(listing)

        cache_key = price_cache_key(listing.item_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            payload = await self.client.get_item_prices(listing.item_id, token)
        except MarketplaceAuthError:
            raise
        except MarketplaceAPIError as e:
            logger.debug(f"Price lookup failed for {listing.item_id}, using item price: {e}")
            return PriceResolution.from_listing(listing, source="fallback")

        resolution = PriceResolution.from_prices_payload(payload, listing)
        self.cache.set(cache_key, resolution, CacheCategory.PRICES)
        return resolution

    async def list_all_item_ids(self, account_id: int, status: Optional[str] = None) -> List[str]:
        """Every listing id for the seller, walking the search pages."""
        account = await self._get_account(account_id)
        token = await self.get_token(account_id)
        page_size = self.settings.ML_SEARCH_PAGE_SIZE

        item_ids: List[str] = []
        offset = 0
        while True:
            page = await self.client.get_user_items(
                token, user_id=account.ml_user_id, offset=offset, limit=page_size, status=status
            )
            item_ids.extend(page.results)
            logger.debug(f"Account {account_id}: fetched {len(page.results)} item ids at offset {offset}")
            if len(page.results) < page_size or offset + page_size >= page.paging.total:
                break
            offset += page_size
            await self._sleep(self.settings.ML_BATCH_DELAY_SECONDS)

        return list(dict.fromkeys(item_ids))

    async def list_recently_modified(self, account_id: int, limit: int = 50) -> List[str]:
        """Ids of the seller's listings, most recently updated first."""
        account = await self._get_account(account_id)
        token = await self.get_token(account_id)
        page_size = min(limit, self.settings.ML_SEARCH_PAGE_SIZE)

        item_ids: List[str] = []
        offset = 0
        while len(item_ids) < limit:
            page = await self.client.get_user_items(
                token, user_id=account.ml_user_id, offset=offset, limit=page_size, sort="last_updated_desc"
            )
            item_ids.extend(page.results)
            if not page.has_more:
                break
            offset += page_size
        return item_ids[:limit]

    async def push_stock(self, account_id: int, item_id: str, quantity: int) -> None:
        token = await self.get_token(account_id)
        await self.client.update_item_stock(item_id, quantity, token)
        self.invalidate_item(account_id, item_id)
        logger.info(f"Account {account_id}: set {item_id} available_quantity={quantity}")

    async def update_listing(self, account_id: int, item_id: str, patch: Dict[str, Any]) -> Dict:
        token = await self.get_token(account_id)
        response = await self.client.update_item(item_id, patch, token)
        self.invalidate_item(account_id, item_id)
        return response

    def invalidate_item(self, account_id: int, item_id: str) -> int:
        """Drop the cached listing and its cached price. Returns how many entries went."""
        removed = self.cache.delete(item_cache_key(account_id, item_id))
        removed += self.cache.delete(price_cache_key(item_id))
        return int(removed)

    # Orders

    async def fetch_orders(
        self, account_id: int, since: Optional[datetime] = None, status: Optional[str] = None
    ) -> OrderFetchResult:
        """
        Seller orders, newest first.

        Pages of ML_SEARCH_PAGE_SIZE until a short page, an order older than
        ``since``, or ML_ORDER_MAX_PAGES. A rate-limited page is retried once
        after a backoff; a page that keeps failing is recorded and skipped.
        """
        window_days = (self._clock() - since).days if since else 0
        if window_days >= HISTORICAL_WINDOW_DAYS:
            category, context = CacheCategory.SALES, "historical"
        else:
            category, context = CacheCategory.ORDERS, None

        cache_key = create_cache_key(
            CACHE_PREFIX, account_id, "orders", since.date().isoformat() if since else "all", status
        )

        async def _produce() -> OrderFetchResult:
            return await self._fetch_orders(account_id, since, status)

        return await with_cache(self.cache, cache_key, _produce, category, context)

    async def fetch_order(self, account_id: int, order_id: Any) -> RemoteOrder:
        """One order, uncached. Used when a notification says it changed."""
        token = await self.get_token(account_id)
        return await self.client.get_order(order_id, token)

    async def _fetch_orders(
        self, account_id: int, since: Optional[datetime], status: Optional[str]
    ) -> OrderFetchResult:
        account = await self._get_account(account_id)
        token = await self.get_token(account_id)
        page_size = self.settings.ML_SEARCH_PAGE_SIZE
        max_pages = self.settings.ML_ORDER_MAX_PAGES
        date_from = since.isoformat(timespec="milliseconds") if since else None

        result = OrderFetchResult()
        for page_number in range(max_pages):
            offset = page_number * page_size
            try:
                page = await self._fetch_order_page(token, account.ml_user_id, offset, page_size, status, date_from)
            except MarketplaceAuthError:
                raise
            except MarketplaceAPIError as e:
                logger.warning(f"Account {account_id}: order page at offset {offset} failed: {e}")
                result.errors.append(f"orders offset {offset}: {e}")
                continue

            result.pages += 1
            orders = page.orders()
            reached_since = False
            for order in orders:
                if since and order.date_created and ensure_aware(order.date_created) < since:
                    reached_since = True
                    break
                result.orders.append(order)

            if reached_since or len(page.results) < page_size:
                break
            if offset + page_size >= page.paging.total:
                break
            await self._sleep(self.settings.ML_BATCH_DELAY_SECONDS)
        else:
            result.truncated = True
            logger.info(f"Account {account_id}: order search stopped at the {max_pages} page cap")

        return result

    async def _fetch_order_page(self, token, seller_id, offset, limit, status, date_from):
        try:
            return await self.client.get_user_orders(
                token, seller_id, offset=offset, limit=limit, status=status, date_from=date_from
            )
        except RateLimitError:
            await self._sleep(self.settings.ML_RATE_LIMIT_BACKOFF_SECONDS)
            return await self.client.get_user_orders(
                token, seller_id, offset=offset, limit=limit, status=status, date_from=date_from
            )

    async def sales_by_item(self, account_id: int, days: int = HISTORICAL_WINDOW_DAYS) -> Dict[str, ItemSales]:
        """Units sold and revenue per listing over the last ``days`` days, sales statuses only."""
        since = self._clock() - timedelta(days=days)
        fetched = await self.fetch_orders(account_id, since=since)

        sales: Dict[str, ItemSales] = {}
        for order in fetched.orders:
            if not order.is_sale:
                continue
            for item in order.items:
                entry = sales.setdefault(item.item_id, ItemSales(item_id=item.item_id))
                entry.quantity += item.quantity
                entry.revenue_cents += item.quantity * item.unit_price_cents
                entry.orders += 1
        return sales

    async def _get_account(self, account_id: int):
        account = await self.store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Marketplace account {account_id} not found")
        return account
