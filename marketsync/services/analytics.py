# marketsync/services/analytics.py
"""
Sales analytics over the seller's order feed.

Revenue, units and average ticket are computed from sale-status orders in the
window and compared with the window right before it. Everything stays in
integer cents; conversion to currency is left to whoever renders it.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from marketsync.core.enums import CacheCategory, ListingStatus
from marketsync.core.exceptions import AccountNotFoundError
from marketsync.core.utils import ensure_aware, utcnow
from marketsync.integrations.base import InventoryStore
from marketsync.schemas.analytics import ListingCounts, SalesMetrics, TopSeller
from marketsync.schemas.marketplace import RemoteOrder
from marketsync.schemas.sync import ReconciliationThresholds
from marketsync.services.cache_service import IntelligentCache, create_cache_key, with_cache
from marketsync.services.mercadolivre.service import MercadoLivreService

logger = logging.getLogger(__name__)

ANALYTICS_CACHE_PREFIX = "analytics"
MAX_WINDOW_DAYS = 90
TOP_SELLERS_LIMIT = 5


def analytics_cache_key(account_id: int, *parts) -> str:
    return create_cache_key(ANALYTICS_CACHE_PREFIX, account_id, *parts)


def average_ticket_cents(revenue_cents: int, units: int) -> int:
    """Revenue per unit sold, rounded half up to the cent"""
    if units <= 0:
        return 0
    return (revenue_cents + units // 2) // units


def growth_pct(current_cents: int, previous_cents: int) -> Optional[float]:
    if previous_cents <= 0:
        return None
    return round((current_cents - previous_cents) / previous_cents * 100, 1)


def top_sellers(orders: List[RemoteOrder], limit: int = TOP_SELLERS_LIMIT) -> List[TopSeller]:
    by_item: Dict[str, TopSeller] = {}
    for order in orders:
        for item in order.items:
            entry = by_item.setdefault(item.item_id, TopSeller(item_id=item.item_id, title=item.title))
            entry.units += item.quantity
            entry.revenue_cents += item.quantity * item.unit_price_cents
    ranked = sorted(by_item.values(), key=lambda seller: (-seller.units, -seller.revenue_cents, seller.item_id))
    return ranked[:limit]


class AnalyticsService:

    def __init__(
        self,
        store: InventoryStore,
        gateway: MercadoLivreService,
        cache: IntelligentCache,
        thresholds: Optional[ReconciliationThresholds] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.gateway = gateway
        self.cache = cache
        self.thresholds = thresholds or ReconciliationThresholds()
        self._clock = clock

    async def get_sales_metrics(self, account_id: int, days: int = 7) -> SalesMetrics:
        """
        Sales for the last ``days`` days against the ``days`` before that.

        Cached under analytics; an order notification for the account drops it.
        """
        if not 1 <= days <= MAX_WINDOW_DAYS:
            raise ValueError(f"days must be between 1 and {MAX_WINDOW_DAYS}")

        account = await self.store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Marketplace account {account_id} not found")

        async def _produce() -> SalesMetrics:
            return await self._build_sales_metrics(account_id, days)

        return await with_cache(
            self.cache, analytics_cache_key(account_id, "sales", days), _produce, CacheCategory.ANALYTICS
        )

    async def _build_sales_metrics(self, account_id: int, days: int) -> SalesMetrics:
        now = self._clock()
        window_start = now - timedelta(days=days)
        fetched = await self.gateway.fetch_orders(account_id, since=now - timedelta(days=days * 2))

        current: List[RemoteOrder] = []
        previous_revenue = 0
        pending = 0
        for order in fetched.orders:
            in_window = order.date_created is None or ensure_aware(order.date_created) >= window_start
            if order.is_pending and in_window:
                pending += 1
            if not order.is_sale:
                continue
            if in_window:
                current.append(order)
            else:
                previous_revenue += self._revenue(order)

        units = sum(order.units for order in current)
        revenue = sum(self._revenue(order) for order in current)

        metrics = SalesMetrics(
            account_id=account_id,
            days=days,
            orders=len(current),
            units=units,
            revenue_cents=revenue,
            average_ticket_cents=average_ticket_cents(revenue, units),
            previous_revenue_cents=previous_revenue,
            growth_pct=growth_pct(revenue, previous_revenue),
            pending_orders=pending,
            top_sellers=top_sellers(current),
            listings=await self._listing_counts(account_id),
            truncated=fetched.truncated,
            errors=list(fetched.errors),
            generated_at=now,
        )
        logger.info(
            f"Account {account_id}: {days}d sales {metrics.orders} orders, {units} units, "
            f"{revenue} cents (previous {previous_revenue})"
        )
        return metrics

    async def _listing_counts(self, account_id: int) -> ListingCounts:
        links = await self.store.list_links(account_id)
        counts = ListingCounts(total=len(links))
        for link in links:
            if link.status == ListingStatus.ACTIVE.value:
                counts.active += 1
                if link.available_quantity <= self.thresholds.low_stock_floor:
                    counts.low_stock += 1
            elif link.status == ListingStatus.PAUSED.value:
                counts.paused += 1
        return counts

    @staticmethod
    def _revenue(order: RemoteOrder) -> int:
        # Item lines, not total_amount, so shipping never counts as revenue
        return sum(item.quantity * item.unit_price_cents for item in order.items)
