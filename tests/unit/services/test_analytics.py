# tests/unit/services/test_analytics.py
from datetime import timedelta

import pytest

from marketsync.core.enums import ListingStatus
from marketsync.core.exceptions import AccountNotFoundError
from marketsync.schemas.marketplace import OrderFetchResult, RemoteOrder, RemoteOrderItem
from marketsync.services.analytics import (
    AnalyticsService,
    analytics_cache_key,
    average_ticket_cents,
    growth_pct,
    top_sellers,
)
from marketsync.services.mercadolivre.service import MercadoLivreService

from tests.mocks.mock_store import BASE_TIME


def order(order_id, status, days_ago, *lines):
    return RemoteOrder(
        order_id=order_id,
        status=status,
        date_created=BASE_TIME - timedelta(days=days_ago),
        items=[
            RemoteOrderItem(item_id=item_id, title=item_id, quantity=quantity, unit_price_cents=price)
            for item_id, quantity, price in lines
        ],
    )


WEEK_OF_ORDERS = [
    order(1, "paid", 1, ("MLB1", 2, 1000), ("MLB2", 1, 2500)),
    order(2, "delivered", 3, ("MLB1", 1, 1000)),
    order(3, "cancelled", 2, ("MLB2", 5, 2500)),
    order(4, "payment_required", 1, ("MLB3", 1, 999)),
    order(5, "paid", 10, ("MLB1", 4, 1000)),
    order(6, "payment_required", 9, ("MLB3", 1, 999)),
]


@pytest.fixture
def ml(mocker):
    ml = mocker.AsyncMock(spec=MercadoLivreService)
    ml.fetch_orders.return_value = OrderFetchResult(orders=WEEK_OF_ORDERS, pages=1)
    return ml


@pytest.fixture
def analytics(store, ml, cache, clock):
    return AnalyticsService(store, ml, cache, clock=clock)


"""
1. Helper Tests
"""


def test_average_ticket_rounds_half_up():
    assert average_ticket_cents(2000, 3) == 667
    assert average_ticket_cents(1000, 3) == 333
    assert average_ticket_cents(1000, 0) == 0


def test_growth_against_empty_previous_window_is_none():
    assert growth_pct(5500, 4000) == 37.5
    assert growth_pct(3000, 4000) == -25.0
    assert growth_pct(5500, 0) is None


def test_top_sellers_rank_by_units_then_revenue():
    ranked = top_sellers([
        order(1, "paid", 0, ("MLB1", 2, 100), ("MLB2", 2, 900)),
        order(2, "paid", 0, ("MLB3", 5, 10)),
    ], limit=2)
    assert [(s.item_id, s.units, s.revenue_cents) for s in ranked] == [("MLB3", 5, 50), ("MLB2", 2, 1800)]


"""
2. Sales Metrics Tests
"""


@pytest.mark.asyncio
async def test_sales_metrics_for_the_week(analytics, ml, store):
    store.add_link("MLB1", status=ListingStatus.ACTIVE.value, available_quantity=2)
    store.add_link("MLB2", status=ListingStatus.ACTIVE.value, available_quantity=50)
    store.add_link("MLB3", status=ListingStatus.PAUSED.value)

    metrics = await analytics.get_sales_metrics(1, days=7)

    ml.fetch_orders.assert_awaited_once_with(1, since=BASE_TIME - timedelta(days=14))
    assert metrics.orders == 2
    assert metrics.units == 4
    assert metrics.revenue_cents == 5500
    assert metrics.average_ticket_cents == 1375
    assert metrics.previous_revenue_cents == 4000
    assert metrics.growth_pct == 37.5
    # only the one inside the window
    assert metrics.pending_orders == 1
    assert [(s.item_id, s.units, s.revenue_cents) for s in metrics.top_sellers] == [
        ("MLB1", 3, 3000),
        ("MLB2", 1, 2500),
    ]
    assert metrics.listings.total == 3
    assert metrics.listings.active == 2
    assert metrics.listings.low_stock == 1
    assert metrics.listings.paused == 1
    assert metrics.generated_at == BASE_TIME


@pytest.mark.asyncio
async def test_no_sales_means_zero_ticket_and_no_growth(analytics, ml):
    ml.fetch_orders.return_value = OrderFetchResult(orders=[order(3, "cancelled", 1, ("MLB1", 1, 100))])

    metrics = await analytics.get_sales_metrics(1, days=30)

    assert metrics.units == 0
    assert metrics.average_ticket_cents == 0
    assert metrics.growth_pct is None
    assert metrics.top_sellers == []


@pytest.mark.asyncio
async def test_partial_order_feed_is_flagged(analytics, ml):
    ml.fetch_orders.return_value = OrderFetchResult(
        orders=WEEK_OF_ORDERS[:1], errors=["orders offset 50: 503"], truncated=True
    )

    metrics = await analytics.get_sales_metrics(1)

    assert metrics.truncated is True
    assert metrics.errors == ["orders offset 50: 503"]


@pytest.mark.asyncio
async def test_sales_metrics_are_cached_per_window(analytics, ml, cache):
    first = await analytics.get_sales_metrics(1, days=7)
    again = await analytics.get_sales_metrics(1, days=7)
    await analytics.get_sales_metrics(1, days=30)

    assert again == first
    assert ml.fetch_orders.await_count == 2
    assert cache.get(analytics_cache_key(1, "sales", 7)) == first


@pytest.mark.asyncio
async def test_dropping_the_cache_recomputes(analytics, ml, cache):
    await analytics.get_sales_metrics(1)
    cache.invalidate_pattern(analytics_cache_key(1, ""))
    await analytics.get_sales_metrics(1)

    assert ml.fetch_orders.await_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("days", [0, 91])
async def test_window_out_of_range(analytics, ml, days):
    with pytest.raises(ValueError):
        await analytics.get_sales_metrics(1, days=days)
    ml.fetch_orders.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_account(analytics, ml):
    with pytest.raises(AccountNotFoundError):
        await analytics.get_sales_metrics(99)
    ml.fetch_orders.assert_not_awaited()
