# tests/unit/services/test_replenishment.py
import pytest

from marketsync.core.enums import ListingType, Urgency
from marketsync.core.exceptions import ProductNotFoundError, TransientUpstreamError
from marketsync.schemas.inventory import ReplenishmentConfigRecord
from marketsync.schemas.sync import ReconciliationThresholds
from marketsync.services.replenishment import (
    ReplenishmentService,
    classify_urgency,
    days_of_stock,
    listing_type_for,
)

from tests.mocks.mock_gateway import make_listing


@pytest.fixture
def replenishment(store, gateway):
    return ReplenishmentService(store, gateway)


def full_listing(item_id, quantity):
    return make_listing(item_id, quantity=quantity, logistic_type="fulfillment")


"""
1. Helper Tests
"""


def test_classify_urgency_bands():
    assert classify_urgency(0.5, 3) == Urgency.CRITICAL
    assert classify_urgency(1.5, 3) == Urgency.ATTENTION
    assert classify_urgency(2, 3) == Urgency.OK


def test_classify_urgency_custom_bands():
    thresholds = ReconciliationThresholds(critical_band=0.5, attention_band=1.0)
    assert classify_urgency(5, 10, thresholds) == Urgency.CRITICAL
    assert classify_urgency(10, 10, thresholds) == Urgency.ATTENTION


def test_days_of_stock():
    assert days_of_stock(10, 3) == 3.0
    assert days_of_stock(10, 0) == 999.0


def test_listing_type_for():
    assert listing_type_for(5, 5) == ListingType.BOTH
    assert listing_type_for(0, 5) == ListingType.FULL
    assert listing_type_for(5, 0) == ListingType.LOCAL
    assert listing_type_for(0, 0) == ListingType.LOCAL


"""
2. Suggestion Tests
"""


@pytest.mark.asyncio
async def test_both_channels_transfer_then_purchase(replenishment, store, gateway):
    store.add_product(1, "SKU-1", stock={"main": 15, "backroom": 5})
    store.add_link("MLB1", product_id=1, sold_last_90d=90)
    gateway.put(full_listing("MLB1", 1))

    suggestion = await replenishment.suggest_restock("tenant-a", 1)

    assert suggestion.listing_type == ListingType.BOTH
    assert suggestion.local_stock == 20
    assert suggestion.remote_stock == 1
    assert suggestion.daily_velocity == 1.0
    assert suggestion.suggested_transfer == 7
    assert suggestion.transfer_urgency == Urgency.ATTENTION
    assert suggestion.suggested_purchase == 10
    assert suggestion.purchase_urgency == Urgency.OK
    assert suggestion.urgency == Urgency.ATTENTION
    assert [(a.priority, a.kind, a.quantity) for a in suggestion.actions] == [
        (1, "transfer_full", 7),
        (2, "purchase_local", 10),
    ]


@pytest.mark.asyncio
async def test_full_only_waits_for_purchase(replenishment, store, gateway):
    store.add_product(1, "SKU-1", stock={"main": 0})
    store.add_link("MLB1", product_id=1, sold_last_90d=180)
    gateway.put(full_listing("MLB1", 5))

    suggestion = await replenishment.suggest_restock("tenant-a", 1)

    assert suggestion.listing_type == ListingType.FULL
    assert suggestion.suggested_transfer == 6
    assert suggestion.days_of_full_stock == 2.0
    # lead time includes the Full release window: max(2*10 + 10, 2*30)
    assert suggestion.suggested_purchase == 60
    assert suggestion.purchase_urgency == Urgency.CRITICAL
    assert suggestion.urgency == Urgency.CRITICAL
    assert [a.kind for a in suggestion.actions] == ["await_purchase", "purchase_local"]


@pytest.mark.asyncio
async def test_local_only_without_sales_needs_nothing(replenishment, store):
    store.add_product(1, "SKU-1", stock={"main": 50})

    suggestion = await replenishment.suggest_restock("tenant-a", 1)

    assert suggestion.listing_type == ListingType.LOCAL
    assert suggestion.daily_velocity == 0
    assert suggestion.suggested_transfer == 0
    assert suggestion.suggested_purchase == 0
    assert suggestion.days_of_full_stock is None
    assert suggestion.days_of_local_stock == 999.0
    assert suggestion.urgency == Urgency.OK
    assert suggestion.actions == []


@pytest.mark.asyncio
async def test_local_shortfall_for_transfer_is_bought(replenishment, store, gateway):
    store.add_product(1, "SKU-1", stock={"main": 3})
    store.add_link("MLB1", product_id=1, sold_last_90d=90)
    gateway.put(full_listing("MLB1", 1))
    store.configs[("tenant-a", 1)] = ReplenishmentConfigRecord(
        avg_delivery_days=1, full_release_days=10, safety_stock=0, min_coverage_days=0
    )

    suggestion = await replenishment.suggest_restock("tenant-a", 1)

    assert suggestion.suggested_transfer == 9
    assert suggestion.suggested_purchase == 6
    assert suggestion.settings.full_release_days == 10


@pytest.mark.asyncio
async def test_only_fulfillment_listings_count_as_remote(replenishment, store, gateway):
    store.add_product(1, "SKU-1", stock={"main": 40})
    store.add_link("MLB1", product_id=1, sold_last_90d=30)
    store.add_link("MLB2", product_id=1, sold_last_90d=60)
    gateway.put(full_listing("MLB1", 4))
    gateway.put(make_listing("MLB2", quantity=40, logistic_type="cross_docking"))

    suggestion = await replenishment.suggest_restock("tenant-a", 1)

    assert suggestion.remote_stock == 4
    assert suggestion.sold_last_90d == 90


@pytest.mark.asyncio
async def test_fetch_failures_are_reported(replenishment, store, gateway):
    store.add_product(1, "SKU-1", stock={"main": 40})
    store.add_link("MLB1", product_id=1, sold_last_90d=30)
    gateway.fetch_exceptions["MLB1"] = TransientUpstreamError("503", status_code=503)

    suggestion = await replenishment.suggest_restock("tenant-a", 1)

    assert suggestion.remote_stock == 0
    assert suggestion.fetch_errors == ["MLB1: 503"]


@pytest.mark.asyncio
async def test_other_tenants_product_is_not_found(replenishment, store):
    store.add_product(1, "SKU-1", tenant_id="tenant-b")

    with pytest.raises(ProductNotFoundError):
        await replenishment.suggest_restock("tenant-a", 1)
    with pytest.raises(ProductNotFoundError):
        await replenishment.suggest_restock("tenant-a", 404)


@pytest.mark.asyncio
async def test_purchase_cost_uses_product_cost(replenishment, store):
    store.add_product(1, "SKU-1", stock={"main": 0}, cost_cents=250)
    store.add_link("MLB1", product_id=1, sold_last_90d=90)

    suggestion = await replenishment.suggest_restock("tenant-a", 1)

    assert suggestion.suggested_purchase == 30
    assert suggestion.estimated_cost_cents == 7500


"""
3. Batch Tests
"""


def seed_catalog(store, gateway):
    # attention: both channels, Full runs out first
    store.add_product(1, "SKU-1", stock={"main": 20}, cost_cents=500)
    store.add_link("MLB1", product_id=1, sold_last_90d=90)
    gateway.put(full_listing("MLB1", 1))
    # critical: Full only, nothing local
    store.add_product(2, "SKU-2", stock={"main": 0}, cost_cents=100)
    store.add_link("MLB2", product_id=2, sold_last_90d=180)
    gateway.put(full_listing("MLB2", 5))
    # covered
    store.add_product(3, "SKU-3", stock={"main": 50})
    # inactive and foreign products are never analyzed
    store.add_product(4, "SKU-4", stock={"main": 0})
    store.products[4] = store.products[4].model_copy(update={"is_active": False})
    store.add_product(5, "SKU-5", stock={"main": 0}, tenant_id="tenant-b")


@pytest.mark.asyncio
async def test_batch_returns_products_needing_action_most_urgent_first(replenishment, store, gateway):
    seed_catalog(store, gateway)

    report = await replenishment.suggest_restock_batch("tenant-a")

    assert [s.product_id for s in report.suggestions] == [2, 1]
    assert [s.urgency for s in report.suggestions] == [Urgency.CRITICAL, Urgency.ATTENTION]
    summary = report.summary
    assert (summary.analyzed, summary.critical, summary.attention, summary.ok) == (3, 1, 1, 1)
    assert summary.units_to_transfer == 13
    assert summary.units_to_purchase == 70
    assert summary.estimated_cost_cents == 11000
    assert summary.critical_cost_cents == 6000
    assert summary.attention_cost_cents == 5000
    assert report.errors == {}


@pytest.mark.asyncio
async def test_batch_over_chosen_products_reports_missing_ones(replenishment, store, gateway):
    seed_catalog(store, gateway)

    report = await replenishment.suggest_restock_batch("tenant-a", [2, 404, 5, 2])

    assert [s.product_id for s in report.suggestions] == [2]
    assert report.summary.analyzed == 1
    assert report.summary.failed == 2
    assert set(report.errors) == {"404", "5"}


@pytest.mark.asyncio
async def test_batch_keeps_going_past_unreachable_listings(replenishment, store, gateway):
    seed_catalog(store, gateway)
    gateway.fetch_exceptions["MLB2"] = TransientUpstreamError("503", status_code=503)

    report = await replenishment.suggest_restock_batch("tenant-a")

    assert report.summary.analyzed == 3
    assert report.errors == {}
    by_product = {s.product_id: s for s in report.suggestions}
    assert by_product[2].fetch_errors == ["MLB2: 503"]
    assert by_product[2].urgency == Urgency.CRITICAL
