# tests/unit/services/test_reconciliation.py
from datetime import timedelta

import pytest

from marketsync.core.enums import DecisionReason, StockStatus, SyncStrategy
from marketsync.schemas.sync import ReconciliationThresholds
from marketsync.services.reconciliation import decide, is_remote_newer, is_stale, select_links

from tests.mocks.mock_store import BASE_TIME, InMemoryInventoryStore

NOW = BASE_TIME
RECENT = NOW - timedelta(minutes=10)
LONG_AGO = NOW - timedelta(hours=3)

"""
1. Decision Rule Tests
"""


def test_remote_stockout_is_critical():
    decision = decide(50, 0, RECENT, NOW)

    assert decision.should_update is True
    assert decision.target_quantity == 50
    assert decision.reason == DecisionReason.STOCKOUT
    assert decision.status == StockStatus.CRITICAL


def test_both_empty_needs_nothing():
    decision = decide(0, 0, RECENT, NOW)
    assert decision.should_update is False


def test_low_remote_stock_is_topped_up():
    decision = decide(6, 3, RECENT, NOW)

    assert decision.should_update is True
    assert decision.reason == DecisionReason.LOW_STOCK
    assert decision.status == StockStatus.WARNING
    assert decision.target_quantity == 6


def test_low_stock_rule_does_not_push_a_lower_number():
    # remote 4 is low but local has even less; divergence (|2-4|/4=0.5) is not above 0.5
    decision = decide(2, 4, RECENT, NOW)
    assert decision.should_update is False


def test_divergence_above_ratio():
    decision = decide(100, 10, RECENT, NOW)

    assert decision.should_update is True
    assert decision.reason == DecisionReason.DIVERGENCE
    assert decision.target_quantity == 100


def test_divergence_pushes_downwards_too():
    decision = decide(6, 13, RECENT, NOW)

    assert decision.should_update is True
    assert decision.reason == DecisionReason.DIVERGENCE
    assert decision.target_quantity == 6


def test_small_difference_recently_synced_is_left_alone():
    decision = decide(20, 18, RECENT, NOW)

    assert decision.should_update is False
    assert decision.reason == DecisionReason.IN_TOLERANCE
    assert decision.target_quantity == 18


def test_stale_listing_catches_up_when_local_is_higher():
    decision = decide(20, 18, LONG_AGO, NOW)

    assert decision.should_update is True
    assert decision.reason == DecisionReason.STALE_CATCH_UP


def test_stale_listing_with_lower_local_is_not_pushed():
    decision = decide(17, 18, LONG_AGO, NOW)
    assert decision.should_update is False


def test_never_synced_counts_as_stale():
    decision = decide(20, 18, None, NOW)
    assert decision.reason == DecisionReason.STALE_CATCH_UP


def test_rules_are_checked_in_order():
    # remote 0 also diverges and is low; stockout wins
    assert decide(10, 0, LONG_AGO, NOW).reason == DecisionReason.STOCKOUT
    # remote 5 is low and diverges; low_stock wins
    assert decide(30, 5, RECENT, NOW).reason == DecisionReason.LOW_STOCK


def test_full_mode_pushes_any_difference():
    assert decide(20, 18, RECENT, NOW, full=True).should_update is True
    unchanged = decide(18, 18, RECENT, NOW, full=True)
    assert unchanged.should_update is False
    assert unchanged.reason == DecisionReason.FULL_RESYNC


def test_applying_a_decision_is_idempotent():
    first = decide(100, 10, RECENT, NOW)
    second = decide(100, first.target_quantity, NOW, NOW)
    assert second.should_update is False


def test_custom_thresholds():
    thresholds = ReconciliationThresholds(low_stock_floor=10, divergence_ratio=0.1)

    assert decide(12, 8, RECENT, NOW, thresholds).reason == DecisionReason.LOW_STOCK
    assert decide(20, 18, RECENT, NOW, thresholds).reason == DecisionReason.DIVERGENCE


"""
2. Helper Tests
"""


def test_is_stale_uses_threshold():
    thresholds = ReconciliationThresholds(stale_after=timedelta(hours=1))
    assert is_stale(NOW - timedelta(minutes=61), NOW, thresholds) is True
    assert is_stale(NOW - timedelta(minutes=59), NOW, thresholds) is False


def test_is_remote_newer():
    assert is_remote_newer(NOW, NOW - timedelta(seconds=1)) is True
    assert is_remote_newer(NOW, NOW) is False
    assert is_remote_newer(NOW, None) is True
    assert is_remote_newer(None, NOW) is False


"""
3. Link Selection Tests
"""


@pytest.fixture
def seeded_store():
    store = InMemoryInventoryStore()
    store.add_account()
    store.add_link("MLB-LOW", product_id=1, available_quantity=2, sold_quantity=1)
    store.add_link("MLB-ZERO", product_id=2, available_quantity=0)
    store.add_link("MLB-PLENTY", product_id=3, available_quantity=40, sold_quantity=30)
    store.add_link("MLB-PAUSED", product_id=4, available_quantity=1, status="paused")
    store.add_link("MLB-UNLINKED", available_quantity=1)
    store.add_link("MLB-ERR", product_id=5, sync_status="error", available_quantity=9, sold_quantity=5)
    return store


@pytest.mark.asyncio
async def test_select_critical_lowest_first(seeded_store):
    links = await select_links(seeded_store, 1, SyncStrategy.CRITICAL, 50, ReconciliationThresholds())
    assert [link.item_id for link in links] == ["MLB-ZERO", "MLB-LOW"]


@pytest.mark.asyncio
async def test_select_errors(seeded_store):
    links = await select_links(seeded_store, 1, SyncStrategy.ERRORS, 50, ReconciliationThresholds())
    assert [link.item_id for link in links] == ["MLB-ERR"]


@pytest.mark.asyncio
async def test_select_bestsellers_capped_by_max_items(seeded_store):
    links = await select_links(seeded_store, 1, SyncStrategy.BESTSELLERS, 2, ReconciliationThresholds())
    assert [link.item_id for link in links] == ["MLB-PLENTY", "MLB-ERR"]


@pytest.mark.asyncio
async def test_select_full_takes_every_active_linked_listing(seeded_store):
    links = await select_links(seeded_store, 1, SyncStrategy.FULL, 50, ReconciliationThresholds())
    assert {link.item_id for link in links} == {"MLB-LOW", "MLB-ZERO", "MLB-PLENTY", "MLB-ERR"}


@pytest.mark.asyncio
async def test_modified_is_not_store_driven(seeded_store):
    with pytest.raises(ValueError):
        await select_links(seeded_store, 1, SyncStrategy.MODIFIED, 50, ReconciliationThresholds())
