# marketsync/services/reconciliation.py
"""
Stock reconciliation rules.

``decide`` is pure: it looks at one local/remote quantity pair and says
whether the remote listing needs correcting. Rules are checked in order and
the first match wins:

1. remote is 0 while local has stock           -> push (stockout, critical)
2. remote <= low-stock floor and local > remote -> push (low_stock)
3. |local - remote| / remote > divergence ratio -> push (divergence)
4. not synced within the stale window and local > remote -> push (stale_catch_up)
5. otherwise                                    -> no update

A full resync skips the rules and pushes whenever the numbers differ.
"""
from datetime import datetime
from typing import List, Optional

from marketsync.core.enums import DecisionReason, StockStatus, SyncStrategy
from marketsync.core.utils import ensure_aware
from marketsync.integrations.base import InventoryStore
from marketsync.schemas.inventory import ListingLinkRecord
from marketsync.schemas.sync import ReconciliationDecision, ReconciliationThresholds

CRITICAL_LIMIT = 20
ERROR_RETRY_LIMIT = 10
BESTSELLER_LIMIT = 20


def decide(
    local: int,
    remote: int,
    last_synced_at: Optional[datetime],
    now: datetime,
    thresholds: Optional[ReconciliationThresholds] = None,
    full: bool = False,
) -> ReconciliationDecision:
    thresholds = thresholds or ReconciliationThresholds()
    local = max(0, local)
    remote = max(0, remote)

    if full:
        return ReconciliationDecision(
            should_update=local != remote,
            target_quantity=local,
            reason=DecisionReason.FULL_RESYNC,
            status=StockStatus.CRITICAL if remote == 0 and local > 0 else StockStatus.OK,
        )

    if remote == 0 and local > 0:
        return ReconciliationDecision(
            should_update=True, target_quantity=local, reason=DecisionReason.STOCKOUT, status=StockStatus.CRITICAL
        )

    if remote <= thresholds.low_stock_floor and local > remote:
        return ReconciliationDecision(
            should_update=True, target_quantity=local, reason=DecisionReason.LOW_STOCK, status=StockStatus.WARNING
        )

    if remote > 0 and abs(local - remote) / remote > thresholds.divergence_ratio:
        return ReconciliationDecision(
            should_update=True, target_quantity=local, reason=DecisionReason.DIVERGENCE, status=StockStatus.WARNING
        )

    if is_stale(last_synced_at, now, thresholds) and local > remote:
        return ReconciliationDecision(
            should_update=True,
            target_quantity=local,
            reason=DecisionReason.STALE_CATCH_UP,
            status=StockStatus.WARNING,
        )

    return ReconciliationDecision(
        should_update=False, target_quantity=remote, reason=DecisionReason.IN_TOLERANCE, status=StockStatus.OK
    )


def is_stale(last_synced_at: Optional[datetime], now: datetime, thresholds: ReconciliationThresholds) -> bool:
    if last_synced_at is None:
        return True
    return now - ensure_aware(last_synced_at) > thresholds.stale_after


def is_remote_newer(remote_updated: Optional[datetime], mirrored_updated: Optional[datetime]) -> bool:
    """True when the remote listing changed after our mirror was taken."""
    if remote_updated is None:
        return False
    if mirrored_updated is None:
        return True
    return ensure_aware(remote_updated) > ensure_aware(mirrored_updated)


async def select_links(
    store: InventoryStore,
    account_id: int,
    strategy: SyncStrategy,
    max_items: int,
    thresholds: ReconciliationThresholds,
    item_ids: Optional[List[str]] = None,
) -> List[ListingLinkRecord]:
    """
    Listings a store-driven strategy should look at, in processing order.

    ``modified`` is driven by the remote search instead and is not handled here.
    """
    if strategy == SyncStrategy.FULL:
        return await store.list_links(account_id, linked_only=True, active_only=True, item_ids=item_ids)

    if strategy == SyncStrategy.CRITICAL:
        return await store.list_links(
            account_id,
            linked_only=True,
            active_only=True,
            max_quantity=thresholds.low_stock_floor,
            order_by="quantity_asc",
            limit=CRITICAL_LIMIT,
        )

    if strategy == SyncStrategy.ERRORS:
        return await store.list_links(
            account_id,
            sync_status="error",
            order_by="last_synced_asc",
            limit=ERROR_RETRY_LIMIT,
        )

    if strategy == SyncStrategy.BESTSELLERS:
        return await store.list_links(
            account_id,
            linked_only=True,
            active_only=True,
            min_sold=1,
            order_by="sold_desc",
            limit=min(BESTSELLER_LIMIT, max_items),
        )

    raise ValueError(f"Strategy {strategy.value} does not select from stored links")
