# marketsync/services/replenishment.py
"""
Restock suggestions for a single product, or for a whole catalog at once.

Two separate questions are answered:

- Full: how many units to move from the local warehouses into Mercado Livre
  fulfillment so the Full stock covers the release window plus half the
  safety stock.
- Local: how many units to buy from the supplier so local stock covers the
  delivery lead time plus the safety stock, and never less than the minimum
  coverage in days.

Velocity comes from the 90-day sales stored on each listing link.
"""
import logging
import math
from typing import Iterable, List, Optional, Tuple

from marketsync.core.batching import run_batched
from marketsync.core.enums import ListingType, Urgency
from marketsync.core.exceptions import AccountNotFoundError, MarketplaceAPIError, ProductNotFoundError
from marketsync.integrations.base import InventoryStore
from marketsync.schemas.monitoring import (
    ReplenishmentSettings,
    RestockAction,
    RestockBatchReport,
    RestockSuggestion,
)
from marketsync.schemas.sync import ReconciliationThresholds
from marketsync.services.mercadolivre.service import MercadoLivreService

logger = logging.getLogger(__name__)

VELOCITY_WINDOW_DAYS = 90
NO_VELOCITY_DAYS = 999.0
FULL_SAFETY_SHARE = 0.5


def classify_urgency(
    days_left: float, lead_days: float, thresholds: Optional[ReconciliationThresholds] = None
) -> Urgency:
    thresholds = thresholds or ReconciliationThresholds()
    if days_left <= lead_days * thresholds.critical_band:
        return Urgency.CRITICAL
    if days_left <= lead_days * thresholds.attention_band:
        return Urgency.ATTENTION
    return Urgency.OK


def days_of_stock(quantity: int, daily_velocity: float) -> float:
    if daily_velocity <= 0:
        return NO_VELOCITY_DAYS
    return float(math.floor(quantity / daily_velocity))


def listing_type_for(local_stock: int, remote_stock: int) -> ListingType:
    if remote_stock > 0 and local_stock > 0:
        return ListingType.BOTH
    if remote_stock > 0:
        return ListingType.FULL
    return ListingType.LOCAL


class ReplenishmentService:

    def __init__(
        self,
        store: InventoryStore,
        gateway: MercadoLivreService,
        thresholds: Optional[ReconciliationThresholds] = None,
        batch_size: int = 5,
        concurrency: int = 5,
    ):
        self.store = store
        self.gateway = gateway
        self.thresholds = thresholds or ReconciliationThresholds()
        self.batch_size = batch_size
        self.concurrency = concurrency

    async def suggest_restock(self, tenant_id: str, product_id: int) -> RestockSuggestion:
        product = await self.store.get_product(product_id)
        if product is None or product.tenant_id != tenant_id:
            raise ProductNotFoundError(f"Product {product_id} not found")

        snapshot = await self.store.get_stock_snapshot(product_id)
        local_stock = snapshot.total if snapshot else 0

        settings = await self._settings_for(tenant_id, product_id)
        links = await self.store.list_links_for_product(product_id)
        sold_90d = sum(link.sold_last_90d for link in links)
        remote_stock, fetch_errors = await self._fulfillment_stock(links)

        daily = sold_90d / VELOCITY_WINDOW_DAYS
        listing_type = listing_type_for(local_stock, remote_stock)

        suggestion = RestockSuggestion(
            product_id=product_id,
            sku=product.sku,
            local_stock=local_stock,
            remote_stock=remote_stock,
            listing_type=listing_type,
            daily_velocity=round(daily, 4),
            sold_last_90d=sold_90d,
            settings=settings,
            fetch_errors=fetch_errors,
        )

        # Full side: only when something is sold through fulfillment
        transfer = 0
        local_covers_transfer = True
        if listing_type != ListingType.LOCAL:
            full_point = math.ceil(daily * settings.full_release_days + settings.safety_stock * FULL_SAFETY_SHARE)
            transfer = max(0, full_point - remote_stock)
            local_covers_transfer = local_stock >= transfer
            suggestion.days_of_full_stock = days_of_stock(remote_stock, daily)
            suggestion.transfer_urgency = classify_urgency(
                suggestion.days_of_full_stock, settings.full_release_days, self.thresholds
            )
            suggestion.suggested_transfer = transfer

        # Local side
        lead_days = settings.avg_delivery_days
        if listing_type == ListingType.FULL:
            lead_days += settings.full_release_days
        minimum = max(daily * lead_days + settings.safety_stock, daily * settings.min_coverage_days)
        purchase = max(0, math.ceil(minimum) - local_stock)
        if listing_type == ListingType.BOTH and not local_covers_transfer:
            purchase = max(purchase, transfer - local_stock)

        suggestion.days_of_local_stock = days_of_stock(local_stock, daily)
        suggestion.purchase_urgency = classify_urgency(suggestion.days_of_local_stock, lead_days, self.thresholds)
        suggestion.suggested_purchase = purchase
        if product.cost_cents is not None:
            suggestion.estimated_cost_cents = purchase * product.cost_cents

        suggestion.urgency = max(suggestion.transfer_urgency, suggestion.purchase_urgency, key=lambda u: u.rank)
        suggestion.actions = self._actions(suggestion, local_covers_transfer)

        logger.info(
            f"Restock for product {product_id}: type={listing_type.value} transfer={transfer} "
            f"purchase={purchase} urgency={suggestion.urgency.value}"
        )
        return suggestion

    async def suggest_restock_batch(
        self, tenant_id: str, product_ids: Optional[Iterable[int]] = None
    ) -> RestockBatchReport:
        """
        Restock analysis over many products.

        Without ``product_ids`` every active product of the tenant is analyzed.
        Only products that need action (critical or attention) are returned,
        critical first and then by fewest days of stock left. A product that
        cannot be analyzed goes to ``errors`` and the rest carry on.
        """
        if product_ids is None:
            product_ids = [product.id for product in await self.store.list_products(tenant_id)]
        product_ids = list(dict.fromkeys(product_ids))

        async def _suggest(product_id: int) -> RestockSuggestion:
            return await self.suggest_restock(tenant_id, product_id)

        outcomes = await run_batched(
            product_ids, _suggest, batch_size=self.batch_size, concurrency=self.concurrency
        )

        report = RestockBatchReport(tenant_id=tenant_id)
        summary = report.summary
        for outcome in outcomes:
            if not outcome.ok:
                if not isinstance(outcome.error, (ProductNotFoundError, MarketplaceAPIError, AccountNotFoundError)):
                    raise outcome.error
                report.errors[str(outcome.item)] = str(outcome.error)
                summary.failed += 1
                continue

            suggestion = outcome.value
            summary.analyzed += 1
            cost = suggestion.estimated_cost_cents or 0
            if suggestion.urgency == Urgency.CRITICAL:
                summary.critical += 1
                summary.critical_cost_cents += cost
            elif suggestion.urgency == Urgency.ATTENTION:
                summary.attention += 1
                summary.attention_cost_cents += cost
            else:
                summary.ok += 1
                continue
            summary.units_to_transfer += suggestion.suggested_transfer
            summary.units_to_purchase += suggestion.suggested_purchase
            summary.estimated_cost_cents += cost
            report.suggestions.append(suggestion)

        report.suggestions.sort(key=lambda s: (-s.urgency.rank, self._days_left(s), s.product_id))
        logger.info(
            f"Batch restock for {tenant_id}: {summary.analyzed} analyzed, {summary.critical} critical, "
            f"{summary.attention} attention, {summary.failed} failed"
        )
        return report

    @staticmethod
    def _days_left(suggestion: RestockSuggestion) -> float:
        days = [d for d in (suggestion.days_of_full_stock, suggestion.days_of_local_stock) if d is not None]
        return min(days) if days else NO_VELOCITY_DAYS

    async def _settings_for(self, tenant_id: str, product_id: int) -> ReplenishmentSettings:
        config = await self.store.get_replenishment_config(tenant_id, product_id)
        if config is None:
            return ReplenishmentSettings()
        return ReplenishmentSettings(
            avg_delivery_days=config.avg_delivery_days,
            full_release_days=config.full_release_days,
            safety_stock=config.safety_stock,
            min_coverage_days=config.min_coverage_days,
        )

    async def _fulfillment_stock(self, links) -> Tuple[int, List[str]]:
        """Live fulfillment quantity across the product's listings. Fetch failures are reported, not raised."""
        total = 0
        errors = []
        for link in links:
            try:
                listing = await self.gateway.fetch_listing(
                    link.account_id, link.item_id, context="realtime", resolve_price=False
                )
            except (MarketplaceAPIError, AccountNotFoundError) as e:
                logger.warning(f"Could not fetch {link.item_id} for restock: {e}")
                errors.append(f"{link.item_id}: {e}")
                continue
            if listing.is_fulfillment:
                total += listing.available_quantity
        return total, errors

    @staticmethod
    def _actions(suggestion: RestockSuggestion, local_covers_transfer: bool) -> List[RestockAction]:
        actions = []
        if suggestion.suggested_transfer > 0:
            if local_covers_transfer:
                description = f"Move {suggestion.suggested_transfer} units from local stock to Full"
                kind = "transfer_full"
            else:
                description = (
                    f"Full needs {suggestion.suggested_transfer} units but local only has "
                    f"{suggestion.local_stock}. Wait for the purchase."
                )
                kind = "await_purchase"
            actions.append(RestockAction(
                priority=len(actions) + 1,
                kind=kind,
                quantity=suggestion.suggested_transfer,
                urgency=suggestion.transfer_urgency,
                description=description,
            ))
        if suggestion.suggested_purchase > 0:
            actions.append(RestockAction(
                priority=len(actions) + 1,
                kind="purchase_local",
                quantity=suggestion.suggested_purchase,
                urgency=suggestion.purchase_urgency,
                description=f"Buy {suggestion.suggested_purchase} units from the supplier",
            ))
        return actions
