"""
Typed views of Mercado Livre API payloads.

Raw JSON is narrowed here, at the gateway boundary, so the sync engine only
ever sees validated records with money already in integer cents.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketsync.core.enums import FULFILLMENT_LOGISTIC_TYPE, PENDING_ORDER_STATUSES, ListingStatus, VALID_SALE_STATUSES
from marketsync.core.utils import parse_timestamp, to_cents

logger = logging.getLogger(__name__)

MARKETPLACE_CHANNEL = "channel_marketplace"


class TokenResponse(BaseModel):
    """Response from POST /oauth/token"""
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 21600
    user_id: Optional[int] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None


class Paging(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total: int = 0
    offset: int = 0
    limit: int = 50


class ItemSearchPage(BaseModel):
    """Response from GET /users/{id}/items/search"""
    model_config = ConfigDict(extra="ignore")

    results: List[str] = Field(default_factory=list)
    paging: Paging = Field(default_factory=Paging)

    @property
    def has_more(self) -> bool:
        return (
            len(self.results) >= self.paging.limit
            and self.paging.offset + self.paging.limit < self.paging.total
        )


class RemoteListing(BaseModel):
    """A single marketplace listing, as returned by GET /items/{id}"""
    model_config = ConfigDict(extra="ignore", frozen=True)

    item_id: str
    title: str = ""
    price_cents: int = 0
    original_price_cents: Optional[int] = None
    base_price_cents: Optional[int] = None
    available_quantity: int = 0
    sold_quantity: int = 0
    status: ListingStatus = ListingStatus.ACTIVE
    last_updated: Optional[datetime] = None
    shipping_mode: Optional[str] = None
    logistic_type: Optional[str] = None
    seller_sku: Optional[str] = None
    seller_id: Optional[int] = None
    permalink: Optional[str] = None
    category_id: Optional[str] = None
    condition: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value):
        try:
            return ListingStatus(value)
        except ValueError:
            logger.debug(f"Unknown listing status '{value}', treating as inactive")
            return ListingStatus.INACTIVE

    @field_validator("available_quantity", "sold_quantity", mode="before")
    @classmethod
    def _none_is_zero(cls, value):
        return 0 if value is None else value

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "RemoteListing":
        shipping = payload.get("shipping") or {}
        return cls.model_validate({
            "item_id": payload["id"],
            "title": payload.get("title") or "",
            "price_cents": to_cents(payload.get("price")) or 0,
            "original_price_cents": to_cents(payload.get("original_price")),
            "base_price_cents": to_cents(payload.get("base_price")),
            "available_quantity": payload.get("available_quantity"),
            "sold_quantity": payload.get("sold_quantity"),
            "status": payload.get("status", "active"),
            "last_updated": parse_timestamp(payload.get("last_updated")),
            "shipping_mode": shipping.get("mode"),
            "logistic_type": shipping.get("logistic_type"),
            "seller_sku": _extract_seller_sku(payload),
            "seller_id": payload.get("seller_id"),
            "permalink": payload.get("permalink"),
            "category_id": payload.get("category_id"),
            "condition": payload.get("condition"),
        })

    @property
    def is_fulfillment(self) -> bool:
        return self.logistic_type == FULFILLMENT_LOGISTIC_TYPE

    @property
    def has_promotion(self) -> bool:
        return self.original_price_cents is not None and self.original_price_cents > self.price_cents

    @property
    def promotion_discount_pct(self) -> int:
        if not self.has_promotion:
            return 0
        return round((self.original_price_cents - self.price_cents) / self.original_price_cents * 100)

    def with_price(self, resolution: "PriceResolution") -> "RemoteListing":
        return self.model_copy(update={
            "price_cents": resolution.price_cents,
            "original_price_cents": resolution.original_price_cents,
            "base_price_cents": resolution.base_price_cents,
        })


def _extract_seller_sku(payload: Dict[str, Any]) -> Optional[str]:
    if payload.get("seller_custom_field"):
        return str(payload["seller_custom_field"]).strip()
    for attribute in payload.get("attributes") or []:
        if attribute.get("id") == "SELLER_SKU" and attribute.get("value_name"):
            return str(attribute["value_name"]).strip()
    return None


class PriceResolution(BaseModel):
    """Effective selling price for a listing, after looking at promotions."""
    model_config = ConfigDict(frozen=True)

    price_cents: int
    original_price_cents: Optional[int] = None
    base_price_cents: Optional[int] = None
    discount_pct: int = 0
    source: str = "item"

    @property
    def has_promotion(self) -> bool:
        return self.original_price_cents is not None and self.original_price_cents > self.price_cents

    @classmethod
    def from_listing(cls, listing: RemoteListing, source: str = "item") -> "PriceResolution":
        return cls(
            price_cents=listing.price_cents,
            original_price_cents=listing.original_price_cents,
            base_price_cents=listing.base_price_cents,
            discount_pct=listing.promotion_discount_pct,
            source=source,
        )

    @classmethod
    def from_prices_payload(cls, payload: Dict[str, Any], listing: RemoteListing) -> "PriceResolution":
        """
        Pick the marketplace-channel price from GET /items/{id}/prices.

        An active promotion with a regular amount wins over the standard price.
        Falls back to the item's own fields when nothing applies.
        """
        marketplace_prices = [
            price for price in payload.get("prices") or []
            if MARKETPLACE_CHANNEL in ((price.get("conditions") or {}).get("context_restrictions") or [])
        ]

        promotion = next((p for p in marketplace_prices if p.get("type") == "promotion"), None)
        if promotion and promotion.get("amount") is not None and promotion.get("regular_amount"):
            amount = to_cents(promotion["amount"])
            regular = to_cents(promotion["regular_amount"])
            discount = round((regular - amount) / regular * 100) if regular else 0
            return cls(
                price_cents=amount,
                original_price_cents=regular,
                base_price_cents=listing.base_price_cents or regular,
                discount_pct=discount,
                source="prices",
            )

        standard = next((p for p in marketplace_prices if p.get("type") == "standard"), None)
        if standard and standard.get("amount") is not None:
            return cls(
                price_cents=to_cents(standard["amount"]),
                original_price_cents=None,
                base_price_cents=listing.base_price_cents,
                source="prices",
            )

        return cls.from_listing(listing, source="fallback")


class RemoteOrderItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    title: str = ""
    seller_sku: Optional[str] = None
    quantity: int = 1
    unit_price_cents: int = 0


class RemoteOrder(BaseModel):
    """A single order from GET /orders/search"""
    model_config = ConfigDict(frozen=True)

    order_id: int
    status: str
    date_created: Optional[datetime] = None
    total_amount_cents: int = 0
    items: List[RemoteOrderItem] = Field(default_factory=list)

    @property
    def is_sale(self) -> bool:
        return self.status in VALID_SALE_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_ORDER_STATUSES

    @property
    def units(self) -> int:
        return sum(item.quantity for item in self.items)

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "RemoteOrder":
        items = []
        for entry in payload.get("order_items") or []:
            item = entry.get("item") or {}
            if not item.get("id"):
                continue
            items.append(RemoteOrderItem(
                item_id=item["id"],
                title=item.get("title") or "",
                seller_sku=item.get("seller_sku"),
                quantity=entry.get("quantity") or 1,
                unit_price_cents=to_cents(entry.get("unit_price")) or 0,
            ))
        return cls(
            order_id=payload["id"],
            status=payload.get("status") or "unknown",
            date_created=parse_timestamp(payload.get("date_created")),
            total_amount_cents=to_cents(payload.get("total_amount")) or 0,
            items=items,
        )


class OrderSearchPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: List[Dict[str, Any]] = Field(default_factory=list)
    paging: Paging = Field(default_factory=Paging)

    def orders(self) -> List[RemoteOrder]:
        parsed = []
        for raw in self.results:
            try:
                parsed.append(RemoteOrder.from_api(raw))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed order payload {raw.get('id')}: {e}")
        return parsed


class BatchFetchResult(BaseModel):
    """Listings fetched in bulk plus a per-id error string for the ones that failed"""
    listings: Dict[str, RemoteListing] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)


class ItemSales(BaseModel):
    """Sold quantity and revenue for one listing over a window"""
    item_id: str
    quantity: int = 0
    revenue_cents: int = 0
    orders: int = 0


class OrderFetchResult(BaseModel):
    orders: List[RemoteOrder] = Field(default_factory=list)
    pages: int = 0
    errors: List[str] = Field(default_factory=list)
    truncated: bool = False
