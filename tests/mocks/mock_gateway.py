from datetime import timedelta
from typing import Dict, List, Optional, Set, Tuple

from marketsync.core.exceptions import ListingNotFoundError, MarketplaceAPIError, MarketplaceAuthError
from marketsync.schemas.marketplace import BatchFetchResult, ItemSales, OrderFetchResult, RemoteListing, RemoteOrder

from tests.mocks.mock_store import BASE_TIME


def make_listing(item_id, quantity=10, sku=None, **fields) -> RemoteListing:
    fields.setdefault("title", f"Listing {item_id}")
    fields.setdefault("price_cents", 10000)
    fields.setdefault("last_updated", BASE_TIME - timedelta(minutes=5))
    return RemoteListing(item_id=item_id, available_quantity=quantity, seller_sku=sku, **fields)


class FakeGateway:
    """
    Stands in for MercadoLivreService in sync engine tests.

    ``remote`` is the marketplace state. Pushes write through to it so a second
    pass sees the corrected quantities.
    """

    def __init__(self):
        self.remote: Dict[str, RemoteListing] = {}
        self.fetch_errors: Dict[str, str] = {}
        self.push_errors: Dict[str, Exception] = {}
        self.fetch_exceptions: Dict[str, Exception] = {}
        self.token_error: Optional[Exception] = None
        self.search_error: Optional[Exception] = None
        self.modified_ids: List[str] = []
        self.sales: Dict[str, ItemSales] = {}
        self.pushes: List[Tuple[str, int]] = []
        self.invalidated: List[str] = []
        self.fetched_batches: List[List[str]] = []
        self.orders: Dict[str, RemoteOrder] = {}

    def put(self, listing: RemoteListing) -> RemoteListing:
        self.remote[listing.item_id] = listing
        return listing

    async def get_token(self, account_id):
        if self.token_error is not None:
            raise self.token_error
        return f"token-{account_id}"

    async def fetch_listing(self, account_id, item_id, context="realtime", resolve_price=True):
        await self.get_token(account_id)
        if item_id in self.fetch_exceptions:
            raise self.fetch_exceptions[item_id]
        if item_id not in self.remote:
            raise ListingNotFoundError(f"404 on /items/{item_id}", status_code=404)
        return self.remote[item_id]

    async def fetch_listings(self, account_id, item_ids, context="listing"):
        await self.get_token(account_id)
        self.fetched_batches.append(list(item_ids))
        result = BatchFetchResult()
        for item_id in item_ids:
            if item_id in self.fetch_errors:
                result.errors[item_id] = self.fetch_errors[item_id]
            elif item_id in self.remote:
                result.listings[item_id] = self.remote[item_id]
            else:
                result.errors[item_id] = "404: item not found"
        return result

    async def list_recently_modified(self, account_id, limit=50):
        if self.search_error is not None:
            raise self.search_error
        return self.modified_ids[:limit]

    async def push_stock(self, account_id, item_id, quantity):
        if item_id in self.push_errors:
            raise self.push_errors[item_id]
        self.pushes.append((item_id, quantity))
        self.remote[item_id] = self.remote[item_id].model_copy(update={"available_quantity": quantity})

    def invalidate_item(self, account_id, item_id):
        self.invalidated.append(item_id)
        return 0

    async def sales_by_item(self, account_id, days=90):
        return dict(self.sales)

    async def fetch_orders(self, account_id, since=None, status=None):
        return OrderFetchResult(orders=list(self.orders.values()), pages=1)

    async def fetch_order(self, account_id, order_id):
        if str(order_id) not in self.orders:
            raise MarketplaceAPIError(f"404 on /orders/{order_id}", status_code=404)
        return self.orders[str(order_id)]


def auth_failure(message="401 on /items: invalid_token") -> MarketplaceAuthError:
    return MarketplaceAuthError(message, status_code=401)
