import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from marketsync.core.batching import chunked
from marketsync.core.config import get_settings
from marketsync.core.exceptions import (
    ListingNotFoundError,
    MarketplaceAPIError,
    MarketplaceAuthError,
    RateLimitError,
    TransientUpstreamError,
)
from marketsync.schemas.marketplace import (
    BatchFetchResult,
    ItemSearchPage,
    OrderSearchPage,
    RemoteListing,
    RemoteOrder,
)

logger = logging.getLogger(__name__)


class MercadoLivreClient:
    """
    Asynchronous client for the Mercado Livre REST API.

    Every call takes the bearer token explicitly; token refresh is the auth
    manager's job. Failures are mapped onto the marketplace exception tree:
    401/403 -> MarketplaceAuthError, 404 -> ListingNotFoundError,
    429 -> RateLimitError, 5xx and network errors -> TransientUpstreamError.

    Documentation: https://developers.mercadolivre.com.br/en_us/api-docs
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        chunk_size: Optional[int] = None,
        chunk_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.ML_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.ML_REQUEST_TIMEOUT
        self.chunk_size = chunk_size or settings.ML_MULTIGET_CHUNK_SIZE
        self.chunk_delay = chunk_delay if chunk_delay is not None else settings.ML_BATCH_DELAY_SECONDS
        # Tests pass an httpx.MockTransport here
        self._transport = transport
        self._sleep = sleep

    def _get_headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        token: Optional[str] = None,
        params: Optional[Dict] = None,
        data: Optional[Dict] = None,
        form: Optional[Dict] = None,
    ) -> Any:
        """
        Make a request to the Mercado Livre API.

        Returns:
            Parsed JSON body ({} for 204)

        Raises:
            MarketplaceAPIError (or a subclass) when the request fails
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.debug(f"Making {method} request to {url}")
        if params:
            logger.debug(f"Params: {params}")
        if data:
            logger.debug(f"Data: {json.dumps(data)[:500]}")

        try:
            async with self._http_client() as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(token),
                    params=params,
                    json=data,
                    data=form,
                )
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling {url}: {str(e)}")
            raise TransientUpstreamError(f"Request timed out: {str(e)}")
        except httpx.RequestError as e:
            logger.error(f"Network error calling {url}: {str(e)}")
            raise TransientUpstreamError(f"Network error: {str(e)}")

        self._raise_for_status(response, endpoint)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise MarketplaceAPIError(f"Invalid JSON from {endpoint}", status_code=response.status_code)

    @staticmethod
    def _raise_for_status(response: httpx.Response, endpoint: str):
        status_code = response.status_code
        if status_code < 400:
            return

        text = response.text[:300]
        message = f"{status_code} on {endpoint}: {text}"
        if status_code in (401, 403):
            logger.warning(f"Mercado Livre auth error: {message}")
            raise MarketplaceAuthError(message, status_code=status_code)
        if status_code == 404:
            raise ListingNotFoundError(message, status_code=status_code)
        if status_code == 429:
            logger.warning(f"Mercado Livre rate limit hit on {endpoint}")
            raise RateLimitError(message, status_code=status_code)
        if status_code >= 500:
            logger.error(f"Mercado Livre server error: {message}")
            raise TransientUpstreamError(message, status_code=status_code)

        logger.error(f"Mercado Livre API error: {message}")
        raise MarketplaceAPIError(message, status_code=status_code)

    # OAuth

    async def post_token(self, form: Dict[str, str]) -> Dict:
        return await self._make_request("POST", "/oauth/token", form=form)

    # Items

    async def get_item(self, item_id: str, token: str) -> RemoteListing:
        payload = await self._make_request("GET", f"/items/{item_id}", token)
        return RemoteListing.from_api(payload)

    async def get_item_prices(self, item_id: str, token: str) -> Dict:
        return await self._make_request("GET", f"/items/{item_id}/prices", token)

    async def get_multiple_items(self, item_ids: List[str], token: str) -> BatchFetchResult:
        """
        Fetch many items through the multiget endpoint, ``chunk_size`` ids per call.

        Errors are collected per item id. A failed chunk marks only its own ids
        as failed, except for auth errors which abort the whole fetch.
        """
        result = BatchFetchResult()
        unique_ids = list(dict.fromkeys(item_ids))
        chunks = list(chunked(unique_ids, self.chunk_size))

        for index, chunk in enumerate(chunks):
            try:
                entries = await self._make_request("GET", "/items", token, params={"ids": ",".join(chunk)})
            except MarketplaceAuthError:
                raise
            except MarketplaceAPIError as e:
                logger.warning(f"Multiget chunk {index + 1}/{len(chunks)} failed: {e}")
                for item_id in chunk:
                    result.errors[item_id] = str(e)
                entries = []

            # Multiget answers in request order; error bodies do not always echo the id
            for position, entry in enumerate(entries or []):
                body = entry.get("body") or {}
                code = entry.get("code", 200)
                requested_id = chunk[position] if position < len(chunk) else None
                item_id = body.get("id") or requested_id
                if not item_id:
                    continue
                if code != 200:
                    result.errors[item_id] = f"{code}: {body.get('message') or body.get('error') or 'item unavailable'}"
                    continue
                try:
                    result.listings[item_id] = RemoteListing.from_api(body)
                except (KeyError, ValueError) as e:
                    result.errors[item_id] = f"invalid payload: {e}"

            for item_id in chunk:
                if item_id not in result.listings and item_id not in result.errors:
                    result.errors[item_id] = "missing from multiget response"

            if index < len(chunks) - 1 and self.chunk_delay:
                await self._sleep(self.chunk_delay)

        return result

    async def get_user_items(
        self,
        token: str,
        user_id: Any = "me",
        offset: int = 0,
        limit: int = 50,
        status: Optional[str] = None,
        sort: Optional[str] = None,
    ) -> ItemSearchPage:
        params: Dict[str, Any] = {"offset": offset, "limit": limit}
        if status:
            params["status"] = status
        if sort:
            params["sort"] = sort
        payload = await self._make_request("GET", f"/users/{user_id}/items/search", token, params=params)
        return ItemSearchPage.model_validate(payload)

    async def update_item_stock(self, item_id: str, quantity: int, token: str) -> Dict:
        if quantity < 0:
            raise ValueError("quantity must not be negative")
        return await self.update_item(item_id, {"available_quantity": quantity}, token)

    async def update_item(self, item_id: str, patch: Dict[str, Any], token: str) -> Dict:
        return await self._make_request("PUT", f"/items/{item_id}", token, data=patch)

    # Orders

    async def get_user_orders(
        self,
        token: str,
        seller_id: Any,
        offset: int = 0,
        limit: int = 50,
        status: Optional[str] = None,
        sort: str = "date_desc",
        date_from: Optional[str] = None,
    ) -> OrderSearchPage:
        params: Dict[str, Any] = {"seller": seller_id, "offset": offset, "limit": limit, "sort": sort}
        if status:
            params["order.status"] = status
        if date_from:
            params["order.date_created.from"] = date_from
        payload = await self._make_request("GET", "/orders/search", token, params=params)
        return OrderSearchPage.model_validate(payload)

    async def get_order(self, order_id: Any, token: str) -> RemoteOrder:
        payload = await self._make_request("GET", f"/orders/{order_id}", token)
        return RemoteOrder.from_api(payload)

