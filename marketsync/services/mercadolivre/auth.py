import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from urllib.parse import urlencode

from marketsync.core.config import get_settings
from marketsync.core.exceptions import AccountNotFoundError, MarketplaceAPIError, MarketplaceAuthError, TransientUpstreamError
from marketsync.core.utils import ensure_aware, utcnow
from marketsync.integrations.base import InventoryStore
from marketsync.schemas.marketplace import TokenResponse
from marketsync.services.mercadolivre.client import MercadoLivreClient

logger = logging.getLogger(__name__)


class MLAuthManager:
    """
    Keeps each account's access token valid.

    Tokens live in the inventory store. When one is within the expiry margin it
    is exchanged with the refresh token and the new pair is persisted before
    being handed out. Refreshes for the same account are serialised so
    concurrent workers never burn the single-use refresh token twice.
    """

    def __init__(
        self,
        store: InventoryStore,
        client: MercadoLivreClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.store = store
        self.client = client
        self.client_id = settings.ML_CLIENT_ID
        self.client_secret = settings.ML_CLIENT_SECRET
        self.redirect_uri = settings.ML_REDIRECT_URI
        self.auth_url = settings.ML_AUTH_URL
        self.expiry_margin = timedelta(seconds=settings.ML_TOKEN_EXPIRY_MARGIN_SECONDS)
        self._clock = clock
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, account_id: int) -> asyncio.Lock:
        if account_id not in self._locks:
            self._locks[account_id] = asyncio.Lock()
        return self._locks[account_id]

    async def get_valid_token(self, account_id: int) -> str:
        """
        Return an access token for the account, refreshing it if needed.

        Raises:
            AccountNotFoundError: unknown account
            MarketplaceAuthError: account disconnected or refresh rejected
            TransientUpstreamError: the token endpoint could not be reached
        """
        async with self._lock_for(account_id):
            account = await self.store.get_account(account_id)
            if account is None:
                raise AccountNotFoundError(f"Marketplace account {account_id} not found")
            if not account.is_active:
                raise MarketplaceAuthError(f"Account {account_id} is disconnected. Please reconnect Mercado Livre.")

            if ensure_aware(account.expires_at) - self.expiry_margin > self._clock():
                logger.debug(f"Using stored access token for account {account_id}")
                return account.access_token

            logger.info(f"Access token for account {account_id} expired, refreshing...")
            token = await self._refresh(account_id, account.refresh_token)
            return token.access_token

    async def _refresh(self, account_id: int, refresh_token: str) -> TokenResponse:
        form = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
        }
        try:
            payload = await self.client.post_token(form)
            token = TokenResponse.model_validate(payload)
        except TransientUpstreamError:
            # Token endpoint unreachable; the refresh token is still good
            raise
        except (MarketplaceAPIError, ValueError) as e:
            logger.error(f"Token refresh failed for account {account_id}: {e}")
            await self.store.deactivate_account(account_id)
            raise MarketplaceAuthError(
                f"Could not refresh Mercado Livre token for account {account_id}. Please reconnect."
            )

        expires_at = self._clock() + timedelta(seconds=token.expires_in)
        await self.store.save_tokens(
            account_id,
            token.access_token,
            token.refresh_token or refresh_token,
            expires_at,
        )
        logger.info(f"Refreshed access token for account {account_id}, valid until {expires_at.isoformat()}")
        return token

    def get_authorization_url(self, state: Optional[str] = None) -> str:
        """URL the seller is sent to for granting access"""
        if not self.redirect_uri:
            raise ValueError("ML_REDIRECT_URI is required for authorization URL generation")
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
        }
        if state:
            params["state"] = state
        return f"{self.auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        """Trade an authorization code for the first token pair"""
        form = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        try:
            payload = await self.client.post_token(form)
        except TransientUpstreamError:
            raise
        except MarketplaceAPIError as e:
            logger.error(f"Authorization code exchange failed: {e}")
            raise MarketplaceAuthError(f"Authorization code exchange failed: {e}")
        return TokenResponse.model_validate(payload)
