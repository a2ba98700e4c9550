class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class AccountNotFoundError(BaseServiceError):
    """Raised when a marketplace account does not exist for the tenant."""
    pass

class ProductNotFoundError(BaseServiceError):
    """Raised when product is not found."""
    pass

class PlatformServiceError(BaseServiceError):
    """Base exception for platform service errors."""
    pass

class MarketplaceAPIError(PlatformServiceError):
    """Raised when Mercado Livre API calls fail."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code

class TransientUpstreamError(MarketplaceAPIError):
    """Network failures and 5xx responses. Safe to retry on a later pass."""
    pass

class RateLimitError(TransientUpstreamError):
    """Raised on HTTP 429."""
    pass

class MarketplaceAuthError(MarketplaceAPIError):
    """Token missing, expired beyond refresh, or rejected. Fatal for a sync task."""
    pass

class ListingNotFoundError(MarketplaceAPIError):
    """Raised when a platform listing is not found."""
    pass

class SyncError(PlatformServiceError):
    """Raised when platform synchronization fails."""
    pass

class SyncTaskSealedError(SyncError):
    """Raised when a sealed sync task is mutated."""
    pass

class DataInconsistencyError(SyncError):
    """Local and remote records cannot be matched (missing product, unknown SKU)."""
    pass

class StoreError(BaseServiceError):
    """Raised when the inventory database rejects a write."""
    pass
