from .account import MarketplaceAccount
from .listing_link import ListingLink
from .sync_history import SyncHistory
from .product import Product, StockLevel
from .replenishment_config import ReplenishmentConfig
from .dismissed_alert import DismissedAlert

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'MarketplaceAccount',
    'ListingLink',
    'SyncHistory',
    'Product',
    'StockLevel',
    'ReplenishmentConfig',
    'DismissedAlert',
]
