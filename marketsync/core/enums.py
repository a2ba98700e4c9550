"""
Shared enums and constants used across the sync core.
"""

from enum import Enum


class CacheCategory(str, Enum):
    PRODUCTS = "products"
    PRICES = "prices"
    STOCK = "stock"
    ORDERS = "orders"
    SALES = "sales"
    ACCOUNT = "account"
    AUTH = "auth"
    USER = "user"
    ANALYTICS = "analytics"
    METRICS = "metrics"
    ALERTS = "alerts"
    CONFIG = "config"
    CATEGORIES = "categories"
    FEES = "fees"


class ListingStatus(str, Enum):
    """Remote listing status as reported by Mercado Livre"""
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"
    UNDER_REVIEW = "under_review"
    INACTIVE = "inactive"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class SyncStrategy(str, Enum):
    FULL = "full"
    MODIFIED = "modified"
    CRITICAL = "critical"
    ERRORS = "errors"
    BESTSELLERS = "bestsellers"
    AUTO = "auto"

    @classmethod
    def auto_sequence(cls):
        return [cls.MODIFIED, cls.CRITICAL, cls.ERRORS, cls.BESTSELLERS]


class DecisionReason(str, Enum):
    FULL_RESYNC = "full_resync"
    STOCKOUT = "stockout"
    LOW_STOCK = "low_stock"
    DIVERGENCE = "divergence"
    STALE_CATCH_UP = "stale_catch_up"
    IN_TOLERANCE = "in_tolerance"


class StockStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class Urgency(str, Enum):
    OK = "ok"
    ATTENTION = "attention"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"ok": 0, "attention": 1, "critical": 2}[self.value]


class AlertType(str, Enum):
    STOCK = "stock"
    SYNC = "sync"
    SALES = "sales"


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return {"critical": 3, "warning": 2, "info": 1}[self.value]


class HealthStatus(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"

    @classmethod
    def from_score(cls, score: float) -> "HealthStatus":
        if score >= 90:
            return cls.EXCELLENT
        if score >= 75:
            return cls.GOOD
        if score >= 60:
            return cls.FAIR
        if score >= 40:
            return cls.POOR
        return cls.CRITICAL


class MonitoringPeriod(str, Enum):
    HOUR = "1h"
    DAY = "24h"
    WEEK = "7d"
    MONTH = "30d"

    @property
    def seconds(self) -> int:
        return {"1h": 3600, "24h": 86400, "7d": 7 * 86400, "30d": 30 * 86400}[self.value]


class ListingType(str, Enum):
    """Where a product is being sold from"""
    LOCAL = "local"
    FULL = "full"
    BOTH = "both"


# Order statuses that count as a completed sale
VALID_SALE_STATUSES = ("paid", "delivered", "ready_to_ship", "shipped", "handling")

FULFILLMENT_LOGISTIC_TYPE = "fulfillment"

PENDING_ORDER_STATUSES = ("confirmed", "payment_required", "payment_in_process")
