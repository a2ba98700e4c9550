"""
Schemas for alerts, health reports and restock suggestions.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from marketsync.core.enums import AlertSeverity, AlertType, HealthStatus, ListingType, MonitoringPeriod, Urgency


class AlertAction(BaseModel):
    label: str
    action: str
    target: Optional[str] = None


class Alert(BaseModel):
    id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    timestamp: datetime
    item_id: Optional[str] = None
    product_id: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    actions: List[AlertAction] = Field(default_factory=list)


class AlertSummary(BaseModel):
    total: int = 0
    critical: int = 0
    warning: int = 0
    info: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)


class AlertsResponse(BaseModel):
    account_id: int
    alerts: List[Alert] = Field(default_factory=list)
    summary: AlertSummary = Field(default_factory=AlertSummary)


class DismissAlertRequest(BaseModel):
    account_id: int
    alert_id: str


class CategoryScore(BaseModel):
    """One slice of the health score with the figures it was computed from"""
    score: float
    details: Dict[str, Any] = Field(default_factory=dict)


class HealthReport(BaseModel):
    account_id: int
    period: MonitoringPeriod
    score: float
    status: HealthStatus
    breakdown: Dict[str, CategoryScore] = Field(default_factory=dict)
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    alerts: List[Alert] = Field(default_factory=list)
    generated_at: datetime


class CacheStatsResponse(BaseModel):
    size: int
    max_size: int
    hits: int
    misses: int
    hit_rate: float
    efficiency: str
    user_entries: int = 0
    user_memory_kb: float = 0.0


class ReplenishmentSettings(BaseModel):
    avg_delivery_days: int = 7
    full_release_days: int = 3
    safety_stock: int = 10
    min_coverage_days: int = 30


class RestockAction(BaseModel):
    priority: int
    kind: str
    quantity: int
    urgency: Urgency
    description: str


class RestockSuggestion(BaseModel):
    product_id: int
    sku: Optional[str] = None
    local_stock: int
    remote_stock: int
    listing_type: ListingType
    daily_velocity: float
    sold_last_90d: int = 0
    suggested_transfer: int = 0
    suggested_purchase: int = 0
    # suggested_purchase * product cost, None when the cost is unknown
    estimated_cost_cents: Optional[int] = None
    transfer_urgency: Urgency = Urgency.OK
    purchase_urgency: Urgency = Urgency.OK
    urgency: Urgency = Urgency.OK
    days_of_full_stock: Optional[float] = None
    days_of_local_stock: Optional[float] = None
    actions: List[RestockAction] = Field(default_factory=list)
    settings: ReplenishmentSettings = Field(default_factory=ReplenishmentSettings)
    fetch_errors: List[str] = Field(default_factory=list)


class RestockBatchSummary(BaseModel):
    analyzed: int = 0
    critical: int = 0
    attention: int = 0
    ok: int = 0
    failed: int = 0
    units_to_transfer: int = 0
    units_to_purchase: int = 0
    estimated_cost_cents: int = 0
    critical_cost_cents: int = 0
    attention_cost_cents: int = 0


class RestockBatchReport(BaseModel):
    """Products that need action, most urgent first. Products already covered only count in the summary."""
    tenant_id: str
    suggestions: List[RestockSuggestion] = Field(default_factory=list)
    summary: RestockBatchSummary = Field(default_factory=RestockBatchSummary)
    errors: Dict[str, str] = Field(default_factory=dict)
