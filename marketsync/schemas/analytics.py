"""
Sales analytics for an account. All money is integer cents.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class TopSeller(BaseModel):
    item_id: str
    title: str = ""
    units: int = 0
    revenue_cents: int = 0


class ListingCounts(BaseModel):
    total: int = 0
    active: int = 0
    paused: int = 0
    low_stock: int = 0


class SalesMetrics(BaseModel):
    account_id: int
    days: int
    orders: int = 0
    units: int = 0
    revenue_cents: int = 0
    # revenue / units sold, rounded to the cent
    average_ticket_cents: int = 0
    previous_revenue_cents: int = 0
    # None when the previous window had no revenue to compare with
    growth_pct: Optional[float] = None
    pending_orders: int = 0
    top_sellers: List[TopSeller] = Field(default_factory=list)
    listings: ListingCounts = Field(default_factory=ListingCounts)
    truncated: bool = False
    errors: List[str] = Field(default_factory=list)
    generated_at: datetime
