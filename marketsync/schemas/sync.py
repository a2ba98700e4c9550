"""
Schemas for sync runs and reconciliation decisions.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from marketsync.core.config import Settings
from marketsync.core.enums import DecisionReason, StockStatus, SyncStrategy
from marketsync.core.exceptions import SyncTaskSealedError
from marketsync.schemas.base import BaseSchema


class ReconciliationThresholds(BaseModel):
    """Knobs for the stock reconciliation rules and the urgency bands."""
    model_config = ConfigDict(frozen=True)

    low_stock_floor: int = 5
    divergence_ratio: float = 0.5
    stale_after: timedelta = timedelta(hours=2)
    critical_band: float = 0.3
    attention_band: float = 0.6

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconciliationThresholds":
        return cls(
            low_stock_floor=settings.LOW_STOCK_FLOOR,
            divergence_ratio=settings.DIVERGENCE_RATIO,
            stale_after=timedelta(hours=settings.STALE_SYNC_HOURS),
            critical_band=settings.CRITICAL_BAND,
            attention_band=settings.ATTENTION_BAND,
        )


class ReconciliationDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    should_update: bool
    target_quantity: int
    reason: DecisionReason
    status: StockStatus = StockStatus.OK


class ListingOutcome(str, Enum):
    """What happened to one listing during a pass"""
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    CREATED = "created"
    SKIPPED = "skipped"


class SyncTask(BaseModel):
    """
    Bookkeeping for a single sync run.

    Every listing that goes through the run bumps ``processed`` and at most one
    of ``updated``, ``created`` or ``errored``. ``seal()`` freezes the task;
    any further mutation raises SyncTaskSealedError.
    """
    account_id: int
    strategy: SyncStrategy
    scope: Optional[List[str]] = None
    processed: int = 0
    updated: int = 0
    created: int = 0
    errored: int = 0
    errors: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    strategies_run: List[SyncStrategy] = Field(default_factory=list)
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    fatal_error: Optional[str] = None

    _sealed: bool = PrivateAttr(default=False)
    _handled: Set[str] = PrivateAttr(default_factory=set)

    def __setattr__(self, name, value):
        if not name.startswith("_") and self.sealed:
            raise SyncTaskSealedError(f"Sync task for account {self.account_id} is sealed")
        super().__setattr__(name, value)

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def success(self) -> bool:
        if self.fatal_error:
            return False
        if self.processed == 0:
            return self.errored == 0
        return self.errored < self.processed / 2

    def _check_open(self):
        if self._sealed:
            raise SyncTaskSealedError(f"Sync task for account {self.account_id} is sealed")

    def already_handled(self, item_id: str) -> bool:
        return item_id in self._handled

    def claim(self, item_id: str) -> bool:
        """Reserve ``item_id`` for this run. False if an earlier strategy already took it."""
        self._check_open()
        if item_id in self._handled:
            return False
        self._handled.add(item_id)
        return True

    def record(self, outcome: ListingOutcome, reason: Optional[str] = None):
        self._check_open()
        self.processed += 1
        if outcome == ListingOutcome.UPDATED:
            self.updated += 1
        elif outcome == ListingOutcome.CREATED:
            self.created += 1
        elif outcome == ListingOutcome.SKIPPED and reason:
            self.skipped.append(reason)

    def record_error(self, message: str):
        self._check_open()
        self.processed += 1
        self.errored += 1
        self.errors.append(message)

    def add_error(self, message: str):
        """Error that is not tied to a single listing (e.g. a failed search page)"""
        self._check_open()
        self.errors.append(message)

    def mark_strategy(self, strategy: SyncStrategy):
        self._check_open()
        self.strategies_run.append(strategy)

    def fail(self, message: str):
        self._check_open()
        self.fatal_error = message

    def seal(self, now: datetime) -> "SyncTask":
        self._check_open()
        self.finished_at = now
        self.duration_seconds = round((now - self.started_at).total_seconds(), 3)
        self.errors = list(self.errors)
        self.skipped = list(self.skipped)
        self._sealed = True
        return self

    def summary(self) -> "SyncSummary":
        if self.fatal_error:
            message = f"Sync aborted: {self.fatal_error}"
        else:
            message = (
                f"Processed {self.processed} listings: {self.updated} updated, "
                f"{self.created} created, {self.errored} errors"
            )
        return SyncSummary(
            account_id=self.account_id,
            strategy=self.strategy,
            processed=self.processed,
            updated=self.updated,
            created=self.created,
            errored=self.errored,
            errors=list(self.errors),
            skipped=list(self.skipped),
            strategies=list(self.strategies_run),
            success=self.success,
            duration_seconds=self.duration_seconds,
            fatal_error=self.fatal_error,
            message=message,
        )


class SyncSummary(BaseModel):
    account_id: int
    strategy: SyncStrategy
    processed: int
    updated: int
    created: int
    errored: int
    errors: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    strategies: List[SyncStrategy] = Field(default_factory=list)
    success: bool
    duration_seconds: float = 0.0
    fatal_error: Optional[str] = None
    message: str = ""


class SyncRequest(BaseModel):
    account_id: int
    strategy: SyncStrategy = SyncStrategy.AUTO
    max_items: int = Field(default=50, ge=1, le=500)
    item_ids: Optional[List[str]] = None


class PriceRefreshRequest(BaseModel):
    account_id: int
    force: bool = False


class PriceRefreshResult(BaseModel):
    account_id: int
    checked: int = 0
    updated: int = 0
    promotions: int = 0
    errors: List[str] = Field(default_factory=list)


class WebhookNotification(BaseModel):
    """Mercado Livre notification body"""
    model_config = ConfigDict(extra="ignore")

    resource: str
    user_id: int
    topic: str
    application_id: Optional[int] = None
    attempts: int = 1
    sent: Optional[datetime] = None


class SyncHistoryRecord(BaseSchema):
    id: int
    account_id: int
    strategy: str
    processed: int
    updated: int
    created: int
    errored: int
    errors: List[str] = Field(default_factory=list)
    success: bool
    fatal_error: Optional[str] = None
    duration_seconds: float
    started_at: datetime
    finished_at: Optional[datetime] = None


class SyncOverview(BaseModel):
    account_id: int
    total_listings: int
    needs_sync: int
    in_error: int
    healthy: int
    last_sync: Optional[SyncHistoryRecord] = None
    recommendations: List[str] = Field(default_factory=list)
