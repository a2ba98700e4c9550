# marketsync/services/monitoring.py
"""
Read-side projections: alerts and the account health report.

Nothing here writes marketplace or inventory state. The only persisted bit is
the optional "dismissed" marker for an alert id.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from marketsync.core.enums import AlertSeverity, AlertType, CacheCategory, HealthStatus, MonitoringPeriod, SyncStatus
from marketsync.core.exceptions import AccountNotFoundError
from marketsync.core.utils import ensure_aware, utcnow
from marketsync.integrations.base import InventoryStore
from marketsync.schemas.inventory import ListingLinkRecord
from marketsync.schemas.monitoring import (
    Alert,
    AlertAction,
    AlertsResponse,
    AlertSummary,
    CategoryScore,
    HealthReport,
)
from marketsync.schemas.sync import ReconciliationThresholds
from marketsync.services.cache_service import IntelligentCache, create_cache_key, with_cache

logger = logging.getLogger(__name__)

DIVERGENCE_ALERT_UNITS = 5
STALE_SYNC_ALERT_AFTER = timedelta(hours=1)
NO_SALES_AFTER = timedelta(days=30)
MIN_MARGIN_PCT = 10
MAX_MARGIN_PCT = 200

HEALTH_WEIGHTS = {"sync": 0.3, "api": 0.3, "cache": 0.2, "errors": 0.2}


def rank_alerts(alerts: List[Alert]) -> List[Alert]:
    """Severity descending, then newest first. Stable for equal keys."""
    return sorted(alerts, key=lambda alert: (-alert.severity.rank, -alert.timestamp.timestamp()))


def classify_error(message: Optional[str]) -> str:
    if not message:
        return "other"
    text = message.lower()
    if "timeout" in text or "timed out" in text:
        return "timeout"
    if "401" in text or "403" in text or "unauthorized" in text or "authorization" in text or "forbidden" in text:
        return "auth"
    if "429" in text or "rate limit" in text or "too many requests" in text:
        return "rate_limit"
    if "network" in text or "connection" in text:
        return "network"
    if "400" in text or "validation" in text or "invalid" in text:
        return "validation"
    if "404" in text or "not found" in text:
        return "not_found"
    return "other"


def alerts_cache_key(account_id: int, *parts) -> str:
    return create_cache_key("alerts", account_id, *parts)


def monitoring_cache_key(account_id: int, *parts) -> str:
    return create_cache_key("monitoring", account_id, *parts)


class MonitoringService:

    def __init__(
        self,
        store: InventoryStore,
        cache: IntelligentCache,
        thresholds: Optional[ReconciliationThresholds] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cache = cache
        self.thresholds = thresholds or ReconciliationThresholds()
        self._clock = clock

    # Alerts

    async def get_alerts(
        self,
        account_id: int,
        alert_type: Optional[AlertType] = None,
        severity: Optional[AlertSeverity] = None,
    ) -> AlertsResponse:
        await self._require_account(account_id)

        async def _produce() -> List[Alert]:
            return await self._build_alerts(account_id)

        alerts = await with_cache(
            self.cache, alerts_cache_key(account_id, "all"), _produce, CacheCategory.ALERTS, "realtime"
        )

        dismissed = await self.store.list_dismissed_alerts(account_id)
        alerts = [alert for alert in alerts if alert.id not in dismissed]
        if alert_type is not None:
            alerts = [alert for alert in alerts if alert.type == alert_type]
        if severity is not None:
            alerts = [alert for alert in alerts if alert.severity == severity]

        return AlertsResponse(account_id=account_id, alerts=alerts, summary=self._summarise(alerts))

    async def dismiss_alert(self, account_id: int, alert_id: str) -> None:
        await self._require_account(account_id)
        await self.store.dismiss_alert(account_id, alert_id)
        self.cache.invalidate_pattern(alerts_cache_key(account_id, ""))
        self.cache.invalidate_pattern(monitoring_cache_key(account_id, ""))
        logger.info(f"Alert {alert_id} dismissed for account {account_id}")

    async def _build_alerts(self, account_id: int) -> List[Alert]:
        links = await self.store.list_links(account_id)
        now = self._clock()

        alerts: List[Alert] = []
        alerts.extend(await self._stock_alerts(links, now))
        alerts.extend(self._sync_alerts(account_id, links, now))
        alerts.extend(await self._sales_alerts(account_id, links, now))
        return rank_alerts(alerts)

    async def _stock_alerts(self, links: List[ListingLinkRecord], now: datetime) -> List[Alert]:
        alerts = []
        for link in links:
            if not link.is_active:
                continue

            remote = link.available_quantity
            if remote == 0:
                alerts.append(Alert(
                    id=f"stock_out_{link.item_id}",
                    type=AlertType.STOCK,
                    severity=AlertSeverity.CRITICAL,
                    title="Out of stock",
                    message=f"{link.title or link.item_id} has no stock on Mercado Livre",
                    timestamp=now,
                    item_id=link.item_id,
                    product_id=link.product_id,
                    details={"remote_stock": remote},
                    actions=[AlertAction(label="Sync stock", action="sync_stock", target=link.item_id)],
                ))
                continue

            if remote <= self.thresholds.low_stock_floor:
                alerts.append(Alert(
                    id=f"stock_low_{link.item_id}",
                    type=AlertType.STOCK,
                    severity=AlertSeverity.WARNING,
                    title="Low stock",
                    message=f"{link.title or link.item_id} has only {remote} units on Mercado Livre",
                    timestamp=now,
                    item_id=link.item_id,
                    product_id=link.product_id,
                    details={"remote_stock": remote},
                    actions=[AlertAction(label="Restock", action="restock", target=link.item_id)],
                ))
                continue

            if link.product_id is None:
                continue
            snapshot = await self.store.get_stock_snapshot(link.product_id)
            if snapshot is None:
                continue
            local = snapshot.total
            if local > 0 and abs(remote - local) > DIVERGENCE_ALERT_UNITS:
                alerts.append(Alert(
                    id=f"stock_divergence_{link.item_id}",
                    type=AlertType.STOCK,
                    severity=AlertSeverity.INFO,
                    title="Stock out of sync",
                    message=f"{link.title or link.item_id}: {remote} on Mercado Livre, {local} in stock",
                    timestamp=now,
                    item_id=link.item_id,
                    product_id=link.product_id,
                    details={"remote_stock": remote, "local_stock": local, "difference": abs(remote - local)},
                    actions=[AlertAction(label="Sync stock", action="sync_stock", target=link.item_id)],
                ))
        return alerts

    def _sync_alerts(self, account_id: int, links: List[ListingLinkRecord], now: datetime) -> List[Alert]:
        alerts = []
        stale = []
        for link in links:
            if link.sync_status == SyncStatus.ERROR.value:
                alerts.append(Alert(
                    id=f"sync_error_{link.item_id}",
                    type=AlertType.SYNC,
                    severity=AlertSeverity.WARNING,
                    title="Sync failed",
                    message=f"Could not sync {link.title or link.item_id}",
                    timestamp=ensure_aware(link.last_synced_at) or now,
                    item_id=link.item_id,
                    product_id=link.product_id,
                    details={"error": link.sync_error, "error_type": classify_error(link.sync_error)},
                    actions=[AlertAction(label="Retry", action="retry_sync", target=link.item_id)],
                ))
            elif link.last_synced_at is None or now - ensure_aware(link.last_synced_at) > STALE_SYNC_ALERT_AFTER:
                stale.append(link)

        if stale:
            alerts.append(Alert(
                id=f"sync_stale_{account_id}",
                type=AlertType.SYNC,
                severity=AlertSeverity.INFO,
                title="Listings not synced recently",
                message=f"{len(stale)} listings have not been synced in the last hour",
                timestamp=now,
                details={"count": len(stale), "item_ids": [link.item_id for link in stale[:10]]},
                actions=[AlertAction(label="Run sync", action="run_sync")],
            ))
        return alerts

    async def _sales_alerts(self, account_id: int, links: List[ListingLinkRecord], now: datetime) -> List[Alert]:
        alerts = []
        active = [link for link in links if link.is_active]

        no_sales = [
            link for link in active
            if link.sold_quantity == 0 and link.created_at is not None
            and now - ensure_aware(link.created_at) > NO_SALES_AFTER
        ]
        if no_sales:
            no_sales.sort(key=lambda link: link.price_cents, reverse=True)
            alerts.append(Alert(
                id=f"sales_no_sales_{account_id}",
                type=AlertType.SALES,
                severity=AlertSeverity.INFO,
                title="Listings without sales",
                message=f"{len(no_sales)} active listings without sales in 30+ days",
                timestamp=now,
                details={
                    "count": len(no_sales),
                    "listings": [
                        {
                            "item_id": link.item_id,
                            "title": link.title,
                            "price_cents": link.price_cents,
                            "days_active": (now - ensure_aware(link.created_at)).days,
                        }
                        for link in no_sales[:5]
                    ],
                },
                actions=[
                    AlertAction(label="Review prices", action="review_prices"),
                    AlertAction(label="Create promotion", action="create_promotion"),
                ],
            ))

        problems = []
        for link in active:
            if link.product_id is None or link.price_cents <= 0:
                continue
            product = await self.store.get_product(link.product_id)
            if product is None or not product.cost_cents:
                continue
            margin = (link.price_cents - product.cost_cents) / link.price_cents * 100
            if margin < MIN_MARGIN_PCT or margin > MAX_MARGIN_PCT:
                problems.append({
                    "item_id": link.item_id,
                    "title": link.title,
                    "price_cents": link.price_cents,
                    "cost_cents": product.cost_cents,
                    "margin": round(margin, 2),
                    "issue": "low_margin" if margin < MIN_MARGIN_PCT else "high_margin",
                })

        if problems:
            alerts.append(Alert(
                id=f"sales_pricing_{account_id}",
                type=AlertType.SALES,
                severity=AlertSeverity.WARNING,
                title="Pricing problems",
                message=f"{len(problems)} listings with a margin outside {MIN_MARGIN_PCT}%-{MAX_MARGIN_PCT}%",
                timestamp=now,
                details={"count": len(problems), "listings": problems[:3]},
                actions=[
                    AlertAction(label="Review costs", action="review_costs"),
                    AlertAction(label="Adjust prices", action="adjust_prices"),
                ],
            ))
        return alerts

    @staticmethod
    def _summarise(alerts: List[Alert]) -> AlertSummary:
        severities = Counter(alert.severity for alert in alerts)
        types = Counter(alert.type.value for alert in alerts)
        return AlertSummary(
            total=len(alerts),
            critical=severities.get(AlertSeverity.CRITICAL, 0),
            warning=severities.get(AlertSeverity.WARNING, 0),
            info=severities.get(AlertSeverity.INFO, 0),
            by_type=dict(types),
        )

    # Health

    async def get_health(self, account_id: int, period: MonitoringPeriod = MonitoringPeriod.DAY) -> HealthReport:
        await self._require_account(account_id)

        async def _produce() -> HealthReport:
            return await self._build_health(account_id, period)

        return await with_cache(
            self.cache, monitoring_cache_key(account_id, period.value), _produce, CacheCategory.METRICS, "monitoring"
        )

    async def _build_health(self, account_id: int, period: MonitoringPeriod) -> HealthReport:
        now = self._clock()
        start = now - timedelta(seconds=period.seconds)

        history = await self.store.list_sync_history(account_id, limit=1000, since=start)
        links = await self.store.list_links(account_id)

        sync = self._sync_score(history)
        api = self._api_score(links, start)
        cache = self._cache_score()
        errors = self._error_score(links, start)

        breakdown = {"sync": sync, "api": api, "cache": cache, "errors": errors}
        score = round(sum(breakdown[name].score * weight for name, weight in HEALTH_WEIGHTS.items()))

        alerts = (await self.get_alerts(account_id)).alerts

        return HealthReport(
            account_id=account_id,
            period=period,
            score=score,
            status=HealthStatus.from_score(score),
            breakdown=breakdown,
            insights=self._insights(score, sync, cache, errors),
            recommendations=self._recommendations(score, sync, cache, errors),
            alerts=alerts,
            generated_at=now,
        )

    @staticmethod
    def _sync_score(history) -> CategoryScore:
        total = len(history)
        successful = sum(1 for record in history if record.success)
        success_rate = successful / total * 100 if total else 100.0
        avg_seconds = sum(record.duration_seconds for record in history) / total if total else 0.0
        # One point off per second of average run time
        time_score = max(0.0, 100 - avg_seconds) if avg_seconds > 0 else 100.0
        return CategoryScore(
            score=round(success_rate * 0.7 + time_score * 0.3),
            details={
                "total_syncs": total,
                "successful_syncs": successful,
                "failed_syncs": total - successful,
                "success_rate": round(success_rate, 2),
                "average_sync_seconds": round(avg_seconds, 2),
                "last_sync": history[0].started_at.isoformat() if history else None,
            },
        )

    @staticmethod
    def _api_score(links: List[ListingLinkRecord], start: datetime) -> CategoryScore:
        checked = [
            link for link in links
            if link.last_synced_at is not None and ensure_aware(link.last_synced_at) >= start
        ]
        successful = sum(1 for link in checked if link.sync_status == SyncStatus.SYNCED.value)
        failed = sum(1 for link in checked if link.sync_status == SyncStatus.ERROR.value)
        success_rate = successful / len(checked) * 100 if checked else 100.0
        return CategoryScore(
            score=round(success_rate),
            details={
                "total_requests": len(checked),
                "successful_requests": successful,
                "failed_requests": failed,
                "success_rate": round(success_rate, 2),
            },
        )

    def _cache_score(self) -> CategoryScore:
        stats = self.cache.get_stats()
        return CategoryScore(
            score=stats.hit_rate,
            details={
                "hit_rate": stats.hit_rate,
                "entries": stats.size,
                "max_size": stats.max_size,
                "efficiency": stats.efficiency,
            },
        )

    @staticmethod
    def _error_score(links: List[ListingLinkRecord], start: datetime) -> CategoryScore:
        errored = [
            link for link in links
            if link.sync_status == SyncStatus.ERROR.value
            and (link.last_synced_at is None or ensure_aware(link.last_synced_at) >= start)
        ]
        error_rate = len(errored) / len(links) * 100 if links else 0.0
        error_types: Dict[str, int] = Counter(classify_error(link.sync_error) for link in errored)
        critical = sum(1 for link in errored if classify_error(link.sync_error) == "auth")
        return CategoryScore(
            score=round(100 - error_rate, 2),
            details={
                "total_errors": len(errored),
                "critical_errors": critical,
                "error_rate": round(error_rate, 2),
                "top_errors": [
                    {"type": error_type, "count": count}
                    for error_type, count in Counter(error_types).most_common(5)
                ],
            },
        )

    @staticmethod
    def _insights(score, sync: CategoryScore, cache: CategoryScore, errors: CategoryScore) -> List[str]:
        insights = []
        if sync.score < 70:
            insights.append(f"Sync performance is low ({sync.score}%). Check connectivity to Mercado Livre.")
        if cache.score < 60:
            insights.append(f"Cache hit rate is low ({cache.score}%). Review cache usage.")
        if errors.details["error_rate"] > 10:
            insights.append(f"Error rate is high ({errors.details['error_rate']}%). Investigate failing listings.")
        if score >= 90:
            insights.append("Everything is running with excellent performance.")
        return insights[:3]

    @staticmethod
    def _recommendations(score, sync: CategoryScore, cache: CategoryScore, errors: CategoryScore) -> List[str]:
        recommendations = []
        if sync.details["average_sync_seconds"] > 10:
            recommendations.append("Prefer incremental strategies to shorten sync runs.")
        if cache.score < 70:
            recommendations.append("Raise TTLs for less volatile data.")
        if errors.details["total_errors"] > 5:
            recommendations.append("Schedule an 'errors' sync to retry failing listings.")
        if score < 60:
            recommendations.append("Review the overall sync configuration.")
        return recommendations[:3]

    async def _require_account(self, account_id: int):
        account = await self.store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Marketplace account {account_id} not found")
        return account
