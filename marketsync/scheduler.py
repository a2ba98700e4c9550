"""
Scheduled jobs for the sync core.

Runs an ``auto`` sync for every active account on a cron schedule, refreshes
90-day sales nightly and purges expired cache entries. Disabled unless
SYNC_SCHEDULE_ENABLED is set.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from marketsync.core.config import Settings, get_settings
from marketsync.core.enums import SyncStrategy
from marketsync.core.exceptions import BaseServiceError
from marketsync.services.cache_service import IntelligentCache
from marketsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def sync_all_accounts_task(sync_service: SyncService):
    """Auto sync for each active account, one after another"""
    accounts = await sync_service.store.list_active_accounts()
    logger.info(f"=== SCHEDULED SYNC STARTING for {len(accounts)} accounts ===")

    for account in accounts:
        try:
            summary = await sync_service.run_sync(account.id, SyncStrategy.AUTO)
        except BaseServiceError as e:
            logger.error(f"Scheduled sync failed for account {account.id}: {e}")
            continue
        logger.info(f"Scheduled sync for account {account.id}: {summary.message}")


async def refresh_sales_task(sync_service: SyncService):
    for account in await sync_service.store.list_active_accounts():
        try:
            await sync_service.refresh_sales_history(account.id)
        except BaseServiceError as e:
            logger.error(f"Sales refresh failed for account {account.id}: {e}")


def purge_cache_task(cache: IntelligentCache):
    removed = cache.purge_expired()
    if removed:
        logger.info(f"Purged {removed} expired cache entries")


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler(
    sync_service: SyncService, cache: IntelligentCache, settings: Optional[Settings] = None
) -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = settings or get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    scheduler.add_job(
        purge_cache_task,
        IntervalTrigger(minutes=10),
        args=[cache],
        id="purge_cache",
        name="Purge Expired Cache",
        replace_existing=True,
        max_instances=1,
    )

    if settings.SYNC_SCHEDULE_ENABLED:
        scheduler.add_job(
            sync_all_accounts_task,
            CronTrigger.from_crontab(settings.SYNC_SCHEDULE),
            args=[sync_service],
            id="sync_all_accounts",
            name="Sync All Accounts",
            replace_existing=True,
            max_instances=1,  # Only one sync at a time
            misfire_grace_time=600,
        )
        logger.info(f"Scheduled sync job added with schedule: {settings.SYNC_SCHEDULE}")

        scheduler.add_job(
            refresh_sales_task,
            CronTrigger(hour=3, minute=0),
            args=[sync_service],
            id="refresh_sales",
            name="Refresh 90-day Sales",
            replace_existing=True,
            max_instances=1,
        )
        logger.info("Scheduled sales refresh added for 3:00 AM daily")
    else:
        logger.info("Scheduled sync is disabled. Set SYNC_SCHEDULE_ENABLED=true to enable")

    return scheduler


async def start_scheduler(sync_service: SyncService, cache: IntelligentCache, settings: Optional[Settings] = None):
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler(sync_service, cache, settings)

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")

        for job in scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped successfully")
    scheduler = None


def get_scheduler_status():
    """Current scheduler status and job information"""
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs_info = []
    for job in scheduler.get_jobs():
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, "next_run_time", None)
        jobs_info.append({
            "id": job.id,
            "name": job.name,
            "next_run": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger),
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs_info,
    }
