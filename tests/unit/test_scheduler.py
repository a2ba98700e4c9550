# tests/unit/test_scheduler.py
import pytest

from marketsync import scheduler as scheduler_module
from marketsync.core.enums import CacheCategory
from marketsync.core.exceptions import MarketplaceAuthError
from marketsync.scheduler import (
    create_scheduler,
    get_scheduler_status,
    purge_cache_task,
    refresh_sales_task,
    sync_all_accounts_task,
)
from marketsync.schemas.marketplace import ItemSales

from tests.mocks.mock_gateway import make_listing


@pytest.fixture(autouse=True)
def reset_scheduler():
    scheduler_module.scheduler = None
    yield
    scheduler_module.scheduler = None


"""
1. Job Tests
"""


@pytest.mark.asyncio
async def test_scheduled_sync_runs_every_active_account(sync_service, store, gateway):
    store.add_account(account_id=2, ml_user_id=2002)
    store.add_account(account_id=3, ml_user_id=3003, is_active=False)
    store.add_product(1, "SKU-1", stock={"main": 20})
    store.add_link("MLB1", product_id=1, available_quantity=0)
    gateway.put(make_listing("MLB1", quantity=0, sku="SKU-1"))

    await sync_all_accounts_task(sync_service)

    assert sorted(record.account_id for record in store.history) == [1, 2]
    assert gateway.pushes == [("MLB1", 20)]


@pytest.mark.asyncio
async def test_scheduled_sync_continues_after_account_failure(sync_service, store, mocker):
    store.add_account(account_id=2, ml_user_id=2002)
    original = sync_service.gateway.get_token

    async def get_token(account_id):
        if account_id == 1:
            raise MarketplaceAuthError("Account 1 is disconnected")
        return await original(account_id)

    mocker.patch.object(sync_service.gateway, "get_token", side_effect=get_token)

    await sync_all_accounts_task(sync_service)

    assert [record.account_id for record in store.history] == [2]


@pytest.mark.asyncio
async def test_sales_refresh_job(sync_service, store, gateway):
    store.add_link("MLB1", product_id=1)
    gateway.sales = {"MLB1": ItemSales(item_id="MLB1", quantity=4)}

    await refresh_sales_task(sync_service)

    assert store.link_for("MLB1").sold_last_90d == 4


def test_purge_cache_job(cache, epoch_clock):
    cache.set("short", 1, CacheCategory.PRICES)
    cache.set("long", 2, CacheCategory.CATEGORIES)
    epoch_clock.advance(100)

    purge_cache_task(cache)

    assert len(cache) == 1


"""
2. Scheduler Setup Tests
"""


def test_sync_jobs_only_when_enabled(sync_service, cache, settings):
    disabled = create_scheduler(sync_service, cache, settings)
    assert [job.id for job in disabled.get_jobs()] == ["purge_cache"]

    scheduler_module.scheduler = None
    enabled_settings = settings.model_copy(update={"SYNC_SCHEDULE_ENABLED": True, "SYNC_SCHEDULE": "*/15 * * * *"})
    enabled = create_scheduler(sync_service, cache, enabled_settings)
    assert {job.id for job in enabled.get_jobs()} == {"purge_cache", "sync_all_accounts", "refresh_sales"}


def test_create_scheduler_is_a_singleton(sync_service, cache, settings):
    assert create_scheduler(sync_service, cache, settings) is create_scheduler(sync_service, cache, settings)


def test_status_before_start(sync_service, cache, settings):
    assert get_scheduler_status() == {"status": "not_initialized", "jobs": []}

    create_scheduler(sync_service, cache, settings)
    status = get_scheduler_status()

    assert status["status"] == "stopped"
    assert status["jobs"][0]["id"] == "purge_cache"
