# tests/unit/schemas/test_sync_task.py
from datetime import timedelta

import pytest

from marketsync.core.enums import SyncStrategy
from marketsync.core.exceptions import SyncTaskSealedError
from marketsync.schemas.sync import ListingOutcome, ReconciliationThresholds, SyncTask

from tests.mocks.mock_store import BASE_TIME


@pytest.fixture
def task():
    return SyncTask(account_id=1, strategy=SyncStrategy.AUTO, started_at=BASE_TIME)


"""
1. Counter Tests
"""


def test_outcomes_bump_processed_and_one_bucket(task):
    task.record(ListingOutcome.UPDATED)
    task.record(ListingOutcome.CREATED)
    task.record(ListingOutcome.UNCHANGED)
    task.record(ListingOutcome.SKIPPED, "MLB9: no SKU")
    task.record_error("MLB7: 500")

    assert task.processed == 5
    assert task.updated == 1
    assert task.created == 1
    assert task.errored == 1
    assert task.skipped == ["MLB9: no SKU"]
    assert task.errors == ["MLB7: 500"]


def test_claim_is_first_come_first_served(task):
    assert task.claim("MLB1") is True
    assert task.claim("MLB1") is False
    assert task.already_handled("MLB1") is True
    assert task.already_handled("MLB2") is False


def test_strategy_level_error_is_not_a_listing(task):
    task.add_error("modified: 503")
    assert task.errors == ["modified: 503"]
    assert task.processed == 0
    assert task.errored == 0


"""
2. Success Rule Tests
"""


def test_empty_run_is_successful(task):
    assert task.success is True


def test_errors_below_half_are_successful(task):
    task.record(ListingOutcome.UPDATED)
    task.record(ListingOutcome.UPDATED)
    task.record_error("MLB3: 500")
    assert task.success is True


def test_half_or_more_errors_fail_the_run(task):
    task.record(ListingOutcome.UPDATED)
    task.record_error("MLB2: 500")
    assert task.success is False


def test_fatal_error_always_fails(task):
    task.record(ListingOutcome.UPDATED)
    task.fail("401 on /items")
    assert task.success is False
    assert task.summary().message.startswith("Sync aborted")


"""
3. Sealing Tests
"""


def test_seal_sets_duration_and_freezes(task):
    task.record(ListingOutcome.UPDATED)
    task.seal(BASE_TIME + timedelta(seconds=3))

    assert task.sealed is True
    assert task.duration_seconds == 3.0
    assert task.finished_at == BASE_TIME + timedelta(seconds=3)

    with pytest.raises(SyncTaskSealedError):
        task.record(ListingOutcome.UPDATED)
    with pytest.raises(SyncTaskSealedError):
        task.record_error("late")
    with pytest.raises(SyncTaskSealedError):
        task.updated = 10
    with pytest.raises(SyncTaskSealedError):
        task.seal(BASE_TIME)

    assert task.updated == 1


def test_summary_copies_counters(task):
    task.mark_strategy(SyncStrategy.MODIFIED)
    task.record(ListingOutcome.UPDATED)
    task.seal(BASE_TIME)

    summary = task.summary()

    assert summary.updated == 1
    assert summary.strategies == [SyncStrategy.MODIFIED]
    assert summary.success is True
    assert summary.message == "Processed 1 listings: 1 updated, 0 created, 0 errors"


def test_thresholds_from_settings(settings):
    thresholds = ReconciliationThresholds.from_settings(settings)
    assert thresholds.low_stock_floor == 5
    assert thresholds.stale_after == timedelta(hours=2)
