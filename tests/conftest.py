# tests/conftest.py
from datetime import timedelta

import pytest

from marketsync.core.config import Settings
from marketsync.services.cache_service import IntelligentCache
from marketsync.services.sync_service import SyncService

from tests.mocks.mock_gateway import FakeGateway
from tests.mocks.mock_store import BASE_TIME, InMemoryInventoryStore


class FakeClock:
    """Settable clock for services that take ``clock=``"""

    def __init__(self, now=BASE_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeEpochClock:
    """Epoch-seconds clock for the cache"""

    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def no_sleep(seconds):
    return None


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL="",
        BASIC_AUTH_USERNAME="tenant-a",
        BASIC_AUTH_PASSWORD="secret",
        ML_CLIENT_ID="client-id",
        ML_CLIENT_SECRET="client-secret",
        ML_REDIRECT_URI="https://example.com/callback",
        ML_BATCH_DELAY_SECONDS=0,
        ML_RATE_LIMIT_BACKOFF_SECONDS=0,
        SYNC_BATCH_SIZE=5,
        SYNC_CONCURRENCY=5,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def epoch_clock():
    return FakeEpochClock()


@pytest.fixture
def cache(epoch_clock):
    return IntelligentCache(max_size=100, clock=epoch_clock)


@pytest.fixture
def store():
    store = InMemoryInventoryStore()
    store.add_account()
    return store


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sync_service(store, gateway, cache, settings, clock):
    return SyncService(store, gateway, cache, settings, clock=clock, sleep=no_sleep)
