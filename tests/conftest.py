"""
Shared fixtures: in-memory SQLite store, in-memory cache, mock clock.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from core.clock import MockClock
from core.config import AlertConfig, DatabaseConfig, TrackerConfig
from monitoring.aggregation import AggregationQueryService
from monitoring.alerts import AlertDispatcher, RecipientRateLimiter, SubscriptionRegistry
from monitoring.status_tracker import StatusTracker
from storage.cache import CacheLayer
from storage.database import create_engine, create_session_factory, create_tables
from storage.timeseries import TimeSeriesStore

from fakes import InMemoryRedis, RecordingSender


@pytest.fixture
def clock():
    return MockClock(datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def redis_client(clock):
    return InMemoryRedis(clock)


@pytest.fixture
def cache(redis_client):
    return CacheLayer(redis_client)


@pytest_asyncio.fixture
async def engine():
    engine = create_engine(DatabaseConfig(url="sqlite+aiosqlite://"))
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return TimeSeriesStore(create_session_factory(engine))


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def alert_config():
    return AlertConfig(idle_tick_seconds=0.01, link_host="monitor.example")


@pytest.fixture
def subscriptions(cache):
    return SubscriptionRegistry(cache)


@pytest.fixture
def rate_limiter(cache, clock):
    return RecipientRateLimiter(cache, clock, max_per_minute=20)


@pytest.fixture
def dispatcher(cache, subscriptions, rate_limiter, sender, alert_config):
    return AlertDispatcher(cache, subscriptions, rate_limiter, sender, alert_config)


@pytest.fixture
def tracker(store, cache, dispatcher, clock):
    return StatusTracker(store, cache, dispatcher, clock, TrackerConfig(efficiency_threshold=0.9))


@pytest.fixture
def query_service(store, cache, clock):
    return AggregationQueryService(store, cache, clock)
