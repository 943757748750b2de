from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest
from aiocache import SimpleMemoryCache

os.environ.setdefault("PROVIDER__API_KEY", "test-key")

from config.settings import CacheSettings, DatabaseSettings, TrackingSettings  # noqa: E402
from tests.fakes.providers import FakeClock, FakeProvider  # noqa: E402
from tracker.db import build_engine, build_session_maker, init_db  # noqa: E402
from tracker.services.prices.price_tracker import PriceTrackerService  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(DatabaseSettings(dsn=f"sqlite+aiosqlite:///{tmp_path / 'tracker.db'}"))
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
async def cache():
    cache = SimpleMemoryCache()
    await cache.clear()
    yield cache
    await cache.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def provider(clock) -> FakeProvider:
    return FakeProvider(clock)


@pytest.fixture
async def make_tracker(provider, session_maker, cache, clock):
    created: list[PriceTrackerService] = []

    def factory(**tracking_overrides) -> PriceTrackerService:
        tracker = PriceTrackerService(
            provider,
            session_maker,
            tracking=TrackingSettings(**tracking_overrides),
            cache_settings=CacheSettings(),
            cache=cache,
            now=clock,
        )
        created.append(tracker)
        return tracker

    yield factory
    for tracker in created:
        await tracker.drain()
