"""
Shared fixtures: a controllable clock, a throwaway SQLite database,
stub upstream fetchers and sample Meteoblue payloads.
"""
import threading
from datetime import datetime, timedelta

import pytest

from config.settings import CacheStrategy
from weather_display.cache import (
    CacheConfig,
    CacheCoordinator,
    DurableTier,
    KeyDeriver,
    MemoryTier,
    RequestCoalescer,
    SharedTierAbsent,
    StatsLedger,
)
from weather_display.db import create_db_engine, init_db, make_session_factory
from weather_display.errors import NetworkError


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class StubFetcher:
    """Upstream stand-in: returns `payload` or raises `error`, counting calls."""

    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, latitude, longitude, api_key):
        with self._lock:
            self.calls += 1
        if self.error is not None:
            raise self.error
        return self.payload


def make_payload(rain=10, predictability=80, pictocode=1, precipitation=0.0):
    """Meteoblue basic-day shaped payload for a single day."""
    return {
        "metadata": {"latitude": 52.52, "longitude": 13.405, "name": ""},
        "units": {"temperature": "C", "precipitation": "mm"},
        "data_day": {
            "time": ["2026-10-17"],
            "temperature_min": [8.4],
            "temperature_max": [17.6],
            "precipitation": [precipitation],
            "precipitation_probability": [rain],
            "predictability": [predictability],
            "pictocode": [pictocode],
        },
    }


DEFAULT_CONFIG = dict(
    api_key="test-key",
    latitude=52.52,
    longitude=13.405,
    update_interval=3,
    fallback_hours=24,
    cache_strategy=CacheStrategy.INTELLIGENT,
)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 17, 9, 15, 0))


@pytest.fixture
def session_factory(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'cache.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def durable(session_factory, clock):
    return DurableTier(session_factory, clock=clock)


@pytest.fixture
def ledger(session_factory):
    return StatsLedger(session_factory)


@pytest.fixture
def payload():
    return make_payload()


@pytest.fixture
def make_coordinator(session_factory, clock):
    """Factory building a coordinator over the shared test database."""

    def _make(
        fetcher,
        ephemeral=None,
        shared=SharedTierAbsent(),
        coalescer=None,
        **config_overrides,
    ):
        config = CacheConfig(**{**DEFAULT_CONFIG, **config_overrides})
        return CacheCoordinator(
            config=config,
            fetcher=fetcher,
            ephemeral=ephemeral if ephemeral is not None else MemoryTier(clock=clock),
            durable=DurableTier(session_factory, clock=clock),
            stats=StatsLedger(session_factory),
            shared=shared,
            key_deriver=KeyDeriver(clock=clock),
            coalescer=coalescer or RequestCoalescer(timeout=5.0),
            clock=clock,
        )

    return _make


@pytest.fixture
def failing_fetcher():
    return StubFetcher(error=NetworkError("ConnectTimeout"))
