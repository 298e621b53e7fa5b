"""
Tests for the cache coordinator: read-through, write-through, fallback,
statistics, invalidation and the proactive refresh gate.
"""
import threading
import time

import pytest
import redis

from config.settings import CacheStrategy
from weather_display.cache import (
    FileTier,
    MemoryTier,
    RequestCoalescer,
    SharedTierPresent,
    WeatherStatus,
)
from weather_display.cache.core import serialize_value
from weather_display.errors import HttpError

from .conftest import StubFetcher, make_payload


class BrokenTier(MemoryTier):
    """A tier whose backend is down."""

    def __init__(self, name="transient", error=OSError("disk gone")):
        super().__init__(name=name)
        self.error = error

    def get(self, key):
        raise self.error

    def set(self, key, value, ttl):
        raise self.error

    def clear(self):
        raise self.error


# =============================================================================
# Read-through / write-through
# =============================================================================

def test_miss_fetches_and_writes_all_tiers(make_coordinator, payload, durable):
    shared = MemoryTier(name="object_cache")
    ephemeral = MemoryTier(name="transient")
    fetcher = StubFetcher(payload)
    coordinator = make_coordinator(fetcher, ephemeral=ephemeral, shared=SharedTierPresent(shared))

    result = coordinator.get_weather()

    assert result.status is WeatherStatus.UPSTREAM
    assert result.payload == payload
    assert result.ttl.final_seconds == 16200
    assert fetcher.calls == 1

    raw = serialize_value(payload)
    assert shared.get(result.cache_key) == raw
    assert ephemeral.get(result.cache_key) == raw
    assert durable.get(result.cache_key) == raw


def test_second_call_is_served_from_cache(make_coordinator, payload):
    fetcher = StubFetcher(payload)
    coordinator = make_coordinator(fetcher)

    coordinator.get_weather()
    result = coordinator.get_weather()

    assert result.status is WeatherStatus.FRESH
    assert result.source == "transient"
    assert result.payload == payload
    assert fetcher.calls == 1


def test_force_refresh_bypasses_cache(make_coordinator, payload):
    fetcher = StubFetcher(payload)
    coordinator = make_coordinator(fetcher)

    coordinator.get_weather()
    result = coordinator.get_weather(force_refresh=True)

    assert result.status is WeatherStatus.UPSTREAM
    assert fetcher.calls == 2


def test_lower_tier_hit_is_promoted(make_coordinator, payload):
    shared = MemoryTier(name="object_cache")
    ephemeral = MemoryTier(name="transient")
    coordinator = make_coordinator(
        StubFetcher(payload), ephemeral=ephemeral, shared=SharedTierPresent(shared)
    )
    key = coordinator.cache_key()
    ephemeral.set(key, serialize_value(payload), 600)

    result = coordinator.get_weather()

    assert result.source == "transient"
    assert shared.get(key) == serialize_value(payload)
    assert coordinator.get_weather().source == "object_cache"


def test_hit_updates_durable_ledger(make_coordinator, payload, durable, clock):
    coordinator = make_coordinator(StubFetcher(payload))
    key = coordinator.get_weather().cache_key

    clock.advance(minutes=5)
    coordinator.get_weather()
    coordinator.get_weather()

    entry = durable.get_entry(key)
    assert entry.hit_count == 2
    assert entry.last_accessed_at == clock.now


def test_cache_expires_after_ttl(make_coordinator, clock):
    """Stormy payload at a 1h base is clamped to 1800s."""
    stormy = make_payload(rain=90, predictability=10, pictocode=9)
    fetcher = StubFetcher(stormy)
    coordinator = make_coordinator(fetcher, update_interval=1)

    clock.advance(minutes=-15)  # 09:00:00, so the key stays in one hour bucket
    assert coordinator.get_weather().ttl.final_seconds == 1800
    clock.advance(seconds=1799)
    assert coordinator.get_weather().status is WeatherStatus.FRESH
    clock.advance(seconds=2)
    assert coordinator.get_weather().status is WeatherStatus.UPSTREAM
    assert fetcher.calls == 2


def test_new_hour_bucket_misses(make_coordinator, payload, clock):
    fetcher = StubFetcher(payload)
    coordinator = make_coordinator(fetcher)

    coordinator.get_weather()
    clock.advance(hours=1)
    assert coordinator.get_weather().status is WeatherStatus.UPSTREAM
    assert fetcher.calls == 2


# =============================================================================
# Failure handling
# =============================================================================

def test_config_incomplete_does_not_fetch(make_coordinator, payload):
    fetcher = StubFetcher(payload)
    coordinator = make_coordinator(fetcher, api_key=None)

    result = coordinator.get_weather()

    assert result.status is WeatherStatus.UNAVAILABLE
    assert result.error == "config_incomplete"
    assert fetcher.calls == 0


def test_missing_location_is_config_incomplete(make_coordinator, payload):
    result = make_coordinator(StubFetcher(payload), latitude=None).get_weather()
    assert result.error == "config_incomplete"


def test_fallback_serves_stale_data_within_window(make_coordinator, payload, clock, failing_fetcher):
    """Entry written 10h ago, fallback window 24h -> stale payload."""
    make_coordinator(StubFetcher(payload)).get_weather()
    clock.advance(hours=10)

    result = make_coordinator(failing_fetcher, fallback_hours=24).get_weather()

    assert result.status is WeatherStatus.STALE
    assert result.stale is True
    assert result.payload == payload
    assert result.source == "database_fallback"
    assert result.error == "upstream_unavailable"


def test_fallback_outside_window_is_unavailable(make_coordinator, payload, clock, failing_fetcher):
    """Entry written 10h ago, fallback window 5h -> unavailable."""
    make_coordinator(StubFetcher(payload)).get_weather()
    clock.advance(hours=10)

    result = make_coordinator(failing_fetcher, fallback_hours=5).get_weather()

    assert result.status is WeatherStatus.UNAVAILABLE
    assert result.payload is None
    assert result.error == "upstream_unavailable"


def test_fallback_with_live_entry_is_not_stale(make_coordinator, payload, clock):
    """Durable entry still within TTL is served without the stale flag."""
    make_coordinator(StubFetcher(payload)).get_weather()
    clock.advance(minutes=30)

    # fresh ephemeral tier, so the read misses and the fetch fails
    coordinator = make_coordinator(StubFetcher(error=HttpError(503)), ephemeral=MemoryTier())
    result = coordinator.get_weather(force_refresh=True)

    assert result.status is WeatherStatus.FRESH
    assert result.source == "database_fallback"
    assert result.stale is False


def test_total_failure_returns_unavailable(make_coordinator, failing_fetcher):
    result = make_coordinator(failing_fetcher).get_weather()
    assert result.status is WeatherStatus.UNAVAILABLE
    assert not result.ok


def test_unexpected_fetcher_error_does_not_escape(make_coordinator):
    result = make_coordinator(StubFetcher(error=RuntimeError("boom"))).get_weather()
    assert result.status is WeatherStatus.UNAVAILABLE


def test_broken_ephemeral_tier_is_skipped(make_coordinator, payload, durable):
    coordinator = make_coordinator(StubFetcher(payload), ephemeral=BrokenTier())

    result = coordinator.get_weather()

    assert result.status is WeatherStatus.UPSTREAM
    assert durable.get(result.cache_key) == serialize_value(payload)


def test_broken_shared_tier_is_skipped(make_coordinator, payload):
    shared = BrokenTier(name="object_cache", error=redis.ConnectionError("down"))
    fetcher = StubFetcher(payload)
    coordinator = make_coordinator(fetcher, shared=SharedTierPresent(shared))

    coordinator.get_weather()
    result = coordinator.get_weather()

    assert result.status is WeatherStatus.FRESH
    assert result.source == "transient"
    assert fetcher.calls == 1


def test_wrong_shape_cache_file_is_refetched(make_coordinator, payload, tmp_path, clock):
    tier = FileTier(tmp_path, clock=clock)
    coordinator = make_coordinator(StubFetcher(payload), ephemeral=tier)
    tier._path(coordinator.cache_key()).write_text("[]", encoding="utf-8")

    result = coordinator.get_weather()

    assert result.status is WeatherStatus.UPSTREAM
    assert tier.get(coordinator.cache_key()) == serialize_value(payload)


def test_tier_raising_type_error_is_skipped(make_coordinator, payload):
    coordinator = make_coordinator(StubFetcher(payload), ephemeral=BrokenTier(error=TypeError("bad")))
    assert coordinator.get_weather().status is WeatherStatus.UPSTREAM


def test_disabled_strategy_always_fetches_but_keeps_history(make_coordinator, payload, durable):
    fetcher = StubFetcher(payload)
    coordinator = make_coordinator(fetcher, cache_strategy=CacheStrategy.DISABLED)

    first = coordinator.get_weather()
    second = coordinator.get_weather()

    assert first.status is second.status is WeatherStatus.UPSTREAM
    assert fetcher.calls == 2
    assert durable.get(first.cache_key) is not None


# =============================================================================
# Single-flight
# =============================================================================

def test_concurrent_misses_share_one_fetch(make_coordinator, payload):
    release = threading.Event()
    started = threading.Event()
    calls = []

    def slow_fetcher(latitude, longitude, api_key):
        calls.append(1)
        started.set()
        release.wait(timeout=5)
        return payload

    coalescer = RequestCoalescer(timeout=5.0)
    coordinator = make_coordinator(slow_fetcher, coalescer=coalescer)
    results = []

    def worker():
        results.append(coordinator.get_weather())

    first = threading.Thread(target=worker)
    first.start()
    assert started.wait(timeout=5)

    second = threading.Thread(target=worker)
    second.start()
    deadline = time.monotonic() + 5
    while coalescer.get_stats()["coalesced_total"] < 1 and time.monotonic() < deadline:
        time.sleep(0.01)

    release.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert len(calls) == 1
    assert len(results) == 2
    assert all(r.status is WeatherStatus.UPSTREAM for r in results)
    assert all(r.payload == payload for r in results)


# =============================================================================
# Statistics and invalidation
# =============================================================================

def test_stats_count_hits_and_misses(make_coordinator, payload):
    coordinator = make_coordinator(StubFetcher(payload))

    assert coordinator.stats().hit_rate == 0

    coordinator.get_weather()   # miss
    coordinator.get_weather()   # hit
    coordinator.get_weather()   # hit

    stats = coordinator.stats()
    assert stats.total_misses == 1
    assert stats.total_hits == 2
    assert stats.hits_by_tier == {"transient": 2}
    assert stats.hit_rate == pytest.approx(2 / 3)
    assert stats.entries == 1
    assert stats.stored_hits == 2
    assert stats.total_size_bytes == len(serialize_value(payload).encode("utf-8"))


def test_fallback_hit_is_counted(make_coordinator, payload, clock, failing_fetcher):
    make_coordinator(StubFetcher(payload)).get_weather()
    clock.advance(hours=2)

    coordinator = make_coordinator(failing_fetcher)
    coordinator.get_weather()

    stats = coordinator.stats()
    assert stats.hits_by_tier["database_fallback"] == 1
    assert stats.total_misses == 2


def test_stats_survive_a_new_coordinator(make_coordinator, payload):
    first = make_coordinator(StubFetcher(payload))
    first.get_weather()
    first.get_weather()

    second = make_coordinator(StubFetcher(payload))
    stats = second.stats()
    assert stats.total_hits == 1
    assert stats.total_misses == 1


def test_invalidate_all_clears_every_tier(make_coordinator, payload, durable):
    shared = MemoryTier(name="object_cache")
    ephemeral = MemoryTier(name="transient")
    coordinator = make_coordinator(
        StubFetcher(payload), ephemeral=ephemeral, shared=SharedTierPresent(shared)
    )
    key = coordinator.get_weather().cache_key
    coordinator.get_weather()

    cleared = coordinator.invalidate_all()

    assert cleared == {"object_cache": 1, "transient": 1, "database": 1}
    assert shared.get(key) is None
    assert ephemeral.get(key) is None
    assert durable.get_entry(key, include_expired=True) is None
    stats = coordinator.stats()
    assert stats.total_hits == 0
    assert stats.total_misses == 0
    assert stats.hits_by_tier == {}


def test_invalidate_all_removes_fallback_source(make_coordinator, payload, failing_fetcher):
    make_coordinator(StubFetcher(payload)).get_weather()
    coordinator = make_coordinator(failing_fetcher)
    coordinator.invalidate_all()

    assert coordinator.get_weather().status is WeatherStatus.UNAVAILABLE


def test_invalidate_all_survives_broken_tier(make_coordinator, payload):
    coordinator = make_coordinator(StubFetcher(payload), ephemeral=BrokenTier())
    coordinator.get_weather()

    cleared = coordinator.invalidate_all()

    assert cleared["transient"] is None
    assert cleared["database"] == 1


# =============================================================================
# Proactive refresh and connection test
# =============================================================================

def test_refresh_runs_only_when_due(make_coordinator, payload, clock, ledger):
    fetcher = StubFetcher(payload)
    coordinator = make_coordinator(fetcher, update_interval=3)

    first = coordinator.refresh_if_due()
    assert first.status is WeatherStatus.UPSTREAM
    assert ledger.last_update() == clock.now

    clock.advance(hours=2, minutes=59)
    assert coordinator.refresh_if_due() is None
    assert fetcher.calls == 1

    clock.advance(minutes=1)
    assert coordinator.refresh_if_due().status is WeatherStatus.UPSTREAM
    assert fetcher.calls == 2


def test_failed_refresh_does_not_move_last_update(make_coordinator, failing_fetcher, ledger):
    coordinator = make_coordinator(failing_fetcher)
    result = coordinator.refresh_if_due()
    assert result.status is WeatherStatus.UNAVAILABLE
    assert ledger.last_update() is None


def test_failed_refresh_never_serves_fallback_or_counts(make_coordinator, payload, durable, clock):
    fetcher = StubFetcher(payload)
    coordinator = make_coordinator(fetcher)
    key = coordinator.get_weather().cache_key
    before = coordinator.stats().to_dict()

    clock.advance(hours=4)
    fetcher.error = HttpError(503)
    result = coordinator.refresh_if_due()

    assert result.status is WeatherStatus.UNAVAILABLE
    assert result.error == "upstream_unavailable"
    assert coordinator.stats().to_dict() == before
    assert durable.get_entry(key, include_expired=True).hit_count == 0


def test_last_update_survives_invalidate(make_coordinator, payload, ledger, clock):
    coordinator = make_coordinator(StubFetcher(payload))
    coordinator.refresh_if_due()
    coordinator.invalidate_all()
    assert ledger.last_update() == clock.now


def test_connection_test_does_not_write(make_coordinator, payload, durable):
    coordinator = make_coordinator(StubFetcher(payload))
    assert coordinator.test_connection() == (True, "API connection successful")
    assert durable.count() == 0


def test_connection_test_reports_failure(make_coordinator):
    ok, message = make_coordinator(StubFetcher(error=HttpError(401))).test_connection()
    assert ok is False
    assert "401" in message


def test_connection_test_with_incomplete_config(make_coordinator, payload):
    ok, _ = make_coordinator(StubFetcher(payload), api_key="").test_connection()
    assert ok is False
