"""
Read-through / write-through orchestration across the cache tiers.
"""
import threading
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis
from sqlalchemy.exc import SQLAlchemyError

from config.settings import CacheStrategy, Settings
from weather_display.errors import CacheUnavailable, ConfigIncomplete, UpstreamUnavailable
from .coalescer import RequestCoalescer
from .core import (
    CacheSource,
    CacheStatsSnapshot,
    TtlDecision,
    WeatherResult,
    WeatherStatus,
    deserialize_value,
    serialize_value,
    utcnow,
)
from .keys import KeyDeriver, LocationFingerprint
from .stats import StatsLedger
from .tiers import DurableTier, SharedTier, SharedTierAbsent, SharedTierPresent, TierStore
from .ttl_policies import compute_ttl, resolve_strategy

logger = logging.getLogger("cache.manager")

# Lifetime given to a value copied up into a faster tier after a lower-tier hit
PROMOTE_TTL_SECONDS = 3600

WEATHER_DATA_TYPE = "weather_data"
SOURCE_TAG = "weather_api"

# Errors a tier may raise; any of them means "skip this tier"
TIER_ERRORS = (redis.RedisError, SQLAlchemyError, OSError, ValueError, KeyError, TypeError)

Fetcher = Callable[[float, float, str], Any]


@dataclass(frozen=True)
class CacheConfig:
    """Everything the coordinator needs from the settings, fixed at construction."""
    api_key: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    update_interval: int = 3
    fallback_hours: int = 24
    cache_strategy: CacheStrategy = CacheStrategy.INTELLIGENT

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheConfig":
        return cls(
            api_key=settings.api_key,
            latitude=settings.latitude,
            longitude=settings.longitude,
            update_interval=settings.update_interval,
            fallback_hours=settings.fallback_hours,
            cache_strategy=settings.cache_strategy,
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.api_key) and self.latitude is not None and self.longitude is not None

    @property
    def location(self) -> LocationFingerprint:
        return LocationFingerprint(self.latitude, self.longitude)


class CacheCoordinator:
    """
    Fronts the upstream weather API with three tiers:

    - shared fast cache (optional, resolved at startup)
    - ephemeral keyed store
    - durable record store (write-always, fallback source, stats ledger)

    Reads walk shared -> ephemeral and stop at the first hit. A miss triggers
    one coalesced upstream fetch per key; success is written to every tier,
    failure falls back to the newest durable record within fallback_hours.
    Tier failures are logged and skipped, never raised.
    """

    def __init__(
        self,
        config: CacheConfig,
        fetcher: Fetcher,
        ephemeral: TierStore,
        durable: DurableTier,
        stats: StatsLedger,
        shared: SharedTier = SharedTierAbsent(),
        key_deriver: Optional[KeyDeriver] = None,
        coalescer: Optional[RequestCoalescer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._config = config
        self._fetcher = fetcher
        self._durable = durable
        self._stats = stats
        self._keys = key_deriver or KeyDeriver()
        self._coalescer = coalescer or RequestCoalescer()
        self._clock = clock or utcnow
        self._strategy = resolve_strategy(config.cache_strategy)

        # Ordered by query priority
        self._read_tiers: List[TierStore] = []
        if isinstance(shared, SharedTierPresent):
            self._read_tiers.append(shared.store)
        self._read_tiers.append(ephemeral)

        # Held while writing through or clearing so the two never interleave
        self._write_lock = threading.RLock()

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def tier_names(self) -> List[str]:
        return [t.name for t in self._read_tiers] + [self._durable.name]

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def cache_key(self) -> str:
        return self._keys.derive(WEATHER_DATA_TYPE, self._config.location)

    def get_weather(self, force_refresh: bool = False) -> WeatherResult:
        """
        Get the current forecast from cache or upstream.

        Args:
            force_refresh: Skip the cache lookup and fetch fresh

        Returns:
            WeatherResult; status "unavailable" on total failure
        """
        if not self._config.is_complete:
            logger.warning("Weather config incomplete (api_key/latitude/longitude); not fetching")
            return WeatherResult.unavailable(ConfigIncomplete.reason)

        location = self._config.location
        cache_key = self._keys.derive(WEATHER_DATA_TYPE, location)
        family = self._keys.family(WEATHER_DATA_TYPE, location)

        if not force_refresh and self._strategy is not CacheStrategy.DISABLED:
            hit = self._read_through(cache_key)
            if hit is not None:
                payload, tier_name = hit
                logger.debug(f"CACHE HIT ({tier_name}): {cache_key}")
                self._record_hit(cache_key, tier_name)
                return WeatherResult(
                    status=WeatherStatus.FRESH,
                    payload=payload,
                    source=tier_name,
                    cache_key=cache_key,
                )
            logger.info(f"CACHE MISS: {cache_key}")
            self._record_miss()
        elif force_refresh:
            logger.info(f"FORCE REFRESH: {cache_key}")
        else:
            logger.debug(f"CACHE DISABLED: {cache_key}")

        result = self._fetch_and_store(cache_key, family)
        if result.ok:
            return result
        return self._fallback(cache_key, family, result.error)

    def invalidate_all(self) -> Dict[str, Optional[int]]:
        """
        Clear every tier and reset the counters.

        Returns:
            Entries removed per tier (None where the tier failed)
        """
        cleared: Dict[str, Optional[int]] = {}
        with self._write_lock:
            for tier in self._read_tiers + [self._durable]:
                cleared[tier.name] = self._guard(tier.name, tier.clear)
            self._guard("stats", self._stats.reset)
        logger.info(f"Invalidated all cache tiers: {cleared}")
        return cleared

    def stats(self) -> CacheStatsSnapshot:
        """Counters plus durable tier totals."""
        snapshot = self._guard("stats", self._stats.snapshot) or CacheStatsSnapshot()
        summary = self._guard(self._durable.name, self._durable.summary)
        if summary is not None:
            entries, stored_hits, total_size, avg_size = summary
            snapshot.entries = entries
            snapshot.stored_hits = stored_hits
            snapshot.total_size_bytes = total_size
            snapshot.avg_size_bytes = avg_size
        return snapshot

    def refresh_if_due(self) -> Optional[WeatherResult]:
        """
        Proactive refresh: fetch only once update_interval has elapsed since
        the last successful refresh.

        Returns:
            None if not due, otherwise the fetch result. A failed refresh
            is "unavailable"; it never serves fallback data or touches the
            hit/miss counters.
        """
        if not self._config.is_complete:
            return WeatherResult.unavailable(ConfigIncomplete.reason)
        now = self._clock()
        last_update = self._guard("stats", self._stats.last_update)
        interval = timedelta(hours=self._config.update_interval)
        if last_update is not None and now - last_update < interval:
            logger.debug(f"Refresh not due (last update {last_update.isoformat()})")
            return None

        location = self._config.location
        result = self._fetch_and_store(
            self._keys.derive(WEATHER_DATA_TYPE, location),
            self._keys.family(WEATHER_DATA_TYPE, location),
        )
        if result.status is WeatherStatus.UPSTREAM:
            self._guard("stats", lambda: self._stats.set_last_update(now))
            logger.info(f"Proactive refresh stored {result.cache_key}")
        else:
            logger.warning(f"Proactive refresh failed: {result.error}")
        return result

    def test_connection(self) -> Tuple[bool, str]:
        """Uncached upstream call; nothing is written."""
        if not self._config.is_complete:
            return False, "Configuration incomplete: api_key, latitude and longitude are required"
        try:
            self._fetch()
        except UpstreamUnavailable as e:
            return False, f"API connection failed: {e}"
        return True, "API connection successful"

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _fetch(self) -> Any:
        started = time.monotonic()
        payload = self._fetcher(self._config.latitude, self._config.longitude, self._config.api_key)
        logger.info(f"Upstream fetch completed in {time.monotonic() - started:.2f}s")
        return payload

    def _fetch_and_store(self, cache_key: str, family: str) -> WeatherResult:
        """
        Coalesced upstream fetch, written through on success.

        Returns an "upstream" result, or "unavailable" carrying the failure
        reason. No fallback and no stats here.
        """
        try:
            payload, initiated = self._coalescer.run(cache_key, self._fetch)
        except UpstreamUnavailable as e:
            logger.warning(f"Upstream fetch for {cache_key} failed: {e}")
            return WeatherResult.unavailable(e.reason, cache_key=cache_key)
        except TimeoutError as e:
            logger.warning(f"Upstream fetch for {cache_key} timed out: {e}")
            return WeatherResult.unavailable(UpstreamUnavailable.reason, cache_key=cache_key)
        except Exception:
            logger.exception(f"Unexpected error fetching {cache_key}")
            return WeatherResult.unavailable(UpstreamUnavailable.reason, cache_key=cache_key)

        ttl = compute_ttl(self._config.update_interval, payload)
        if initiated:
            self._write_through(cache_key, family, payload, ttl)

        return WeatherResult(
            status=WeatherStatus.UPSTREAM,
            payload=payload,
            source=CacheSource.UPSTREAM.value,
            cache_key=cache_key,
            ttl=ttl,
        )

    def _guard(self, tier_name: str, fn: Callable[[], Any]) -> Any:
        """Run a tier operation; log and return None if the tier is down."""
        try:
            return fn()
        except TIER_ERRORS as e:
            logger.warning(str(CacheUnavailable(tier_name, e)))
            return None

    def _read_through(self, cache_key: str) -> Optional[Tuple[Any, str]]:
        for index, tier in enumerate(self._read_tiers):
            raw = self._guard(tier.name, lambda: tier.get(cache_key))
            if raw is None:
                continue
            try:
                payload = deserialize_value(raw)
            except (ValueError, TypeError):
                logger.warning(f"Corrupt value in {tier.name} for {cache_key}; dropping it")
                self._guard(tier.name, lambda: tier.delete(cache_key))
                continue

            # Promote into the faster tiers above this one
            for upper in self._read_tiers[:index]:
                self._guard(upper.name, lambda: upper.set(cache_key, raw, PROMOTE_TTL_SECONDS))
            return payload, tier.name
        return None

    def _write_through(self, cache_key: str, family: str, payload: Any, ttl: TtlDecision) -> None:
        raw = serialize_value(payload)
        seconds = ttl.final_seconds
        with self._write_lock:
            if self._strategy is not CacheStrategy.DISABLED:
                for tier in self._read_tiers:
                    self._guard(tier.name, lambda: tier.set(cache_key, raw, seconds))
            # Durable write happens whatever the other tiers did
            self._guard(
                self._durable.name,
                lambda: self._durable.set(
                    cache_key,
                    raw,
                    seconds,
                    family=family,
                    source_tag=SOURCE_TAG,
                    location_hash=self._config.location.digest,
                ),
            )
        logger.info(f"Cached {cache_key} for {seconds}s (modifier {ttl.modifier:.2f})")

    def _fallback(self, cache_key: str, family: str, reason: str) -> WeatherResult:
        fallback_hours = self._config.fallback_hours
        entry = self._guard(
            self._durable.name,
            lambda: self._durable.get_fallback(family, fallback_hours),
        )
        if entry is None:
            logger.warning(f"No fallback data within {fallback_hours}h for {cache_key}")
            return WeatherResult.unavailable(reason, cache_key=cache_key)

        try:
            payload = deserialize_value(entry.value)
        except (ValueError, TypeError):
            logger.warning(f"Corrupt fallback record {entry.key}")
            return WeatherResult.unavailable(reason, cache_key=cache_key)

        self._record_hit(entry.key, CacheSource.DATABASE_FALLBACK.value)
        stale = entry.is_expired(self._clock())
        logger.info(
            f"Serving {'stale ' if stale else ''}fallback {entry.key} "
            f"(age {(self._clock() - entry.created_at).total_seconds() / 3600:.1f}h)"
        )
        return WeatherResult(
            status=WeatherStatus.STALE if stale else WeatherStatus.FRESH,
            payload=payload,
            source=CacheSource.DATABASE_FALLBACK.value,
            cache_key=entry.key,
            error=reason,
        )

    def _record_hit(self, cache_key: str, tier_name: str) -> None:
        self._guard("stats", lambda: self._stats.record_hit(tier_name))
        self._guard(self._durable.name, lambda: self._durable.record_hit(cache_key))

    def _record_miss(self) -> None:
        self._guard("stats", self._stats.record_miss)
