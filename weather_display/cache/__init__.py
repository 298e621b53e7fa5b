"""
Tiered weather-data cache: adaptive TTL, single-flight fetches, stale fallback.
"""
from .core import (
    CacheEntry,
    CacheSource,
    CacheStatsSnapshot,
    TtlDecision,
    WeatherResult,
    WeatherStatus,
)
from .keys import KeyDeriver, LocationFingerprint
from .ttl_policies import compute_ttl, MIN_TTL_SECONDS, MAX_TTL_SECONDS
from .tiers import (
    TierStore,
    MemoryTier,
    FileTier,
    RedisTier,
    DurableTier,
    SharedTier,
    SharedTierPresent,
    SharedTierAbsent,
    detect_shared_tier,
)
from .coalescer import RequestCoalescer
from .stats import StatsLedger
from .manager import CacheConfig, CacheCoordinator
from .janitor import Janitor, SweepResult

__all__ = [
    # Core types
    "CacheEntry",
    "CacheSource",
    "CacheStatsSnapshot",
    "TtlDecision",
    "WeatherResult",
    "WeatherStatus",
    # Keys and TTL
    "KeyDeriver",
    "LocationFingerprint",
    "compute_ttl",
    "MIN_TTL_SECONDS",
    "MAX_TTL_SECONDS",
    # Tiers
    "TierStore",
    "MemoryTier",
    "FileTier",
    "RedisTier",
    "DurableTier",
    "SharedTier",
    "SharedTierPresent",
    "SharedTierAbsent",
    "detect_shared_tier",
    # Coordination
    "RequestCoalescer",
    "StatsLedger",
    "CacheConfig",
    "CacheCoordinator",
    # Cleanup
    "Janitor",
    "SweepResult",
]
