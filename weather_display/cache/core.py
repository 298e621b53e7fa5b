"""
Core cache data structures.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every tier."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def serialize_value(value: Any) -> str:
    """Canonical JSON form of a payload; identical input gives identical text."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def deserialize_value(raw: str) -> Any:
    return json.loads(raw)


class CacheSource(Enum):
    """Where a value was served from. Values double as stats counter names."""
    OBJECT_CACHE = "object_cache"            # shared fast tier
    TRANSIENT = "transient"                  # ephemeral keyed tier
    DATABASE = "database"                    # durable tier, expiry respected
    DATABASE_FALLBACK = "database_fallback"  # durable tier, staleness-tolerant
    UPSTREAM = "upstream"


class WeatherStatus(Enum):
    """Outcome of a get_weather() call."""
    FRESH = "fresh"              # served from a tier within TTL
    UPSTREAM = "upstream"        # fetched just now
    STALE = "stale"              # fallback data past its normal TTL
    UNAVAILABLE = "unavailable"  # nothing to serve


@dataclass
class CacheEntry:
    """
    One record of the durable tier.

    `value` is the serialized payload, so `size_bytes` is its UTF-8 length.
    """
    key: str
    value: str
    created_at: datetime
    expires_at: datetime
    last_accessed_at: datetime
    hit_count: int = 0
    size_bytes: int = 0
    source_tag: str = "weather_api"
    location_hash: str = ""

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass(frozen=True)
class TtlDecision:
    """Result of the adaptive TTL computation."""
    base_seconds: int
    modifier: float
    final_seconds: int

    def to_dict(self) -> dict:
        return {
            "base_seconds": self.base_seconds,
            "modifier": round(self.modifier, 4),
            "final_seconds": self.final_seconds,
        }


@dataclass
class CacheStatsSnapshot:
    """
    Point-in-time copy of the hit/miss counters plus durable tier totals.
    """
    total_hits: int = 0
    total_misses: int = 0
    hits_by_tier: Dict[str, int] = field(default_factory=dict)
    entries: int = 0
    stored_hits: int = 0
    total_size_bytes: int = 0
    avg_size_bytes: float = 0.0
    last_update: Optional[datetime] = None

    @property
    def hit_rate(self) -> float:
        """Hits over all lookups; 0 when nothing has been looked up."""
        total = self.total_hits + self.total_misses
        if total == 0:
            return 0.0
        return self.total_hits / total

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "total_hits": self.total_hits,
            "total_misses": self.total_misses,
            "hits_by_tier": dict(self.hits_by_tier),
            "hit_rate": self.hit_rate,
            "hit_rate_percent": round(self.hit_rate * 100, 2),
            "entries": self.entries,
            "stored_hits": self.stored_hits,
            "total_size_bytes": self.total_size_bytes,
            "avg_size_bytes": round(self.avg_size_bytes, 1),
            "last_update": self.last_update.isoformat() + "Z" if self.last_update else None,
        }


@dataclass
class WeatherResult:
    """
    What get_weather() hands back. Never raised, always returned.
    """
    status: WeatherStatus
    payload: Optional[Any] = None
    source: Optional[str] = None
    cache_key: Optional[str] = None
    ttl: Optional[TtlDecision] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not WeatherStatus.UNAVAILABLE

    @property
    def stale(self) -> bool:
        """True when fallback data older than its normal TTL was served."""
        return self.status is WeatherStatus.STALE

    @classmethod
    def unavailable(cls, reason: str, cache_key: Optional[str] = None) -> "WeatherResult":
        return cls(status=WeatherStatus.UNAVAILABLE, cache_key=cache_key, error=reason)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "source": self.source,
            "stale": self.stale,
            "cache_key": self.cache_key,
            "ttl": self.ttl.to_dict() if self.ttl else None,
            "error": self.error,
            "data": self.payload,
        }
