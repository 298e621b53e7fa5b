"""
Storage tiers behind the read-through cache.

Every tier speaks the same small interface (get/set/delete/clear) over
serialized string values; the coordinator walks them in priority order.
"""
import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Union

import redis
from sqlalchemy.orm import sessionmaker

from weather_display import crud
from weather_display.db import session_scope
from .core import CacheEntry, CacheSource, utcnow

logger = logging.getLogger("cache.tiers")

Clock = Callable[[], datetime]


class TierStore(ABC):
    """Common contract for a cache tier."""

    name: str = "tier"

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if absent or expired."""

    @abstractmethod
    def set(self, key: str, value: str, ttl: int) -> None:
        """Store a value for `ttl` seconds."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key; absent keys are ignored."""

    @abstractmethod
    def clear(self) -> int:
        """Remove every key this tier owns. Returns the number removed if known."""


# =============================================================================
# In-process tier
# =============================================================================

class MemoryTier(TierStore):
    """
    Thread-safe in-process dict with per-key expiry.
    """

    def __init__(self, name: str = CacheSource.TRANSIENT.value, clock: Optional[Clock] = None):
        self.name = name
        self._clock = clock or utcnow
        self._data: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + timedelta(seconds=ttl))

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> int:
        with self._lock:
            count = len(self._data)
            self._data.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


# =============================================================================
# Ephemeral keyed store (JSON files)
# =============================================================================

FILE_PREFIX = "wetter_cache_"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class FileTier(TierStore):
    """
    One JSON file per key under a cache directory.

    Files carry their own expiry; expired files read as absent and are
    removed on read. Writes go to a temp file and are renamed into place.
    """

    name = CacheSource.TRANSIENT.value

    def __init__(self, directory: Path, clock: Optional[Clock] = None):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._clock = clock or utcnow

    def _path(self, key: str) -> Path:
        return self.directory / f"{FILE_PREFIX}{_UNSAFE_CHARS.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            expires_at = datetime.fromisoformat(data["expires_at"])
            value = data["value"]
            if not isinstance(value, str):
                raise TypeError(f"value is {type(value).__name__}, expected str")
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache file {path.name}: {e}")
            self._unlink(path)
            return None

        if self._clock() >= expires_at:
            logger.debug(f"Cache file expired: {path.name}")
            self._unlink(path)
            return None
        return value

    def set(self, key: str, value: str, ttl: int) -> None:
        now = self._clock()
        record = {
            "key": key,
            "value": value,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=ttl)).isoformat(),
        }
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp_", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            self._unlink(Path(tmp_name))
            raise

    def delete(self, key: str) -> None:
        self._unlink(self._path(key))

    def clear(self) -> int:
        deleted = 0
        for path in self.directory.glob(f"{FILE_PREFIX}*.json"):
            if self._unlink(path):
                deleted += 1
        return deleted

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False


# =============================================================================
# Shared fast cache (Redis)
# =============================================================================

REDIS_NAMESPACE = "wetter_display:"


class RedisTier(TierStore):
    """
    Redis-backed shared cache. Keys are namespaced so clear() never touches
    anything this service did not write.
    """

    name = CacheSource.OBJECT_CACHE.value

    def __init__(self, client: redis.Redis, namespace: str = REDIS_NAMESPACE):
        self._client = client
        self._namespace = namespace

    def _name(self, key: str) -> str:
        return f"{self._namespace}{key}"

    def get(self, key: str) -> Optional[str]:
        raw = self._client.get(self._name(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return raw

    def set(self, key: str, value: str, ttl: int) -> None:
        self._client.setex(self._name(key), max(1, int(ttl)), value)

    def delete(self, key: str) -> None:
        self._client.delete(self._name(key))

    def clear(self) -> int:
        names = list(self._client.scan_iter(match=f"{self._namespace}*"))
        if not names:
            return 0
        return self._client.delete(*names)


@dataclass(frozen=True)
class SharedTierPresent:
    store: TierStore


@dataclass(frozen=True)
class SharedTierAbsent:
    reason: str = "not configured"


SharedTier = Union[SharedTierPresent, SharedTierAbsent]


def detect_shared_tier(redis_url: Optional[str]) -> SharedTier:
    """
    Resolve the shared fast cache once at startup.

    Returns SharedTierPresent only if a URL is configured and the server
    answers PING.
    """
    if not redis_url:
        logger.info("Shared cache: not configured, using transient + database tiers")
        return SharedTierAbsent()
    try:
        client = redis.Redis.from_url(redis_url, socket_timeout=2, socket_connect_timeout=2)
        client.ping()
    except redis.RedisError as e:
        logger.warning(f"Shared cache: Redis unavailable ({e}), continuing without it")
        return SharedTierAbsent(reason=str(e))
    logger.info("Shared cache: Redis available")
    return SharedTierPresent(store=RedisTier(client))


# =============================================================================
# Durable record store (SQL)
# =============================================================================

def _to_entry(record) -> CacheEntry:
    return CacheEntry(
        key=record.cache_key,
        value=record.cache_value,
        created_at=record.created_time,
        expires_at=record.expiration_time,
        last_accessed_at=record.last_accessed,
        hit_count=record.hit_count,
        size_bytes=record.data_size,
        source_tag=record.source_tag,
        location_hash=record.location_hash,
    )


class DurableTier(TierStore):
    """
    SQL table holding every successful write.

    Serves two read paths: get() respects expiration_time, get_fallback()
    accepts anything created within the fallback window. Also keeps per-key
    hit_count / last_accessed for the janitor.
    """

    name = CacheSource.DATABASE.value

    def __init__(self, session_factory: sessionmaker, clock: Optional[Clock] = None):
        self._session_factory = session_factory
        self._clock = clock or utcnow

    def get(self, key: str) -> Optional[str]:
        entry = self.get_entry(key)
        return entry.value if entry else None

    def get_entry(self, key: str, include_expired: bool = False) -> Optional[CacheEntry]:
        with session_scope(self._session_factory) as db:
            if include_expired:
                record = crud.get_entry(db, key)
            else:
                record = crud.get_live_entry(db, key, self._clock())
            return _to_entry(record) if record else None

    def set(
        self,
        key: str,
        value: str,
        ttl: int,
        family: str = "",
        source_tag: str = "weather_api",
        location_hash: str = "",
    ) -> None:
        now = self._clock()
        with session_scope(self._session_factory) as db:
            crud.replace_entry(
                db,
                cache_key=key,
                cache_value=value,
                expiration_time=now + timedelta(seconds=ttl),
                now=now,
                cache_family=family,
                source_tag=source_tag,
                location_hash=location_hash,
            )

    def delete(self, key: str) -> None:
        with session_scope(self._session_factory) as db:
            crud.delete_entry(db, key)

    def clear(self) -> int:
        with session_scope(self._session_factory) as db:
            return crud.delete_all_entries(db)

    def get_fallback(self, family: str, fallback_hours: int) -> Optional[CacheEntry]:
        """
        Newest entry of the family created within the last `fallback_hours`,
        whether or not it has expired.
        """
        cutoff = self._clock() - timedelta(hours=fallback_hours)
        with session_scope(self._session_factory) as db:
            record = crud.get_latest_in_family(db, family, cutoff)
            return _to_entry(record) if record else None

    def record_hit(self, key: str) -> bool:
        with session_scope(self._session_factory) as db:
            return crud.increment_hit(db, key, self._clock()) > 0

    def summary(self) -> Tuple[int, int, int, float]:
        """(entries, summed hit_count, total bytes, average bytes)"""
        with session_scope(self._session_factory) as db:
            return crud.entry_summary(db)

    def count(self) -> int:
        with session_scope(self._session_factory) as db:
            return crud.count_entries(db)
