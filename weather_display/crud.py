"""
CRUD operations (Create, Read, Update, Delete)
Query functions for the durable cache table, counters and cleanup history
"""
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from weather_display.models import WeatherCacheRecord, CacheCounter, CacheState, CleanupRun


# ===== CACHE ENTRIES =====

def get_entry(db: Session, cache_key: str) -> Optional[WeatherCacheRecord]:
    """
    Get a cache record by key, regardless of expiry
    """
    return db.query(WeatherCacheRecord).filter(WeatherCacheRecord.cache_key == cache_key).first()


def get_live_entry(db: Session, cache_key: str, now: datetime) -> Optional[WeatherCacheRecord]:
    """
    Get a cache record by key only if it has not expired
    """
    return (
        db.query(WeatherCacheRecord)
        .filter(
            WeatherCacheRecord.cache_key == cache_key,
            WeatherCacheRecord.expiration_time > now,
        )
        .first()
    )


def get_latest_in_family(
    db: Session,
    cache_family: str,
    created_after: datetime,
) -> Optional[WeatherCacheRecord]:
    """
    Newest record of a key family created after the cutoff, ignoring expiry
    """
    return (
        db.query(WeatherCacheRecord)
        .filter(
            WeatherCacheRecord.cache_family == cache_family,
            WeatherCacheRecord.created_time > created_after,
        )
        .order_by(WeatherCacheRecord.created_time.desc(), WeatherCacheRecord.id.desc())
        .first()
    )


def replace_entry(
    db: Session,
    cache_key: str,
    cache_value: str,
    expiration_time: datetime,
    now: datetime,
    cache_family: str = "",
    source_tag: str = "",
    location_hash: str = "",
) -> WeatherCacheRecord:
    """
    Insert or replace a record by key. Replacing resets hit_count and created_time.
    """
    record = get_entry(db, cache_key)
    if record is None:
        record = WeatherCacheRecord(cache_key=cache_key)
        db.add(record)
    record.cache_family = cache_family
    record.cache_value = cache_value
    record.expiration_time = expiration_time
    record.hit_count = 0
    record.last_accessed = now
    record.data_size = len(cache_value.encode("utf-8"))
    record.source_tag = source_tag
    record.location_hash = location_hash
    record.created_time = now
    db.flush()
    return record


def increment_hit(db: Session, cache_key: str, now: datetime) -> int:
    """
    Atomically bump hit_count and last_accessed. Returns rows updated.
    """
    return (
        db.query(WeatherCacheRecord)
        .filter(WeatherCacheRecord.cache_key == cache_key)
        .update(
            {
                WeatherCacheRecord.hit_count: WeatherCacheRecord.hit_count + 1,
                WeatherCacheRecord.last_accessed: now,
            },
            synchronize_session=False,
        )
    )


def delete_entry(db: Session, cache_key: str) -> int:
    return (
        db.query(WeatherCacheRecord)
        .filter(WeatherCacheRecord.cache_key == cache_key)
        .delete(synchronize_session=False)
    )


def delete_all_entries(db: Session) -> int:
    return db.query(WeatherCacheRecord).delete(synchronize_session=False)


def delete_expired(db: Session, now: datetime) -> int:
    return (
        db.query(WeatherCacheRecord)
        .filter(WeatherCacheRecord.expiration_time < now)
        .delete(synchronize_session=False)
    )


def delete_cold(db: Session, created_before: datetime, min_hits: int) -> int:
    """
    Delete old records that were rarely read
    """
    return (
        db.query(WeatherCacheRecord)
        .filter(
            WeatherCacheRecord.created_time < created_before,
            WeatherCacheRecord.hit_count < min_hits,
        )
        .delete(synchronize_session=False)
    )


def delete_overflow(db: Session, keep: int) -> int:
    """
    Keep only the `keep` most recently accessed records
    """
    keep_ids = (
        select(WeatherCacheRecord.id)
        .order_by(WeatherCacheRecord.last_accessed.desc(), WeatherCacheRecord.id.desc())
        .limit(keep)
        .subquery()
    )
    return (
        db.query(WeatherCacheRecord)
        .filter(WeatherCacheRecord.id.not_in(select(keep_ids.c.id)))
        .delete(synchronize_session=False)
    )


def count_entries(db: Session) -> int:
    return db.query(func.count(WeatherCacheRecord.id)).scalar() or 0


def entry_summary(db: Session) -> Tuple[int, int, int, float]:
    """
    (entries, summed hit_count, total bytes, average bytes)
    """
    row = db.query(
        func.count(WeatherCacheRecord.id),
        func.coalesce(func.sum(WeatherCacheRecord.hit_count), 0),
        func.coalesce(func.sum(WeatherCacheRecord.data_size), 0),
        func.coalesce(func.avg(WeatherCacheRecord.data_size), 0),
    ).one()
    return int(row[0]), int(row[1]), int(row[2]), float(row[3])


# ===== COUNTERS =====

def increment_counter(db: Session, name: str, amount: int = 1) -> None:
    """
    Atomic increment; creates the counter on first use
    """
    updated = (
        db.query(CacheCounter)
        .filter(CacheCounter.name == name)
        .update({CacheCounter.value: CacheCounter.value + amount}, synchronize_session=False)
    )
    if updated:
        return
    try:
        with db.begin_nested():
            db.add(CacheCounter(name=name, value=amount))
    except IntegrityError:
        # Another writer created it first
        db.query(CacheCounter).filter(CacheCounter.name == name).update(
            {CacheCounter.value: CacheCounter.value + amount}, synchronize_session=False
        )


def get_counters(db: Session) -> Dict[str, int]:
    return {c.name: c.value for c in db.query(CacheCounter).all()}


def reset_counters(db: Session) -> int:
    return db.query(CacheCounter).delete(synchronize_session=False)


# ===== STATE =====

def get_state(db: Session, name: str) -> Optional[str]:
    state = db.query(CacheState).filter(CacheState.name == name).first()
    return state.value if state else None


def set_state(db: Session, name: str, value: Optional[str]) -> None:
    db.merge(CacheState(name=name, value=value))


# ===== CLEANUP HISTORY =====

def record_cleanup(
    db: Session,
    day: str,
    run_at: datetime,
    expired: int,
    cold: int,
    overflow: int,
) -> CleanupRun:
    """
    Upsert the summary for a day; a second run on the same day overwrites it
    """
    run = db.query(CleanupRun).filter(CleanupRun.day == day).first()
    if run is None:
        run = CleanupRun(day=day)
        db.add(run)
    run.expired_count = expired
    run.cold_count = cold
    run.overflow_count = overflow
    run.deleted_count = expired + cold + overflow
    run.run_at = run_at
    db.flush()
    return run


def prune_cleanup_history(db: Session, before_day: str) -> int:
    """
    Drop summaries older than `before_day` (YYYY-MM-DD sorts lexically)
    """
    return (
        db.query(CleanupRun)
        .filter(CleanupRun.day < before_day)
        .delete(synchronize_session=False)
    )


def get_cleanup_history(db: Session, limit: int = 100) -> List[CleanupRun]:
    return db.query(CleanupRun).order_by(CleanupRun.day.desc()).limit(limit).all()
