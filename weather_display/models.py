"""
Database models for the durable cache tier
SQLAlchemy ORM models for cached payloads, hit counters and cleanup history
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class WeatherCacheRecord(Base):
    """
    One cached payload - replaced by key on every successful fetch.
    Doubles as the per-key statistics ledger (hit_count, last_accessed, data_size)
    """
    __tablename__ = "weather_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cache_key = Column(String(191), unique=True, nullable=False)
    cache_family = Column(String(191), nullable=False, default="", index=True)
    cache_value = Column(Text, nullable=False)
    expiration_time = Column(DateTime, nullable=False, index=True)
    hit_count = Column(Integer, nullable=False, default=0)
    last_accessed = Column(DateTime, nullable=False, index=True)
    data_size = Column(Integer, nullable=False, default=0)
    source_tag = Column(String(255), nullable=False, default="")
    location_hash = Column(String(32), nullable=False, default="", index=True)
    created_time = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<WeatherCacheRecord(cache_key='{self.cache_key}', hits={self.hit_count})>"


class CacheCounter(Base):
    """
    Process-independent hit/miss counters (total_hits, total_misses, <tier>_hits)
    """
    __tablename__ = "cache_counters"

    name = Column(String(64), primary_key=True)
    value = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<CacheCounter(name='{self.name}', value={self.value})>"


class CacheState(Base):
    """
    Small named values that must outlive a cache reset (e.g. last_update)
    """
    __tablename__ = "cache_state"

    name = Column(String(64), primary_key=True)
    value = Column(String(255), nullable=True)


class CleanupRun(Base):
    """
    Janitor summary - one row per day, bounded by the configured history length
    """
    __tablename__ = "cache_cleanup_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(String(10), unique=True, nullable=False)
    deleted_count = Column(Integer, nullable=False, default=0)
    expired_count = Column(Integer, nullable=False, default=0)
    cold_count = Column(Integer, nullable=False, default=0)
    overflow_count = Column(Integer, nullable=False, default=0)
    run_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<CleanupRun(day='{self.day}', deleted={self.deleted_count})>"
