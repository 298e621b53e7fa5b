"""
Pydantic schemas for API responses
"""
from pydantic import BaseModel
from typing import Any, Dict, List, Optional


class TtlInfo(BaseModel):
    """Adaptive TTL decision for a fresh fetch"""
    base_seconds: int
    modifier: float
    final_seconds: int


class WeatherResponse(BaseModel):
    """Weather payload with cache metadata"""
    status: str
    source: Optional[str] = None
    stale: bool = False
    cache_key: Optional[str] = None
    ttl: Optional[TtlInfo] = None
    error: Optional[str] = None
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class CacheStatsResponse(BaseModel):
    """Hit/miss counters and durable tier totals"""
    total_hits: int
    total_misses: int
    hits_by_tier: Dict[str, int]
    hit_rate: float
    hit_rate_percent: float
    entries: int
    stored_hits: int
    total_size_bytes: int
    avg_size_bytes: float
    last_update: Optional[str] = None
    tiers: List[str] = []


class ActionResponse(BaseModel):
    """Result of an admin action"""
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None
