"""
Persistent hit/miss counters.

Counters live in the database so a restart does not reset the history
operators look at. Each increment is a single UPDATE, so concurrent
request handlers do not lose counts.
"""
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from weather_display import crud
from weather_display.db import session_scope
from .core import CacheStatsSnapshot

TOTAL_HITS = "total_hits"
TOTAL_MISSES = "total_misses"
LAST_UPDATE = "last_update"
_TIER_SUFFIX = "_hits"


class StatsLedger:
    """Counter storage owned by the cache coordinator."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def record_hit(self, tier: str) -> None:
        with session_scope(self._session_factory) as db:
            crud.increment_counter(db, TOTAL_HITS)
            crud.increment_counter(db, f"{tier}{_TIER_SUFFIX}")

    def record_miss(self) -> None:
        with session_scope(self._session_factory) as db:
            crud.increment_counter(db, TOTAL_MISSES)

    def counters(self) -> Dict[str, int]:
        with session_scope(self._session_factory) as db:
            return crud.get_counters(db)

    def snapshot(self) -> CacheStatsSnapshot:
        counters = self.counters()
        hits_by_tier = {
            name[: -len(_TIER_SUFFIX)]: value
            for name, value in counters.items()
            if name.endswith(_TIER_SUFFIX) and name != TOTAL_HITS
        }
        return CacheStatsSnapshot(
            total_hits=counters.get(TOTAL_HITS, 0),
            total_misses=counters.get(TOTAL_MISSES, 0),
            hits_by_tier=hits_by_tier,
            last_update=self.last_update(),
        )

    def reset(self) -> None:
        with session_scope(self._session_factory) as db:
            crud.reset_counters(db)

    def last_update(self) -> Optional[datetime]:
        with session_scope(self._session_factory) as db:
            raw = crud.get_state(db, LAST_UPDATE)
        return datetime.fromisoformat(raw) if raw else None

    def set_last_update(self, when: datetime) -> None:
        with session_scope(self._session_factory) as db:
            crud.set_state(db, LAST_UPDATE, when.isoformat())
