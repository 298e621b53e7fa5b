"""
Periodic cleanup of the durable cache tier.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import sessionmaker

from weather_display import crud
from weather_display.db import session_scope
from .core import utcnow

logger = logging.getLogger("cache.janitor")

# Stale-and-cold rule: older than this AND fewer hits than COLD_MIN_HITS
COLD_AGE = timedelta(days=7)
COLD_MIN_HITS = 5

# Size cap, by most recent access
MAX_ENTRIES = 1000

DEFAULT_HISTORY_DAYS = 90


@dataclass
class SweepResult:
    """Counts from one janitor run."""
    run_at: datetime
    expired: int = 0
    cold: int = 0
    overflow: int = 0

    @property
    def deleted(self) -> int:
        return self.expired + self.cold + self.overflow

    def to_dict(self) -> dict:
        data = asdict(self)
        data["run_at"] = self.run_at.isoformat() + "Z"
        data["deleted"] = self.deleted
        return data


class Janitor:
    """
    Bounds age and size of the durable tier. Only ever deletes.

    Rules, in order:
    1. expired entries
    2. entries older than 7 days with fewer than 5 hits
    3. everything beyond the 1000 most recently accessed

    Each run upserts a per-day summary; summaries older than
    `history_days` are pruned.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        history_days: int = DEFAULT_HISTORY_DAYS,
        max_entries: int = MAX_ENTRIES,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._session_factory = session_factory
        self._history_days = history_days
        self._max_entries = max_entries
        self._clock = clock or utcnow

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or self._clock()
        result = SweepResult(run_at=now)

        with session_scope(self._session_factory) as db:
            result.expired = crud.delete_expired(db, now)
            result.cold = crud.delete_cold(db, now - COLD_AGE, COLD_MIN_HITS)
            result.overflow = crud.delete_overflow(db, self._max_entries)

            crud.record_cleanup(
                db,
                day=now.strftime("%Y-%m-%d"),
                run_at=now,
                expired=result.expired,
                cold=result.cold,
                overflow=result.overflow,
            )
            oldest_kept = (now - timedelta(days=self._history_days - 1)).strftime("%Y-%m-%d")
            crud.prune_cleanup_history(db, oldest_kept)

        logger.info(
            f"Cache cleanup: {result.deleted} deleted "
            f"(expired={result.expired}, cold={result.cold}, overflow={result.overflow})"
        )
        return result

    def history(self) -> List[dict]:
        """Per-day summaries, newest first."""
        with session_scope(self._session_factory) as db:
            return [
                {
                    "day": run.day,
                    "deleted_count": run.deleted_count,
                    "expired_count": run.expired_count,
                    "cold_count": run.cold_count,
                    "overflow_count": run.overflow_count,
                    "run_at": run.run_at.isoformat() + "Z",
                }
                for run in crud.get_cleanup_history(db, limit=self._history_days)
            ]
