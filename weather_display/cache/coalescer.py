"""
Single-flight guard for upstream weather fetches.

While a fetch for a cache key is running, further misses for the same key
wait for it and share its outcome instead of calling the API again.
"""
import threading
import time
import logging
from typing import Any, Callable, Dict, Optional, Tuple
from dataclasses import dataclass, field

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightFetch:
    """An upstream fetch in progress for one key."""
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    waiters: int = 0


class RequestCoalescer:
    """
    At most one upstream fetch per key at a time.

    The first caller for a key runs fetch_fn; callers arriving while it runs
    block on its Event and receive the same result or the same exception.

    Usage:
        coalescer = RequestCoalescer(timeout=30.0)
        payload, initiated = coalescer.run(cache_key, fetch_fn)
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds a waiter blocks on someone else's fetch
        """
        self._in_flight: Dict[str, InFlightFetch] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._coalesced_total = 0

    def run(self, cache_key: str, fetch_fn: Callable[[], Any]) -> Tuple[Any, bool]:
        """
        Run or join the fetch for `cache_key`.

        Returns:
            (result, initiated) where `initiated` is True for the caller
            that actually ran fetch_fn

        Raises:
            TimeoutError: waiting on another caller's fetch took too long
            Exception: whatever fetch_fn raised, re-raised to every caller
        """
        with self._lock:
            flight = self._in_flight.get(cache_key)
            if flight is None:
                flight = InFlightFetch()
                self._in_flight[cache_key] = flight
                initiator = True
            else:
                flight.waiters += 1
                self._coalesced_total += 1
                initiator = False

        if initiator:
            logger.debug(f"Fetching upstream for {cache_key}")
            try:
                flight.result = fetch_fn()
            except Exception as e:
                flight.error = e
            finally:
                with self._lock:
                    self._in_flight.pop(cache_key, None)
                flight.done.set()

            if flight.error is not None:
                raise flight.error
            return flight.result, True

        logger.debug(f"Joining in-flight fetch for {cache_key} (waiters: {flight.waiters})")
        if not flight.done.wait(timeout=self._timeout):
            logger.error(f"Timed out waiting for in-flight fetch: {cache_key}")
            raise TimeoutError(f"Fetch for {cache_key} did not finish within {self._timeout}s")

        if flight.error is not None:
            raise flight.error
        return flight.result, False

    @property
    def active_requests(self) -> int:
        """Number of fetches currently running."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
                "coalesced_total": self._coalesced_total,
            }
