"""
Background jobs: proactive weather refresh and cache cleanup.

Both jobs talk to the cache only through its public operations; each one
decides for itself whether there is work to do.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import Settings
from weather_display.cache import CacheCoordinator, Janitor, WeatherStatus
from weather_display.errors import UpstreamUnavailable

logger = logging.getLogger("weather.scheduler")

REFRESH_JOB_ID = "weather-refresh"
CLEANUP_JOB_ID = "cache-cleanup"


@retry(
    retry=retry_if_exception_type(UpstreamUnavailable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    reraise=False,
)
def _refresh_with_retry(coordinator: CacheCoordinator) -> None:
    result = coordinator.refresh_if_due()
    if result is not None and result.status is not WeatherStatus.UPSTREAM:
        raise UpstreamUnavailable(result.error or "refresh failed")


def run_refresh(coordinator: CacheCoordinator) -> None:
    """Refresh job body; failures are logged, never raised into the scheduler."""
    try:
        _refresh_with_retry(coordinator)
    except RetryError as e:
        logger.warning(f"Weather refresh gave up after retries: {e.last_attempt.exception()}")


def run_cleanup(janitor: Janitor) -> None:
    janitor.sweep()


def build_scheduler(
    coordinator: CacheCoordinator,
    janitor: Janitor,
    settings: Settings,
) -> BackgroundScheduler:
    """
    Create (but do not start) the scheduler with both interval jobs.
    """
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_refresh,
        "interval",
        minutes=settings.refresh_check_minutes,
        args=[coordinator],
        id=REFRESH_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        run_cleanup,
        "interval",
        hours=settings.cleanup_interval_hours,
        args=[janitor],
        id=CLEANUP_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
