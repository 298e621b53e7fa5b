"""
Wetter Display - FastAPI application
Serves cached Meteoblue forecasts and exposes cache administration
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query
from fastapi.responses import PlainTextResponse

from config.settings import settings
from weather_display import __version__
from weather_display.cache import CacheCoordinator, Janitor
from weather_display.scheduler import build_scheduler
from weather_display.schemas import ActionResponse, CacheStatsResponse, WeatherResponse
from weather_display.service import WeatherService, build_service
from weather_display.view_models import UNAVAILABLE_TEXT, format_weather_text

APP_NAME = "Wetter Display"

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger("weather.api")

_service: Optional[WeatherService] = None


def get_service() -> WeatherService:
    """Get or create the process-wide weather service."""
    global _service
    if _service is None:
        _service = build_service(settings)
    return _service


def get_coordinator() -> CacheCoordinator:
    return get_service().coordinator


def get_janitor() -> Janitor:
    return get_service().janitor


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.scheduler_enabled:
        service = get_service()
        scheduler = build_scheduler(service.coordinator, service.janitor, settings)
        scheduler.start()
        logger.info("Background jobs started")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(
    title=APP_NAME,
    description="Meteoblue forecast with tiered caching",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.get("/weather", response_model=WeatherResponse)
def get_weather(
    forceRefresh: bool = Query(default=False, description="Bypass cache and fetch fresh data"),
    coordinator: CacheCoordinator = Depends(get_coordinator),
):
    """
    Current forecast.

    Total failure is reported as status "unavailable" with HTTP 200 so that
    renderers can show an indicator instead of failing.
    """
    result = coordinator.get_weather(force_refresh=forceRefresh)
    body = result.to_dict()
    if not result.ok:
        body["message"] = UNAVAILABLE_TEXT
    return body


@app.get("/weather/summary", response_class=PlainTextResponse)
def get_weather_summary(coordinator: CacheCoordinator = Depends(get_coordinator)):
    """Today's weather as one line of text."""
    result = coordinator.get_weather()
    return format_weather_text(result, settings.city_name)


@app.get("/weather/test", response_model=ActionResponse)
def test_weather_api(coordinator: CacheCoordinator = Depends(get_coordinator)):
    """Check the upstream API without touching the cache."""
    success, message = coordinator.test_connection()
    return ActionResponse(success=success, message=message)


@app.get("/cache/stats", response_model=CacheStatsResponse)
def cache_stats(coordinator: CacheCoordinator = Depends(get_coordinator)):
    """Get cache statistics."""
    stats = coordinator.stats().to_dict()
    stats["tiers"] = coordinator.tier_names
    return stats


@app.post("/cache/clear", response_model=ActionResponse)
def clear_cache(coordinator: CacheCoordinator = Depends(get_coordinator)):
    """Clear every cache tier and reset statistics."""
    cleared = coordinator.invalidate_all()
    return ActionResponse(success=True, message="Cache cleared", details=cleared)


@app.post("/cache/cleanup", response_model=ActionResponse)
def run_cleanup(janitor: Janitor = Depends(get_janitor)):
    """Run the cache janitor now."""
    result = janitor.sweep()
    return ActionResponse(
        success=True,
        message=f"Removed {result.deleted} cache entries",
        details=result.to_dict(),
    )


@app.get("/cache/cleanup/history")
def cleanup_history(janitor: Janitor = Depends(get_janitor)):
    """Per-day janitor summaries, newest first."""
    return {"history": janitor.history()}
