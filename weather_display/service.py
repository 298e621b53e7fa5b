"""
Wiring: build the cache engine from Settings.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from config.settings import Settings
from weather_display.cache import (
    CacheConfig,
    CacheCoordinator,
    DurableTier,
    FileTier,
    Janitor,
    KeyDeriver,
    RequestCoalescer,
    StatsLedger,
    detect_shared_tier,
)
from weather_display.cache.manager import Fetcher
from weather_display.db import create_db_engine, init_db, make_session_factory
from weather_display.upstream import MeteoblueClient

logger = logging.getLogger("weather.service")


@dataclass
class WeatherService:
    """The pieces a host process needs to hold on to."""
    coordinator: CacheCoordinator
    janitor: Janitor
    engine: Engine

    def close(self) -> None:
        self.engine.dispose()


def build_service(settings: Settings, fetcher: Optional[Fetcher] = None) -> WeatherService:
    """
    Create tiers, ledger, coordinator and janitor for the given settings.

    Args:
        settings: Loaded application settings
        fetcher: Upstream fetch callable; defaults to the Meteoblue client
    """
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    session_factory = make_session_factory(engine)

    durable = DurableTier(session_factory)
    coordinator = CacheCoordinator(
        config=CacheConfig.from_settings(settings),
        fetcher=fetcher or MeteoblueClient(
            base_url=settings.api_base_url,
            timeout=settings.fetch_timeout_seconds,
        ),
        ephemeral=FileTier(settings.cache_directory),
        durable=durable,
        stats=StatsLedger(session_factory),
        shared=detect_shared_tier(settings.redis_url),
        key_deriver=KeyDeriver(settings.cache_timezone),
        coalescer=RequestCoalescer(timeout=settings.fetch_timeout_seconds),
    )
    janitor = Janitor(session_factory, history_days=settings.cleanup_history_days)

    logger.info(f"Weather cache ready, tiers: {coordinator.tier_names}")
    return WeatherService(coordinator=coordinator, janitor=janitor, engine=engine)
