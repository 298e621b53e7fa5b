"""
Error taxonomy for the weather display service.

None of these escape CacheCoordinator.get_weather(); the coordinator turns
them into an "unavailable" WeatherResult.
"""
from typing import Optional


class WeatherDisplayError(Exception):
    """Base class for all weather display errors."""


class ConfigIncomplete(WeatherDisplayError):
    """API key or location is missing, so no fetch is attempted."""

    reason = "config_incomplete"


class UpstreamUnavailable(WeatherDisplayError):
    """The upstream weather API could not deliver a usable payload."""

    reason = "upstream_unavailable"


class NetworkError(UpstreamUnavailable):
    """Connection failure or timeout talking to the upstream API."""


class HttpError(UpstreamUnavailable):
    """Upstream answered with a non-200 status."""

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message or f"HTTP {status_code}")


class MalformedResponse(UpstreamUnavailable):
    """Upstream body was not a JSON object."""


class CacheUnavailable(WeatherDisplayError):
    """A single tier store failed; callers skip that tier."""

    def __init__(self, tier: str, cause: Optional[BaseException] = None):
        self.tier = tier
        self.cause = cause
        super().__init__(f"Cache tier '{tier}' unavailable: {cause}")
