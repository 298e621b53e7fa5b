"""
Meteoblue API client.

A single GET per call, no retries; callers decide whether to try again.
"""
import logging
from typing import Any, Dict, Optional

import requests

from weather_display import __version__
from weather_display.errors import HttpError, MalformedResponse, NetworkError

logger = logging.getLogger("weather.upstream")

DEFAULT_BASE_URL = "https://my.meteoblue.com/packages/basic-day"
USER_AGENT = f"Wetter Display {__version__}"


class MeteoblueClient:
    """
    Callable fetcher: client(latitude, longitude, api_key) -> parsed JSON.

    Raises NetworkError, HttpError or MalformedResponse (all
    UpstreamUnavailable) on failure.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._session = session or requests.Session()

    def __call__(self, latitude: float, longitude: float, api_key: str) -> Dict[str, Any]:
        params = {"lat": latitude, "lon": longitude, "apikey": api_key}

        try:
            response = self._session.get(
                self.base_url,
                params=params,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            # The exception text can contain the full URL, key included
            logger.warning(f"Weather API network error: {type(e).__name__}")
            raise NetworkError(type(e).__name__) from e

        if response.status_code != 200:
            logger.warning(f"Weather API HTTP error: {response.status_code}")
            raise HttpError(response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"Weather API returned invalid JSON: {e}")
            raise MalformedResponse("invalid JSON body") from e

        if not isinstance(data, dict):
            logger.warning(f"Weather API returned {type(data).__name__}, expected an object")
            raise MalformedResponse("top-level JSON value is not an object")

        return data
