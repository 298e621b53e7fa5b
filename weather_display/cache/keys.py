"""
Deterministic cache key derivation.

Keys look like::

    wetter_<type>_<location md5>[_<params md5>]_<YYYY-MM-DD-HH>

The hour bucket is computed in an explicit zone (UTC unless configured
otherwise), so all requests for one location and type inside the same clock
hour share a key and the key rolls over on the hour.
"""
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

KEY_PREFIX = "wetter"
HOUR_BUCKET_FORMAT = "%Y-%m-%d-%H"


@dataclass(frozen=True)
class LocationFingerprint:
    """A physical location reduced to a stable hash."""
    latitude: float
    longitude: float

    @property
    def digest(self) -> str:
        raw = f"{self.latitude}|{self.longitude}"
        return hashlib.md5(raw.encode("utf-8")).hexdigest()


def _params_digest(extra_params: Dict[str, Any]) -> str:
    canonical = json.dumps(extra_params, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


class KeyDeriver:
    """
    Builds cache keys from (type, location, hour bucket, extra params).

    Args:
        tz_name: IANA zone used for the hour bucket
        clock: Returns the current time as an aware datetime
    """

    def __init__(
        self,
        tz_name: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def hour_bucket(self) -> str:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self._tz).strftime(HOUR_BUCKET_FORMAT)

    def family(
        self,
        data_type: str,
        location: LocationFingerprint,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Key without its hour bucket; shared by every hour of the same request."""
        parts = [KEY_PREFIX, data_type, location.digest]
        if extra_params:
            parts.append(_params_digest(extra_params))
        return "_".join(parts)

    def derive(
        self,
        data_type: str,
        location: LocationFingerprint,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> str:
        return f"{self.family(data_type, location, extra_params)}_{self.hour_bucket()}"
