"""
Adaptive TTL based on the content of a fetched forecast.
"""
import logging
from typing import Any, Dict, Optional

from config.settings import CacheStrategy
from .core import TtlDecision

logger = logging.getLogger("cache.ttl")


MIN_TTL_SECONDS = 1800    # 30 minutes
MAX_TTL_SECONDS = 21600   # 6 hours

# Pictocode classes
VOLATILE_PICTOCODES = frozenset({8, 9, 13, 14})  # rain, thunderstorm, wind
STABLE_PICTOCODES = frozenset({1, 2, 3})         # sunny, mostly clear

# Values that trigger no modifier when a field is missing
DEFAULT_RAIN_PROBABILITY = 0
DEFAULT_PREDICTABILITY = 50
DEFAULT_PICTOCODE = 2

# Multiplicative factors, applied independently
TTL_MODIFIERS: Dict[str, float] = {
    "volatile_weather": 0.5,
    "low_predictability": 0.7,
    "stable_weather": 1.5,
}

_IMPLEMENTED_STRATEGIES = {CacheStrategy.INTELLIGENT, CacheStrategy.DISABLED}


def _first_number(day: Dict[str, Any], field_name: str, default: float) -> float:
    """First element of a day-forecast array, or the default."""
    values = day.get(field_name)
    if isinstance(values, (list, tuple)):
        if not values:
            return default
        value = values[0]
    else:
        value = values
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def get_day_forecast(payload: Any) -> Optional[Dict[str, Any]]:
    """Return the structured day-forecast block, or None if absent."""
    if not isinstance(payload, dict):
        return None
    day = payload.get("data_day")
    if not isinstance(day, dict):
        return None
    return day


def compute_ttl(base_interval_hours: int, payload: Any) -> TtlDecision:
    """
    Compute cache lifetime for a payload.

    Without a day forecast the base interval is returned as-is, with no
    clamping. With one, the modifiers below multiply together and the result
    is clamped to [MIN_TTL_SECONDS, MAX_TTL_SECONDS]:

    - rain probability > 70 or a volatile pictocode: x0.5
    - predictability < 30: x0.7
    - rain probability < 20, predictability > 70 and a stable pictocode: x1.5

    Args:
        base_interval_hours: Configured update interval
        payload: Parsed upstream response (may be None)

    Returns:
        TtlDecision with base, modifier product and final seconds
    """
    base_seconds = int(base_interval_hours) * 3600

    day = get_day_forecast(payload)
    if day is None:
        return TtlDecision(base_seconds=base_seconds, modifier=1.0, final_seconds=base_seconds)

    rain_prob = _first_number(day, "precipitation_probability", DEFAULT_RAIN_PROBABILITY)
    predictability = _first_number(day, "predictability", DEFAULT_PREDICTABILITY)
    pictocode = _first_number(day, "pictocode", DEFAULT_PICTOCODE)

    modifier = 1.0

    if rain_prob > 70 or pictocode in VOLATILE_PICTOCODES:
        modifier *= TTL_MODIFIERS["volatile_weather"]

    if predictability < 30:
        modifier *= TTL_MODIFIERS["low_predictability"]

    if rain_prob < 20 and predictability > 70 and pictocode in STABLE_PICTOCODES:
        modifier *= TTL_MODIFIERS["stable_weather"]

    calculated = int(round(base_seconds * modifier))
    final_seconds = max(MIN_TTL_SECONDS, min(MAX_TTL_SECONDS, calculated))

    logger.debug(
        f"TTL: base={base_seconds}s modifier={modifier:.3f} final={final_seconds}s "
        f"(rain={rain_prob}, predictability={predictability}, pictocode={pictocode})"
    )
    return TtlDecision(base_seconds=base_seconds, modifier=modifier, final_seconds=final_seconds)


def resolve_strategy(strategy: CacheStrategy) -> CacheStrategy:
    """
    Map a configured strategy to one with defined behaviour.

    Only "intelligent" and "disabled" have their own semantics; the others
    run as "intelligent".
    """
    if strategy in _IMPLEMENTED_STRATEGIES:
        return strategy
    logger.warning(
        f"Cache strategy '{strategy.value}' has no distinct behaviour yet; "
        f"using '{CacheStrategy.INTELLIGENT.value}'"
    )
    return CacheStrategy.INTELLIGENT
