"""
Plain-text weather summary for display consumers.
"""
from typing import Any, Dict, Optional

from weather_display.cache import WeatherResult
from weather_display.cache.ttl_policies import get_day_forecast

UNAVAILABLE_TEXT = "Wetterdaten konnten nicht geladen werden."
UNPROCESSABLE_TEXT = "Wetterdaten konnten nicht verarbeitet werden."

PICTOCODE_CONDITIONS: Dict[int, str] = {
    1: "sonnig",
    2: "heiter",
    3: "bewölkt",
    4: "bedeckt",
    5: "Regenschauer",
    6: "Regen und Schnee",
    7: "leicht regnerisch",
    8: "regnerisch",
    9: "Gewitter",
    10: "neblig",
    11: "Schneeschauer",
    12: "verschneit",
    13: "stürmisch",
    14: "sehr stürmisch",
    15: "Hagel",
    16: "wolkig",
}


def condition_name(pictocode: Any) -> str:
    return PICTOCODE_CONDITIONS.get(pictocode, "unbekannt")


def _first(day: Dict[str, Any], name: str) -> Optional[Any]:
    values = day.get(name)
    if isinstance(values, list) and values:
        return values[0]
    return None


def _first_number(day: Dict[str, Any], name: str) -> Optional[float]:
    """First array element if it is a real number, else None."""
    value = _first(day, name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def today_summary(payload: Any) -> Optional[Dict[str, Any]]:
    """
    Extract today's values from a forecast payload.

    Returns None when the payload has no usable day forecast.
    """
    day = get_day_forecast(payload)
    if day is None or not day.get("time"):
        return None
    temp_min = _first_number(day, "temperature_min")
    temp_max = _first_number(day, "temperature_max")
    if temp_min is None or temp_max is None:
        return None
    pictocode = _first_number(day, "pictocode")
    return {
        "temp_min": round(temp_min),
        "temp_max": round(temp_max),
        "precipitation": _first_number(day, "precipitation") or 0,
        "precipitation_prob": _first_number(day, "precipitation_probability") or 0,
        "pictocode": pictocode,
        "condition": condition_name(pictocode),
    }


def format_weather_text(result: WeatherResult, city: str) -> str:
    """One-line German summary, or an explicit unavailable message."""
    if not result.ok:
        return UNAVAILABLE_TEXT

    today = today_summary(result.payload)
    if today is None:
        return UNPROCESSABLE_TEXT

    text = f"Das Wetter in {city} heute ist {today['condition']}"
    if today["precipitation"] > 0:
        text += f" mit {today['precipitation']}mm Niederschlag"
    text += f". Temperaturen zwischen {today['temp_min']}°C und {today['temp_max']}°C"
    if today["precipitation_prob"] > 50:
        text += f" ({today['precipitation_prob']}% Regenwahrscheinlichkeit)"
    return text + "."
