"""
normalizer.py — Untrusted alert map → canonical ``Alert``.

Every producer (MQTT sensors, the FIRMS feed, the write API) passes through
``normalize`` so that records are indistinguishable once canonicalised.

Coercion rules
==============

    Field        Accepted keys            Failure behaviour
    ─────────    ─────────────────────    ──────────────────────────────
    type         type                     falsy → "SOS"; always uppercased
    latitude     latitude, lat            missing / non-finite → ValidationError
    longitude    longitude, lng, lon      missing / non-finite → ValidationError
    message      message, msg             non-string → "Signal received"
    intensity    intensity                non-numeric → 1; else clamped to [0, 5]
    source       source                   non-string → "unknown"
    city         city, ville              non-string → "Unknown"
    timestamp    timestamp, ts            unparseable → None (store fills it)

Coordinates are the only hard failure; everything else degrades to a default.
Canonical keys take precedence over the short wire aliases unless they hold
null, and ``Alert.to_dict`` emits canonical keys, so
``normalize(normalize(raw).to_dict())`` is stable.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from leo.app.alerts.models import (
    Alert,
    DEFAULT_CITY,
    DEFAULT_INTENSITY,
    DEFAULT_MESSAGE,
    DEFAULT_SOURCE,
    DEFAULT_TYPE,
    MAX_INTENSITY,
    MIN_INTENSITY,
)
from leo.app.core.errors import ValidationError

_MISSING = object()

LATITUDE_KEYS = ("latitude", "lat")
LONGITUDE_KEYS = ("longitude", "lng", "lon")
MESSAGE_KEYS = ("message", "msg")
CITY_KEYS = ("city", "ville")
TIMESTAMP_KEYS = ("timestamp", "ts")


def _pick(raw: Mapping, keys: Tuple[str, ...]) -> Any:
    """First key holding a non-null value wins."""
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return _MISSING


def coerce_number(value: Any) -> Optional[float]:
    """
    Lenient numeric coercion.

    Returns None for anything that is not a number or a numeric string.
    The result may still be inf/nan; callers check finiteness.
    """
    if value is _MISSING or value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            return math.copysign(math.inf, value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return float(stripped)
        except ValueError:
            return None
    return None


def clamp_intensity(value: float) -> float:
    return min(MAX_INTENSITY, max(MIN_INTENSITY, value))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a point in time, normalised to UTC.

    Accepts datetime objects, ISO-8601 strings (``Z`` suffix allowed) and
    epoch milliseconds. Returns None when the value does not parse.
    """
    if value is _MISSING or not value or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # offset pushes the instant past year 1 or 9999
        return None


def normalize(raw: Any) -> Alert:
    """
    Convert an untyped alert map into a canonical Alert.

    Raises
    ------
    ValidationError
        If ``raw`` is not a mapping or the coordinates are missing/non-finite.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("alert payload must be an object")

    latitude = coerce_number(_pick(raw, LATITUDE_KEYS))
    longitude = coerce_number(_pick(raw, LONGITUDE_KEYS))
    if (
        latitude is None or longitude is None
        or not math.isfinite(latitude) or not math.isfinite(longitude)
    ):
        raise ValidationError(
            "invalid coordinates",
            field="latitude" if latitude is None or not math.isfinite(latitude) else "longitude",
        )

    alert_type = str(raw.get("type") or DEFAULT_TYPE).upper()

    message = _pick(raw, MESSAGE_KEYS)
    if not isinstance(message, str):
        message = DEFAULT_MESSAGE

    intensity = coerce_number(raw.get("intensity"))
    if intensity is not None and math.isfinite(intensity):
        intensity = clamp_intensity(intensity)
    else:
        intensity = DEFAULT_INTENSITY

    source = raw.get("source")
    if not isinstance(source, str):
        source = DEFAULT_SOURCE

    city = _pick(raw, CITY_KEYS)
    if not isinstance(city, str):
        city = DEFAULT_CITY

    return Alert(
        type=alert_type,
        message=message,
        latitude=latitude,
        longitude=longitude,
        city=city,
        intensity=intensity,
        source=source,
        timestamp=parse_timestamp(_pick(raw, TIMESTAMP_KEYS)),
    )
