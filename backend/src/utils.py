"""Utility helpers for the marketplace search pipeline."""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any, Optional, Union


EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers."""
    R = EARTH_RADIUS_KM
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # rounding can push `a` a hair outside [0, 1] for antipodal points
    a = min(max(a, 0.0), 1.0)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


def distance_km(a: Any, b: Any) -> float:
    """Distance between two objects exposing ``lat``/``lng``."""
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compact_number(value: float) -> Union[int, float]:
    """Return ints for integral floats so day counts serialize as 13, not 13.0."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def parse_timestamp(value: Any) -> Optional[Union[datetime, date]]:
    """Parse a listing timestamp.

    Accepts ``date``/``datetime`` objects and ISO-8601 strings (date-only or
    full, with an optional trailing ``Z``). Returns None when unparseable.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
