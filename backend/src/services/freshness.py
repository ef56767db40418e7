from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union

from utils import clamp, compact_number, is_number, to_utc_naive, utcnow


class ShelfLifeError(ValueError):
    pass


@dataclass
class FreshnessMetrics:
    days_since_listing: int
    total_days_used: float
    remaining_shelf_life_days: float
    freshness_percent: float
    expiration_date: date
    is_expired: bool


def days_since(listed_at: Union[datetime, date], now: Optional[datetime] = None) -> int:
    """Whole days elapsed since listing; a listing in the future counts as 0."""
    now = to_utc_naive(now) if now is not None else utcnow()
    if isinstance(listed_at, datetime):
        elapsed = now - to_utc_naive(listed_at)
        days = math.floor(elapsed.total_seconds() / 86400)
    else:
        days = (now.date() - listed_at).days
    return max(days, 0)


def evaluate_freshness(
    total_shelf_life_days: float,
    days_already_used: float,
    listed_at: Union[datetime, date],
    *,
    now: Optional[datetime] = None,
) -> FreshnessMetrics:
    """Estimate how much of a product's shelf life is left.

    ``freshness_percent`` is the remaining share of the total shelf life,
    clamped to [0, 100]. ``remaining_shelf_life_days`` is not clamped and goes
    negative once the product is past its expiration date.

    Raises:
        ShelfLifeError: if the shelf-life constant is missing, non-numeric or
            not positive, or ``days_already_used`` is negative.
    """
    if not is_number(total_shelf_life_days) or total_shelf_life_days <= 0:
        raise ShelfLifeError(f"total_shelf_life_days must be a positive number, got {total_shelf_life_days!r}")
    if not is_number(days_already_used) or days_already_used < 0:
        raise ShelfLifeError(f"days_already_used must be a non-negative number, got {days_already_used!r}")
    if not isinstance(listed_at, (date, datetime)):
        raise ShelfLifeError(f"listed_at must be a date or datetime, got {listed_at!r}")

    elapsed = days_since(listed_at, now)
    total_used = days_already_used + elapsed
    remaining = total_shelf_life_days - total_used
    percent = clamp(remaining / total_shelf_life_days * 100.0, 0.0, 100.0)

    listed_day = listed_at.date() if isinstance(listed_at, datetime) else listed_at
    expiration = listed_day + timedelta(days=total_shelf_life_days - days_already_used)

    return FreshnessMetrics(
        days_since_listing=elapsed,
        total_days_used=compact_number(float(total_used)),
        remaining_shelf_life_days=compact_number(float(remaining)),
        freshness_percent=round(percent, 2),
        expiration_date=expiration,
        is_expired=remaining <= 0,
    )
