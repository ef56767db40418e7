from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest


# Ensure backend/src is on sys.path for tests so that imports like `services.*` and `models` work.
ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from models import Coordinate, ProductRecord  # noqa: E402

MANILA = (14.5995, 120.9842)
KM_PER_DEG_LAT = 6371.0 * 3.141592653589793 / 180.0


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def buyer() -> dict:
    return {"latitude": MANILA[0], "longitude": MANILA[1]}


@pytest.fixture
def make_product(now):
    """Factory for products placed ``km_north`` of the Manila buyer."""

    def _make(
        pid,
        *,
        km_north: float = 1.0,
        price: float = 50.0,
        shelf_life: float | None = 14,
        days_used: float | None = 1,
        listed_at=None,
        storage: str | None = "refrigerated",
        quantity: float = 5,
        with_location: bool = True,
    ) -> ProductRecord:
        location = Coordinate(lat=MANILA[0] + km_north / KM_PER_DEG_LAT, lng=MANILA[1]) if with_location else None
        return ProductRecord(
            id=pid,
            price=price,
            quantity=quantity,
            location=location,
            total_shelf_life_days=shelf_life,
            days_already_used=days_used,
            listed_at=listed_at if listed_at is not None else now.date(),
            storage_condition=storage,
        )

    return _make
