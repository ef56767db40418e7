"""Data models for the perishable marketplace search pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from loguru import logger

from utils import parse_timestamp


class StorageCondition(str, Enum):
    PANTRY = "pantry"
    PANTRY_OPENED = "pantry_opened"
    REFRIGERATED = "refrigerated"
    REFRIGERATED_OPENED = "refrigerated_opened"
    FROZEN = "frozen"
    FROZEN_OPENED = "frozen_opened"

    @classmethod
    def parse(cls, value: Any) -> Optional["StorageCondition"]:
        """Return the matching condition, or None for empty/unknown values."""
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        text = _STORAGE_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            return None

    @property
    def tier(self) -> int:
        # pantry < refrigerated < frozen; opened variants share the base tier
        base = self.value.replace("_opened", "")
        return _STORAGE_TIERS[base]


_STORAGE_ALIASES = {
    "room_temp": "pantry",
    "room_temperature": "pantry",
    "ambient": "pantry",
    "refrigerator": "refrigerated",
    "fridge": "refrigerated",
    "freezer": "frozen",
}

_STORAGE_TIERS = {"pantry": 0, "refrigerated": 1, "frozen": 2}


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def is_valid(self) -> bool:
        return -90.0 <= self.lat <= 90.0 and -180.0 <= self.lng <= 180.0


@dataclass(frozen=True)
class BuyerContext:
    location: Coordinate
    storage_capability: Optional[StorageCondition] = None


@dataclass
class ProductRecord:
    """Candidate listing as returned by the data source.

    Every field but ``id`` is optional: catalogs are heterogeneous and the
    enricher skips whatever it cannot compute.
    """

    id: Any
    price: Optional[float] = None
    quantity: Optional[float] = None
    location: Optional[Coordinate] = None
    total_shelf_life_days: Optional[float] = None
    days_already_used: Optional[float] = None
    listed_at: Optional[datetime | date] = None
    storage_condition: Optional[str] = None
    seller_id: Any = None
    product_type_id: Any = None
    name: Optional[str] = None
    unit: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = (
        "id",
        "price",
        "quantity",
        "total_shelf_life_days",
        "days_already_used",
        "storage_condition",
        "seller_id",
        "product_type_id",
        "name",
        "unit",
    )

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "ProductRecord":
        """Build a record from a joined catalog row.

        Accepts a nested ``location: {lat, lng}`` or flat ``latitude``/``longitude``
        columns, and ``listed_date`` as an alias of ``listed_at``.
        Unparseable or out-of-range coordinates leave ``location`` as None.
        """
        loc = row.get("location")
        if isinstance(loc, Coordinate):
            location = loc if loc.is_valid() else None
        elif isinstance(loc, dict):
            location = _to_coordinate(row.get("id"), loc.get("lat"), loc.get("lng"))
        else:
            location = _to_coordinate(row.get("id"), row.get("latitude"), row.get("longitude"))

        listed_raw = row.get("listed_at", row.get("listed_date"))
        listed_at = parse_timestamp(listed_raw) if listed_raw not in (None, "") else None

        skip = set(cls._KNOWN) | {"location", "latitude", "longitude", "listed_at", "listed_date"}
        extra = {k: v for k, v in row.items() if k not in skip}

        return cls(
            id=row.get("id"),
            price=_to_float(row.get("price")),
            quantity=_to_float(row.get("quantity")),
            location=location,
            total_shelf_life_days=_to_float(row.get("total_shelf_life_days")),
            days_already_used=_to_float(row.get("days_already_used")),
            listed_at=listed_at,
            storage_condition=row.get("storage_condition"),
            seller_id=row.get("seller_id"),
            product_type_id=row.get("product_type_id"),
            name=row.get("name") or row.get("product_name"),
            unit=row.get("unit"),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        for key in self._KNOWN:
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.location is not None:
            out["location"] = {"lat": self.location.lat, "lng": self.location.lng}
        if self.listed_at is not None:
            out["listed_at"] = self.listed_at.isoformat()
        return out


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _to_coordinate(row_id: Any, lat: Any, lng: Any) -> Optional[Coordinate]:
    if lat is None and lng is None:
        return None
    lat_f, lng_f = _to_float(lat), _to_float(lng)
    if lat_f is None or lng_f is None or not Coordinate(lat_f, lng_f).is_valid():
        logger.warning("product {} has unusable location lat={!r} lng={!r}; ignoring it", row_id, lat, lng)
        return None
    return Coordinate(lat=lat_f, lng=lng_f)


@dataclass
class EnrichedProduct:
    product: ProductRecord
    distance_km: Optional[float] = None
    remaining_shelf_life_days: Optional[int] = None
    freshness_percent: Optional[float] = None
    expiration_date: Optional[date] = None
    is_expired: Optional[bool] = None

    @property
    def price(self) -> Optional[float]:
        return self.product.price

    def to_dict(self) -> Dict[str, Any]:
        out = self.product.to_dict()
        if self.distance_km is not None:
            out["distance_km"] = self.distance_km
        if self.remaining_shelf_life_days is not None:
            out["remaining_shelf_life_days"] = self.remaining_shelf_life_days
        if self.freshness_percent is not None:
            out["freshness_percent"] = self.freshness_percent
        if self.expiration_date is not None:
            out["expiration_date"] = self.expiration_date.isoformat()
        if self.is_expired is not None:
            out["is_expired"] = self.is_expired
        return out


@dataclass
class ScoredProduct(EnrichedProduct):
    proximity_score: float = 0.0
    freshness_score: float = 0.0
    combined_score: float = 0.0
    rank: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["proximity_score"] = self.proximity_score
        out["freshness_score"] = self.freshness_score
        out["combined_score"] = self.combined_score
        if self.rank is not None:
            out["rank"] = self.rank
        return out


@dataclass(frozen=True)
class SearchWeights:
    proximity_weight: float = 0.4
    freshness_weight: float = 0.6


@dataclass(frozen=True)
class SearchConfig:
    max_radius_km: float = 10.0
    weights: SearchWeights = field(default_factory=SearchWeights)
    min_freshness_score: float = 0.0
    mode: str = "ranking"  # ranking | filter
    sort_by: str = "score"  # price | distance | freshness | score | expiration
    sort_order: str = "desc"  # asc | desc
    weight_preset: Optional[str] = None
    exclude_expired: bool = False
    limit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_radius_km": self.max_radius_km,
            "weights": {
                "proximity_weight": self.weights.proximity_weight,
                "freshness_weight": self.weights.freshness_weight,
            },
            "min_freshness_score": self.min_freshness_score,
            "mode": self.mode,
            "sort_by": self.sort_by,
            "sort_order": self.sort_order,
            "weight_preset": self.weight_preset,
            "exclude_expired": self.exclude_expired,
            "limit": self.limit,
        }


@dataclass
class SearchStats:
    input_count: int = 0
    enriched_count: int = 0
    filtered_count: int = 0
    output_count: int = 0
    filter_breakdown: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_count": self.input_count,
            "enriched_count": self.enriched_count,
            "filtered_count": self.filtered_count,
            "output_count": self.output_count,
            "filter_breakdown": dict(self.filter_breakdown),
        }


@dataclass
class SearchResult:
    products: List[EnrichedProduct]
    execution_time_ms: float
    stats: SearchStats
    resolved_config: SearchConfig

    def to_dict(self) -> Dict[str, Any]:
        return {
            "products": [p.to_dict() for p in self.products],
            "metadata": {
                "execution_time_ms": self.execution_time_ms,
                "stats": self.stats.to_dict(),
                "resolved_config": self.resolved_config.to_dict(),
            },
        }


@dataclass
class GeocodeResult:
    lat: float
    lng: float
    display_name: Optional[str] = None
    address_details: Dict[str, Any] = field(default_factory=dict)
    cached: bool = False
