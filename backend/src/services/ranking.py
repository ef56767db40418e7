from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from models import EnrichedProduct, ScoredProduct, SearchWeights


NEUTRAL_SCORE = 50.0
MAX_SCORE = 100.0


class WeightPreset(str, Enum):
    BALANCED = "balanced"
    PROXIMITY_FOCUSED = "proximity-focused"
    FRESHNESS_FOCUSED = "freshness-focused"
    EXTREME_PROXIMITY = "extreme-proximity"
    EXTREME_FRESHNESS = "extreme-freshness"

    @classmethod
    def parse(cls, value: object) -> Optional["WeightPreset"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower().replace("_", "-"))
        except ValueError:
            return None


# Weights are relative, on the 0..1 scale used from config through ranking.
WEIGHT_PRESETS: Mapping[WeightPreset, SearchWeights] = MappingProxyType(
    {
        WeightPreset.BALANCED: SearchWeights(proximity_weight=0.5, freshness_weight=0.5),
        WeightPreset.PROXIMITY_FOCUSED: SearchWeights(proximity_weight=0.7, freshness_weight=0.3),
        WeightPreset.FRESHNESS_FOCUSED: SearchWeights(proximity_weight=0.3, freshness_weight=0.7),
        WeightPreset.EXTREME_PROXIMITY: SearchWeights(proximity_weight=0.9, freshness_weight=0.1),
        WeightPreset.EXTREME_FRESHNESS: SearchWeights(proximity_weight=0.1, freshness_weight=0.9),
    }
)


def proximity_score(distance_km: Optional[float], max_radius_km: float) -> float:
    """Invert distance into a 0-100 score; at or beyond the radius scores 0."""
    if distance_km is None:
        return NEUTRAL_SCORE
    if max_radius_km <= 0:
        return MAX_SCORE if distance_km <= 0 else 0.0
    return max(0.0, MAX_SCORE * (1.0 - distance_km / max_radius_km))


def freshness_score(freshness_percent: Optional[float]) -> float:
    if freshness_percent is None:
        return NEUTRAL_SCORE
    return freshness_percent


def score_product(product: EnrichedProduct, weights: SearchWeights, max_radius_km: float) -> ScoredProduct:
    prox = proximity_score(product.distance_km, max_radius_km)
    fresh = freshness_score(product.freshness_percent)
    # no renormalization: weights that do not sum to 1 skew the composite
    combined = prox * weights.proximity_weight + fresh * weights.freshness_weight
    return ScoredProduct(
        product=product.product,
        distance_km=product.distance_km,
        remaining_shelf_life_days=product.remaining_shelf_life_days,
        freshness_percent=product.freshness_percent,
        expiration_date=product.expiration_date,
        is_expired=product.is_expired,
        proximity_score=round(prox, 4),
        freshness_score=round(fresh, 4),
        combined_score=float(round(combined, 4)),
    )


def rank_products(
    products: Iterable[EnrichedProduct],
    weights: SearchWeights,
    *,
    max_radius_km: float,
) -> List[ScoredProduct]:
    """Score every product and order by combined score, best first.

    The sort is stable, so equal scores keep their input order. Ranks are
    assigned 1..N after sorting.
    """
    scored = [score_product(p, weights, max_radius_km) for p in products]
    scored.sort(key=lambda s: -s.combined_score)
    for idx, item in enumerate(scored, start=1):
        item.rank = idx
    return scored
