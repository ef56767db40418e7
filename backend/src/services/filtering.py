from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from loguru import logger

from models import EnrichedProduct, StorageCondition


FILTER_RULES = ("expired", "radius", "freshness", "storage")


@dataclass(frozen=True)
class FilterCriteria:
    max_radius_km: Optional[float] = None
    min_freshness_score: float = 0.0
    exclude_expired: bool = False
    storage_capability: Optional[StorageCondition] = None


@dataclass
class FilterResult:
    products: List[EnrichedProduct]
    breakdown: Dict[str, int] = field(default_factory=lambda: {rule: 0 for rule in FILTER_RULES})

    @property
    def removed(self) -> int:
        return sum(self.breakdown.values())


def is_storage_compatible(product_condition: Optional[str], capability: Optional[StorageCondition]) -> bool:
    """True when a buyer with ``capability`` can keep a product stored as ``product_condition``.

    Capabilities are cumulative: a freezer owner can also keep refrigerated
    and pantry goods. Missing or unrecognized values never fail the check.
    """
    if capability is None:
        return True
    condition = StorageCondition.parse(product_condition)
    if condition is None:
        return True
    return condition.tier <= capability.tier


def _rejection(product: EnrichedProduct, criteria: FilterCriteria) -> Optional[str]:
    if criteria.exclude_expired and product.is_expired is True:
        return "expired"
    if (
        criteria.max_radius_km is not None
        and product.distance_km is not None
        and product.distance_km > criteria.max_radius_km
    ):
        return "radius"
    if product.freshness_percent is not None and product.freshness_percent < criteria.min_freshness_score:
        return "freshness"
    if not is_storage_compatible(product.product.storage_condition, criteria.storage_capability):
        return "storage"
    return None


def apply_filters(products: Iterable[EnrichedProduct], criteria: FilterCriteria) -> FilterResult:
    """Drop products that violate the buyer's constraints.

    Rules run in the order of ``FILTER_RULES``; each dropped product is
    counted once, under the first rule it failed.
    """
    result = FilterResult(products=[])
    for product in products:
        reason = _rejection(product, criteria)
        if reason is None:
            result.products.append(product)
        else:
            result.breakdown[reason] += 1

    logger.debug("filter kept={} breakdown={}", len(result.products), result.breakdown)
    return result
