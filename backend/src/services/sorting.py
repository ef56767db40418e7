from __future__ import annotations

import math
from typing import Any, Callable, Dict, Iterable, List, Optional

from models import EnrichedProduct


def _combined_score(p: EnrichedProduct) -> Optional[float]:
    return getattr(p, "combined_score", None)


SORT_KEYS: Dict[str, Callable[[EnrichedProduct], Any]] = {
    "price": lambda p: p.product.price,
    "distance": lambda p: p.distance_km,
    "freshness": lambda p: p.freshness_percent,
    "score": _combined_score,
    "expiration": lambda p: p.expiration_date,
}

SORT_ORDERS = ("asc", "desc")


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def sort_products(products: Iterable[EnrichedProduct], sort_by: str, sort_order: str = "asc") -> List[EnrichedProduct]:
    """Order products by a single criterion.

    Stable in both directions. Products missing the key (None or NaN) rank
    as the lowest value: first when ascending, last when descending.
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"unknown sort criterion: {sort_by}")
    if sort_order not in SORT_ORDERS:
        raise ValueError(f"unknown sort order: {sort_order}")

    get = SORT_KEYS[sort_by]
    items = list(products)
    present = [p for p in items if not _missing(get(p))]
    missing = [p for p in items if _missing(get(p))]

    # reverse=True still keeps equal keys in input order
    present.sort(key=get, reverse=(sort_order == "desc"))
    if sort_order == "desc":
        return present + missing
    return missing + present
