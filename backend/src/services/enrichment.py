from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from loguru import logger

from models import Coordinate, EnrichedProduct, ProductRecord
from services.freshness import ShelfLifeError, evaluate_freshness
from utils import distance_km


def enrich_product(
    product: ProductRecord,
    buyer_location: Coordinate,
    *,
    now: Optional[datetime] = None,
) -> EnrichedProduct:
    enriched = EnrichedProduct(product=product)

    if product.location is not None:
        enriched.distance_km = round(distance_km(buyer_location, product.location), 3)

    if (
        product.total_shelf_life_days is not None
        and product.days_already_used is not None
        and product.listed_at is not None
    ):
        try:
            metrics = evaluate_freshness(
                product.total_shelf_life_days,
                product.days_already_used,
                product.listed_at,
                now=now,
            )
        except ShelfLifeError as exc:
            logger.warning("skipping freshness for product {}: {}", product.id, exc)
        else:
            enriched.remaining_shelf_life_days = metrics.remaining_shelf_life_days
            enriched.freshness_percent = metrics.freshness_percent
            enriched.expiration_date = metrics.expiration_date
            enriched.is_expired = metrics.is_expired

    return enriched


def enrich_products(
    products: Iterable[ProductRecord],
    buyer_location: Coordinate,
    *,
    now: Optional[datetime] = None,
) -> List[EnrichedProduct]:
    """Attach distance and freshness to every candidate.

    Never drops a record; fields that cannot be computed stay None.
    """
    enriched = [enrich_product(p, buyer_location, now=now) for p in products]
    with_distance = sum(1 for e in enriched if e.distance_km is not None)
    with_freshness = sum(1 for e in enriched if e.freshness_percent is not None)
    logger.debug(
        "enriched {} products (distance={} freshness={})",
        len(enriched),
        with_distance,
        with_freshness,
    )
    return enriched
