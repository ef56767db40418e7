"""Search pipeline: validate, enrich, filter, then rank or sort."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence

from loguru import logger

from models import (
    BuyerContext,
    Coordinate,
    EnrichedProduct,
    ProductRecord,
    SearchResult,
    SearchStats,
    StorageCondition,
)
from services.enrichment import enrich_products
from services.filtering import FilterCriteria, apply_filters
from services.ranking import rank_products, score_product
from services.search_config import resolve_config
from services.sorting import sort_products
from utils import is_number


class InputError(ValueError):
    pass


def _coordinate_from(raw: Mapping[str, Any]) -> Coordinate:
    nested = raw.get("location")
    source = nested if isinstance(nested, Mapping) else raw
    lat = source.get("latitude", source.get("lat"))
    lng = source.get("longitude", source.get("lng"))
    if not is_number(lat) or not is_number(lng):
        raise InputError("buyer must have numeric latitude and longitude")
    return Coordinate(lat=float(lat), lng=float(lng))


def build_buyer(buyer: Any) -> BuyerContext:
    """Normalize a buyer mapping (or pass a BuyerContext through).

    Raises:
        InputError: when coordinates are missing, non-numeric or out of range.
    """
    if isinstance(buyer, BuyerContext):
        context = buyer
    elif isinstance(buyer, Mapping):
        capability_raw = buyer.get("storage_capability", buyer.get("storage_condition"))
        capability = StorageCondition.parse(capability_raw)
        if capability_raw is not None and capability is None:
            logger.warning("unknown buyer storage capability {!r}; storage check disabled", capability_raw)
        context = BuyerContext(location=_coordinate_from(buyer), storage_capability=capability)
    else:
        raise InputError("buyer must have numeric latitude and longitude")

    if not context.location.is_valid():
        raise InputError(
            f"buyer coordinates out of range: lat={context.location.lat} lng={context.location.lng}"
        )
    return context


def build_products(products: Any) -> List[ProductRecord]:
    if not isinstance(products, (list, tuple)):
        raise InputError("products must be a list of product records")
    records: list[ProductRecord] = []
    for idx, item in enumerate(products):
        if isinstance(item, ProductRecord):
            records.append(item)
        elif isinstance(item, Mapping):
            try:
                records.append(ProductRecord.from_dict(dict(item)))
            except (TypeError, ValueError) as exc:
                raise InputError(f"products[{idx}] is malformed: {exc}") from exc
        else:
            raise InputError(f"products[{idx}] must be a mapping or ProductRecord")
    return records


def search(
    buyer: Any,
    products: Sequence[Any],
    config: Any = None,
    *,
    now: Optional[datetime] = None,
) -> SearchResult:
    """Run the search pipeline for one buyer.

    ``config`` goes through the lenient resolver, so missing or bad fields
    fall back to defaults instead of failing. ``now`` pins the reference time
    used for freshness.

    Raises:
        InputError: for a malformed buyer or a non-sequence ``products``,
            before any work is done.
    """
    started = time.perf_counter()

    context = build_buyer(buyer)
    records = build_products(products)
    cfg = resolve_config(config)

    stats = SearchStats(input_count=len(records))

    enriched = enrich_products(records, context.location, now=now)
    stats.enriched_count = len(enriched)

    criteria = FilterCriteria(
        max_radius_km=cfg.max_radius_km,
        min_freshness_score=cfg.min_freshness_score,
        exclude_expired=cfg.exclude_expired,
        storage_capability=context.storage_capability,
    )
    filtered = apply_filters(enriched, criteria)
    stats.filtered_count = len(filtered.products)
    stats.filter_breakdown = dict(filtered.breakdown)

    ordered: List[EnrichedProduct]
    if cfg.mode == "ranking":
        ordered = list(rank_products(filtered.products, cfg.weights, max_radius_km=cfg.max_radius_km))
    elif cfg.sort_by == "score":
        # filter mode has no ranks, but sorting by score still needs the composite
        scored = [score_product(p, cfg.weights, cfg.max_radius_km) for p in filtered.products]
        ordered = sort_products(scored, "score", cfg.sort_order)
    else:
        ordered = sort_products(filtered.products, cfg.sort_by, cfg.sort_order)

    if cfg.limit is not None:
        ordered = ordered[: cfg.limit]
    stats.output_count = len(ordered)

    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 3)
    logger.debug(
        "search mode={} input={} filtered={} output={} took={}ms",
        cfg.mode,
        stats.input_count,
        stats.filtered_count,
        stats.output_count,
        elapsed_ms,
    )
    return SearchResult(products=ordered, execution_time_ms=elapsed_ms, stats=stats, resolved_config=cfg)


def quick_search(buyer: Any, products: Sequence[Any], max_radius_km: float = 5, **kwargs: Any) -> List[EnrichedProduct]:
    """Top 10 by the balanced preset."""
    result = search(
        buyer,
        products,
        {"max_radius_km": max_radius_km, "weight_preset": "balanced", "mode": "ranking", "limit": 10},
        **kwargs,
    )
    return result.products


def search_by_price(buyer: Any, products: Sequence[Any], max_radius_km: float = 10, **kwargs: Any) -> List[EnrichedProduct]:
    result = search(
        buyer,
        products,
        {"max_radius_km": max_radius_km, "mode": "filter", "sort_by": "price", "sort_order": "asc"},
        **kwargs,
    )
    return result.products


def search_by_distance(buyer: Any, products: Sequence[Any], max_radius_km: float = 15, **kwargs: Any) -> List[EnrichedProduct]:
    result = search(
        buyer,
        products,
        {"max_radius_km": max_radius_km, "mode": "filter", "sort_by": "distance", "sort_order": "asc"},
        **kwargs,
    )
    return result.products


def search_by_freshness(
    buyer: Any,
    products: Sequence[Any],
    max_radius_km: float = 10,
    min_freshness: float = 50,
    **kwargs: Any,
) -> List[EnrichedProduct]:
    result = search(
        buyer,
        products,
        {
            "max_radius_km": max_radius_km,
            "min_freshness_score": min_freshness,
            "mode": "filter",
            "sort_by": "freshness",
            "sort_order": "desc",
        },
        **kwargs,
    )
    return result.products
