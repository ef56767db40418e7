from __future__ import annotations

import time
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from config import Configuration
from models import SearchConfig
from services.analytics import AnalyticsRecorder
from services.catalog import InMemoryCatalog, ProductCatalog
from services.geocoding import GeocodingError, NominatimClient
from services.search import InputError, build_buyer, search
from services.search_config import ConfigValidationError, create_config, resolve_config


app = FastAPI(title="Fresh Market Search")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_settings() -> Configuration:
    return Configuration.from_env()


@lru_cache(maxsize=1)
def get_catalog() -> ProductCatalog:
    cfg = get_settings()
    if not cfg.catalog_path:
        logger.warning("CATALOG_PATH is unset; serving an empty catalog")
        return InMemoryCatalog()
    return InMemoryCatalog.from_json(cfg.catalog_path)


@lru_cache(maxsize=1)
def get_geocoder() -> NominatimClient:
    return NominatimClient(get_settings())


@lru_cache(maxsize=1)
def get_analytics() -> AnalyticsRecorder:
    cfg = get_settings()
    return AnalyticsRecorder(max_events=cfg.analytics_max_events, enabled=cfg.analytics_enabled)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


class LocationPayload(BaseModel):
    lat: float
    lng: float


class SearchRequest(BaseModel):
    location: LocationPayload
    storage_capability: Optional[str] = Field(None, description="pantry | refrigerated | frozen")
    config: Dict[str, Any] = Field(default_factory=dict, description="Search config; bad fields fall back to defaults")
    seller_id: Optional[Any] = None
    product_type_id: Optional[Any] = None


class SearchResponse(BaseModel):
    count: int
    products: List[Dict[str, Any]]
    metadata: Dict[str, Any]


class GeocodePayload(BaseModel):
    lat: float
    lng: float
    display_name: Optional[str] = None
    address_details: Dict[str, Any] = {}
    cached: bool = False


def _run_search(
    buyer: Dict[str, Any],
    config: SearchConfig,
    *,
    catalog: ProductCatalog,
    analytics: AnalyticsRecorder,
    background: BackgroundTasks,
    endpoint: str,
    seller_id: Any = None,
    product_type_id: Any = None,
) -> SearchResponse:
    started = time.perf_counter()
    context = build_buyer(buyer)
    candidates = catalog.query(
        context.location,
        max_radius_km=config.max_radius_km,
        seller_id=seller_id,
        product_type_id=product_type_id,
    )
    result = search(context, candidates, config)
    response_ms = round((time.perf_counter() - started) * 1000.0, 3)
    background.add_task(
        analytics.track_search,
        context,
        result.resolved_config,
        result,
        response_time_ms=response_ms,
        endpoint=endpoint,
    )
    payload = result.to_dict()
    payload["metadata"]["buyer_location"] = {"lat": context.location.lat, "lng": context.location.lng}
    return SearchResponse(count=len(payload["products"]), products=payload["products"], metadata=payload["metadata"])


@app.get("/healthz")
def healthz() -> dict:
    cfg = get_settings()
    logger.info("cfg: {}", cfg.log_summary())
    return {"status": "ok"}


@app.post("/search", response_model=SearchResponse)
def search_products(
    req: SearchRequest,
    background: BackgroundTasks,
    catalog: ProductCatalog = Depends(get_catalog),
    analytics: AnalyticsRecorder = Depends(get_analytics),
) -> SearchResponse:
    raw_config = dict(req.config)
    if "max_radius_km" not in raw_config and "max_radius" not in raw_config:
        raw_config["max_radius_km"] = get_settings().default_search_radius_km
    buyer = {
        "latitude": req.location.lat,
        "longitude": req.location.lng,
        "storage_capability": req.storage_capability,
    }
    try:
        return _run_search(
            buyer,
            resolve_config(raw_config),
            catalog=catalog,
            analytics=analytics,
            background=background,
            endpoint="/search",
            seller_id=req.seller_id,
            product_type_id=req.product_type_id,
        )
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("search failed: {}", exc)
        raise HTTPException(status_code=500, detail="internal error")


def _as_fractions(proximity: float, freshness: float) -> Dict[str, float]:
    # one scale for the pair: percentages if either weight is above 1
    scale = 100.0 if proximity > 1 or freshness > 1 else 1.0
    return {"proximity_weight": proximity / scale, "freshness_weight": freshness / scale}


@app.get("/search/public", response_model=SearchResponse)
def public_search(
    background: BackgroundTasks,
    lat: float = Query(...),
    lng: float = Query(...),
    radius: float = Query(50.0, description="Search radius in km"),
    proximity_weight: float = Query(50.0, description="0..1 or 0..100"),
    freshness_weight: float = Query(50.0, description="0..1 or 0..100"),
    min_freshness: float = Query(0.0),
    mode: str = Query("ranking"),
    sort_by: str = Query("score"),
    sort_order: str = Query("desc"),
    weight_preset: Optional[str] = Query(None),
    storage_capability: Optional[str] = Query(None),
    exclude_expired: bool = Query(False),
    limit: Optional[int] = Query(None),
    catalog: ProductCatalog = Depends(get_catalog),
    analytics: AnalyticsRecorder = Depends(get_analytics),
) -> SearchResponse:
    """Query-string search. Unlike POST /search, bad config values are rejected."""
    try:
        weights = _as_fractions(proximity_weight, freshness_weight)
        if weight_preset is None and abs(sum(weights.values()) - 1.0) > 0.01:
            raise ConfigValidationError("weights", "proximity and freshness weights must sum to 100%")
        options: Dict[str, Any] = {
            "max_radius_km": radius,
            "weights": weights,
            "min_freshness_score": min_freshness,
            "mode": mode,
            "sort_by": sort_by,
            "sort_order": sort_order,
            "exclude_expired": exclude_expired,
        }
        if weight_preset is not None:
            options["weight_preset"] = weight_preset
        if limit is not None:
            options["limit"] = limit
        config = create_config(options)

        buyer = {"latitude": lat, "longitude": lng, "storage_capability": storage_capability}
        return _run_search(
            buyer,
            config,
            catalog=catalog,
            analytics=analytics,
            background=background,
            endpoint="/search/public",
        )
    except (InputError, ConfigValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("public search failed: {}", exc)
        raise HTTPException(status_code=500, detail="internal error")


def _geocode_error(exc: GeocodingError) -> HTTPException:
    if exc.not_found:
        return HTTPException(status_code=404, detail=str(exc))
    logger.warning("geocoding failed: {}", exc)
    return HTTPException(status_code=502, detail=str(exc))


@app.get("/geocode", response_model=GeocodePayload)
def geocode(address: str = Query(...), geocoder: NominatimClient = Depends(get_geocoder)) -> GeocodePayload:
    if not address.strip():
        raise HTTPException(status_code=400, detail="address is required")
    try:
        result = geocoder.geocode(address)
    except GeocodingError as exc:
        raise _geocode_error(exc)
    return GeocodePayload(**result.__dict__)


@app.get("/geocode/reverse", response_model=GeocodePayload)
def reverse_geocode(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    geocoder: NominatimClient = Depends(get_geocoder),
) -> GeocodePayload:
    try:
        result = geocoder.reverse(lat, lng)
    except GeocodingError as exc:
        raise _geocode_error(exc)
    return GeocodePayload(**result.__dict__)


@app.get("/analytics/summary")
def analytics_summary(analytics: AnalyticsRecorder = Depends(get_analytics)) -> dict:
    return analytics.summary()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8010, reload=True)
