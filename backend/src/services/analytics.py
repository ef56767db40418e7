from __future__ import annotations

import threading
import time
from collections import Counter, deque
from typing import Any, Deque, Dict, List, Optional, TypedDict

from loguru import logger

from models import BuyerContext, SearchConfig, SearchResult


class Event(TypedDict):
    name: str
    properties: Dict[str, Any]
    timestamp: float


class AnalyticsRecorder:
    """In-memory, fire-and-forget event sink.

    Recording never raises into the caller and never touches the search
    result. Only the newest ``max_events`` events are kept.
    """

    def __init__(self, max_events: int = 1000, enabled: bool = True) -> None:
        self.enabled = enabled
        self._events: Deque[Event] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def track_event(self, name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled:
            return
        try:
            event: Event = {"name": name, "properties": dict(properties or {}), "timestamp": time.time()}
            with self._lock:
                self._events.append(event)
            logger.debug("analytics event={} props={}", name, event["properties"])
        except Exception as exc:
            logger.warning("analytics tracking failed for {}: {}", name, exc)

    def track_search(
        self,
        buyer: BuyerContext,
        config: SearchConfig,
        result: Optional[SearchResult],
        *,
        response_time_ms: Optional[float] = None,
        endpoint: Optional[str] = None,
    ) -> None:
        if not self.enabled:
            return
        try:
            products = result.products if result is not None else []
            top = products[0] if products else None
            properties = {
                "buyer_lat": buyer.location.lat,
                "buyer_lng": buyer.location.lng,
                "storage_capability": buyer.storage_capability.value if buyer.storage_capability else None,
                "proximity_weight": config.weights.proximity_weight,
                "freshness_weight": config.weights.freshness_weight,
                "weight_preset": config.weight_preset,
                "max_radius_km": config.max_radius_km,
                "min_freshness_score": config.min_freshness_score,
                "mode": config.mode,
                "sort_by": config.sort_by,
                "sort_order": config.sort_order,
                "results_count": len(products),
                "top_product_id": top.product.id if top is not None else None,
                "top_product_score": getattr(top, "combined_score", None),
                "algorithm_time_ms": result.execution_time_ms if result is not None else None,
                "response_time_ms": response_time_ms,
                "endpoint": endpoint,
            }
        except Exception as exc:
            logger.warning("analytics could not summarize search: {}", exc)
            return
        self.track_event("search_request", properties)

    def recent_events(self, limit: int = 50) -> List[Event]:
        with self._lock:
            events = list(self._events)
        return events[-limit:] if limit > 0 else []

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            events = list(self._events)
        searches = [e["properties"] for e in events if e["name"] == "search_request"]
        times = [s["algorithm_time_ms"] for s in searches if isinstance(s.get("algorithm_time_ms"), (int, float))]
        return {
            "events": len(events),
            "by_name": dict(Counter(e["name"] for e in events)),
            "searches": len(searches),
            "zero_result_searches": sum(1 for s in searches if not s.get("results_count")),
            "avg_algorithm_time_ms": round(sum(times) / len(times), 3) if times else 0.0,
            "modes": dict(Counter(s.get("mode") for s in searches)),
        }

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
