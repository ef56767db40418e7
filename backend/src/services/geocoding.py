from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests

from config import Configuration
from models import GeocodeResult


class GeocodingError(RuntimeError):
    def __init__(self, message: str, *, not_found: bool = False) -> None:
        super().__init__(message)
        self.not_found = not_found


@dataclass
class _RetryPolicy:
    retries: int = 3
    base_delay: float = 0.5


class RateGate:
    """Serializes callers so consecutive calls are at least ``min_interval`` apart."""

    def __init__(self, min_interval: float, *, clock=time.monotonic, sleep=time.sleep) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last: Optional[float] = None

    def __enter__(self) -> "RateGate":
        self._lock.acquire()
        if self._last is not None:
            wait = self.min_interval - (self._clock() - self._last)
            if wait > 0:
                self._sleep(wait)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._last = self._clock()
        self._lock.release()


class NominatimClient:
    """Address <-> coordinate lookups against Nominatim.

    Nominatim's usage policy allows one request per second, so every outbound
    call goes through a single ``RateGate``. Successful lookups are cached for
    ``geocode_cache_ttl_sec``.
    """

    def __init__(self, cfg: Configuration, *, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.nominatim_base_url.rstrip("/")
        self.session = session or requests.Session()
        self.gate = RateGate(cfg.geocode_min_interval_sec)
        self._cache_ttl = cfg.geocode_cache_ttl_sec
        self._cache_max = cfg.geocode_cache_max
        self._cache: OrderedDict[str, Tuple[float, GeocodeResult]] = OrderedDict()
        self._cache_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _cache_get(self, key: str) -> Optional[GeocodeResult]:
        with self._cache_lock:
            entry = self._cache.get(key)
            if not entry:
                self._misses += 1
                return None
            ts, value = entry
            if time.time() - ts > self._cache_ttl:
                self._cache.pop(key, None)
                self._misses += 1
                return None
            self._cache.move_to_end(key)
            self._hits += 1
            return value

    def _cache_set(self, key: str, value: GeocodeResult) -> None:
        with self._cache_lock:
            if len(self._cache) >= self._cache_max:
                self._cache.popitem(last=False)
            self._cache[key] = (time.time(), value)

    def _get(self, path: str, params: dict) -> Any:
        url = f"{self.base}{path}"
        headers = {"Accept": "application/json", "User-Agent": self.cfg.nominatim_user_agent}
        params = {**params, "format": "json", "addressdetails": 1}
        policy = _RetryPolicy()
        attempt = 0
        while True:
            attempt += 1
            try:
                with self.gate:
                    resp = self.session.get(url, headers=headers, params=params, timeout=self.cfg.geocode_timeout)
            except requests.RequestException as exc:  # network error
                if attempt <= policy.retries:
                    time.sleep(policy.base_delay * attempt)
                    continue
                raise GeocodingError(f"unable to reach geocoding service: {exc}")

            if resp.status_code in (429, 500, 502, 503, 504):
                if attempt <= policy.retries:
                    time.sleep(policy.base_delay * attempt)
                    continue
                raise GeocodingError(f"upstream {resp.status_code}: {resp.text[:300]}")

            if not resp.ok:
                raise GeocodingError(f"upstream {resp.status_code}: {resp.text[:300]}")

            try:
                return resp.json()
            except ValueError:
                raise GeocodingError("invalid json response")

    def geocode(self, address: str) -> GeocodeResult:
        if not isinstance(address, str) or not address.strip():
            raise GeocodingError("address is required and must be a non-empty string")
        text = address.strip()
        key = f"geocode:{text.lower()}"
        cached = self._cache_get(key)
        if cached is not None:
            return GeocodeResult(**{**cached.__dict__, "cached": True})

        payload = self._get("/search", {"q": text, "limit": 1})
        if not isinstance(payload, list) or not payload:
            raise GeocodingError("address not found; try a more specific address", not_found=True)
        first = payload[0]
        result = GeocodeResult(
            lat=float(first["lat"]),
            lng=float(first["lon"]),
            display_name=first.get("display_name"),
            address_details=first.get("address") or {},
        )
        self._cache_set(key, result)
        return result

    def reverse(self, lat: float, lng: float) -> GeocodeResult:
        if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
            raise GeocodingError("latitude and longitude must be numbers")
        if not -90 <= lat <= 90:
            raise GeocodingError("latitude must be between -90 and 90")
        if not -180 <= lng <= 180:
            raise GeocodingError("longitude must be between -180 and 180")

        key = f"reverse:{lat:.6f},{lng:.6f}"
        cached = self._cache_get(key)
        if cached is not None:
            return GeocodeResult(**{**cached.__dict__, "cached": True})

        payload = self._get("/reverse", {"lat": lat, "lon": lng})
        if not isinstance(payload, dict) or payload.get("error"):
            raise GeocodingError("location not found", not_found=True)
        result = GeocodeResult(
            lat=float(lat),
            lng=float(lng),
            display_name=payload.get("display_name"),
            address_details=payload.get("address") or {},
        )
        self._cache_set(key, result)
        return result

    def cache_stats(self) -> Dict[str, int]:
        with self._cache_lock:
            return {"keys": len(self._cache), "hits": self._hits, "misses": self._misses}

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
