from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field


class Configuration(BaseModel):
    # Nominatim geocoding
    nominatim_base_url: str = Field(default="https://nominatim.openstreetmap.org")
    nominatim_user_agent: str = Field(default="fresh-market-search/0.1 (perishable-goods-platform)")
    geocode_timeout: int = Field(default=10)
    geocode_min_interval_sec: float = Field(default=1.0)
    geocode_cache_ttl_sec: int = Field(default=7 * 24 * 3600)
    geocode_cache_max: int = Field(default=1024)

    # Catalog / search
    catalog_path: Optional[str] = Field(default=None)
    default_search_radius_km: float = Field(default=50.0)

    # Analytics
    analytics_enabled: bool = Field(default=True)
    analytics_max_events: int = Field(default=1000)

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "nominatim_base_url": os.getenv("NOMINATIM_BASE_URL"),
            "nominatim_user_agent": os.getenv("NOMINATIM_USER_AGENT"),
            "geocode_timeout": os.getenv("GEOCODE_TIMEOUT"),
            "geocode_min_interval_sec": os.getenv("GEOCODE_MIN_INTERVAL_SEC"),
            "geocode_cache_ttl_sec": os.getenv("GEOCODE_CACHE_TTL_SEC"),
            "geocode_cache_max": os.getenv("GEOCODE_CACHE_MAX"),
            "catalog_path": os.getenv("CATALOG_PATH"),
            "default_search_radius_km": os.getenv("DEFAULT_SEARCH_RADIUS_KM"),
            "analytics_enabled": os.getenv("ANALYTICS_ENABLED"),
            "analytics_max_events": os.getenv("ANALYTICS_MAX_EVENTS"),
        }

        bool_fields = {"analytics_enabled"}

        for k, v in env_map.items():
            if v is None:
                continue
            if k in bool_fields:
                raw[k] = str(v).lower() in {"1", "true", "yes", "on"}
            else:
                raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def log_summary(self) -> str:
        return (
            "nominatim=%s timeout=%s min_interval=%.1fs cache_ttl=%ss catalog=%s default_radius_km=%.1f analytics=%s"
            % (
                self.nominatim_base_url,
                self.geocode_timeout,
                self.geocode_min_interval_sec,
                self.geocode_cache_ttl_sec,
                self.catalog_path or "unset",
                self.default_search_radius_km,
                self.analytics_enabled,
            )
        )
