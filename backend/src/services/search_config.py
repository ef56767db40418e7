"""Search configuration: lenient default merging and strict validation.

Two separate entry points with different failure behaviour:

- ``resolve_config`` is what the search pipeline calls. It never raises;
  missing or out-of-domain values fall back to their defaults and a warning
  is logged.
- ``create_config`` is an opt-in strict constructor for callers that want to
  reject bad input. It raises ``ConfigValidationError`` naming the field.

Weights are relative weights on the 0..1 scale. They are not forced to sum to
1; the ranker applies them as given.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional

from loguru import logger

from models import SearchConfig, SearchWeights
from services.ranking import WEIGHT_PRESETS, WeightPreset
from services.sorting import SORT_KEYS, SORT_ORDERS
from utils import is_number


DEFAULT_CONFIG = SearchConfig()

VALID_MODES = ("ranking", "filter")
VALID_SORT_BY = tuple(SORT_KEYS)
VALID_SORT_ORDERS = SORT_ORDERS
WEIGHT_KEYS = ("proximity_weight", "freshness_weight")

_ALIASES = {"max_radius": "max_radius_km", "min_freshness": "min_freshness_score"}
KNOWN_KEYS = set(DEFAULT_CONFIG.to_dict()) | set(_ALIASES)


class ConfigValidationError(ValueError):
    def __init__(self, field: str, constraint: str) -> None:
        super().__init__(f"{field}: {constraint}")
        self.field = field
        self.constraint = constraint


def _as_mapping(config: Any) -> Dict[str, Any]:
    if config is None:
        return {}
    if isinstance(config, SearchConfig):
        return config.to_dict()
    if isinstance(config, Mapping):
        raw = dict(config)
        for alias, canonical in _ALIASES.items():
            if alias in raw and canonical not in raw:
                raw[canonical] = raw[alias]
            raw.pop(alias, None)
        return raw
    logger.warning("ignoring search config of type {}", type(config).__name__)
    return {}


def _number_or_default(raw: Dict[str, Any], key: str, default: float, low: float, high: float = math.inf) -> float:
    value = raw.get(key)
    if value is None:
        return default
    if is_number(value) and low <= value <= high:
        return float(value)
    logger.warning("invalid {}={!r}; using default {}", key, value, default)
    return default


def _choice_or_default(raw: Dict[str, Any], key: str, choices: tuple, default: str) -> str:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, str) and value.lower() in choices:
        return value.lower()
    logger.warning("invalid {}={!r}; using default {}", key, value, default)
    return default


def _resolve_weights(raw: Dict[str, Any]) -> SearchWeights:
    defaults = DEFAULT_CONFIG.weights
    weights = raw.get("weights")
    if weights is None:
        return defaults
    if not isinstance(weights, Mapping):
        logger.warning("invalid weights={!r}; using defaults", weights)
        return defaults
    unknown = [k for k in weights if k not in WEIGHT_KEYS]
    if unknown:
        logger.warning("ignoring unknown weight keys {}", unknown)
    merged = {
        key: _number_or_default(dict(weights), key, getattr(defaults, key), 0.0, 1.0)
        for key in WEIGHT_KEYS
    }
    return SearchWeights(**merged)


def resolve_config(
    config: Any = None,
    *,
    presets: Mapping[WeightPreset, SearchWeights] = WEIGHT_PRESETS,
) -> SearchConfig:
    """Merge caller config over the defaults. Never raises.

    A known ``weight_preset`` overrides explicit weights. An unknown preset is
    dropped and the explicit (or default) weights stay in force.
    """
    raw = _as_mapping(config)

    weights = _resolve_weights(raw)
    preset_name: Optional[str] = None
    if raw.get("weight_preset") is not None:
        preset = WeightPreset.parse(raw["weight_preset"])
        if preset is not None and preset in presets:
            weights = presets[preset]
            preset_name = preset.value
        else:
            logger.warning("unknown weight_preset={!r}; keeping weights {}", raw["weight_preset"], weights)

    exclude_expired = raw.get("exclude_expired", DEFAULT_CONFIG.exclude_expired)
    if not isinstance(exclude_expired, bool):
        logger.warning("invalid exclude_expired={!r}; using default", exclude_expired)
        exclude_expired = DEFAULT_CONFIG.exclude_expired

    limit = raw.get("limit")
    if limit is not None and not (isinstance(limit, int) and not isinstance(limit, bool) and limit > 0):
        logger.warning("invalid limit={!r}; returning all results", limit)
        limit = None

    return SearchConfig(
        max_radius_km=_number_or_default(raw, "max_radius_km", DEFAULT_CONFIG.max_radius_km, 0.0),
        weights=weights,
        min_freshness_score=_number_or_default(raw, "min_freshness_score", DEFAULT_CONFIG.min_freshness_score, 0.0, 100.0),
        mode=_choice_or_default(raw, "mode", VALID_MODES, DEFAULT_CONFIG.mode),
        sort_by=_choice_or_default(raw, "sort_by", VALID_SORT_BY, DEFAULT_CONFIG.sort_by),
        sort_order=_choice_or_default(raw, "sort_order", VALID_SORT_ORDERS, DEFAULT_CONFIG.sort_order),
        weight_preset=preset_name,
        exclude_expired=exclude_expired,
        limit=limit,
    )


def _require_choice(raw: Dict[str, Any], key: str, choices: tuple) -> None:
    value = raw.get(key)
    if value is None:
        return
    if not isinstance(value, str) or value.lower() not in choices:
        raise ConfigValidationError(key, f"must be one of: {', '.join(choices)} (got {value!r})")


def create_config(
    options: Optional[Mapping[str, Any]] = None,
    *,
    presets: Mapping[WeightPreset, SearchWeights] = WEIGHT_PRESETS,
) -> SearchConfig:
    """Validate ``options`` strictly and return the resolved config.

    Raises:
        ConfigValidationError: on the first out-of-domain value, naming it.
    """
    if options is None:
        return resolve_config(None, presets=presets)
    if not isinstance(options, Mapping):
        raise ConfigValidationError("config", "must be a mapping")

    for key in options:
        if key not in KNOWN_KEYS:
            raise ConfigValidationError(key, "unknown config field")
    raw = _as_mapping(options)

    radius = raw.get("max_radius_km")
    if radius is not None and (not is_number(radius) or radius < 0):
        raise ConfigValidationError("max_radius_km", f"must be a non-negative number (got {radius!r})")

    weights = raw.get("weights")
    if weights is not None:
        if not isinstance(weights, Mapping):
            raise ConfigValidationError("weights", "must be a mapping")
        for key, value in weights.items():
            if key not in WEIGHT_KEYS:
                raise ConfigValidationError(f"weights.{key}", "unknown weight key")
            if not is_number(value) or not 0 <= value <= 1:
                raise ConfigValidationError(f"weights.{key}", f"must be a number between 0 and 1 (got {value!r})")

    min_fresh = raw.get("min_freshness_score")
    if min_fresh is not None and (not is_number(min_fresh) or not 0 <= min_fresh <= 100):
        raise ConfigValidationError("min_freshness_score", f"must be a number between 0 and 100 (got {min_fresh!r})")

    _require_choice(raw, "mode", VALID_MODES)
    _require_choice(raw, "sort_by", VALID_SORT_BY)
    _require_choice(raw, "sort_order", VALID_SORT_ORDERS)

    preset = raw.get("weight_preset")
    if preset is not None:
        parsed = WeightPreset.parse(preset)
        if parsed is None or parsed not in presets:
            names = ", ".join(p.value for p in presets)
            raise ConfigValidationError("weight_preset", f"unknown preset {preset!r}; expected one of: {names}")

    if "exclude_expired" in raw and not isinstance(raw["exclude_expired"], bool):
        raise ConfigValidationError("exclude_expired", "must be a boolean")

    limit = raw.get("limit")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
        raise ConfigValidationError("limit", f"must be a positive integer (got {limit!r})")

    return resolve_config(raw, presets=presets)
