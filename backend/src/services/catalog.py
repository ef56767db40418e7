from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from loguru import logger

from models import Coordinate, ProductRecord
from utils import distance_km


class ProductCatalog(Protocol):
    def query(
        self,
        location: Coordinate,
        *,
        max_radius_km: Optional[float] = None,
        seller_id: Any = None,
        product_type_id: Any = None,
        available_only: bool = True,
    ) -> List[ProductRecord]:
        ...


class InMemoryCatalog:
    """Candidate source backed by already-joined product rows."""

    def __init__(self, records: Iterable[ProductRecord] = ()) -> None:
        self._records: List[ProductRecord] = list(records)

    @classmethod
    def from_rows(cls, rows: Iterable[Dict[str, Any]]) -> "InMemoryCatalog":
        return cls(ProductRecord.from_dict(row) for row in rows)

    @classmethod
    def from_json(cls, path: str | Path) -> "InMemoryCatalog":
        with open(path, encoding="utf-8") as f:
            rows = json.load(f)
        if isinstance(rows, dict):
            rows = rows.get("products") or []
        catalog = cls.from_rows(rows)
        logger.info("loaded {} catalog rows from {}", len(catalog), path)
        return catalog

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: ProductRecord) -> None:
        self._records.append(record)

    def query(
        self,
        location: Coordinate,
        *,
        max_radius_km: Optional[float] = None,
        seller_id: Any = None,
        product_type_id: Any = None,
        available_only: bool = True,
    ) -> List[ProductRecord]:
        """Return candidate rows near ``location``.

        Rows without a location are kept; the pipeline decides what to do
        with them.
        """
        results: list[ProductRecord] = []
        for record in self._records:
            if seller_id is not None and record.seller_id != seller_id:
                continue
            if product_type_id is not None and record.product_type_id != product_type_id:
                continue
            if available_only and record.quantity is not None and record.quantity <= 0:
                continue
            if (
                max_radius_km is not None
                and record.location is not None
                and distance_km(location, record.location) > max_radius_km
            ):
                continue
            results.append(record)
        return results
