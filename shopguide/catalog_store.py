"""Read-only catalog tables and the product hydration boundary.

The catalog is a single JSON document holding five tables:

    intents                 [{intent_id, name, description}]
    capability_dimensions   [{capability_key, label?}]
    products                [{id, title, variants:[{id, price}], images:[{src}], available?}]
    product_intent_scores   [{intent_id, product_id, fit_score, score_breakdown?}]
    product_capabilities    [{product_id, capability_key, value}]

Everything downstream receives typed rows (Intent, ProductScore, CapabilityScore)
and display-ready Product objects; raw dicts never leave this module.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import CatalogStoreError
from .utils import coerce_float

logger = logging.getLogger("shopguide.catalog")

ACCESSORY_INTENT = "accessory_only"


class ProductSource(str, Enum):
    INTENT = "intent"
    CAPABILITY = "capability"


@dataclass(frozen=True)
class Intent:
    """Catalog intent row."""
    intent_id: str
    name: str
    description: str = ""

    @property
    def label(self) -> str:
        return self.description or self.name


@dataclass(frozen=True)
class ProductScore:
    """Precomputed fit of one product for one intent."""
    product_id: str
    fit_score: float
    score_breakdown: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class CapabilityScore:
    """Measured value of one capability for one product."""
    product_id: str
    capability_key: str
    value: float


@dataclass(frozen=True)
class Product:
    """Display-ready product returned to callers and serialized to clients."""
    id: str
    variant_id: str
    title: str
    price: str
    image_url: str
    fit_score: float
    source: ProductSource
    score_breakdown: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "product_id": self.id,
            "variant_id": self.variant_id,
            "title": self.title,
            "price": self.price,
            "image_url": self.image_url,
            "fit_score": round(self.fit_score, 4),
            "source": self.source.value,
        }
        if self.score_breakdown:
            data["score_breakdown"] = self.score_breakdown
        return data


@dataclass(frozen=True)
class CatalogMeta:
    """Metadata about the loaded catalog file."""
    file_name: str
    updated_at: str
    sha256: str


@dataclass
class _Tables:
    intents: List[Intent] = field(default_factory=list)
    capability_keys: List[str] = field(default_factory=list)
    products: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    scores_by_intent: Dict[str, List[ProductScore]] = field(default_factory=dict)
    capabilities: List[CapabilityScore] = field(default_factory=list)


class CatalogStore:
    """Read-only access to the catalog score/capability tables."""

    def __init__(self, path: Optional[Path] = None, data: Optional[Dict[str, Any]] = None) -> None:
        """Purpose: Configure the store with a catalog file path or in-memory tables.
        Inputs/Outputs: Inputs are a Path to catalog.json or a pre-built dict; no return.
        Side Effects / State: Stores the source for lazy loading on first query.
        Dependencies: None at init; load() handles read/parse errors.
        Failure Modes: Raises ValueError when neither a path nor data is given.
        If Removed: Ranking, capability matching, and recovery have no data.
        Testing Notes: Tests build stores from dict tables (see tests/conftest.py).
        """
        # Keep the source; tables are parsed lazily and guarded by a lock.
        if path is None and data is None:
            raise ValueError("CatalogStore needs a path or data")
        self._path = path
        self._data = data
        self._lock = threading.Lock()
        self._tables: Optional[_Tables] = None
        self.meta: Optional[CatalogMeta] = None

    def load(self) -> CatalogMeta:
        """Purpose: Parse the catalog source into typed tables.
        Inputs/Outputs: No inputs; returns CatalogMeta describing the loaded source.
        Side Effects / State: Replaces the in-memory tables; computes sha256/mtime.
        Dependencies: Uses json, hashlib, and the _parse_* helpers.
        Failure Modes: Missing file or invalid JSON raises CatalogStoreError.
        If Removed: Every query fails; the store has nothing to serve.
        Testing Notes: Point at a temp file with broken JSON and expect CatalogStoreError.
        """
        # Read bytes for hashing and parse JSON into typed rows.
        if self._path is not None:
            try:
                raw_bytes = self._path.read_bytes()
                data = json.loads(raw_bytes.decode("utf-8-sig"))
            except (OSError, ValueError) as exc:
                raise CatalogStoreError(f"cannot read catalog {self._path}: {exc}") from exc
            meta = CatalogMeta(
                file_name=self._path.name,
                updated_at=datetime.fromtimestamp(self._path.stat().st_mtime).isoformat(),
                sha256=hashlib.sha256(raw_bytes).hexdigest(),
            )
        else:
            data = self._data
            meta = CatalogMeta(file_name="<memory>", updated_at="", sha256="")

        if not isinstance(data, dict):
            raise CatalogStoreError("catalog root must be a JSON object")
        tables = _Tables(
            intents=_parse_intents(data.get("intents")),
            capability_keys=_parse_capability_keys(data),
            products=_index_products(data.get("products")),
            scores_by_intent=_parse_scores(data.get("product_intent_scores")),
            capabilities=_parse_capabilities(data.get("product_capabilities")),
        )
        with self._lock:
            self._tables = tables
            self.meta = meta
        logger.info(
            "catalog_loaded file=%s intents=%s products=%s sha256=%s",
            meta.file_name,
            len(tables.intents),
            len(tables.products),
            meta.sha256[:12],
        )
        return meta

    def _get_tables(self) -> _Tables:
        tables = self._tables
        if tables is None:
            self.load()
            tables = self._tables
        if tables is None:
            raise CatalogStoreError(f"catalog tables unavailable: {self._path}")
        return tables

    def list_intents(self) -> List[Intent]:
        return list(self._get_tables().intents)

    def list_capability_keys(self) -> List[str]:
        return list(self._get_tables().capability_keys)

    def fit_scores(self, intent_id: str, offset: int = 0, limit: int = 3) -> List[ProductScore]:
        """Score rows for an intent ordered by fit_score desc, rows [offset, offset+limit-1]."""
        rows = self._get_tables().scores_by_intent.get(intent_id, [])
        start = max(0, offset)
        return rows[start : start + max(0, limit)]

    def count_fit_scores(self, intent_id: str) -> int:
        return len(self._get_tables().scores_by_intent.get(intent_id, []))

    def top_fit_scores(self, limit: int, exclude_intents: Iterable[str] = ()) -> List[ProductScore]:
        """Best score rows across all intents, one row per product."""
        excluded = set(exclude_intents)
        best: Dict[str, ProductScore] = {}
        for intent_id, rows in self._get_tables().scores_by_intent.items():
            if intent_id in excluded:
                continue
            for row in rows:
                held = best.get(row.product_id)
                if held is None or row.fit_score > held.fit_score:
                    best[row.product_id] = row
        ranked = sorted(best.values(), key=lambda row: (-row.fit_score, row.product_id))
        return ranked[: max(0, limit)]

    def capability_scores(self, capability_keys: Sequence[str]) -> List[CapabilityScore]:
        wanted = set(capability_keys)
        return [row for row in self._get_tables().capabilities if row.capability_key in wanted]

    def hydrate_products(
        self,
        scored: Sequence[Tuple[str, float, Optional[Dict[str, Any]]]],
        source: ProductSource,
    ) -> List[Product]:
        """Purpose: Turn (product_id, score, breakdown) triples into Product objects.
        Inputs/Outputs: Inputs are ordered score triples and a provenance tag; output
            preserves input order.
        Side Effects / State: None; logs a warning per dropped id.
        Dependencies: Reads the products table; uses _product_from_row for validation.
        Failure Modes: Ids missing from the catalog, rows without a title, and rows
            flagged unavailable are dropped rather than raised.
        If Removed: Ranked ids cannot be shown to the user.
        Testing Notes: Include an unknown id in the input and verify it is skipped.
        """
        # Look up each id and validate the row into a Product.
        products_by_id = self._get_tables().products
        hydrated: List[Product] = []
        for product_id, score, breakdown in scored:
            row = products_by_id.get(product_id)
            if row is None:
                logger.warning("hydrate_missing product_id=%s source=%s", product_id, source.value)
                continue
            if row.get("available") is False:
                logger.info("hydrate_unavailable product_id=%s", product_id)
                continue
            product = _product_from_row(row, score, breakdown, source)
            if product is None:
                logger.warning("hydrate_invalid product_id=%s", product_id)
                continue
            hydrated.append(product)
        return hydrated


def _product_from_row(
    row: Dict[str, Any],
    score: float,
    breakdown: Optional[Dict[str, Any]],
    source: ProductSource,
) -> Optional[Product]:
    # Accept Shopify-shaped rows (variants/images) or flat rows.
    product_id = str(row.get("id") or "").strip()
    title = str(row.get("title") or "").strip()
    if not product_id or not title:
        return None
    variants = row.get("variants") or []
    first_variant = variants[0] if variants and isinstance(variants[0], dict) else {}
    images = row.get("images") or []
    first_image = images[0] if images and isinstance(images[0], dict) else {}

    price = first_variant.get("price") or row.get("price") or "N/A"
    variant_id = first_variant.get("id") or first_variant.get("variant_id") or row.get("variant_id") or ""
    image_url = first_image.get("src") or row.get("image_url") or ""
    return Product(
        id=product_id,
        variant_id=str(variant_id),
        title=title,
        price=str(price),
        image_url=str(image_url),
        fit_score=score,
        source=source,
        score_breakdown=breakdown if isinstance(breakdown, dict) else None,
    )


def _parse_intents(raw: Any) -> List[Intent]:
    intents: List[Intent] = []
    for item in raw or []:
        if not isinstance(item, dict) or not item.get("intent_id"):
            continue
        intents.append(
            Intent(
                intent_id=str(item["intent_id"]).strip(),
                name=str(item.get("name") or item["intent_id"]).strip(),
                description=str(item.get("description") or "").strip(),
            )
        )
    return intents


def _parse_capability_keys(data: Dict[str, Any]) -> List[str]:
    # Prefer the dimensions table; otherwise derive keys from the capability rows.
    keys: List[str] = []
    for item in data.get("capability_dimensions") or []:
        key = item.get("capability_key") if isinstance(item, dict) else item
        if key and str(key) not in keys:
            keys.append(str(key))
    if keys:
        return keys
    for item in data.get("product_capabilities") or []:
        if isinstance(item, dict) and item.get("capability_key"):
            key = str(item["capability_key"])
            if key not in keys:
                keys.append(key)
    return keys


def _index_products(raw: Any) -> Dict[str, Dict[str, Any]]:
    products: Dict[str, Dict[str, Any]] = {}
    for item in raw or []:
        if isinstance(item, dict) and item.get("id") is not None:
            products[str(item["id"])] = item
    return products


def _parse_scores(raw: Any) -> Dict[str, List[ProductScore]]:
    by_intent: Dict[str, List[ProductScore]] = {}
    for item in raw or []:
        if not isinstance(item, dict) or not item.get("intent_id") or item.get("product_id") is None:
            continue
        breakdown = item.get("score_breakdown")
        by_intent.setdefault(str(item["intent_id"]), []).append(
            ProductScore(
                product_id=str(item["product_id"]),
                fit_score=coerce_float(item.get("fit_score")),
                score_breakdown=breakdown if isinstance(breakdown, dict) else None,
            )
        )
    # Stored ordering matches "order by fit_score desc"; duplicates are kept as-is.
    for rows in by_intent.values():
        rows.sort(key=lambda row: row.fit_score, reverse=True)
    return by_intent


def _parse_capabilities(raw: Any) -> List[CapabilityScore]:
    rows: List[CapabilityScore] = []
    for item in raw or []:
        if not isinstance(item, dict) or item.get("product_id") is None or not item.get("capability_key"):
            continue
        rows.append(
            CapabilityScore(
                product_id=str(item["product_id"]),
                capability_key=str(item["capability_key"]),
                value=coerce_float(item.get("value")),
            )
        )
    return rows
