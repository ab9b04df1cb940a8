from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .capability_matcher import CapabilityMatcher
from .catalog_store import ACCESSORY_INTENT, CatalogStore, Product, ProductScore, ProductSource
from .errors import CatalogStoreError
from .utils import humanize_intent

logger = logging.getLogger("shopguide.products")

FETCH_BATCH = 24
CAPABILITY_FULL_PAGE = 3


def dedupe_scores(rows: Iterable[ProductScore]) -> List[ProductScore]:
    """Keep the highest fit_score per product_id, ordered by score desc."""
    best: Dict[str, ProductScore] = {}
    for row in rows:
        held = best.get(row.product_id)
        if held is None or row.fit_score > held.fit_score:
            best[row.product_id] = row
    return sorted(best.values(), key=lambda row: (-row.fit_score, row.product_id))


def has_next_page(products: Sequence[Product], limit: int) -> bool:
    """A short page ends pagination; so does a capability page with fewer than 3 items."""
    if len(products) < limit:
        return False
    if products and all(p.source is ProductSource.CAPABILITY for p in products):
        return len(products) >= CAPABILITY_FULL_PAGE
    return True


class ProductService:
    """Ranked, deduplicated, paginated product lists for a resolved intent."""

    def __init__(self, store: CatalogStore, matcher: CapabilityMatcher) -> None:
        self._store = store
        self._matcher = matcher

    def get_top_products(
        self,
        intent_id: str,
        offset: int = 0,
        limit: int = 3,
        user_message: Optional[str] = None,
    ) -> List[Product]:
        """Purpose: Return one page of products for an intent, best fit first.
        Inputs/Outputs: Inputs are intent_id, page offset/limit, and the user's message
            for the capability fallback; output is at most `limit` unique Products.
        Side Effects / State: May call the generation service through the matcher.
        Dependencies: CatalogStore fit-score range queries and hydration;
            CapabilityMatcher when the intent has no score rows.
        Failure Modes: CatalogStoreError from the fit-score query propagates. Hydration
            misses are dropped with a warning; the capability fallback never raises.
        If Removed: Recommendation, strategy switch, and image pre-fetch have no products.
        Testing Notes: Duplicate score rows must collapse to their highest score.
        """
        # Page over unique products: read score rows in ranked batches until the
        # requested window is covered, collapsing duplicate rows as they arrive.
        offset = max(0, offset)
        limit = max(0, limit)
        wanted = offset + limit
        rows: List[ProductScore] = []
        unique: List[ProductScore] = []
        fetched = 0
        while True:
            batch = self._store.fit_scores(intent_id, fetched, max(FETCH_BATCH, wanted))
            rows.extend(batch)
            fetched += len(batch)
            unique = dedupe_scores(rows)
            if len(unique) >= wanted or len(batch) < max(FETCH_BATCH, wanted):
                break

        logger.info("fit_scores intent=%s rows=%s unique=%s offset=%s", intent_id, len(rows), len(unique), offset)

        if not rows:
            logger.info("intent_empty intent=%s fallback=capability", intent_id)
            readable = humanize_intent(intent_id)
            return self._matcher.search(
                user_message or readable,
                context=readable,
                offset=offset,
                limit=limit,
            )

        page = unique[offset:wanted]
        if len(unique) != len(rows):
            logger.info("fit_scores_deduped intent=%s dropped=%s", intent_id, len(rows) - len(unique))
        return self._store.hydrate_products(
            [(row.product_id, row.fit_score, row.score_breakdown) for row in page],
            ProductSource.INTENT,
        )

    def has_score_rows(self, intent_id: str) -> bool:
        try:
            return self._store.count_fit_scores(intent_id) > 0
        except CatalogStoreError:
            return False

    def get_alternatives(self, limit: int = 3, exclude: Iterable[str] = ()) -> List[Product]:
        """Best-scoring products of any intent; [] on any store failure."""
        excluded = set(exclude)
        try:
            rows = self._store.top_fit_scores(limit + len(excluded) + FETCH_BATCH, exclude_intents=[ACCESSORY_INTENT])
            rows = [row for row in rows if row.product_id not in excluded]
            found = self._store.hydrate_products(
                [(row.product_id, row.fit_score, None) for row in rows], ProductSource.INTENT
            )
            return found[:limit]
        except CatalogStoreError as exc:
            logger.warning("alternatives_failed error=%s", exc)
            return []

    def get_accessories(self, limit: int = 2, exclude: Iterable[str] = ()) -> List[Product]:
        """Top products of the reserved accessory intent; [] on any store failure."""
        excluded = set(exclude)
        try:
            rows = dedupe_scores(self._store.fit_scores(ACCESSORY_INTENT, 0, limit + len(excluded) + FETCH_BATCH))
            rows = [row for row in rows if row.product_id not in excluded]
            found = self._store.hydrate_products(
                [(row.product_id, row.fit_score, None) for row in rows], ProductSource.INTENT
            )
            return found[:limit]
        except CatalogStoreError as exc:
            logger.warning("accessories_failed error=%s", exc)
            return []
