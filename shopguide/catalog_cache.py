from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from .catalog_store import CatalogStore, Intent
from .errors import CatalogStoreError

logger = logging.getLogger("shopguide.catalog")

ESSENTIAL_CAPABILITY_KEYS = [
    "low_light",
    "video_quality",
    "autofocus_reliability",
    "battery_life",
    "portability",
]


class CatalogCache:
    """Shared, read-mostly cache of intents and capability keys.

    Built once at the composition root and injected. ``ttl_sec <= 0`` keeps entries
    for the life of the process; ``refresh()`` drops them explicitly.
    """

    def __init__(
        self,
        store: CatalogStore,
        ttl_sec: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._intents: Optional[List[Intent]] = None
        self._capability_keys: Optional[List[str]] = None
        self._loaded_at = 0.0

    def _drop_if_expired(self) -> None:
        # Caller holds the lock.
        if self._ttl > 0 and (self._clock() - self._loaded_at) >= self._ttl:
            self._intents = None
            self._capability_keys = None

    def refresh(self) -> None:
        """Drop cached entries and force the store to re-read its source."""
        with self._lock:
            self._intents = None
            self._capability_keys = None
        self._store.load()
        logger.info("catalog_cache_refreshed")

    def intents(self) -> List[Intent]:
        """Purpose: Return the intent catalog, loading it on first use or after expiry.
        Inputs/Outputs: No inputs; returns a copy of the cached Intent list.
        Side Effects / State: Populates the cache under a lock.
        Dependencies: CatalogStore.list_intents.
        Failure Modes: CatalogStoreError propagates; failures are never cached.
        If Removed: Classification and semantic validation have no intent list.
        Testing Notes: Use a fake clock to verify TTL expiry triggers a reload.
        """
        # Reload under the lock when empty or expired.
        with self._lock:
            self._drop_if_expired()
            if self._intents is None:
                self._intents = self._store.list_intents()
                self._loaded_at = self._clock()
            return list(self._intents)

    def intent_ids(self) -> List[str]:
        return [intent.intent_id for intent in self.intents()]

    def capability_keys(self) -> List[str]:
        """Known capability keys; falls back to an essential list when the store fails."""
        with self._lock:
            self._drop_if_expired()
            if self._capability_keys:
                return list(self._capability_keys)
            try:
                keys = self._store.list_capability_keys()
            except CatalogStoreError as exc:
                logger.warning("capability_keys_fallback error=%s", exc)
                return list(ESSENTIAL_CAPABILITY_KEYS)
            if not keys:
                return list(ESSENTIAL_CAPABILITY_KEYS)
            self._capability_keys = keys
            if self._intents is None:
                self._loaded_at = self._clock()
            return list(keys)
