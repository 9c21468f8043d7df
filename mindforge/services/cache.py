"""
Mindforge — Mind Map Cache
==========================
Completed graphs keyed by session, validated by content hash.

A lookup misses when the session is unknown, when the stored content hash
differs from the current one, or when the entry is older than the TTL.
Entries are replaced wholesale; graphs go in and come out as deep copies.
"""

import hashlib
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, MutableMapping, Optional

from mindforge.core.config import settings
from mindforge.schemas.mindmap import CacheEntry, MindMapGraph

logger = logging.getLogger(__name__)


def content_hash(content: str, topic: str = "", max_depth: Optional[int] = None) -> str:
    payload = f"{topic}\x1f{max_depth}\x1f{content}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class MindMapCache:

    def __init__(
        self,
        ttl_seconds: Optional[float] = settings.CACHE_TTL_SECONDS,
        max_entries: int = settings.CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
        store: Optional[MutableMapping[str, CacheEntry]] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._store: MutableMapping[str, CacheEntry] = store if store is not None else {}
        self._lock = threading.Lock()

    def _expired(self, entry: CacheEntry) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - entry.generated_at.timestamp() >= self.ttl_seconds

    def get(self, session_id: str, content_hash: str) -> Optional[MindMapGraph]:
        entry = self._store.get(session_id)
        if entry is None:
            return None
        if entry.content_hash != content_hash:
            logger.info(f"[CACHE] Stale entry for session '{session_id}' (content changed)")
            return None
        if self._expired(entry):
            with self._lock:
                if self._store.get(session_id) is entry:
                    del self._store[session_id]
            logger.info(f"[CACHE] Expired entry for session '{session_id}'")
            return None

        logger.info(f"[CACHE] ✓ Hit for session '{session_id}'")
        return entry.graph.model_copy(deep=True)

    def put(self, session_id: str, content_hash: str, graph: MindMapGraph) -> CacheEntry:
        entry = CacheEntry(
            key=session_id,
            content_hash=content_hash,
            graph=graph.model_copy(deep=True),
            generated_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
        )
        with self._lock:
            self._store.pop(session_id, None)
            self._store[session_id] = entry
            while len(self._store) > self.max_entries:
                oldest = next(iter(self._store))
                del self._store[oldest]
                logger.info(f"[CACHE] Evicted oldest session '{oldest}'")
        return entry

    def entry(self, session_id: str) -> Optional[CacheEntry]:
        """The raw entry for the session layer, regardless of hash or age."""
        entry = self._store.get(session_id)
        return entry.model_copy(deep=True) if entry is not None else None

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
        logger.info("[CACHE] Cleared")

    def __len__(self) -> int:
        return len(self._store)
