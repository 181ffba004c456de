"""
Content-addressed result cache for prescription scans.

Two tiers: a process-local dict guarded by a lock, and an optional durable
store consulted only on a local miss. Entries expire by time; a background
sweeper removes expired entries even when no requests arrive.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .exceptions import CacheStoreError
from .models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL = 5 * 60


class ResultCache:

    def __init__(self, durable=None, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time,
                 sweep_interval: float = DEFAULT_SWEEP_INTERVAL):
        self.durable = durable
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.sweep_interval = sweep_interval

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def get(self, image_hash: str) -> Optional[CacheEntry]:
        now = self.clock()

        with self._lock:
            entry = self._entries.get(image_hash)
            if entry is not None:
                if not entry.is_expired(now):
                    logger.info(f"✅ Using cached result (in-memory) for {image_hash[:12]}")
                    return entry
                del self._entries[image_hash]

        if self.durable is None:
            return None

        try:
            entry = self.durable.get(image_hash)
        except CacheStoreError as e:
            logger.warning(f"⚠️ Durable cache read failed, treating as miss: {e}")
            return None

        if entry is None or entry.is_expired(now):
            return None

        # Promote with the durable expiry so the entry does not outlive it
        with self._lock:
            self._entries[image_hash] = entry
        logger.info(f"✅ Using cached result (durable) for {image_hash[:12]}")
        return entry

    def put(self, image_hash: str, result: Dict[str, Any], ttl: Optional[float] = None,
            raw_extraction: Optional[Dict[str, Any]] = None) -> CacheEntry:
        ttl = self.ttl_seconds if ttl is None else ttl
        entry = CacheEntry(
            image_hash=image_hash,
            raw_extraction=raw_extraction or {},
            normalized_result=result,
            expires_at=self.clock() + ttl,
        )

        with self._lock:
            self._entries[image_hash] = entry

        if self.durable is not None:
            try:
                self.durable.put(entry)
            except CacheStoreError as e:
                logger.warning(f"⚠️ Durable cache write failed, keeping in-memory entry only: {e}")

        return entry

    def invalidate(self, image_hash: str) -> bool:
        with self._lock:
            removed = self._entries.pop(image_hash, None) is not None

        if self.durable is not None:
            try:
                self.durable.delete(image_hash)
            except CacheStoreError as e:
                logger.warning(f"⚠️ Durable cache delete failed for {image_hash[:12]}: {e}")

        logger.info(f"Invalidated cache entry {image_hash[:12]}")
        return removed

    def sweep(self) -> int:
        """Drop expired entries from both tiers; returns how many local entries were removed."""
        now = self.clock()
        with self._lock:
            expired = [h for h, entry in self._entries.items() if entry.is_expired(now)]
            for image_hash in expired:
                del self._entries[image_hash]

        purge = getattr(self.durable, 'purge_expired', None)
        if purge is not None:
            try:
                purge(now)
            except (CacheStoreError, OSError) as e:
                logger.warning(f"⚠️ Durable cache sweep failed: {e}")

        if expired:
            logger.info(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def _sweep_loop(self):
        while not self._stop.wait(self.sweep_interval):
            self.sweep()

    def start_sweeper(self):
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="rxnudge-cache-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None
