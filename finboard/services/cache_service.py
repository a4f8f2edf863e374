"""
Simple caching service for per-user summaries.
Uses in-memory cache with TTL (Time To Live) so dashboards don't rescan rules on every request.
"""

import logging
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class CacheService:
    def __init__(self) -> None:
        self._cache: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        entry = self._cache.get(key)
        if entry is None:
            logger.debug("Cache MISS for key: %s", key)
            return None
        if time.monotonic() > entry["expires_at"]:
            logger.debug("Cache MISS for key: %s (expired)", key)
            del self._cache[key]
            return None
        logger.debug("Cache HIT for key: %s", key)
        return entry["value"]

    def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        """Set value in cache with TTL (default 5 minutes)."""
        self._cache[key] = {
            "value": value,
            "expires_at": time.monotonic() + ttl_seconds,
        }

    def invalidate(self, key: str) -> None:
        """Remove specific key from cache."""
        if self._cache.pop(key, None) is not None:
            logger.debug("Cache key %s removed", key)

    def invalidate_prefix(self, prefix: str) -> None:
        """Remove every key starting with `prefix`."""
        for key in [k for k in self._cache if k.startswith(prefix)]:
            del self._cache[key]

    def clear(self) -> None:
        logger.info("Cache CLEAR - removing %d entries", len(self._cache))
        self._cache.clear()


def due_summary_key(owner_id: str, as_of: str = "") -> str:
    return f"due_summary:{owner_id}:{as_of}"


# Global cache instance
cache_service = CacheService()
