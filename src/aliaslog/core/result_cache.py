"""TTL memoization of aggregation results keyed by canonical query."""

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, Optional, Tuple

from .models import AggregationResult

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 60.0


def _detached(result: AggregationResult, from_cache: bool) -> AggregationResult:
    """Copy with its own entry, failure and group containers."""
    groups = None
    if result.groups is not None:
        groups = {key: replace(group, entries=list(group.entries)) for key, group in result.groups.items()}
    return replace(
        result,
        entries=list(result.entries),
        failures=list(result.failures),
        groups=groups,
        from_cache=from_cache,
    )


class ResultCache:
    """
    Lazily-expiring result cache.

    Expired entries are treated as absent on lookup and dropped then; there
    is no background sweep. The lock only guards dictionary access, never a
    computation, so lookups on different keys do not wait on each other.
    Same-key writes are last-write-wins.
    """

    def __init__(self, ttl: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, AggregationResult]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[AggregationResult]:
        """Cached result flagged ``from_cache=True``, or None."""
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            stored_at, result = item
            if self._clock() - stored_at >= self.ttl:
                del self._entries[key]
                logger.debug(f"Cache entry expired: {key}")
                return None

        logger.debug(f"Cache hit: {key}")
        return _detached(result, from_cache=True)

    def set(self, key: str, result: AggregationResult) -> None:
        stored = _detached(result, from_cache=False)
        with self._lock:
            self._entries[key] = (self._clock(), stored)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Result cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
