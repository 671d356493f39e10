"""
Fixed-TTL in-process cache for datasheet read results.
"""

import fnmatch
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


def make_signature(method: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Build a cache key from an operation name and its parameters.

    Parameters are serialized with sorted keys so two mappings that compare
    equal always produce the same signature regardless of insertion order.
    """
    payload = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)
    return f"{method}:{payload}"


@dataclass
class CacheEntry:
    """A cached value and the monotonic time it was stored."""

    signature: str
    value: Any
    created_at: float


class TTLCache:
    """Signature-keyed cache whose entries expire after a fixed TTL.

    Expiry is lazy: an entry older than ``ttl_seconds`` is treated as absent
    and dropped when it is next read. There is no size bound.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than zero")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.metrics = metrics
        self.logger = get_logger("membership.cache")

    def get(self, signature: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        entry = self._entries.get(signature)
        if entry is None:
            self._record("miss")
            return None

        if self._clock() - entry.created_at >= self.ttl_seconds:
            del self._entries[signature]
            self._record("expired")
            return None

        self._record("hit")
        self.logger.debug("Cache hit", signature=signature)
        return entry.value

    def put(self, signature: str, value: Any) -> None:
        """Store a value, replacing any previous entry for the signature."""
        self._entries[signature] = CacheEntry(signature=signature, value=value, created_at=self._clock())

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """Remove entries matching a signature prefix or glob pattern.

        With no pattern every entry is removed. Returns the number of entries
        dropped.
        """
        if pattern is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            if any(ch in pattern for ch in "*?["):
                matches = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            else:
                matches = [key for key in self._entries if key.startswith(pattern)]
            for key in matches:
                del self._entries[key]
            removed = len(matches)

        if removed:
            self._record("invalidated")
            self.logger.debug("Cache invalidated", pattern=pattern or "*", keys_count=removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, signature: str) -> bool:
        entry = self._entries.get(signature)
        return entry is not None and self._clock() - entry.created_at < self.ttl_seconds

    def _record(self, event: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_events_total", event=event)
