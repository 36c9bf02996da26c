"""Thread-safe in-memory TTL cache."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging
import threading
import time

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float


class TTLCache:
    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_key(prefix: str, *args: Any) -> str:
        parts = [str(a).lower().strip() if isinstance(a, str) else str(a) for a in args]
        return f"{prefix}:{'|'.join(parts)}"

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        entry = CacheEntry(value=value, stored_at=now, ttl=self.default_ttl if ttl is None else ttl)
        with self._lock:
            self._prune(now)
            self._entries[key] = entry

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if self._clock() - entry.stored_at > entry.ttl:
                del self._entries[key]
                return default
            return entry.value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("cache cleared")

    def _prune(self, now: float) -> None:
        """Drop expired entries. Caller holds the lock."""
        expired = [k for k, e in self._entries.items() if now - e.stored_at > e.ttl]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
