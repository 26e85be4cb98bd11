"""In-memory TTL cache for backend results."""
from __future__ import annotations

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    created_at: float


def fingerprint(**fields: Any) -> str:
    """Deterministic key over the semantically relevant request fields."""
    canonical = json.dumps(fields, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResponseCache:
    """
    Process-local TTL map.

    Expired entries are swept only when an insertion pushes the map past
    `max_entries`; every read re-checks age, so an unswept stale entry is
    never returned.
    """

    def __init__(self, *, ttl_seconds: float = 300.0, max_entries: int = 100, time_fn=time.time):
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._time = time_fn
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        now = float(self._time())
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if now - entry.created_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def put(self, key: str, value: Any) -> None:
        now = float(self._time())
        with self._lock:
            self._entries[key] = CacheEntry(value=value, created_at=now)
            if len(self._entries) > self.max_entries:
                self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if now - e.created_at >= self.ttl_seconds]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
