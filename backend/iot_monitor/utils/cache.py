"""In-memory TTL cache for short-lived query results."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Tuple


class InMemoryTTLCache:
    """Process-local key/value cache with per-entry expiry.

    `remember` stores whatever the factory returns, `None` included, so a
    device with no readings is not re-queried until the entry expires.
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def remember(self, key: str, ttl_seconds: float, factory: Callable[[], Any]) -> Any:
        """Return the cached value for `key`, computing it with `factory` on a miss."""
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[0] > now:
                return entry[1]
        # factory runs outside the lock; concurrent misses may both compute
        value = factory()
        if ttl_seconds > 0:
            with self._lock:
                self._entries[key] = (time.monotonic() + ttl_seconds, value)
        return value

    def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        now = time.monotonic()
        with self._lock:
            return sum(1 for expires, _ in self._entries.values() if expires > now)
