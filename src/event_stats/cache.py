from __future__ import annotations

import threading
import time
from typing import Any, Dict, Hashable, Optional, Tuple


class ResultCache:
    """
    Tiny thread-safe TTL cache for finished statistics results.

    Keys are tuples of the service operation name followed by its normalized
    parameters, e.g. ``("top_clubs", 10, 90)`` or ``("event_summary", 42)``.
    Values are the frozen result records, shared between callers until the
    TTL lapses. A TTL of 0 turns every call into a miss.
    """

    def __init__(self, ttl_s: float = 0.0):
        self.ttl_s = ttl_s
        self._store: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_s > 0

    def get(self, key: Hashable) -> Optional[Any]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            ts, value = entry
            if time.monotonic() - ts > self.ttl_s:
                self._store.pop(key, None)
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._store[key] = (time.monotonic(), value)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
