# Overview: Small in-process TTL cache for catalog listings, injected through app.extensions.

"""
Named-entry cache with per-entry TTLs and glob invalidation.

Only slow-changing catalog data (variants, locations) goes here. Unit status
and availability are always read from the database.
"""

from __future__ import annotations

import fnmatch
import threading
import time
from typing import Any, Callable


class TTLCache:
    def __init__(self, default_ttl: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, name: str, default=None):
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[name]
                return default
            return value

    def set(self, name: str, value, ttl: float | None = None) -> None:
        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[name] = (self._clock() + lifetime, value)

    def get_or_load(self, name: str, loader: Callable[[], Any], ttl: float | None = None):
        """Return the cached value, calling loader() and caching on a miss."""
        missing = object()
        value = self.get(name, missing)
        if value is missing:
            value = loader()
            self.set(name, value, ttl=ttl)
        return value

    def invalidate(self, pattern: str = "*") -> int:
        """Drop every entry whose name matches the glob pattern. Returns count dropped."""
        with self._lock:
            names = [name for name in self._entries if fnmatch.fnmatchcase(name, pattern)]
            for name in names:
                del self._entries[name]
        return len(names)

    def __contains__(self, name: str) -> bool:
        missing = object()
        return self.get(name, missing) is not missing

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
