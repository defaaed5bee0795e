"""
Best-effort in-memory cache for successful backend GET responses.

Entries are keyed by (scope, path, params). `scope` is the requesting user's
id so one user's data never answers another user's read. Invalidation works on
the path prefix and ignores scope: a mutation by one user makes the family
stale for everyone. Last write wins, except that a fetch overlapping an
invalidation never writes back.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300.0

CacheKey = tuple[str, str, tuple[tuple[str, str], ...]]


def make_key(path: str, params: Mapping[str, Any] | None = None, *, scope: str = "") -> CacheKey:
    items = tuple(sorted((str(k), str(v)) for k, v in (params or {}).items() if v is not None))
    return (scope, path, items)


@dataclass
class _Entry:
    value: Any
    stored_at: float


class ResponseCache:
    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, _Entry] = {}
        self._lock = threading.Lock()
        # bumped by every invalidate(); a fetch that started before the bump
        # must not write its (possibly pre-mutation) result back
        self._epoch = 0

    def _is_fresh(self, entry: _Entry) -> bool:
        return (self._clock() - entry.stored_at) < self.ttl_seconds

    def _prune(self) -> None:
        stale = [k for k, e in self._entries.items() if not self._is_fresh(e)]
        for k in stale:
            del self._entries[k]

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    def get(self, key: CacheKey) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not self._is_fresh(entry):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: CacheKey, value: Any, *, epoch: int | None = None) -> bool:
        """Store `value`; refused (returns False) when invalidated since `epoch`."""
        with self._lock:
            if epoch is not None and epoch != self._epoch:
                return False
            self._prune()
            self._entries[key] = _Entry(value=value, stored_at=self._clock())
            return True

    def get_or_fetch(self, key: CacheKey, producer: Callable[[], T]) -> T:
        """
        Return the fresh cached value for `key`, else call `producer` and cache
        its result. Failures propagate and are never cached. A result whose
        fetch overlapped an invalidation is returned but not cached.
        """
        with self._lock:
            epoch = self._epoch
        cached = self.get(key)
        if cached is not None:
            return cached
        value = producer()
        self.set(key, value, epoch=epoch)
        return value

    def invalidate(self, prefix: str) -> int:
        with self._lock:
            self._epoch += 1
            stale = [k for k in self._entries if k[1].startswith(prefix)]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
