"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Expiry is lazy: stale entries are dropped when a key is touched.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from app.adapters.rate_limit.base import StorageStrategy, block_key, validate_ttl
from app.core.errors import CorruptStateError

_BLOCK_MARKER = "blocked"


@dataclass
class _Entry:
    value: int | str
    expires_at: float


class InMemoryStorageStrategy(StorageStrategy):
    """Counter store backed by a dict, for tests and single-process runs.

    All reads and writes happen under one lock, so ``increment`` is observed
    as a single step by concurrent callers exactly like the Redis backend.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}

    def _expires_at(self, ttl: timedelta) -> float:
        return self._clock() + ttl.total_seconds()

    def _live_entry_locked(self, key: str) -> _Entry | None:
        """Return the entry for key, evicting it first if it has expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return 0
            if not isinstance(entry.value, int):
                raise CorruptStateError(
                    code="corrupt_state",
                    message=f"Value stored at '{key}' is not an integer",
                    details={"backend": "memory", "store_key": key},
                )
            return entry.value

    async def set(self, key: str, count: int, ttl: timedelta) -> None:
        validate_ttl(ttl)
        with self._lock:
            self._entries[key] = _Entry(value=count, expires_at=self._expires_at(ttl))

    async def increment(self, key: str, ttl: timedelta) -> tuple[int, bool]:
        validate_ttl(ttl)
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                current = 0
            elif isinstance(entry.value, int):
                current = entry.value
            else:
                raise CorruptStateError(
                    code="corrupt_state",
                    message=f"Value stored at '{key}' is not an integer",
                    details={"backend": "memory", "store_key": key},
                )

            new_count = current + 1
            self._entries[key] = _Entry(value=new_count, expires_at=self._expires_at(ttl))
            return new_count, new_count > 1

    async def is_blocked(self, key: str) -> bool:
        with self._lock:
            return self._live_entry_locked(block_key(key)) is not None

    async def block(self, key: str, duration: timedelta) -> None:
        if duration <= timedelta(0):
            return
        with self._lock:
            self._entries[block_key(key)] = _Entry(
                value=_BLOCK_MARKER,
                expires_at=self._expires_at(duration),
            )

    async def get_stats(self, prefix: str) -> dict[str, int]:
        stats: dict[str, int] = {}
        with self._lock:
            for key in list(self._entries):
                if not key.startswith(prefix):
                    continue
                entry = self._live_entry_locked(key)
                if entry is not None and isinstance(entry.value, int):
                    stats[key] = entry.value
        return stats

    async def list_keys(self, prefix: str) -> list[str]:
        with self._lock:
            return [
                key
                for key in list(self._entries)
                if key.startswith(prefix) and self._live_entry_locked(key) is not None
            ]

    async def ping(self) -> bool:
        return True

    def ttl(self, key: str) -> float | None:
        """Seconds until ``key`` expires, or None when absent."""
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return None
            return entry.expires_at - self._clock()

    def delete(self, key: str) -> None:
        """Remove a key regardless of its expiry."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Remove all stored entries."""
        with self._lock:
            self._entries.clear()
