"""Counter store interfaces and rate limiting value types.

The rate limiting algorithm depends on this abstraction (not a concrete
store) so it can run against Redis in production and an in-memory map in
tests without changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

COUNT_KEY_PREFIX = "rate:"
BLOCK_KEY_PREFIX = "block:"
MIN_TTL = timedelta(milliseconds=1)


def count_key(identity_key: str) -> str:
    """Store key holding the request counter for an identity."""
    return f"{COUNT_KEY_PREFIX}{identity_key}"


def block_key(identity_key: str) -> str:
    """Store key whose existence marks an identity as blocked."""
    return f"{BLOCK_KEY_PREFIX}{identity_key}"


def validate_ttl(ttl: timedelta) -> None:
    """Reject expiries shorter than the store's one-millisecond resolution.

    Raises:
        ValueError: If ttl is below one millisecond.
    """
    if ttl < MIN_TTL:
        raise ValueError(f"ttl must be at least 1ms, got {ttl!r}")


@dataclass(frozen=True)
class LimitConfig:
    """Limit profile applied to one class of identities.

    Attributes:
        requests_per_second: Requests admitted per one-second window.
        block_duration: How long an identity stays blocked after overflowing.
    """

    requests_per_second: int
    block_duration: timedelta

    def __post_init__(self) -> None:
        if self.requests_per_second < 1:
            raise ValueError("requests_per_second must be >= 1")
        if self.block_duration < timedelta(0):
            raise ValueError("block_duration must be >= 0")


@dataclass(frozen=True)
class CheckResult:
    """Verdict of a single rate limit check.

    Attributes:
        allowed: Whether the request may proceed.
        remaining: Requests left in the current window (0 when denied).
        reset_time: UTC instant at which the current window is expected to end.
        blocked: True only when the identity was already blocked before this
            call. The request that triggers a block reports False.
    """

    allowed: bool
    remaining: int
    reset_time: datetime
    blocked: bool


class StorageStrategy(ABC):
    """Interface for the shared counter store.

    Every method may raise ``StoreUnavailableError`` when the store cannot be
    reached or the operation deadline expires. Implementations never turn a
    failure into a default value.
    """

    @abstractmethod
    async def get(self, key: str) -> int:
        """Return the counter stored at ``key``, or 0 if absent.

        Raises:
            CorruptStateError: If the stored value is not an integer.
        """
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, count: int, ttl: timedelta) -> None:
        """Overwrite the counter at ``key`` and set its expiry.

        Raises:
            ValueError: If ttl is shorter than one millisecond.
        """
        raise NotImplementedError

    @abstractmethod
    async def increment(self, key: str, ttl: timedelta) -> tuple[int, bool]:
        """Atomically increment ``key`` and refresh its expiry.

        The increment and the expiry refresh form one indivisible step for
        every concurrent caller sharing the key.

        Args:
            key: Counter key (already namespaced by the caller).
            ttl: Expiry applied to the counter after the increment.

        Returns:
            Tuple of (new_count, existed_before), where existed_before is
            True iff the counter was >= 1 before this call.

        Raises:
            ValueError: If ttl is shorter than one millisecond.
        """
        raise NotImplementedError

    @abstractmethod
    async def is_blocked(self, key: str) -> bool:
        """Return True iff a block record exists for the identity ``key``."""
        raise NotImplementedError

    @abstractmethod
    async def block(self, key: str, duration: timedelta) -> None:
        """Create or refresh the block record for the identity ``key``."""
        raise NotImplementedError

    @abstractmethod
    async def get_stats(self, prefix: str) -> dict[str, int]:
        """Return counters for every key starting with ``prefix``.

        Keys whose value cannot be read as an integer are skipped.
        """
        raise NotImplementedError

    @abstractmethod
    async def list_keys(self, prefix: str) -> list[str]:
        """Return every live key starting with ``prefix``, whatever its value."""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store answers."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None
