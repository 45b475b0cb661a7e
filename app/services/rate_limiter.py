"""Fixed-window rate limiter with a separate block period.

Algorithm per check:
1. If the identity has a block record, reject at once (no counter mutation).
2. Atomically increment the identity's ``rate:`` counter with a one-second
   expiry. The window starts at the first increment, not on a wall-clock
   second boundary.
3. The request that pushes the count past the limit creates the block record
   and is rejected with ``blocked=False``; later requests hit step 1 and
   report ``blocked=True``.

The limiter holds no mutable state. All coordination between concurrent
requests and service instances goes through the store's atomic increment.
Store errors propagate unchanged; the caller owns the fail-open/closed policy.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from app.adapters.rate_limit.base import (
    CheckResult,
    LimitConfig,
    StorageStrategy,
    count_key,
)
from app.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

WINDOW = timedelta(seconds=1)


def hash_identity_key(key: str) -> str:
    """Hash an identity key for logging without exposing tokens or addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class RateLimiter:
    """Admission decision over a shared counter store."""

    def __init__(
        self,
        storage: StorageStrategy,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            storage: Counter store shared by every service instance.
            clock: Time source returning UNIX time in seconds.
        """
        self._storage = storage
        self._clock = clock

    @property
    def storage(self) -> StorageStrategy:
        return self._storage

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def check(
        self,
        key: str,
        config: LimitConfig,
        *,
        timeout: float | None = None,
    ) -> CheckResult:
        """Check and count one request for ``key``.

        Args:
            key: Namespaced identity key, e.g. ``ip:1.2.3.4`` or ``token:abc``.
            config: Limit profile for the identity's class.
            timeout: Deadline in seconds covering every store call of this
                check, or None for no deadline beyond the backend's own.

        Returns:
            CheckResult describing the verdict.

        Raises:
            ValueError: If key is empty.
            StoreUnavailableError: If the deadline expires before a verdict.
            StoreError: If the counter store fails; never converted to a verdict.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        try:
            async with asyncio.timeout(timeout):
                return await self._decide(key, config)
        except TimeoutError as exc:
            logger.warning(
                "rate_limiter.deadline_exceeded",
                extra={"key_hash": hash_identity_key(key), "timeout_s": timeout},
            )
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Counter store did not answer before the check deadline",
                details={"operation": "check"},
            ) from exc

    async def _decide(self, key: str, config: LimitConfig) -> CheckResult:
        if await self._storage.is_blocked(key):
            logger.info(
                "rate_limiter.rejected_while_blocked",
                extra={"key_hash": hash_identity_key(key)},
            )
            return CheckResult(
                allowed=False,
                remaining=0,
                reset_time=self._now() + config.block_duration,
                blocked=True,
            )

        count, existed_before = await self._storage.increment(count_key(key), WINDOW)
        if not existed_before:
            logger.debug(
                "rate_limiter.window_opened",
                extra={"key_hash": hash_identity_key(key)},
            )

        reset_time = self._now() + WINDOW
        remaining = max(0, config.requests_per_second - count)

        if count > config.requests_per_second:
            await self._storage.block(key, config.block_duration)
            logger.warning(
                "rate_limiter.blocked",
                extra={
                    "key_hash": hash_identity_key(key),
                    "count": count,
                    "limit": config.requests_per_second,
                    "block_s": config.block_duration.total_seconds(),
                },
            )
            return CheckResult(
                allowed=False,
                remaining=0,
                reset_time=reset_time,
                blocked=False,
            )

        return CheckResult(
            allowed=True,
            remaining=remaining,
            reset_time=reset_time,
            blocked=False,
        )
