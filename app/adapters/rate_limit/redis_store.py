"""Redis-backed counter store.

Counters and block records live in the same Redis database under the
``rate:`` and ``block:`` namespaces. Every instance of the service talks to
the same Redis, so limits hold across workers and hosts.

Atomicity:
- ``increment`` sends INCR and PEXPIRE in one MULTI/EXEC transaction, so
  two concurrent callers on a counter at 4 always see 5 and 6.
- Expiry is owned by Redis; nothing here deletes keys.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.adapters.rate_limit.base import StorageStrategy, block_key, validate_ttl
from app.core.errors import CorruptStateError, StoreUnavailableError

logger = logging.getLogger(__name__)

_BLOCK_MARKER = "blocked"
_SCAN_BATCH = 100


class RedisStorageStrategy(StorageStrategy):
    """Counter store using a shared Redis instance."""

    def __init__(self, client: Redis, *, operation_timeout: float | None = 0.5) -> None:
        """Initialize the Redis store.

        Args:
            client: Connected asyncio Redis client (connection pool owner).
            operation_timeout: Deadline in seconds for each store operation,
                or None to rely on the client's socket timeouts only.
        """
        self._client = client
        self._operation_timeout = operation_timeout

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        """Apply the operation deadline and map failures to store errors."""
        try:
            async with asyncio.timeout(self._operation_timeout):
                yield
        except TimeoutError as exc:
            logger.warning(
                "redis_store.timeout",
                extra={"operation": operation, "timeout_s": self._operation_timeout},
            )
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"Counter store timed out during {operation}",
                details={"backend": "redis", "operation": operation},
            ) from exc
        except RedisError as exc:
            logger.warning(
                "redis_store.error",
                extra={
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"Counter store failed during {operation}",
                details={"backend": "redis", "operation": operation},
            ) from exc

    @staticmethod
    def _parse_count(key: str, raw: str | bytes) -> int:
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise CorruptStateError(
                code="corrupt_state",
                message=f"Value stored at '{key}' is not an integer",
                details={"backend": "redis", "store_key": key},
            ) from exc

    async def get(self, key: str) -> int:
        async with self._guard("get"):
            raw = await self._client.get(key)
        if raw is None:
            return 0
        return self._parse_count(key, raw)

    async def set(self, key: str, count: int, ttl: timedelta) -> None:
        validate_ttl(ttl)
        async with self._guard("set"):
            await self._client.set(key, count, px=ttl)

    async def increment(self, key: str, ttl: timedelta) -> tuple[int, bool]:
        validate_ttl(ttl)
        async with self._guard("increment"):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.pexpire(key, ttl)
                new_count, _ = await pipe.execute()

        new_count = int(new_count)
        return new_count, new_count > 1

    async def is_blocked(self, key: str) -> bool:
        async with self._guard("is_blocked"):
            exists = await self._client.exists(block_key(key))
        return exists > 0

    async def block(self, key: str, duration: timedelta) -> None:
        if duration <= timedelta(0):
            return
        async with self._guard("block"):
            await self._client.set(block_key(key), _BLOCK_MARKER, px=duration)

    async def get_stats(self, prefix: str) -> dict[str, int]:
        # Incremental SCAN; never KEYS on a shared instance.
        async with self._guard("get_stats"):
            keys = [
                key
                async for key in self._client.scan_iter(match=f"{prefix}*", count=_SCAN_BATCH)
            ]
            values = await self._client.mget(keys) if keys else []

        stats: dict[str, int] = {}
        for key, raw in zip(keys, values):
            if raw is None:
                continue
            name = key.decode() if isinstance(key, bytes) else key
            try:
                stats[name] = self._parse_count(name, raw)
            except CorruptStateError:
                logger.debug("redis_store.stats_skipped", extra={"store_key": name})
        return stats

    async def list_keys(self, prefix: str) -> list[str]:
        async with self._guard("list_keys"):
            keys = [
                key
                async for key in self._client.scan_iter(match=f"{prefix}*", count=_SCAN_BATCH)
            ]
        return [key.decode() if isinstance(key, bytes) else key for key in keys]

    async def ping(self) -> bool:
        async with self._guard("ping"):
            return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
