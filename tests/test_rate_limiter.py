"""Tests for the fixed-window rate limiter decision logic."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from app.adapters.rate_limit.base import LimitConfig, StorageStrategy
from app.adapters.rate_limit.in_memory import InMemoryStorageStrategy
from app.core.errors import StoreUnavailableError
from app.services.rate_limiter import RateLimiter, hash_identity_key


def config(rps: int, block_seconds: int = 10) -> LimitConfig:
    return LimitConfig(requests_per_second=rps, block_duration=timedelta(seconds=block_seconds))


@pytest.mark.asyncio
async def test_remaining_decreases_then_triggering_request_is_not_marked_blocked(
    limiter: RateLimiter,
) -> None:
    cfg = config(5)

    results = [await limiter.check("ip:1.2.3.4", cfg) for _ in range(7)]

    assert [r.allowed for r in results[:5]] == [True] * 5
    assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
    assert all(r.blocked is False for r in results[:5])

    assert results[5].allowed is False
    assert results[5].blocked is False
    assert results[5].remaining == 0

    assert results[6].allowed is False
    assert results[6].blocked is True
    assert results[6].remaining == 0


@pytest.mark.asyncio
async def test_blocked_until_block_duration_elapses(limiter: RateLimiter, clock: Mock) -> None:
    cfg = config(2, block_seconds=10)
    for _ in range(3):
        await limiter.check("ip:1.2.3.4", cfg)

    for offset in (1.0, 5.0, 9.5):
        clock.return_value = 1_000.0 + offset
        result = await limiter.check("ip:1.2.3.4", cfg)
        assert result.allowed is False
        assert result.blocked is True

    clock.return_value = 1_010.0
    fresh = await limiter.check("ip:1.2.3.4", cfg)
    assert fresh.allowed is True
    assert fresh.blocked is False
    assert fresh.remaining == cfg.requests_per_second - 1


@pytest.mark.asyncio
async def test_no_counter_mutation_while_blocked(
    limiter: RateLimiter, memory_store: InMemoryStorageStrategy
) -> None:
    await memory_store.block("ip:9.9.9.9", timedelta(seconds=30))

    for _ in range(3):
        result = await limiter.check("ip:9.9.9.9", config(5))
        assert result.blocked is True

    assert await memory_store.get("rate:ip:9.9.9.9") == 0


@pytest.mark.asyncio
async def test_new_window_after_one_second(limiter: RateLimiter, clock: Mock) -> None:
    cfg = config(3)
    for _ in range(3):
        assert (await limiter.check("token:abc", cfg)).allowed is True

    clock.return_value = 1_001.0
    result = await limiter.check("token:abc", cfg)
    assert result.allowed is True
    assert result.remaining == 2


@pytest.mark.asyncio
async def test_reset_time_is_one_second_after_now(limiter: RateLimiter) -> None:
    result = await limiter.check("ip:1.2.3.4", config(5))

    assert result.reset_time == datetime.fromtimestamp(1_001.0, tz=timezone.utc)


@pytest.mark.asyncio
async def test_keys_are_isolated(limiter: RateLimiter, memory_store: InMemoryStorageStrategy) -> None:
    cfg = config(1)
    await limiter.check("ip:1.1.1.1", cfg)
    await limiter.check("ip:1.1.1.1", cfg)
    assert await memory_store.is_blocked("ip:1.1.1.1") is True

    other = await limiter.check("ip:2.2.2.2", cfg)
    assert other.allowed is True
    assert other.remaining == 0
    assert await memory_store.is_blocked("ip:2.2.2.2") is False
    assert await memory_store.get("rate:ip:2.2.2.2") == 1


@pytest.mark.asyncio
async def test_twenty_concurrent_checks_admit_exactly_ten(limiter: RateLimiter) -> None:
    cfg = config(10)

    results = await asyncio.gather(*(limiter.check("ip:10.0.0.1", cfg) for _ in range(20)))

    allowed = [r for r in results if r.allowed]
    denied = [r for r in results if not r.allowed]
    assert len(allowed) == 10
    assert len(denied) == 10
    assert sorted(r.remaining for r in allowed) == list(range(10))


@pytest.mark.asyncio
async def test_concurrent_counts_are_never_observed_twice() -> None:
    class SlowStore(InMemoryStorageStrategy):
        """Yields to the event loop between check steps."""

        def __init__(self) -> None:
            super().__init__()
            self.observed: list[int] = []

        async def is_blocked(self, key):
            await asyncio.sleep(0)
            return await super().is_blocked(key)

        async def increment(self, key, ttl):
            await asyncio.sleep(0)
            count, existed = await super().increment(key, ttl)
            self.observed.append(count)
            return count, existed

    store = SlowStore()
    limiter = RateLimiter(store)

    results = await asyncio.gather(*(limiter.check("ip:10.0.0.2", config(10)) for _ in range(20)))

    assert len(store.observed) == len(set(store.observed))
    assert sum(1 for r in results if r.allowed) == 10


@pytest.mark.asyncio
async def test_zero_block_duration_only_rejects_within_window(limiter: RateLimiter, clock: Mock) -> None:
    cfg = config(1, block_seconds=0)
    await limiter.check("ip:1.2.3.4", cfg)

    denied = await limiter.check("ip:1.2.3.4", cfg)
    assert denied.allowed is False
    assert denied.blocked is False

    clock.return_value = 1_001.0
    assert (await limiter.check("ip:1.2.3.4", cfg)).allowed is True


@pytest.mark.asyncio
async def test_store_errors_propagate_unmodified() -> None:
    storage = AsyncMock(spec=StorageStrategy)
    error = StoreUnavailableError(code="store_unavailable", message="down")
    storage.is_blocked.side_effect = error
    limiter = RateLimiter(storage)

    with pytest.raises(StoreUnavailableError) as exc_info:
        await limiter.check("ip:1.2.3.4", config(5))

    assert exc_info.value is error
    storage.increment.assert_not_awaited()


@pytest.mark.asyncio
async def test_block_failure_propagates() -> None:
    storage = AsyncMock(spec=StorageStrategy)
    storage.is_blocked.return_value = False
    storage.increment.return_value = (6, True)
    storage.block.side_effect = StoreUnavailableError(code="store_unavailable", message="down")
    limiter = RateLimiter(storage)

    with pytest.raises(StoreUnavailableError):
        await limiter.check("ip:1.2.3.4", config(5))


async def _never_answers(*args, **kwargs):
    await asyncio.sleep(60)


@pytest.mark.asyncio
async def test_check_deadline_becomes_store_unavailable() -> None:
    storage = AsyncMock(spec=StorageStrategy)
    storage.is_blocked.side_effect = _never_answers
    limiter = RateLimiter(storage)

    with pytest.raises(StoreUnavailableError) as exc_info:
        await limiter.check("ip:1.2.3.4", config(5), timeout=0.01)

    assert exc_info.value.code == "store_unavailable"
    assert exc_info.value.details == {"operation": "check"}
    assert isinstance(exc_info.value.__cause__, TimeoutError)
    storage.increment.assert_not_awaited()


@pytest.mark.asyncio
async def test_check_deadline_covers_increment() -> None:
    storage = AsyncMock(spec=StorageStrategy)
    storage.is_blocked.return_value = False
    storage.increment.side_effect = _never_answers
    limiter = RateLimiter(storage)

    with pytest.raises(StoreUnavailableError):
        await limiter.check("ip:1.2.3.4", config(5), timeout=0.01)


@pytest.mark.asyncio
async def test_check_without_deadline_still_answers(limiter: RateLimiter) -> None:
    result = await limiter.check("ip:1.2.3.4", config(5), timeout=None)

    assert result.allowed is True


@pytest.mark.asyncio
async def test_uses_rate_namespace_and_one_second_ttl() -> None:
    storage = AsyncMock(spec=StorageStrategy)
    storage.is_blocked.return_value = False
    storage.increment.return_value = (1, False)
    limiter = RateLimiter(storage)

    await limiter.check("token:abc", config(5))

    storage.is_blocked.assert_awaited_once_with("token:abc")
    storage.increment.assert_awaited_once_with("rate:token:abc", timedelta(seconds=1))
    storage.block.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_key_rejected(limiter: RateLimiter) -> None:
    with pytest.raises(ValueError):
        await limiter.check("", config(5))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"requests_per_second": 0, "block_duration": timedelta(seconds=1)},
        {"requests_per_second": 1, "block_duration": timedelta(seconds=-1)},
    ],
)
def test_invalid_limit_config(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        LimitConfig(**kwargs)


def test_hash_identity_key_hides_value() -> None:
    digest = hash_identity_key("token:super-secret")

    assert len(digest) == 16
    assert "super-secret" not in digest
    assert digest == hash_identity_key("token:super-secret")
