"""Tests for counter store construction from settings."""

from unittest.mock import patch

import pytest
from redis.asyncio import Redis

from app.adapters.rate_limit.factory import create_redis_client, create_storage_strategy
from app.adapters.rate_limit.in_memory import InMemoryStorageStrategy
from app.adapters.rate_limit.redis_store import RedisStorageStrategy
from app.core.config import RedisSettings, Settings
from app.core.errors import ValidationAppError


def test_memory_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_STORAGE_BACKEND", "memory")

    assert isinstance(create_storage_strategy(Settings()), InMemoryStorageStrategy)


def test_redis_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_STORAGE_BACKEND", "redis")
    monkeypatch.setenv("APP_STORE_TIMEOUT_SECONDS", "0.25")

    store = create_storage_strategy(Settings())

    assert isinstance(store, RedisStorageStrategy)
    assert store._operation_timeout == 0.25


def test_unknown_backend_raises() -> None:
    cfg = Settings()
    cfg.app.storage_backend = "memcached"  # bypasses Literal validation on assignment

    with pytest.raises(ValidationAppError) as exc_info:
        create_storage_strategy(cfg)

    assert exc_info.value.code == "unknown_storage_backend"


def test_redis_client_uses_settings() -> None:
    redis_settings = RedisSettings(host="cache", port=6380, db=2, password="pw", pool_size=4)

    with patch("app.adapters.rate_limit.factory.Redis", autospec=True) as redis_cls:
        create_redis_client(redis_settings)

    kwargs = redis_cls.call_args.kwargs
    assert kwargs["host"] == "cache"
    assert kwargs["port"] == 6380
    assert kwargs["db"] == 2
    assert kwargs["password"] == "pw"
    assert kwargs["max_connections"] == 4
    assert kwargs["decode_responses"] is True


def test_redis_client_is_lazy() -> None:
    client = create_redis_client(RedisSettings(host="localhost", port=6379))

    assert isinstance(client, Redis)
