"""Factory functions for creating counter store instances."""

from __future__ import annotations

import logging

from redis.asyncio import Redis

from app.adapters.rate_limit.base import StorageStrategy
from app.adapters.rate_limit.in_memory import InMemoryStorageStrategy
from app.adapters.rate_limit.redis_store import RedisStorageStrategy
from app.core.config import RedisSettings, Settings, settings as default_settings
from app.core.errors import ValidationAppError

logger = logging.getLogger(__name__)


def create_redis_client(redis_settings: RedisSettings) -> Redis:
    """Build a pooled asyncio Redis client from settings.

    The client connects lazily; the first command (usually the readiness
    ping) opens the pool.

    Args:
        redis_settings: Resolved REDIS_* settings.

    Returns:
        Redis: Client owning its own connection pool.
    """
    logger.info(
        "redis.client_created",
        extra={
            "redis_host": redis_settings.host,
            "redis_port": redis_settings.port,
            "redis_db": redis_settings.db,
            "pool_size": redis_settings.pool_size,
        },
    )
    return Redis(
        host=redis_settings.host,
        port=redis_settings.port,
        password=redis_settings.password,
        db=redis_settings.db,
        max_connections=redis_settings.pool_size,
        socket_connect_timeout=redis_settings.connect_timeout_seconds,
        socket_timeout=redis_settings.socket_timeout_seconds,
        retry_on_timeout=redis_settings.retry_on_timeout,
        decode_responses=True,
    )


def create_storage_strategy(config: Settings | None = None) -> StorageStrategy:
    """Instantiate the counter store selected by APP_STORAGE_BACKEND.

    Args:
        config: Settings to read from; defaults to the global settings.

    Returns:
        StorageStrategy: Configured backend.

    Raises:
        ValidationAppError: If the backend name is not supported.
    """
    cfg = config or default_settings
    backend = cfg.app.storage_backend.lower()

    if backend == "redis":
        client = create_redis_client(cfg.redis)
        return RedisStorageStrategy(
            client,
            operation_timeout=cfg.app.store_timeout_seconds,
        )

    if backend == "memory":
        logger.warning(
            "storage.in_memory_selected",
            extra={"hint": "limits are per-process; use redis when running several workers"},
        )
        return InMemoryStorageStrategy()

    raise ValidationAppError(
        code="unknown_storage_backend",
        message=f"Unknown storage backend: '{backend}'. Supported backends: redis, memory",
    )
