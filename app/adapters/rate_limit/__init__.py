"""Counter store adapters for rate limiting.

The limiter talks to a ``StorageStrategy``; Redis backs production
deployments and an in-memory map backs tests and single-process runs.
"""

from app.adapters.rate_limit.base import (
    BLOCK_KEY_PREFIX,
    COUNT_KEY_PREFIX,
    CheckResult,
    LimitConfig,
    StorageStrategy,
    block_key,
    count_key,
)

__all__ = [
    "BLOCK_KEY_PREFIX",
    "COUNT_KEY_PREFIX",
    "CheckResult",
    "LimitConfig",
    "StorageStrategy",
    "block_key",
    "count_key",
]
