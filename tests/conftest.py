"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded, and selects the in-memory
counter store so no Redis is needed.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_STORAGE_BACKEND", "memory")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("APP_RATE_LIMIT_IP_RPS", "10")
os.environ.setdefault("APP_RATE_LIMIT_IP_BLOCK_SECONDS", "300")
os.environ.setdefault("APP_RATE_LIMIT_TOKEN_RPS", "100")
os.environ.setdefault("APP_RATE_LIMIT_TOKEN_BLOCK_SECONDS", "600")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.adapters.rate_limit.in_memory import InMemoryStorageStrategy  # noqa: E402
from app.core.app_factory import create_app  # noqa: E402
from app.core.rate_limit import set_rate_limiter  # noqa: E402
from app.services.rate_limiter import RateLimiter  # noqa: E402


@pytest.fixture
def clock() -> Mock:
    """Controllable UNIX clock shared by store and limiter."""
    return Mock(return_value=1_000.0)


@pytest.fixture
def memory_store(clock: Mock) -> InMemoryStorageStrategy:
    return InMemoryStorageStrategy(clock=clock)


@pytest.fixture
def limiter(memory_store: InMemoryStorageStrategy, clock: Mock) -> RateLimiter:
    return RateLimiter(memory_store, clock=clock)


@pytest.fixture(autouse=True)
def _reset_process_limiter():
    """Drop the cached process-wide limiter between tests."""
    set_rate_limiter(None)
    yield
    set_rate_limiter(None)


@pytest.fixture
def client(limiter: RateLimiter) -> TestClient:
    """Test client whose admission layer uses the in-memory limiter."""
    set_rate_limiter(limiter)
    return TestClient(create_app())
