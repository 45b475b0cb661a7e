"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Store failures form their own branch (``StoreError``) so callers can decide a
fail-open or fail-closed policy without catching unrelated errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    All fields are optional; each error fills the ones that apply.
    """

    retry_after_seconds: int
    limit: int
    backend: str
    operation: str
    store_key: str


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class StoreError(AppError):
    """Base class for counter store failures."""


class StoreUnavailableError(StoreError):
    """Raised when the counter store cannot be reached, times out, or fails."""


class CorruptStateError(StoreError):
    """Raised when a stored counter cannot be interpreted as an integer."""


class RateLimitExceededError(AppError):
    """Raised by the admission layer when a request is denied.

    Attributes:
        retry_after_seconds: Seconds the client should wait before retrying.
        limit: Requests per second allowed for the identity's profile.
        reset_at: UNIX epoch seconds at which the current window ends.
        blocked: Whether the identity was already serving a block period.
    """

    def __init__(
        self,
        *,
        retry_after_seconds: int,
        limit: int,
        reset_at: int,
        blocked: bool,
    ) -> None:
        super().__init__(
            code="rate_limit_exceeded",
            message=(
                "you have reached the maximum number of requests or actions "
                "allowed within a certain time frame"
            ),
            details={"retry_after_seconds": retry_after_seconds, "limit": limit},
        )
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit
        self.reset_at = reset_at
        self.blocked = blocked
