"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiter into the HTTP layer.

Identity resolution:
- A request carrying the API token header is limited as ``token:<value>``
  under the token profile, even when its address is known.
- Otherwise it is limited as ``ip:<address>`` under the address profile.

Store failure policy:
- ``fail_open`` (default): a store outage admits the request and logs
  ``rate_limit.store_unavailable``. An outage becomes a rate-limit bypass,
  never an availability incident.
- ``fail_closed``: the store error propagates and the request gets a 503.
  An outage becomes an availability incident, never a bypass.
"""

from __future__ import annotations

import enum
import ipaddress
import logging
from dataclasses import dataclass

from fastapi import Request, Response

from app.adapters.rate_limit.base import CheckResult, LimitConfig
from app.adapters.rate_limit.factory import create_storage_strategy
from app.core.config import AppSettings, settings
from app.core.errors import RateLimitExceededError, StoreError
from app.services.rate_limiter import RateLimiter, hash_identity_key

logger = logging.getLogger(__name__)


class StoreFailurePolicy(str, enum.Enum):
    """What the admission layer does when the counter store fails."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


@dataclass(frozen=True)
class Identity:
    """Rate limited subject of one request."""

    key: str
    key_type: str
    config: LimitConfig


_limiter: RateLimiter | None = None
_limiter_config: tuple[str, float] | None = None


def get_rate_limiter() -> RateLimiter:
    """Return a process-wide rate limiter instance.

    The instance is cached in-module so the Redis connection pool is shared
    across requests. If the backend configuration changes (primarily in
    tests), the limiter is rebuilt.

    Returns:
        RateLimiter: Configured limiter instance.
    """

    global _limiter, _limiter_config

    config = (settings.app.storage_backend, settings.app.store_timeout_seconds)

    if _limiter is None or _limiter_config != config:
        _limiter = RateLimiter(create_storage_strategy(settings))
        _limiter_config = config

    return _limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Install (or clear, with None) the process-wide limiter."""

    global _limiter, _limiter_config

    _limiter = limiter
    _limiter_config = (
        (settings.app.storage_backend, settings.app.store_timeout_seconds)
        if limiter is not None
        else None
    )


async def close_rate_limiter() -> None:
    """Close the cached limiter's store connections, if any."""

    global _limiter, _limiter_config

    if _limiter is not None:
        await _limiter.storage.close()
    _limiter = None
    _limiter_config = None


def _parse_ip(value: str | None) -> str | None:
    if not value:
        return None
    candidate = value.strip()
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


def get_client_ip(request: Request) -> str:
    """Resolve the client address, honouring proxy headers.

    Order: first entry of X-Forwarded-For, then X-Real-IP, then the socket
    peer. Header values that are not valid IP addresses are ignored.

    Args:
        request: FastAPI request.

    Returns:
        str: Client address, or "unknown" when none can be determined.
    """

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip = _parse_ip(forwarded_for.split(",")[0])
        if ip:
            return ip

    ip = _parse_ip(request.headers.get("X-Real-IP"))
    if ip:
        return ip

    return request.client.host if request.client else "unknown"


def resolve_identity(request: Request, app_settings: AppSettings | None = None) -> Identity:
    """Pick the single (key, profile) pair a request is limited against.

    Args:
        request: FastAPI request.
        app_settings: Settings to read profiles from; defaults to global settings.

    Returns:
        Identity: Token identity when the token header is present, else address identity.
    """

    cfg = app_settings or settings.app
    token = request.headers.get(cfg.rate_limit_token_header)

    if token:
        return Identity(
            key=f"token:{token}",
            key_type="token",
            config=cfg.token_limit_config(),
        )

    return Identity(
        key=f"ip:{get_client_ip(request)}",
        key_type="ip",
        config=cfg.ip_limit_config(),
    )


def retry_after_seconds(config: LimitConfig) -> int:
    """Retry guidance for a denied request, derived from the block period."""
    return max(1, int(config.block_duration.total_seconds()))


def build_rate_limit_headers(config: LimitConfig, result: CheckResult) -> dict[str, str]:
    """Informational headers describing the identity's current budget."""
    return {
        "X-RateLimit-Limit": str(config.requests_per_second),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_time.timestamp())),
    }


async def enforce_rate_limit(request: Request, response: Response) -> None:
    """FastAPI dependency enforcing rate limits.

    Counts the request against its identity and raises when it is denied.
    Rate limit headers are attached to the response either way.

    Args:
        request: FastAPI request.
        response: Response whose headers receive the X-RateLimit-* values.

    Raises:
        RateLimitExceededError: When the identity exceeded its rate or is blocked.
        StoreError: When the store fails and the policy is fail_closed.
    """

    if not settings.app.rate_limit_enabled:
        return

    identity = resolve_identity(request)
    key_hash = hash_identity_key(identity.key)
    limiter = get_rate_limiter()

    try:
        result = await limiter.check(
            identity.key,
            identity.config,
            timeout=settings.app.rate_limit_check_timeout_seconds,
        )
    except StoreError as exc:
        policy = StoreFailurePolicy(settings.app.rate_limit_failure_policy)
        logger.error(
            "rate_limit.store_unavailable",
            extra={
                "key_type": identity.key_type,
                "key_hash": key_hash,
                "error_code": exc.code,
                "policy": policy.value,
            },
        )
        if policy is StoreFailurePolicy.FAIL_CLOSED:
            raise
        return

    headers = build_rate_limit_headers(identity.config, result)

    if result.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={
                "key_type": identity.key_type,
                "key_hash": key_hash,
                "limit": identity.config.requests_per_second,
                "remaining": result.remaining,
            },
        )
        if settings.app.rate_limit_include_headers:
            response.headers.update(headers)
        return

    retry_after = retry_after_seconds(identity.config)
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_type": identity.key_type,
            "key_hash": key_hash,
            "limit": identity.config.requests_per_second,
            "blocked": result.blocked,
            "retry_after_s": retry_after,
        },
    )

    raise RateLimitExceededError(
        retry_after_seconds=retry_after,
        limit=identity.config.requests_per_second,
        reset_at=int(result.reset_time.timestamp()),
        blocked=result.blocked,
    )
