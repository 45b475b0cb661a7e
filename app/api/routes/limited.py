from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from app.adapters.rate_limit.base import BLOCK_KEY_PREFIX, COUNT_KEY_PREFIX
from app.core.config import settings
from app.core.rate_limit import enforce_rate_limit, get_client_ip, get_rate_limiter, resolve_identity
from app.schemas.rate_limit import EchoResponse, ProtectedResponse, RootResponse, StatsResponse
from app.services.rate_limiter import hash_identity_key

router = APIRouter(tags=["Rate limited"], dependencies=[Depends(enforce_rate_limit)])


def _mask_store_key(key: str, prefix: str) -> str:
    """Replace the token value of a ``<prefix>token:...`` store key with its hash.

    The hash covers the whole identity key, so a token's counter and its
    block record show the same masked value.
    """
    token_prefix = f"{prefix}token:"
    if key.startswith(token_prefix):
        return f"{token_prefix}{hash_identity_key(key[len(prefix):])}"
    return key


@router.get("/", response_model=RootResponse)
async def root(request: Request) -> RootResponse:
    """Report how the caller was identified for rate limiting."""
    identity = resolve_identity(request)
    return RootResponse(
        message="Rate limiter is running",
        ip=get_client_ip(request),
        token_present=identity.key_type == "token",
        identity_type=identity.key_type,
    )


@router.get("/test", response_model=EchoResponse)
async def echo(request: Request) -> EchoResponse:
    """Echo request headers; handy for load testing the limiter."""
    token_header = settings.app.rate_limit_token_header.lower()
    headers = {k: v for k, v in request.headers.items() if k.lower() != token_header}
    return EchoResponse(message="Load test endpoint", headers=headers)


@router.get("/protected", response_model=ProtectedResponse)
async def protected(request: Request) -> ProtectedResponse:
    """Route that requires the API token header.

    Raises:
        HTTPException: 401 when the token header is missing.
    """
    if not request.headers.get(settings.app.rate_limit_token_header):
        raise HTTPException(
            status_code=401,
            detail=f"Token required. Provide the {settings.app.rate_limit_token_header} header.",
        )
    return ProtectedResponse(message="Access granted")


@router.get("/stats", response_model=StatsResponse)
async def stats() -> StatsResponse:
    """Expose live request counters and active blocks from the shared store.

    Store errors propagate to the exception handlers (503 for an unreachable
    store); there is no fail-open path for diagnostics.
    """
    storage = get_rate_limiter().storage
    raw = await storage.get_stats(COUNT_KEY_PREFIX)
    blocked = await storage.list_keys(BLOCK_KEY_PREFIX)
    counters = {_mask_store_key(key, COUNT_KEY_PREFIX): count for key, count in raw.items()}
    active_blocks = sorted(_mask_store_key(key, BLOCK_KEY_PREFIX) for key in blocked)
    return StatsResponse(
        counters=counters,
        total_keys=len(counters),
        active_blocks=active_blocks,
    )
