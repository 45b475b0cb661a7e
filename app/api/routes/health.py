from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import StoreError
from app.core.rate_limit import get_rate_limiter
from app.schemas.rate_limit import ReadinessResponse

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns a simple status response to verify the API is operational.
    Used by load balancers and monitoring systems to determine service health.
    Not rate limited.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check():
    """Readiness check: the counter store must answer a ping.

    Returns 503 when the store is unreachable so orchestrators stop routing
    traffic to an instance that would fail open on every request.
    """

    backend = settings.app.storage_backend
    try:
        reachable = await get_rate_limiter().storage.ping()
    except StoreError:
        reachable = False

    if not reachable:
        return JSONResponse(
            status_code=503,
            content=ReadinessResponse(status="unavailable", store=backend).model_dump(),
        )
    return ReadinessResponse(status="ok", store=backend)
