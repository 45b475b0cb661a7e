"""Pydantic schemas for the rate limited API responses."""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field


class RootResponse(BaseModel):
    """Greeting returned by ``GET /``."""

    message: str = Field(..., description="Static greeting.")
    ip: str = Field(..., description="Client address as resolved for rate limiting.")
    token_present: bool = Field(
        ..., description="Whether the request carried an API token."
    )
    identity_type: str = Field(
        ..., description="Identity class the request was limited as: 'ip' or 'token'."
    )


class EchoResponse(BaseModel):
    """Request echo returned by ``GET /test``."""

    message: str
    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Request headers, with the API token header removed.",
    )


class ProtectedResponse(BaseModel):
    """Response of the token-only route."""

    message: str


class StatsResponse(BaseModel):
    """Live counters and block records from the shared store."""

    counters: Dict[str, int] = Field(
        default_factory=dict,
        description=(
            "Request counts per counting key in the current window. Token values "
            "are replaced by a short hash."
        ),
    )
    total_keys: int = Field(..., description="Number of live counting keys.")
    active_blocks: List[str] = Field(
        default_factory=list,
        description=(
            "Block records currently in force, as store keys. Token values are "
            "replaced by the same hash used in counters."
        ),
    )


class ReadinessResponse(BaseModel):
    """Readiness probe result."""

    status: str = Field(..., description="'ok' or 'unavailable'.")
    store: str = Field(..., description="Configured counter store backend.")
