from __future__ import annotations

from app.api.routes.health import router as health_router
from app.api.routes.limited import router as limited_router

__all__ = ["health_router", "limited_router"]
