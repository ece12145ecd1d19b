from __future__ import annotations

from fastapi import APIRouter

from sharespace.api.routes import health

router = APIRouter()
router.include_router(health.router, tags=["health"])
