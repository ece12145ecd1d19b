from __future__ import annotations

from fastapi import APIRouter, Depends

from sharespace.api.deps import get_actor
from sharespace.backend.auth import Actor

router = APIRouter()

@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/session")
async def session(actor: Actor = Depends(get_actor)):
    return {"user_id": actor.user_id, "is_admin": actor.is_admin}
