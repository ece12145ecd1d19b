from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from sharespace.api.deps import get_backend
from sharespace.backend.service import Backend
from sharespace.core.errors import MarketplaceError

router = APIRouter()


@router.get("/{bucket}/{path:path}")
async def get_object(bucket: str, path: str, backend: Backend = Depends(get_backend)):
    """Public read access to uploaded files."""
    try:
        target = backend.storage.open_path(bucket, path)
    except MarketplaceError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return FileResponse(target)
