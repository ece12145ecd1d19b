from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from sharespace.backend.auth import Actor
from sharespace.backend.service import Backend
from sharespace.core.errors import AuthenticationError

bearer = HTTPBearer(auto_error=False)


def get_backend(request: Request) -> Backend:
    return request.app.state.backend


async def get_actor(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    backend: Backend = Depends(get_backend),
) -> Actor:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return await backend.auth.resolve(creds.credentials)
    except AuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
