from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sharespace.api.router import router as api_router
from sharespace.api.routes import storage
from sharespace.backend.service import Backend
from sharespace.core.config import Settings, settings as default_settings


log = logging.getLogger(__name__)


def create_app(backend: Backend | None = None, settings: Settings | None = None) -> FastAPI:
    s = backend.settings if backend is not None else (settings or default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.backend is None
        if owned:
            app.state.backend = Backend(s)
            await app.state.backend.create_all()
            log.info("[app] backend ready (%s)", s.APP_ENV)
        try:
            yield
        finally:
            if owned:
                await app.state.backend.aclose()
                app.state.backend = None

    app = FastAPI(title=s.APP_NAME, lifespan=lifespan)
    app.state.backend = backend

    origins = [o.strip() for o in (s.CORS_ORIGINS or "*").split(",")] if s.CORS_ORIGINS else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if origins != ["*"] else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=s.API_PREFIX)
    app.include_router(storage.router, prefix="/storage", tags=["storage"])
    return app


app = create_app()


def serve() -> None:
    import uvicorn

    uvicorn.run("sharespace.main:app", host="0.0.0.0", port=8000)
