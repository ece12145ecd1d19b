from __future__ import annotations

import logging

import httpx

from sharespace.backend.auth import AuthService
from sharespace.backend.database import DatabaseService
from sharespace.backend import policies
from sharespace.backend.functions import FunctionsService
from sharespace.backend.realtime import ChangeFeed, Dispatcher, PresenceHub
from sharespace.backend.storage import StorageService
from sharespace.core.config import Settings, settings as default_settings
from sharespace.core.db import engine_from_settings, make_sessionmaker
from sharespace.models.base import Base
import sharespace.models  # noqa: F401


log = logging.getLogger(__name__)


class Backend:
    """The hosted side: data, identity, storage, functions and realtime."""

    def __init__(self, settings: Settings | None = None, *, email_transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or default_settings
        self.engine = engine_from_settings(self.settings)
        self.sessionmaker = make_sessionmaker(self.engine)

        self.dispatcher = Dispatcher()
        self.feed = ChangeFeed(self.dispatcher, visible=policies.can_see_change)
        self.presence = PresenceHub(self.dispatcher)

        self.auth = AuthService(self.sessionmaker, self.settings)
        self.db = DatabaseService(self.sessionmaker, self.auth, self.feed)
        self.storage = StorageService(self.settings)
        self.functions = FunctionsService(self.settings, transport=email_transport)

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        log.info("[backend] schema ready")

    async def drain(self) -> None:
        await self.dispatcher.drain()

    async def aclose(self) -> None:
        await self.dispatcher.drain()
        await self.functions.aclose()
        await self.engine.dispose()
