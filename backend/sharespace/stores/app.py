from __future__ import annotations

import asyncio
import logging

from sharespace.backend.service import Backend
from sharespace.client.client import MarketplaceClient
from sharespace.client.session_storage import TokenStorage
from sharespace.core.errors import MarketplaceError
from sharespace.schemas.profile import ProfileOut
from sharespace.stores.catalog import CatalogStore
from sharespace.stores.conversations import ConversationStore
from sharespace.stores.feedback import FeedbackStore
from sharespace.stores.notifications import Notifier
from sharespace.stores.ratings import RatingStore
from sharespace.stores.session import SessionStore


log = logging.getLogger(__name__)


class AppStore:
    """Owns one client session and every cache built on it.

    Usage:
        async with AppStore(backend) as app:
            await app.session.login(email, password)
            await app.settle()
            app.catalog.active()
    """

    def __init__(self, backend: Backend, token_storage: TokenStorage | None = None):
        self.client = MarketplaceClient(backend, token_storage)
        self.notifier = Notifier()
        self.session = SessionStore(self.client)
        self.catalog = CatalogStore(self.client, self.session)
        self.conversations = ConversationStore(self.client, self.session)
        self.feedback = FeedbackStore(self.client, self.session)
        self.ratings = RatingStore(self.client, self.session)

        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self.session.on_change(self._on_user_change)

    async def __aenter__(self) -> "AppStore":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def start(self) -> None:
        await self.session.restore()
        await self.catalog.start()
        await self.settle()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def settle(self) -> None:
        """Wait for cache (re)starts triggered by sign-in and sign-out."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_user_change(self, user: ProfileOut | None) -> None:
        if self._closed:
            return
        task = asyncio.ensure_future(self._sync_user_caches())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _sync_user_caches(self) -> None:
        async with self._lock:
            await self.conversations.aclose()
            await self.feedback.aclose()
            if self._closed or not self.session.is_authenticated:
                log.debug("[app] user caches torn down")
                return
            try:
                await self.conversations.start()
                await self.feedback.start()
            except MarketplaceError as e:
                log.warning("[app] could not load caches for user %s: %s", self.session.user_id, e)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.settle()
        await self.conversations.aclose()
        await self.feedback.aclose()
        await self.catalog.aclose()
        await self.session.aclose()
