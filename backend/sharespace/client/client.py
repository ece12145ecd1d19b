from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from sharespace.backend.auth import Actor
from sharespace.backend.query import Order
from sharespace.backend.realtime import Callback, PresenceChannel, Subscription
from sharespace.backend.service import Backend
from sharespace.client.auth import AuthClient
from sharespace.client.session_storage import MemoryTokenStorage, TokenStorage
from sharespace.core.errors import AuthenticationError
from sharespace.models.enums import ChangeEvent


class MarketplaceClient:
    """Per-session handle on the backend, bound to the caller's access token."""

    def __init__(self, backend: Backend, token_storage: TokenStorage | None = None):
        self._backend = backend
        self.settings = backend.settings
        self.auth = AuthClient(backend.auth, token_storage or MemoryTokenStorage(), backend.dispatcher)

    async def _call(self, fn, *args, **kwargs):
        token = self.auth.access_token
        try:
            return await fn(token, *args, **kwargs)
        except AuthenticationError:
            self.auth.token_rejected(token)
            raise

    # --- collections ---

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        match_any: Sequence[Mapping[str, Any]] | None = None,
        joins: Sequence[str] = (),
        order: Sequence[Order] = (),
        limit: int | None = None,
    ) -> list[dict]:
        return await self._call(
            self._backend.db.select,
            table,
            filters=filters,
            match_any=match_any,
            joins=joins,
            order=order,
            limit=limit,
        )

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict:
        return await self._call(self._backend.db.insert, table, row)

    async def update(self, table: str, filters: Mapping[str, Any], patch: Mapping[str, Any]) -> list[dict]:
        return await self._call(self._backend.db.update, table, filters, patch)

    async def delete(self, table: str, filters: Mapping[str, Any]) -> list[dict]:
        return await self._call(self._backend.db.delete, table, filters)

    async def upsert(self, table: str, row: Mapping[str, Any], on_conflict: Sequence[str]) -> dict:
        return await self._call(self._backend.db.upsert, table, row, on_conflict)

    async def rpc(self, name: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self._call(self._backend.db.rpc, name, params)

    # --- change feed ---

    def subscribe(
        self,
        table: str,
        callback: Callback,
        *,
        events: Iterable[ChangeEvent | str] | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> Subscription:
        return self._backend.feed.subscribe(
            table,
            callback,
            events=events,
            filters=dict(filters or {}),
            actor=self._actor,
        )

    async def _actor(self) -> Actor:
        # Resolved per delivery, so a revoked token stops receiving rows.
        return await self._backend.auth.resolve(self.auth.access_token)

    def unsubscribe(self, sub: Subscription) -> None:
        self._backend.feed.unsubscribe(sub)

    async def presence_channel(self, topic: str) -> PresenceChannel:
        user_id = await self._call(self._backend.db.authorize_channel, topic)
        return self._backend.presence.channel(topic, str(user_id))

    # --- storage ---

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        async def _upload(token):
            actor = await self._backend.auth.resolve(token)
            return await self._backend.storage.upload(actor, bucket, path, data, content_type)

        return await self._call(_upload)

    def public_url(self, bucket: str, path: str) -> str:
        return self._backend.storage.public_url(bucket, path)

    # --- functions ---

    async def invoke(self, name: str, payload: Mapping[str, Any]) -> Any:
        return await self._backend.functions.invoke(name, payload)
