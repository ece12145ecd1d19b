from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from sharespace.backend.auth import AuthService, AuthSession
from sharespace.backend.realtime import Dispatcher
from sharespace.client.session_storage import TokenStorage
from sharespace.core.errors import AuthenticationError
from sharespace.models.enums import SessionEvent


log = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent, AuthSession | None], Awaitable[None] | None]


@dataclass(eq=False)
class SessionSubscription:
    client: "AuthClient"
    listener: SessionListener

    def unsubscribe(self) -> None:
        self.client._remove_listener(self.listener)


class AuthClient:
    """Holds the caller's access token and reports session changes."""

    def __init__(self, service: AuthService, storage: TokenStorage, dispatcher: Dispatcher):
        self._service = service
        self._storage = storage
        self._dispatcher = dispatcher
        self._listeners: list[SessionListener] = []
        self._session: AuthSession | None = None

    @property
    def access_token(self) -> str | None:
        if self._session is not None:
            return self._session.access_token
        return self._storage.load()

    @property
    def session(self) -> AuthSession | None:
        return self._session

    def on_session_change(self, listener: SessionListener) -> SessionSubscription:
        self._listeners.append(listener)
        return SessionSubscription(self, listener)

    def _remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: SessionEvent, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            self._dispatcher.fire(listener, event, session)

    def _set(self, session: AuthSession) -> None:
        self._session = session
        self._storage.save(session.access_token)
        self._emit(SessionEvent.signed_in, session)

    def _clear(self, event: SessionEvent) -> None:
        had_session = self._session is not None or self._storage.load() is not None
        self._session = None
        self._storage.clear()
        if had_session:
            self._emit(event, None)

    async def sign_up(self, email: str, password: str, attributes: dict | None = None) -> AuthSession:
        session = await self._service.sign_up(email, password, attributes)
        self._set(session)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        session = await self._service.sign_in_with_password(email, password)
        self._set(session)
        return session

    async def sign_out(self) -> None:
        token = self.access_token
        try:
            if token:
                await self._service.sign_out(token)
        finally:
            self._clear(SessionEvent.signed_out)

    async def get_session(self) -> AuthSession | None:
        """Validate the persisted token; a rejected token ends the session."""
        token = self.access_token
        if not token:
            return None
        try:
            session = await self._service.get_session(token)
        except AuthenticationError as e:
            log.info("[auth] stored session rejected: %s", e)
            self._clear(SessionEvent.token_expired)
            return None
        self._session = session
        return session

    def token_rejected(self, token: str | None) -> None:
        """Called when a request made with `token` was refused as unauthenticated."""
        if token and token == self.access_token:
            log.info("[auth] access token rejected by the backend, clearing session")
            self._clear(SessionEvent.token_expired)
