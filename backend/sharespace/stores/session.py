from __future__ import annotations

import asyncio
import logging
from typing import Callable

from sharespace.backend.auth import AuthSession
from sharespace.client.auth import SessionSubscription
from sharespace.client.client import MarketplaceClient
from sharespace.core.errors import MarketplaceError, NotFoundError
from sharespace.models.enums import AppRole, AuthEmailType, SessionEvent
from sharespace.schemas.auth import AuthResult
from sharespace.schemas.base import validate_input
from sharespace.schemas.profile import ProfileOut, PublicProfile, RegistrationForm


log = logging.getLogger(__name__)


class SessionStore:
    """Current identity plus its application profile."""

    def __init__(self, client: MarketplaceClient):
        self._client = client
        self.user: ProfileOut | None = None
        self._session_sub: SessionSubscription | None = None
        self._listeners: list[Callable[[ProfileOut | None], None]] = []
        self._background: set[asyncio.Task] = set()

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def user_id(self) -> int | None:
        return self.user.id if self.user else None

    @property
    def is_admin(self) -> bool:
        return bool(self.user and self.user.is_admin)

    def on_change(self, listener: Callable[[ProfileOut | None], None]) -> None:
        self._listeners.append(listener)

    def _set_user(self, user: ProfileOut | None) -> None:
        changed = (self.user.id if self.user else None) != (user.id if user else None)
        self.user = user
        if changed:
            for listener in list(self._listeners):
                listener(user)

    # --- lifecycle ---

    async def restore(self) -> ProfileOut | None:
        """Resume a persisted session without asking for credentials."""
        if self._session_sub is None:
            self._session_sub = self._client.auth.on_session_change(self._on_session_change)
        session = await self._client.auth.get_session()
        if session is None:
            self._set_user(None)
            return None
        try:
            self._set_user(await self._load_current(session.user_id))
        except MarketplaceError as e:
            log.warning("[session] could not restore profile for %s: %s", session.user_id, e)
            self._set_user(None)
        return self.user

    def _on_session_change(self, event: SessionEvent, session: AuthSession | None) -> None:
        if event in (SessionEvent.signed_out, SessionEvent.token_expired):
            log.info("[session] %s, clearing local identity", event.value)
            self._set_user(None)

    async def aclose(self) -> None:
        if self._session_sub is not None:
            self._session_sub.unsubscribe()
            self._session_sub = None
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # --- profile loading ---

    async def _load_current(self, user_id: int) -> ProfileOut:
        rows = await self._client.select("profiles", filters={"id": user_id}, limit=1)
        if not rows:
            raise NotFoundError("Profile not found")
        roles = await self._client.select("user_roles", filters={"user_id": user_id})
        is_admin = any(r["role"] == AppRole.admin.value for r in roles)
        return ProfileOut.model_validate({**rows[0], "is_admin": is_admin})

    async def load_profile(self, user_id: int) -> PublicProfile | None:
        rows = await self._client.select("profiles", filters={"id": user_id}, limit=1)
        if not rows:
            return None
        products = await self._client.select("products", filters={"seller_id": user_id})
        return PublicProfile(profile=ProfileOut.model_validate(rows[0]), product_count=len(products))

    # --- auth flows ---

    async def register(self, form: RegistrationForm | dict, password: str) -> AuthResult:
        try:
            data = validate_input(RegistrationForm, form)
            session = await self._client.auth.sign_up(data.email, password, {"full_name": data.full_name})
            row = {"id": session.user_id, **data.model_dump()}
            row["email"] = session.email
            await self._client.insert("profiles", row)
            self._set_user(await self._load_current(session.user_id))
        except MarketplaceError as e:
            log.info("[session] registration failed: %s", e)
            if self._client.auth.session is not None and self.user is None:
                await self._client.auth.sign_out()
            return AuthResult.fail(str(e))

        self._send_auth_email(AuthEmailType.registration)
        return AuthResult.ok()

    async def login(self, email: str, password: str) -> AuthResult:
        try:
            session = await self._client.auth.sign_in_with_password(email, password)
            self._set_user(await self._load_current(session.user_id))
        except MarketplaceError as e:
            log.info("[session] login failed: %s", e)
            if self._client.auth.session is not None and self.user is None:
                await self._client.auth.sign_out()
            return AuthResult.fail(str(e))

        self._send_auth_email(AuthEmailType.login)
        return AuthResult.ok()

    async def logout(self) -> None:
        try:
            await self._client.auth.sign_out()
        except Exception as e:
            log.warning("[session] remote sign-out failed: %s", e)
        finally:
            self._set_user(None)

    async def delete_account(self) -> AuthResult:
        if self.user is None:
            return AuthResult.fail("Not signed in")
        try:
            await self._client.rpc("delete_user_account")
        except MarketplaceError as e:
            log.warning("[session] account deletion failed: %s", e)
            return AuthResult.fail(str(e))
        # The identity is gone, so the remote sign-out is expected to fail.
        await self.logout()
        return AuthResult.ok()

    # --- best-effort notifications ---

    def _send_auth_email(self, kind: AuthEmailType) -> None:
        if self.user is None:
            return
        payload = {"email": self.user.email, "name": self.user.full_name, "type": kind.value}
        task = asyncio.ensure_future(self._invoke_email(payload))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _invoke_email(self, payload: dict) -> None:
        try:
            await self._client.invoke("send-auth-email", payload)
        except Exception as e:
            log.warning("[session] %s email to %s not sent: %s", payload.get("type"), payload.get("email"), e)
