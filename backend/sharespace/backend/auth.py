from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from jose import JWTError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sharespace.core.config import Settings
from sharespace.core.errors import AuthenticationError, ConflictError, ValidationFailed
from sharespace.core.security import hash_password, verify_password, create_access_token, decode_token
from sharespace.models.enums import AppRole
from sharespace.repos.identity_repo import IdentityRepo, RoleRepo


log = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class Actor:
    """Who is calling. user_id is None for anonymous requests."""
    user_id: int | None = None
    is_admin: bool = False

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS = Actor()


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    user_id: int
    email: str
    expires_at: datetime


class AuthService:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], settings: Settings):
        self._sessionmaker = sessionmaker
        self._settings = settings

    def _admin_emails(self) -> set[str]:
        raw = self._settings.ADMIN_EMAILS or ""
        return {e.strip().lower() for e in raw.split(",") if e.strip()}

    def _issue(self, user_id: int, email: str, session_version: int) -> AuthSession:
        token = create_access_token(
            str(user_id),
            ttl_minutes=self._settings.JWT_ACCESS_TTL_MIN,
            extra={"sv": int(session_version or 1), "email": email},
            secret=self._settings.JWT_SECRET_KEY,
        )
        payload = decode_token(token, secret=self._settings.JWT_SECRET_KEY)
        return AuthSession(
            access_token=token,
            user_id=user_id,
            email=email,
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )

    async def sign_up(self, email: str, password: str, attributes: dict | None = None) -> AuthSession:
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationFailed("A valid email is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        async with self._sessionmaker() as db:
            repo = IdentityRepo(db)
            if await repo.get_by_email(email):
                raise ConflictError("Email already registered")
            try:
                ident = await repo.create(email, hash_password(password), attributes)
                if email in self._admin_emails():
                    await RoleRepo(db).grant(ident.id, AppRole.admin.value)
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise ConflictError("Email already registered") from e
            log.info("[auth] identity %s registered", ident.id)
            return self._issue(ident.id, ident.email, ident.session_version)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        email = (email or "").strip().lower()
        async with self._sessionmaker() as db:
            ident = await IdentityRepo(db).get_by_email(email)
            if not ident or not verify_password(password or "", ident.password_hash):
                raise AuthenticationError("Invalid email or password")
            return self._issue(ident.id, ident.email, ident.session_version)

    async def sign_out(self, token: str) -> None:
        """Revoke every token issued to the identity so far."""
        actor = await self.resolve(token)
        async with self._sessionmaker() as db:
            await IdentityRepo(db).bump_session_version(int(actor.user_id))
            await db.commit()

    async def get_session(self, token: str) -> AuthSession:
        try:
            payload = decode_token(token, secret=self._settings.JWT_SECRET_KEY)
        except JWTError as e:
            raise AuthenticationError("Invalid or expired token") from e
        actor = await self.resolve(token)
        return AuthSession(
            access_token=token,
            user_id=int(actor.user_id),
            email=str(payload.get("email") or ""),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )

    async def resolve(self, token: str | None) -> Actor:
        if not token:
            return ANONYMOUS
        try:
            payload = decode_token(token, secret=self._settings.JWT_SECRET_KEY)
        except JWTError as e:
            raise AuthenticationError("Invalid or expired token") from e

        sub = payload.get("sub")
        if not sub or not str(sub).isdigit():
            raise AuthenticationError("Invalid token subject")

        async with self._sessionmaker() as db:
            ident = await IdentityRepo(db).get(int(sub))
            if not ident:
                raise AuthenticationError("Identity no longer exists")

            # Session invalidation: token must match current session_version.
            token_sv = payload.get("sv")
            try:
                token_sv_int = int(token_sv) if token_sv is not None else 1
            except (TypeError, ValueError):
                token_sv_int = 1
            if token_sv_int != int(ident.session_version or 1):
                raise AuthenticationError("Session expired")

            return Actor(user_id=ident.id, is_admin=await RoleRepo(db).is_admin(ident.id))

    async def grant_role(self, user_id: int, role: str) -> None:
        async with self._sessionmaker() as db:
            await RoleRepo(db).grant(user_id, AppRole(role).value)
            await db.commit()
