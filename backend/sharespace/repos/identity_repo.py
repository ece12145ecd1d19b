from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sharespace.models.identity import AuthIdentity
from sharespace.models.profile import UserRoleAssignment
from sharespace.models.enums import AppRole


class IdentityRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_email(self, email: str) -> AuthIdentity | None:
        res = await self.session.execute(select(AuthIdentity).where(AuthIdentity.email == email))
        return res.scalar_one_or_none()

    async def get(self, identity_id: int) -> AuthIdentity | None:
        res = await self.session.execute(select(AuthIdentity).where(AuthIdentity.id == identity_id))
        return res.scalar_one_or_none()

    async def create(self, email: str, password_hash: str, attributes: dict | None = None) -> AuthIdentity:
        ident = AuthIdentity(email=email, password_hash=password_hash, attributes=attributes or {})
        self.session.add(ident)
        await self.session.flush()
        return ident

    async def bump_session_version(self, identity_id: int) -> int:
        ident = await self.get(identity_id)
        if not ident:
            return 0
        ident.session_version = int(ident.session_version or 1) + 1
        await self.session.flush()
        return ident.session_version


class RoleRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def roles_of(self, user_id: int) -> list[str]:
        res = await self.session.execute(select(UserRoleAssignment.role).where(UserRoleAssignment.user_id == user_id))
        return [str(r) for r in res.scalars().all()]

    async def is_admin(self, user_id: int) -> bool:
        return AppRole.admin.value in await self.roles_of(user_id)

    async def grant(self, user_id: int, role: str) -> UserRoleAssignment:
        res = await self.session.execute(
            select(UserRoleAssignment).where(UserRoleAssignment.user_id == user_id, UserRoleAssignment.role == role)
        )
        existing = res.scalar_one_or_none()
        if existing:
            return existing
        row = UserRoleAssignment(user_id=user_id, role=role)
        self.session.add(row)
        await self.session.flush()
        return row
