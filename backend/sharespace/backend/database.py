from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from sharespace.backend import policies
from sharespace.backend.auth import Actor, AuthService
from sharespace.backend.query import Order, build_conditions, build_order, match
from sharespace.backend.realtime import ChangeFeed, ChangePayload
from sharespace.backend.tables import TableSpec, get_table, row_to_dict, TABLES
from sharespace.core.errors import ConflictError, MarketplaceError, NotFoundError, ValidationFailed
from sharespace.models.enums import ChangeEvent
from sharespace.repos.account_repo import AccountRepo
from sharespace.repos.rating_repo import RatingRepo


log = logging.getLogger(__name__)


def _integrity_error(e: IntegrityError) -> MarketplaceError:
    msg = str(getattr(e, "orig", e))
    low = msg.lower()
    if "check constraint" in low or "not null" in low:
        return ValidationFailed(msg)
    return ConflictError(msg)


class DatabaseService:
    """Table-level access with row policies and change notifications."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], auth: AuthService, feed: ChangeFeed):
        self._sessionmaker = sessionmaker
        self._auth = auth
        self._feed = feed

    # --- helpers ---

    def _validate_values(self, spec: TableSpec, values: Mapping[str, Any]) -> dict:
        unknown = set(values) - spec.writable
        if unknown:
            raise ValidationFailed(f"Columns not writable on {spec.name}: {', '.join(sorted(unknown))}")
        for col, allowed in spec.choices.items():
            if col in values and values[col] is not None:
                v = getattr(values[col], "value", values[col])
                if v not in allowed:
                    raise ValidationFailed(f"{spec.name}.{col} must be one of {', '.join(allowed)}")
        return {k: getattr(v, "value", v) if k in spec.choices else v for k, v in values.items()}

    def _publish(
        self,
        table: str,
        event: ChangeEvent,
        new: dict | None,
        old: dict | None,
        audience: frozenset[int] | None = None,
    ) -> None:
        self._feed.publish(ChangePayload(table=table, event=event, new=new, old=old, audience=audience))

    async def _commit(self, db: AsyncSession) -> None:
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise _integrity_error(e) from e

    async def _after_write(self, db: AsyncSession, table: str, rows: Iterable[dict]) -> list[tuple[dict, dict]]:
        """Server-side triggers. Returns (old, new) profile rows that changed."""
        if table != "seller_ratings":
            return []
        changed = []
        profiles = TABLES["profiles"]
        repo = RatingRepo(db)
        for seller_id in sorted({r["seller_id"] for r in rows}):
            profile = await db.get(profiles.model, seller_id)
            if profile is None:
                continue
            old = row_to_dict(profile, profiles)
            await repo.recompute_seller_aggregate(seller_id)
            changed.append((old, row_to_dict(profile, profiles)))
        return changed

    # --- collection contract ---

    async def select(
        self,
        token: str | None,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        match_any: Sequence[Mapping[str, Any]] | None = None,
        joins: Sequence[str] = (),
        order: Sequence[Order] = (),
        limit: int | None = None,
    ) -> list[dict]:
        spec = get_table(table)
        actor = await self._auth.resolve(token)
        for j in joins:
            if j not in spec.joins:
                raise ValidationFailed(f"Unknown join {table}.{j}")

        q = select(spec.model).where(*build_conditions(spec, filters, match_any), *policies.select_scope(spec, actor))
        for j in joins:
            q = q.options(selectinload(getattr(spec.model, spec.joins[j].relationship)))
        q = q.order_by(*build_order(spec, order))
        if limit is not None:
            q = q.limit(int(limit))

        async with self._sessionmaker() as db:
            res = await db.execute(q)
            return [row_to_dict(obj, spec, tuple(joins)) for obj in res.scalars().all()]

    async def insert(self, token: str | None, table: str, row: Mapping[str, Any]) -> dict:
        spec = get_table(table)
        actor = await self._auth.resolve(token)
        values = self._validate_values(spec, row)

        async with self._sessionmaker() as db:
            await policies.check_insert(db, spec, actor, values)
            obj = spec.model(**values)
            db.add(obj)
            try:
                await db.flush()
            except IntegrityError as e:
                await db.rollback()
                raise _integrity_error(e) from e
            new = row_to_dict(obj, spec)
            audience = await policies.change_audience(db, table, new)
            profile_changes = await self._after_write(db, table, [new])
            await self._commit(db)

        self._publish(table, ChangeEvent.insert, new, None, audience)
        for old_p, new_p in profile_changes:
            self._publish("profiles", ChangeEvent.update, new_p, old_p)
        return new

    async def update(
        self,
        token: str | None,
        table: str,
        filters: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> list[dict]:
        """Apply `patch` to every visible row matching `filters`.

        Rows that no longer match (e.g. `read_at IS NULL` already set) are left
        alone, so conditional updates are no-ops rather than errors.
        """
        spec = get_table(table)
        if not filters:
            raise ValidationFailed("update requires at least one filter")
        actor = await self._auth.resolve(token)
        values = self._validate_values(spec, patch)
        if not values:
            raise ValidationFailed("Nothing to update")

        changes: list[tuple[dict, dict, frozenset[int] | None]] = []
        async with self._sessionmaker() as db:
            res = await db.execute(
                select(spec.model).where(*match(spec, filters), *policies.select_scope(spec, actor))
            )
            rows = list(res.scalars().all())
            for obj in rows:
                await policies.check_update(db, spec, actor, obj, values)
            for obj in rows:
                old = row_to_dict(obj, spec)
                for k, v in values.items():
                    setattr(obj, k, v)
                try:
                    await db.flush()
                except IntegrityError as e:
                    await db.rollback()
                    raise _integrity_error(e) from e
                new = row_to_dict(obj, spec)
                changes.append((old, new, await policies.change_audience(db, table, new)))
            profile_changes = await self._after_write(db, table, [new for _, new, _ in changes])
            await self._commit(db)

        for old, new, audience in changes:
            self._publish(table, ChangeEvent.update, new, old, audience)
        for old_p, new_p in profile_changes:
            self._publish("profiles", ChangeEvent.update, new_p, old_p)
        return [new for _, new, _ in changes]

    async def delete(self, token: str | None, table: str, filters: Mapping[str, Any]) -> list[dict]:
        spec = get_table(table)
        if not filters:
            raise ValidationFailed("delete requires at least one filter")
        actor = await self._auth.resolve(token)

        async with self._sessionmaker() as db:
            res = await db.execute(
                select(spec.model).where(*match(spec, filters), *policies.select_scope(spec, actor))
            )
            rows = list(res.scalars().all())
            for obj in rows:
                await policies.check_delete(db, spec, actor, obj)
            removed = [row_to_dict(obj, spec) for obj in rows]
            audiences = [await policies.change_audience(db, table, old) for old in removed]
            for obj in rows:
                await db.delete(obj)
            await db.flush()
            profile_changes = await self._after_write(db, table, removed)
            await self._commit(db)

        for old, audience in zip(removed, audiences):
            self._publish(table, ChangeEvent.delete, None, old, audience)
        for old_p, new_p in profile_changes:
            self._publish("profiles", ChangeEvent.update, new_p, old_p)
        return removed

    async def upsert(
        self,
        token: str | None,
        table: str,
        row: Mapping[str, Any],
        on_conflict: Sequence[str],
    ) -> dict:
        """Insert, or update the row that shares the `on_conflict` columns."""
        key = {c: row.get(c) for c in on_conflict}
        patch = {k: v for k, v in row.items() if k not in key}
        for _ in range(2):
            existing = await self.select(token, table, filters=key, limit=1)
            if existing:
                if not patch:
                    return existing[0]
                updated = await self.update(token, table, {"id": existing[0]["id"]}, patch)
                if updated:
                    return updated[0]
                continue
            try:
                return await self.insert(token, table, row)
            except ConflictError:
                # Lost a race with a concurrent insert; the next pass updates it.
                log.info("[db] upsert on %s raced with another insert, retrying as update", table)
        raise ConflictError(f"Could not upsert into {table}")

    async def rpc(self, token: str | None, name: str, params: Mapping[str, Any] | None = None) -> Any:
        actor = await self._auth.resolve(token)
        if name == "delete_user_account":
            return await self._delete_user_account(actor)
        raise NotFoundError(f"Unknown procedure: {name}")

    async def authorize_channel(self, token: str | None, topic: str) -> int:
        """Check the caller may join a presence topic; returns their user id."""
        actor = await self._auth.resolve(token)
        async with self._sessionmaker() as db:
            return await policies.check_channel(db, actor, topic)

    async def _delete_user_account(self, actor: Actor) -> dict[str, int]:
        uid = policies._require_auth(actor)
        async with self._sessionmaker() as db:
            deleted = await AccountRepo(db).delete_account(uid)
            rows = {table: [row_to_dict(obj, TABLES[table]) for obj in objs] for table, objs in deleted.items()}
            participants = {c["id"]: frozenset({c["buyer_id"], c["seller_id"]}) for c in rows.get("conversations", ())}
            audiences: dict[str, list] = {}
            for table, removed in rows.items():
                audiences[table] = [await policies.change_audience(db, table, old, participants) for old in removed]
            await self._commit(db)

        for table, removed in rows.items():
            for old, audience in zip(removed, audiences[table]):
                self._publish(table, ChangeEvent.delete, None, old, audience)
        log.info("[db] account %s deleted", uid)
        return {table: len(removed) for table, removed in rows.items()}
