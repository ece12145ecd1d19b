from __future__ import annotations

import logging

import pytest

from sharespace.backend.query import Order
from sharespace.backend.realtime import ChangePayload, Dispatcher
from sharespace.core.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationFailed,
)
from sharespace.models.enums import ChangeEvent
from tests.conftest import ADMIN_EMAIL, PASSWORD


async def register(backend, name: str, email: str | None = None):
    email = email or f"{name.lower()}@campus.edu"
    session = await backend.auth.sign_up(email, PASSWORD)
    await backend.db.insert(session.access_token, "profiles", {"id": session.user_id, "full_name": name, "email": email})
    return session.access_token, session.user_id


def listing(seller_id: int, title: str = "Lamp", **extra) -> dict:
    return {"seller_id": seller_id, "title": title, "price": "10", "category": "Furniture", "condition": "Good", **extra}


# ============================================================================
# Collections
# ============================================================================

class TestCollections:
    async def test_select_filters_order_and_limit(self, backend):
        token, uid = await register(backend, "Sam")
        for title in ("b", "a", "c"):
            await backend.db.insert(token, "products", listing(uid, title))

        rows = await backend.db.select(None, "products", order=(Order("title"),))
        assert [r["title"] for r in rows] == ["a", "b", "c"]

        rows = await backend.db.select(None, "products", filters={"title": ["a", "c"]}, order=(Order("title", desc=True),))
        assert [r["title"] for r in rows] == ["c", "a"]

        rows = await backend.db.select(None, "products", match_any=[{"title": "a"}, {"title": "b"}], limit=1)
        assert len(rows) == 1

    async def test_join_embeds_related_row(self, backend):
        token, uid = await register(backend, "Sam")
        await backend.db.insert(token, "products", listing(uid))

        row = (await backend.db.select(None, "products", joins=("seller",)))[0]
        assert row["seller"]["full_name"] == "Sam"
        assert set(row["seller"]) == {"id", "full_name", "seller_rating", "total_reviews", "verified_seller"}

    async def test_unknown_names_are_rejected(self, backend):
        with pytest.raises(NotFoundError):
            await backend.db.select(None, "orders")
        with pytest.raises(ValidationFailed):
            await backend.db.select(None, "products", filters={"colour": "red"})
        with pytest.raises(ValidationFailed):
            await backend.db.select(None, "products", joins=("buyer",))

    async def test_unwritable_and_out_of_range_values(self, backend):
        token, uid = await register(backend, "Sam")
        with pytest.raises(ValidationFailed):
            await backend.db.insert(token, "products", listing(uid, id=99))
        with pytest.raises(ValidationFailed):
            await backend.db.insert(token, "products", listing(uid, condition="Mint"))
        with pytest.raises(ValidationFailed):
            await backend.db.insert(token, "products", listing(uid, price="-5"))

    async def test_update_and_delete_need_filters(self, backend):
        token, _ = await register(backend, "Sam")
        with pytest.raises(ValidationFailed):
            await backend.db.update(token, "products", {}, {"title": "x"})
        with pytest.raises(ValidationFailed):
            await backend.db.delete(token, "products", {})

    async def test_unique_violation_is_a_conflict(self, backend):
        buyer_token, buyer = await register(backend, "Bea")
        seller_token, seller = await register(backend, "Sam")
        prod = await backend.db.insert(seller_token, "products", listing(seller))
        row = {"buyer_id": buyer, "seller_id": seller, "product_id": prod["id"]}

        await backend.db.insert(buyer_token, "conversations", row)
        with pytest.raises(ConflictError):
            await backend.db.insert(buyer_token, "conversations", row)

    async def test_upsert_inserts_then_updates(self, backend):
        token, buyer = await register(backend, "Bea")
        _, seller = await register(backend, "Sam")

        first = await backend.db.upsert(token, "seller_ratings", {"seller_id": seller, "buyer_id": buyer, "rating": 3}, ("seller_id", "buyer_id"))
        second = await backend.db.upsert(token, "seller_ratings", {"seller_id": seller, "buyer_id": buyer, "rating": 4}, ("seller_id", "buyer_id"))

        assert first["id"] == second["id"]
        assert second["rating"] == 4

    async def test_unknown_procedure(self, backend):
        token, _ = await register(backend, "Sam")
        with pytest.raises(NotFoundError):
            await backend.db.rpc(token, "drop_everything")


# ============================================================================
# Row policies
# ============================================================================

class TestPolicies:
    async def test_anonymous_writes_need_sign_in(self, backend):
        with pytest.raises(AuthenticationError):
            await backend.db.insert(None, "products", listing(1))

    async def test_forged_token(self, backend):
        with pytest.raises(AuthenticationError):
            await backend.db.select("not-a-jwt", "products")

    async def test_profile_for_someone_else(self, backend):
        session = await backend.auth.sign_up("eve@campus.edu", PASSWORD)
        with pytest.raises(AuthorizationError):
            await backend.db.insert(session.access_token, "profiles", {"id": session.user_id + 100, "full_name": "X", "email": "x@campus.edu"})

    async def test_listing_as_someone_else(self, backend):
        token, _ = await register(backend, "Eve")
        _, victim = await register(backend, "Sam")
        with pytest.raises(AuthorizationError):
            await backend.db.insert(token, "products", listing(victim))

    async def test_new_listing_must_be_active(self, backend):
        token, uid = await register(backend, "Sam")
        with pytest.raises(AuthorizationError):
            await backend.db.insert(token, "products", listing(uid, status="blocked"))

    async def test_owner_column_is_immutable(self, backend):
        token, uid = await register(backend, "Sam")
        _, other = await register(backend, "Bea")
        row = await backend.db.insert(token, "products", listing(uid))
        with pytest.raises(ValidationFailed):
            await backend.db.update(token, "products", {"id": row["id"]}, {"seller_id": other})

    async def test_only_admins_verify_sellers(self, backend):
        token, uid = await register(backend, "Sam")
        admin_token, _ = await register(backend, "Admin", email=ADMIN_EMAIL)

        with pytest.raises(AuthorizationError):
            await backend.db.update(token, "profiles", {"id": uid}, {"verified_seller": True})
        rows = await backend.db.update(admin_token, "profiles", {"id": uid}, {"verified_seller": True})
        assert rows[0]["verified_seller"] is True

    async def test_profiles_are_not_deleted_directly(self, backend):
        token, uid = await register(backend, "Sam")
        with pytest.raises(AuthorizationError):
            await backend.db.delete(token, "profiles", {"id": uid})

    async def test_roles_are_private_and_admin_managed(self, backend):
        token, uid = await register(backend, "Sam")
        admin_token, admin_id = await register(backend, "Admin", email=ADMIN_EMAIL)

        assert await backend.db.select(token, "user_roles") == []
        assert len(await backend.db.select(admin_token, "user_roles")) == 1
        with pytest.raises(AuthorizationError):
            await backend.db.insert(token, "user_roles", {"user_id": uid, "role": "admin"})

        await backend.auth.grant_role(uid, "admin")
        assert (await backend.auth.resolve(token)).is_admin

    async def test_conversation_needs_two_parties(self, backend):
        token, uid = await register(backend, "Sam")
        _, a = await register(backend, "Ann")
        _, b = await register(backend, "Bob")
        with pytest.raises(ValidationFailed):
            await backend.db.insert(token, "conversations", {"buyer_id": uid, "seller_id": uid})
        with pytest.raises(AuthorizationError):
            await backend.db.insert(token, "conversations", {"buyer_id": a, "seller_id": b})


# ============================================================================
# Change feed and dispatch
# ============================================================================

class TestChangeFeed:
    async def test_events_and_filters(self, backend):
        token, uid = await register(backend, "Sam")
        seen: list[ChangePayload] = []
        deletes: list[ChangePayload] = []

        async def on_any(payload):
            seen.append(payload)

        backend.feed.subscribe("products", on_any, filters={"seller_id": uid})
        backend.feed.subscribe("products", deletes.append, events=["DELETE"])

        row = await backend.db.insert(token, "products", listing(uid))
        await backend.db.update(token, "products", {"id": row["id"]}, {"title": "Lamp v2"})
        await backend.db.delete(token, "products", {"id": row["id"]})
        await backend.drain()

        assert [p.event for p in seen] == [ChangeEvent.insert, ChangeEvent.update, ChangeEvent.delete]
        assert seen[1].old["title"] == "Lamp" and seen[1].new["title"] == "Lamp v2"
        assert [p.record["id"] for p in deletes] == [row["id"]]

    async def test_no_op_update_publishes_nothing(self, backend):
        token, uid = await register(backend, "Sam")
        seen = []
        backend.feed.subscribe("products", seen.append)

        assert await backend.db.update(token, "products", {"id": 12345}, {"title": "x"}) == []
        await backend.drain()
        assert seen == []

    async def test_unsubscribe_stops_delivery(self, backend):
        token, uid = await register(backend, "Sam")
        seen = []
        sub = backend.feed.subscribe("products", seen.append)
        backend.feed.unsubscribe(sub)

        await backend.db.insert(token, "products", listing(uid))
        await backend.drain()
        assert seen == []

    async def test_rating_writes_publish_profile_updates(self, backend):
        token, buyer = await register(backend, "Bea")
        _, seller = await register(backend, "Sam")
        updates = []
        backend.feed.subscribe("profiles", updates.append, events=[ChangeEvent.update])

        await backend.db.insert(token, "seller_ratings", {"seller_id": seller, "buyer_id": buyer, "rating": 5})
        await backend.drain()

        assert updates[0].new["total_reviews"] == 1
        assert updates[0].old["total_reviews"] == 0

    async def test_client_subscriptions_only_see_visible_rows(self, backend):
        token, uid = await register(backend, "Sam")
        anonymous, signed_in = [], []

        async def as_anonymous():
            return await backend.auth.resolve(None)

        async def as_sam():
            return await backend.auth.resolve(token)

        backend.feed.subscribe("feedback", anonymous.append, actor=as_anonymous)
        backend.feed.subscribe("feedback", signed_in.append, actor=as_sam)
        backend.feed.subscribe("products", anonymous.append, actor=as_anonymous)

        await backend.db.insert(token, "feedback", {"user_id": uid, "message": "Great app", "category": "Platform"})
        await backend.db.insert(token, "products", listing(uid))
        await backend.drain()

        assert [p.table for p in anonymous] == ["products"]
        assert [p.table for p in signed_in] == ["feedback"]

    async def test_role_changes_reach_only_their_owner(self, backend):
        token, uid = await register(backend, "Sam")
        other_token, _ = await register(backend, "Bea")
        admin_token, _ = await register(backend, "Admin", email=ADMIN_EMAIL)
        owner_seen, other_seen = [], []

        async def as_sam():
            return await backend.auth.resolve(token)

        async def as_bea():
            return await backend.auth.resolve(other_token)

        backend.feed.subscribe("user_roles", owner_seen.append, actor=as_sam)
        backend.feed.subscribe("user_roles", other_seen.append, actor=as_bea)

        await backend.db.insert(admin_token, "user_roles", {"user_id": uid, "role": "admin"})
        await backend.drain()

        assert [p.new["user_id"] for p in owner_seen] == [uid]
        assert other_seen == []

    async def test_failing_callback_is_logged(self, caplog):
        dispatcher = Dispatcher()

        async def boom(*_):
            raise RuntimeError("listener exploded")

        def sync_boom(*_):
            raise ValueError("sync listener exploded")

        with caplog.at_level(logging.WARNING, logger="sharespace.backend.realtime"):
            dispatcher.fire(boom)
            dispatcher.fire(sync_boom)
            await dispatcher.drain()

        assert dispatcher.pending == 0
        assert "listener exploded" in caplog.text
        assert "sync listener exploded" in caplog.text


# ============================================================================
# Storage
# ============================================================================

class TestStorage:
    async def test_upload_and_public_url(self, backend, settings):
        token, _ = await register(backend, "Sam")
        actor = await backend.auth.resolve(token)

        await backend.storage.upload(actor, "product-images", "1/photo.jpg", b"jpeg", "image/jpeg")

        assert backend.storage.open_path("product-images", "1/photo.jpg").read_bytes() == b"jpeg"
        assert backend.storage.public_url("product-images", "1/photo.jpg") == "http://testserver/storage/product-images/1/photo.jpg"

    async def test_upload_rules(self, backend, settings):
        token, _ = await register(backend, "Sam")
        actor = await backend.auth.resolve(token)
        anonymous = await backend.auth.resolve(None)

        with pytest.raises(AuthenticationError):
            await backend.storage.upload(anonymous, "chat-images", "a.png", b"x")
        with pytest.raises(ValidationFailed) as err:
            await backend.storage.upload(actor, "chat-images", "a.png", b"x" * (settings.MAX_UPLOAD_BYTES + 1))
        assert err.value.status_code == 413
        with pytest.raises(ValidationFailed):
            await backend.storage.upload(actor, "chat-images", "../../etc/passwd", b"x")
        with pytest.raises(NotFoundError):
            backend.storage.open_path("chat-images", "missing.png")
