from __future__ import annotations

from pathlib import Path

import pytest

from sharespace.core.errors import AuthorizationError, ValidationFailed
from sharespace.stores.conversations import ImageUpload, typing_topic
from tests.conftest import product_draft


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
async def deal(make_user, settle):
    """Seller S with product P, buyer B, as in the marketplace walkthrough."""
    seller = await make_user("Sam Seller")
    buyer = await make_user("Bea Buyer")
    product = await seller.catalog.add(product_draft("Road bike", price="2500", condition="Like New"))
    await settle(seller, buyer)
    return seller, buyer, product


class TestEnsureConversation:
    async def test_is_idempotent(self, deal):
        seller, buyer, product = deal
        first = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        second = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        assert first == second

        # The seller replying from their side finds the same thread.
        assert await seller.conversations.ensure_conversation(buyer.session.user_id, product.id) == first

    async def test_separate_threads_per_product(self, deal):
        seller, buyer, product = deal
        other = await seller.catalog.add(product_draft("Helmet"))
        sid = seller.session.user_id

        a = await buyer.conversations.ensure_conversation(sid, product.id)
        b = await buyer.conversations.ensure_conversation(sid, other.id)
        c = await buyer.conversations.ensure_conversation(sid)

        assert len({a, b, c}) == 3
        assert await buyer.conversations.ensure_conversation(sid) == c

    async def test_with_self_is_rejected(self, deal):
        seller, _, product = deal
        with pytest.raises(ValidationFailed):
            await seller.conversations.ensure_conversation(seller.session.user_id, product.id)

    async def test_insert_conflict_resolves_to_existing_row(self, deal, monkeypatch):
        seller, buyer, product = deal
        store = buyer.conversations
        existing = await store.ensure_conversation(seller.session.user_id, product.id)

        real_find = store._find
        calls = []

        async def stale_find(*args):
            # The first lookup misses, as if another tab inserted concurrently.
            calls.append(args)
            if len(calls) == 1:
                return None
            return await real_find(*args)

        monkeypatch.setattr(store, "_find", stale_find)

        assert await store.ensure_conversation(seller.session.user_id, product.id) == existing
        assert len(calls) == 2


class TestMarketplaceWalkthrough:
    async def test_last_message_follows_sends_and_deletes(self, deal, settle, settings):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)

        await buyer.conversations.send(cid, "Is this available?")
        conv = buyer.conversations.get(cid)
        assert conv.last_message == "Is this available?"
        assert conv.last_message_at is not None
        text_sent_at = conv.last_message_at

        await settle(seller, buyer)
        image_msg = await seller.conversations.send(cid, image=ImageUpload("bike.png", PNG))
        await settle(seller, buyer)
        conv = buyer.conversations.get(cid)
        assert conv.last_message == settings.IMAGE_MESSAGE_PLACEHOLDER
        assert conv.last_message_at > text_sent_at
        assert image_msg.text is None
        assert image_msg.image_url.startswith("http://testserver/storage/chat-images/")

        await buyer.conversations.delete(image_msg.id, cid)
        await settle(seller, buyer)

        conv = buyer.conversations.get(cid)
        assert conv.last_message == "Is this available?"
        assert conv.last_message_at == text_sent_at
        assert seller.conversations.get(cid).last_message == "Is this available?"

    async def test_list_shows_counterparty_and_product(self, deal, settle):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        await buyer.conversations.send(cid, "Hi")
        await settle(seller, buyer)

        conv = seller.conversations.get(cid)
        assert conv.counterparty_id(seller.session.user_id) == buyer.session.user_id
        assert conv.counterparty_name(seller.session.user_id) == "Bea Buyer"
        assert conv.product_title == "Road bike"

    async def test_list_orders_by_last_message_nulls_last(self, deal, settle):
        seller, buyer, product = deal
        sid = seller.session.user_id
        quiet = await buyer.conversations.ensure_conversation(sid)
        older = await buyer.conversations.ensure_conversation(sid, product.id)
        helmet = await seller.catalog.add(product_draft("Helmet"))
        newer = await buyer.conversations.ensure_conversation(sid, helmet.id)

        await buyer.conversations.send(older, "first")
        await buyer.conversations.send(newer, "second")

        ids = [c.id for c in await buyer.conversations.list_for_user()]
        assert ids == [newer, older, quiet]


class TestMessages:
    async def test_deleting_the_only_message_clears_the_preview(self, deal):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        msg = await buyer.conversations.send(cid, "Hello")

        await buyer.conversations.delete(msg.id, cid)

        conv = buyer.conversations.get(cid)
        assert conv.last_message is None
        assert conv.last_message_at is None
        assert buyer.conversations.messages(cid) == []

    async def test_deleting_an_older_message_keeps_the_preview(self, deal):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        first = await buyer.conversations.send(cid, "one")
        await buyer.conversations.send(cid, "two")
        before = buyer.conversations.get(cid)

        await buyer.conversations.delete(first.id, cid)

        after = buyer.conversations.get(cid)
        assert (after.last_message, after.last_message_at) == (before.last_message, before.last_message_at)

    async def test_deleting_an_older_message_keeps_a_stale_preview_after_edit(self, deal):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        first = await buyer.conversations.send(cid, "one")
        newest = await buyer.conversations.send(cid, "two")
        await buyer.conversations.edit(newest.id, "two (edited)")
        before = buyer.conversations.get(cid)

        await buyer.conversations.delete(first.id, cid)

        after = buyer.conversations.get(cid)
        assert after.last_message == "two"
        assert (after.last_message, after.last_message_at) == (before.last_message, before.last_message_at)

    async def test_edit_updates_text_but_not_preview(self, deal):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        msg = await buyer.conversations.send(cid, "Is it avialable?")
        await buyer.conversations.load_messages(cid)

        edited = await buyer.conversations.edit(msg.id, "Is it available?")

        assert edited.text == "Is it available?"
        assert edited.edited_at is not None
        assert buyer.conversations.messages(cid)[0].text == "Is it available?"
        assert (await buyer.conversations.list_for_user())[0].last_message == "Is it avialable?"

    async def test_only_the_sender_can_edit(self, deal, settle):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        msg = await buyer.conversations.send(cid, "mine")

        with pytest.raises(AuthorizationError):
            await seller.conversations.edit(msg.id, "yours now")

    async def test_mark_read_is_idempotent(self, deal):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        msg = await buyer.conversations.send(cid, "Ping")
        await seller.conversations.open(cid)
        assert seller.conversations.unread_count(cid) == 1

        assert await seller.conversations.mark_read(msg.id) is True
        stamped = seller.conversations.messages(cid)[0].read_at
        assert stamped is not None

        assert await seller.conversations.mark_read(msg.id) is False
        await seller.conversations.load_messages(cid)
        assert seller.conversations.messages(cid)[0].read_at == stamped
        assert seller.conversations.unread_count(cid) == 0

    async def test_mark_conversation_read_skips_own_messages(self, deal):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        await buyer.conversations.send(cid, "a")
        await buyer.conversations.send(cid, "b")
        await seller.conversations.send(cid, "c")
        await seller.conversations.open(cid)

        assert await seller.conversations.mark_conversation_read(cid) == 2
        assert await seller.conversations.mark_conversation_read(cid) == 0

    async def test_outsiders_cannot_read_or_write(self, deal, make_user):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        await buyer.conversations.send(cid, "private")
        outsider = await make_user("Olly Outsider")

        assert await outsider.conversations.load_messages(cid) == []
        with pytest.raises(AuthorizationError):
            await outsider.conversations.send(cid, "hello?")

    async def test_empty_message_is_rejected(self, deal):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        with pytest.raises(ValidationFailed):
            await buyer.conversations.send(cid, "   ")

    async def test_oversized_image_is_rejected_before_upload(self, deal, settings):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        big = ImageUpload("huge.jpg", b"\0" * (settings.MAX_UPLOAD_BYTES + 1))

        with pytest.raises(ValidationFailed):
            await buyer.conversations.send(cid, "look", image=big)

        assert not (Path(settings.STORAGE_ROOT) / settings.CHAT_IMAGES_BUCKET).exists()
        assert await buyer.conversations.load_messages(cid) == []


class TestLiveUpdates:
    async def test_open_conversation_receives_new_messages(self, deal, settle):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        await seller.conversations.open(cid)

        await buyer.conversations.send(cid, "Are you around today?")
        await settle(seller, buyer)

        msgs = seller.conversations.messages(cid)
        assert [m.text for m in msgs] == ["Are you around today?"]
        assert msgs[0].sender_name == "Bea Buyer"

    async def test_typing_presence(self, deal, settle):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        await seller.conversations.open(cid)
        await buyer.conversations.open(cid)

        await buyer.conversations.set_typing(cid, True)
        await settle(seller, buyer)
        assert seller.conversations.typing_users(cid) == {buyer.session.user_id}
        assert buyer.conversations.typing_users(cid) == set()

        await buyer.conversations.set_typing(cid, False)
        await settle(seller, buyer)
        assert seller.conversations.typing_users(cid) == set()

    async def test_typing_outside_the_open_conversation_is_ignored(self, deal, backend, settle):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        await seller.conversations.open(cid)

        await buyer.conversations.set_typing(cid, True)
        await settle(seller, buyer)

        assert backend.presence.channel_count(typing_topic(cid)) == 1
        assert seller.conversations.typing_users(cid) == set()

    async def test_close_and_teardown_release_resources(self, deal, backend, settle):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        subs_before = backend.feed.active_count

        await seller.conversations.open(cid)
        await buyer.conversations.open(cid)
        await buyer.conversations.set_typing(cid, True)
        assert backend.feed.active_count == subs_before + 2
        assert backend.presence.channel_count(typing_topic(cid)) == 2

        await seller.conversations.close()
        assert seller.conversations.active_id is None
        assert backend.feed.active_count == subs_before + 1
        assert backend.presence.channel_count(typing_topic(cid)) == 1

        await buyer.session.logout()
        await settle(seller, buyer)
        assert backend.presence.channel_count(typing_topic(cid)) == 0
        assert backend.presence.state(typing_topic(cid)) == {}


class TestPrivacy:
    async def test_outsider_subscription_receives_no_private_rows(self, deal, make_user, settle):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        outsider = await make_user("Olly Outsider")
        leaked, delivered = [], []
        outsider.client.subscribe("messages", leaked.append)
        outsider.client.subscribe("conversations", leaked.append)
        seller.client.subscribe("messages", delivered.append)

        await buyer.conversations.send(cid, "my phone is 555-0100")
        await settle(seller, buyer, outsider)

        assert await outsider.client.select("messages") == []
        assert leaked == []
        assert [p.new["text"] for p in delivered] == ["my phone is 555-0100"]

    async def test_signed_out_subscription_stops_receiving(self, deal, settle):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        seen = []
        seller.client.subscribe("messages", seen.append)
        await seller.session.logout()

        await buyer.conversations.send(cid, "still there?")
        await settle(seller, buyer)

        assert seen == []

    async def test_outsider_cannot_join_typing_channel(self, deal, make_user, backend):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)
        outsider = await make_user("Olly Outsider")

        with pytest.raises(AuthorizationError):
            await outsider.client.presence_channel(typing_topic(cid))
        with pytest.raises(AuthorizationError):
            await outsider.conversations.open(cid)

        assert outsider.conversations.active_id is None
        assert backend.presence.channel_count(typing_topic(cid)) == 0

    async def test_presence_key_is_the_callers_id(self, deal):
        seller, buyer, product = deal
        cid = await buyer.conversations.ensure_conversation(seller.session.user_id, product.id)

        ch = await buyer.client.presence_channel(typing_topic(cid))
        try:
            assert ch.key == str(buyer.session.user_id)
        finally:
            await ch.aclose()
