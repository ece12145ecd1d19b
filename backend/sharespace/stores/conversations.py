from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath

from sharespace.backend.query import Order
from sharespace.backend.realtime import ChangePayload, PresenceChannel, Subscription
from sharespace.client.client import MarketplaceClient
from sharespace.core.errors import AuthenticationError, ConflictError, NotFoundError, ValidationFailed
from sharespace.models.base import utcnow
from sharespace.schemas.chat import ConversationOut, MessageOut
from sharespace.stores.session import SessionStore


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageUpload:
    filename: str
    data: bytes
    content_type: str | None = None


def typing_topic(conversation_id: int) -> str:
    return f"typing:{conversation_id}"


class ConversationStore:
    """Conversations of the signed-in user and the messages of opened ones."""

    def __init__(self, client: MarketplaceClient, session: SessionStore):
        self._client = client
        self._session = session
        self._conversations: list[ConversationOut] = []
        self._messages: dict[int, list[MessageOut]] = {}
        self._conv_subs: list[Subscription] = []

        self.active_id: int | None = None
        self._msg_sub: Subscription | None = None
        self._channels: dict[int, PresenceChannel] = {}
        self._typing: dict[int, set[int]] = {}

    def _me(self) -> int:
        uid = self._session.user_id
        if uid is None:
            raise AuthenticationError("Sign in to use chat")
        return uid

    # --- snapshots ---

    @property
    def conversations(self) -> list[ConversationOut]:
        return list(self._conversations)

    def get(self, conversation_id: int) -> ConversationOut | None:
        return next((c for c in self._conversations if c.id == conversation_id), None)

    def messages(self, conversation_id: int) -> list[MessageOut]:
        return list(self._messages.get(conversation_id, ()))

    def unread_count(self, conversation_id: int) -> int:
        me = self._session.user_id
        return sum(1 for m in self._messages.get(conversation_id, ()) if m.sender_id != me and m.read_at is None)

    def typing_users(self, conversation_id: int) -> set[int]:
        return set(self._typing.get(conversation_id, ()))

    # --- lifecycle ---

    async def start(self) -> None:
        me = self._me()
        if not self._conv_subs:
            self._conv_subs = [
                self._client.subscribe("conversations", self._on_conversation_change, filters={"buyer_id": me}),
                self._client.subscribe("conversations", self._on_conversation_change, filters={"seller_id": me}),
            ]
        await self.list_for_user()

    async def aclose(self) -> None:
        for sub in self._conv_subs:
            self._client.unsubscribe(sub)
        self._conv_subs = []
        await self.close()
        for ch in list(self._channels.values()):
            await ch.aclose()
        self._channels.clear()
        self._typing.clear()
        self._conversations = []
        self._messages.clear()

    async def _on_conversation_change(self, payload: ChangePayload) -> None:
        if self._session.is_authenticated:
            await self.list_for_user()

    async def open(self, conversation_id: int) -> list[MessageOut]:
        """Make a conversation active: watch its messages and typing presence."""
        if self.active_id != conversation_id:
            await self.close()
            await self._join(conversation_id)
            self.active_id = conversation_id
            self._msg_sub = self._client.subscribe(
                "messages", self._on_message_change, filters={"conversation_id": conversation_id}
            )
        return await self.load_messages(conversation_id)

    async def close(self) -> None:
        if self._msg_sub is not None:
            self._client.unsubscribe(self._msg_sub)
            self._msg_sub = None
        if self.active_id is not None:
            ch = self._channels.pop(self.active_id, None)
            if ch is not None:
                await ch.aclose()
            self._typing.pop(self.active_id, None)
        self.active_id = None

    async def _on_message_change(self, payload: ChangePayload) -> None:
        cid = payload.record.get("conversation_id")
        if cid is not None:
            await self.load_messages(int(cid))

    async def _join(self, conversation_id: int) -> PresenceChannel:
        ch = self._channels.get(conversation_id)
        if ch is None:
            ch = await self._client.presence_channel(typing_topic(conversation_id))

            def _sync(state: dict[str, dict], cid: int = conversation_id) -> None:
                me = self._session.user_id
                self._typing[cid] = {
                    int(key) for key, meta in state.items() if meta.get("typing") and int(key) != me
                }

            ch.on_sync(_sync)
            self._channels[conversation_id] = ch
        return ch

    # --- conversations ---

    async def list_for_user(self) -> list[ConversationOut]:
        me = self._me()
        rows = await self._client.select(
            "conversations",
            match_any=[{"buyer_id": me}, {"seller_id": me}],
            joins=("buyer", "seller", "product"),
            order=(Order("last_message_at", desc=True, nulls_last=True),),
        )
        self._conversations = [ConversationOut.model_validate(r) for r in rows]
        return self.conversations

    async def _find(self, me: int, counterparty_id: int, product_id: int | None) -> dict | None:
        rows = await self._client.select(
            "conversations",
            match_any=[
                {"buyer_id": me, "seller_id": counterparty_id, "product_id": product_id},
                {"buyer_id": counterparty_id, "seller_id": me, "product_id": product_id},
            ],
            order=(Order("created_at"),),
            limit=1,
        )
        return rows[0] if rows else None

    async def ensure_conversation(self, counterparty_id: int, product_id: int | None = None) -> int:
        """Return the conversation about `product_id` with `counterparty_id`, creating it once."""
        me = self._me()
        if counterparty_id == me:
            raise ValidationFailed("You cannot start a conversation with yourself")

        existing = await self._find(me, counterparty_id, product_id)
        if existing:
            return int(existing["id"])
        try:
            row = await self._client.insert(
                "conversations",
                {"buyer_id": me, "seller_id": counterparty_id, "product_id": product_id},
            )
        except ConflictError:
            # Another tab created it between our lookup and insert.
            existing = await self._find(me, counterparty_id, product_id)
            if not existing:
                raise
            row = existing
        await self.list_for_user()
        return int(row["id"])

    # --- messages ---

    async def load_messages(self, conversation_id: int) -> list[MessageOut]:
        rows = await self._client.select(
            "messages",
            filters={"conversation_id": conversation_id},
            joins=("sender",),
            order=(Order("created_at"),),
        )
        self._messages[conversation_id] = [MessageOut.model_validate(r) for r in rows]
        return self.messages(conversation_id)

    def _preview(self, text: str | None) -> str:
        return text if text else self._client.settings.IMAGE_MESSAGE_PLACEHOLDER

    async def _upload_image(self, conversation_id: int, image: ImageUpload) -> str:
        limit = int(self._client.settings.MAX_UPLOAD_BYTES)
        if len(image.data) > limit:
            raise ValidationFailed(f"Image is larger than {limit // (1024 * 1024)} MB")
        suffix = PurePosixPath(image.filename).suffix.lower()
        path = f"{conversation_id}/{uuid.uuid4().hex}{suffix}"
        content_type = image.content_type or mimetypes.guess_type(image.filename)[0]
        bucket = self._client.settings.CHAT_IMAGES_BUCKET
        await self._client.upload(bucket, path, image.data, content_type)
        return self._client.public_url(bucket, path)

    async def send(self, conversation_id: int, text: str | None = None, image: ImageUpload | None = None) -> MessageOut:
        me = self._me()
        text = (text or "").strip() or None
        if text is None and image is None:
            raise ValidationFailed("Message must contain text or an image")

        image_url = await self._upload_image(conversation_id, image) if image is not None else None
        row = await self._client.insert(
            "messages",
            {"conversation_id": conversation_id, "sender_id": me, "text": text, "image_url": image_url},
        )
        await self._client.update(
            "conversations",
            {"id": conversation_id},
            {"last_message": self._preview(text), "last_message_at": row["created_at"]},
        )
        if conversation_id in self._messages:
            await self.load_messages(conversation_id)
        await self.list_for_user()
        return MessageOut.model_validate(row)

    async def edit(self, message_id: int, text: str) -> MessageOut:
        """Change the text of one's own message.

        The conversation preview is left as it was, even for the newest message.
        """
        text = (text or "").strip()
        if not text:
            raise ValidationFailed("Message text cannot be empty")
        rows = await self._client.update("messages", {"id": message_id}, {"text": text, "edited_at": utcnow()})
        if not rows:
            raise NotFoundError("Message not found")
        msg = MessageOut.model_validate(rows[0])
        if msg.conversation_id in self._messages:
            await self.load_messages(msg.conversation_id)
        return msg

    async def delete(self, message_id: int, conversation_id: int) -> None:
        removed = await self._client.delete("messages", {"id": message_id, "conversation_id": conversation_id})
        if not removed:
            raise NotFoundError("Message not found")
        remaining = await self.load_messages(conversation_id)
        await self._recompute_preview(conversation_id, remaining)
        await self.list_for_user()

    async def _recompute_preview(self, conversation_id: int, remaining: list[MessageOut]) -> None:
        rows = await self._client.select("conversations", filters={"id": conversation_id}, limit=1)
        if not rows:
            raise NotFoundError("Conversation not found")
        current = rows[0]

        if remaining:
            tail = remaining[-1]
            if current.get("last_message_at") == tail.created_at:
                # The newest message is still there, so the preview stays as it is.
                return
            patch = {"last_message": self._preview(tail.text), "last_message_at": tail.created_at}
        else:
            patch = {"last_message": None, "last_message_at": None}
        if all(current.get(k) == v for k, v in patch.items()):
            return
        await self._client.update("conversations", {"id": conversation_id}, patch)

    async def mark_read(self, message_id: int) -> bool:
        """Stamp read_at once. Returns False when it was already set."""
        rows = await self._client.update("messages", {"id": message_id, "read_at": None}, {"read_at": utcnow()})
        if rows:
            cid = int(rows[0]["conversation_id"])
            if cid in self._messages:
                await self.load_messages(cid)
        return bool(rows)

    async def mark_conversation_read(self, conversation_id: int) -> int:
        me = self._me()
        count = 0
        for m in self.messages(conversation_id):
            if m.sender_id != me and m.read_at is None and await self.mark_read(m.id):
                count += 1
        return count

    async def set_typing(self, conversation_id: int, is_typing: bool) -> None:
        """Best effort: the signal may be lost and nothing is persisted.

        Only the open conversation carries a typing channel; other ids are ignored.
        """
        ch = self._channels.get(conversation_id) if conversation_id == self.active_id else None
        if ch is None:
            log.debug("[chat] typing signal for %s ignored, conversation not open", conversation_id)
            return
        try:
            if is_typing:
                await ch.track({"typing": True, "user_id": self._me(), "at": utcnow().isoformat()})
            else:
                await ch.untrack()
        except Exception as e:
            log.debug("[chat] typing signal for %s dropped: %s", conversation_id, e)
