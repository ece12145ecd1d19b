"""Row-level access rules, evaluated by the backend for every client call.

Clients may hide controls they cannot use, but the decision is made here.
"""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import select, or_, false
from sqlalchemy.ext.asyncio import AsyncSession

from sharespace.backend.auth import Actor
from sharespace.backend.realtime import ChangePayload
from sharespace.backend.tables import TableSpec
from sharespace.core.errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationFailed
from sharespace.models import Conversation, Message
from sharespace.models.enums import ProductStatus, FeedbackStatus


IMMUTABLE: dict[str, frozenset[str]] = {
    "profiles": frozenset({"id"}),
    "products": frozenset({"seller_id"}),
    "conversations": frozenset({"buyer_id", "seller_id", "product_id"}),
    "messages": frozenset({"conversation_id", "sender_id"}),
    "feedback": frozenset({"user_id"}),
    "seller_ratings": frozenset({"seller_id", "buyer_id"}),
}

SENDER_EDITABLE = frozenset({"text", "image_url", "edited_at"})
RECIPIENT_EDITABLE = frozenset({"read_at"})


def _participant_conversations(user_id: int):
    return select(Conversation.id).where(or_(Conversation.buyer_id == user_id, Conversation.seller_id == user_id))


def select_scope(spec: TableSpec, actor: Actor) -> list:
    """Extra WHERE conditions limiting which rows the actor can see."""
    if actor.is_admin:
        return []
    name = spec.name
    if name in ("feedback", "conversations", "messages", "user_roles") and not actor.authenticated:
        return [false()]
    if name == "conversations":
        return [or_(Conversation.buyer_id == actor.user_id, Conversation.seller_id == actor.user_id)]
    if name == "messages":
        return [Message.conversation_id.in_(_participant_conversations(int(actor.user_id)))]
    if name == "user_roles":
        return [spec.model.user_id == actor.user_id]
    return []


def _require_auth(actor: Actor) -> int:
    if not actor.authenticated:
        raise AuthenticationError("Sign in required")
    return int(actor.user_id)


def _deny(msg: str) -> None:
    raise AuthorizationError(msg)


async def _conversation_for(db: AsyncSession, conversation_id: Any) -> Conversation:
    conv = await db.get(Conversation, conversation_id) if conversation_id is not None else None
    if conv is None:
        raise NotFoundError("Conversation not found")
    return conv


async def check_insert(db: AsyncSession, spec: TableSpec, actor: Actor, values: dict) -> None:
    uid = _require_auth(actor)
    name = spec.name

    if name == "profiles":
        if values.get("id") != uid:
            _deny("Profiles can only be created for yourself")
        if values.get("verified_seller") and not actor.is_admin:
            _deny("Only administrators can verify sellers")
    elif name == "user_roles":
        if not actor.is_admin:
            _deny("Only administrators can assign roles")
    elif name == "products":
        if values.get("seller_id") != uid and not actor.is_admin:
            _deny("Products can only be listed by their seller")
        status = values.get("status", ProductStatus.active.value)
        if status != ProductStatus.active.value and not actor.is_admin:
            _deny("Only administrators can block products")
    elif name == "conversations":
        if uid not in (values.get("buyer_id"), values.get("seller_id")):
            _deny("You must be a participant of the conversation")
        if values.get("buyer_id") == values.get("seller_id"):
            raise ValidationFailed("Cannot start a conversation with yourself")
    elif name == "messages":
        if values.get("sender_id") != uid:
            _deny("Messages can only be sent as yourself")
        conv = await _conversation_for(db, values.get("conversation_id"))
        if uid not in (conv.buyer_id, conv.seller_id):
            _deny("You are not a participant of this conversation")
    elif name == "feedback":
        if values.get("user_id") != uid:
            _deny("Feedback can only be submitted as yourself")
        status = values.get("status", FeedbackStatus.pending.value)
        if status != FeedbackStatus.pending.value and not actor.is_admin:
            _deny("New feedback must be pending")
    elif name == "seller_ratings":
        if values.get("buyer_id") != uid:
            _deny("Ratings can only be given as yourself")
        if values.get("seller_id") == uid:
            raise ValidationFailed("You cannot rate yourself")


async def check_update(db: AsyncSession, spec: TableSpec, actor: Actor, row: Any, patch: dict) -> None:
    uid = _require_auth(actor)
    name = spec.name

    for col in IMMUTABLE.get(name, ()):
        if col in patch and patch[col] != getattr(row, col):
            raise ValidationFailed(f"{name}.{col} cannot be changed")

    if actor.is_admin:
        return

    if name == "profiles":
        if row.id != uid:
            _deny("You can only edit your own profile")
        if "verified_seller" in patch:
            _deny("Only administrators can verify sellers")
    elif name == "user_roles":
        _deny("Only administrators can change roles")
    elif name == "products":
        if row.seller_id != uid:
            _deny("Only the seller can edit this product")
        if "status" in patch and patch["status"] != row.status:
            _deny("Only administrators can block or unblock products")
    elif name == "conversations":
        if uid not in (row.buyer_id, row.seller_id):
            _deny("You are not a participant of this conversation")
    elif name == "messages":
        keys = set(patch)
        if row.sender_id == uid:
            if not keys <= SENDER_EDITABLE:
                _deny("Senders can only edit message text or image")
        else:
            conv = await _conversation_for(db, row.conversation_id)
            if uid not in (conv.buyer_id, conv.seller_id) or not keys <= RECIPIENT_EDITABLE:
                _deny("Only the sender can edit this message")
    elif name == "feedback":
        _deny("Only administrators can update feedback")
    elif name == "seller_ratings":
        if row.buyer_id != uid:
            _deny("Only the author can edit this rating")


async def check_delete(db: AsyncSession, spec: TableSpec, actor: Actor, row: Any) -> None:
    uid = _require_auth(actor)
    name = spec.name

    if name == "profiles":
        _deny("Profiles are removed through delete_user_account")
    if actor.is_admin:
        return

    if name == "user_roles":
        _deny("Only administrators can change roles")
    elif name == "products":
        if row.seller_id != uid:
            _deny("Only the seller can delete this product")
    elif name == "conversations":
        if uid not in (row.buyer_id, row.seller_id):
            _deny("You are not a participant of this conversation")
    elif name == "messages":
        # Either participant may remove a message from their shared thread.
        if row.sender_id != uid:
            conv = await _conversation_for(db, row.conversation_id)
            if uid not in (conv.buyer_id, conv.seller_id):
                _deny("You are not a participant of this conversation")
    elif name == "feedback":
        _deny("Only administrators can delete feedback")
    elif name == "seller_ratings":
        if row.buyer_id != uid:
            _deny("Only the author can delete this rating")


# --- realtime ---

PRIVATE_TABLES = frozenset({"feedback", "conversations", "messages", "user_roles"})


async def change_audience(
    db: AsyncSession,
    table: str,
    record: dict,
    conversations: Mapping[int, frozenset[int]] | None = None,
) -> frozenset[int] | None:
    """User ids (besides admins) who may see a change to `record`.

    None means the row is not restricted to particular users. `conversations`
    supplies participants of conversations already deleted in this session.
    """
    if table == "conversations":
        return frozenset({record["buyer_id"], record["seller_id"]})
    if table == "messages":
        cid = record.get("conversation_id")
        if conversations and cid in conversations:
            return conversations[cid]
        conv = await db.get(Conversation, cid) if cid is not None else None
        return frozenset({conv.buyer_id, conv.seller_id}) if conv is not None else frozenset()
    if table == "user_roles":
        return frozenset({record["user_id"]})
    return None


def can_see_change(actor: Actor, payload: ChangePayload) -> bool:
    if actor.is_admin:
        return True
    if payload.table in PRIVATE_TABLES and not actor.authenticated:
        return False
    if payload.audience is not None:
        return actor.user_id in payload.audience
    return True


async def check_channel(db: AsyncSession, actor: Actor, topic: str) -> int:
    """Who may join a presence topic. `typing:<conversation id>` is for participants."""
    uid = _require_auth(actor)
    if actor.is_admin:
        return uid
    kind, _, ref = topic.partition(":")
    if kind == "typing":
        if not ref.isdigit():
            raise ValidationFailed(f"Unknown presence topic {topic}")
        conv = await _conversation_for(db, int(ref))
        if uid not in (conv.buyer_id, conv.seller_id):
            _deny("You are not a participant of this conversation")
    return uid
