from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, model_validator


def _name(data: dict, key: str) -> str | None:
    rel = data.get(key)
    return rel.get("full_name") if isinstance(rel, dict) else None


class ConversationOut(BaseModel):
    id: int
    buyer_id: int
    seller_id: int
    product_id: int | None = None
    last_message: str | None = None
    last_message_at: datetime | None = None
    created_at: datetime | None = None

    buyer_name: str | None = None
    seller_name: str | None = None
    product_title: str | None = None
    product_image_url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data):
        if not isinstance(data, dict):
            return data
        out = dict(data)
        out.setdefault("buyer_name", _name(data, "buyer"))
        out.setdefault("seller_name", _name(data, "seller"))
        product = data.get("product")
        if isinstance(product, dict):
            out.setdefault("product_title", product.get("title"))
            out.setdefault("product_image_url", product.get("image_url"))
        return out

    def counterparty_id(self, user_id: int) -> int:
        return self.seller_id if user_id == self.buyer_id else self.buyer_id

    def counterparty_name(self, user_id: int) -> str | None:
        return self.seller_name if user_id == self.buyer_id else self.buyer_name


class MessageOut(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    text: str | None = None
    image_url: str | None = None
    created_at: datetime
    edited_at: datetime | None = None
    read_at: datetime | None = None

    sender_name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data):
        if isinstance(data, dict) and "sender" in data:
            data = {**data, "sender_name": _name(data, "sender")}
        return data
