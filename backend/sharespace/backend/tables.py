from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import inspect as sa_inspect

from sharespace.core.errors import NotFoundError
from sharespace.models import Base, Profile, UserRoleAssignment, Product, Conversation, Message, Feedback, SellerRating
from sharespace.models.enums import AppRole, ProductCondition, ProductStatus, FeedbackCategory, FeedbackStatus


PROFILE_DISPLAY = ("id", "full_name", "seller_rating", "total_reviews", "verified_seller")


@dataclass(frozen=True)
class Join:
    """A named embed of a related row, like `seller:profiles(full_name, ...)`."""
    relationship: str
    columns: tuple[str, ...]


@dataclass(frozen=True)
class TableSpec:
    name: str
    model: type[Base]
    # Columns a client may send on insert/update. Anything else is rejected.
    writable: frozenset[str]
    joins: dict[str, Join] = field(default_factory=dict)
    choices: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def columns(self) -> list[str]:
        return [c.key for c in sa_inspect(self.model).columns]


TABLES: dict[str, TableSpec] = {
    "profiles": TableSpec(
        name="profiles",
        model=Profile,
        writable=frozenset({"id", "full_name", "email", "phone", "college", "department", "roll_number", "verified_seller"}),
    ),
    "user_roles": TableSpec(
        name="user_roles",
        model=UserRoleAssignment,
        writable=frozenset({"user_id", "role"}),
        choices={"role": tuple(AppRole.values())},
    ),
    "products": TableSpec(
        name="products",
        model=Product,
        writable=frozenset({"seller_id", "title", "description", "price", "category", "condition", "image_url", "status", "is_sold"}),
        joins={"seller": Join("seller", PROFILE_DISPLAY)},
        choices={"condition": tuple(ProductCondition.values()), "status": tuple(ProductStatus.values())},
    ),
    "conversations": TableSpec(
        name="conversations",
        model=Conversation,
        writable=frozenset({"buyer_id", "seller_id", "product_id", "last_message", "last_message_at"}),
        joins={
            "buyer": Join("buyer", ("id", "full_name")),
            "seller": Join("seller", ("id", "full_name")),
            "product": Join("product", ("id", "title", "image_url")),
        },
    ),
    "messages": TableSpec(
        name="messages",
        model=Message,
        writable=frozenset({"conversation_id", "sender_id", "text", "image_url", "edited_at", "read_at"}),
        joins={"sender": Join("sender", ("id", "full_name"))},
    ),
    "feedback": TableSpec(
        name="feedback",
        model=Feedback,
        writable=frozenset({"user_id", "subject", "message", "category", "status"}),
        joins={"author": Join("author", ("id", "full_name", "email"))},
        choices={"category": tuple(FeedbackCategory.values()), "status": tuple(FeedbackStatus.values())},
    ),
    "seller_ratings": TableSpec(
        name="seller_ratings",
        model=SellerRating,
        writable=frozenset({"seller_id", "buyer_id", "rating", "comment"}),
        joins={"buyer": Join("buyer", ("id", "full_name"))},
    ),
}


def get_table(name: str) -> TableSpec:
    spec = TABLES.get(name)
    if spec is None:
        raise NotFoundError(f"Unknown table: {name}")
    return spec


def row_to_dict(obj: Any, spec: TableSpec, joins: tuple[str, ...] = ()) -> dict:
    out = {c: getattr(obj, c) for c in spec.columns}
    for name in joins:
        j = spec.joins[name]
        rel = getattr(obj, j.relationship)
        out[name] = {c: getattr(rel, c) for c in j.columns} if rel is not None else None
    return out
