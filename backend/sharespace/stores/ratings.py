from __future__ import annotations

from sharespace.backend.query import Order
from sharespace.client.client import MarketplaceClient
from sharespace.core.errors import AuthenticationError, ValidationFailed
from sharespace.schemas.base import validate_input
from sharespace.schemas.rating import RatingCreate, RatingOut
from sharespace.stores.session import SessionStore


class RatingStore:
    """Seller ratings. The profile aggregate is recomputed by the backend."""

    def __init__(self, client: MarketplaceClient, session: SessionStore):
        self._client = client
        self._session = session

    async def rate(self, seller_id: int, rating: int, comment: str | None = None) -> RatingOut:
        buyer_id = self._session.user_id
        if buyer_id is None:
            raise AuthenticationError("Sign in to rate sellers")
        if buyer_id == seller_id:
            raise ValidationFailed("You cannot rate yourself")
        data = validate_input(RatingCreate, {"rating": rating, "comment": comment})
        row = await self._client.upsert(
            "seller_ratings",
            {"seller_id": seller_id, "buyer_id": buyer_id, **data.model_dump()},
            on_conflict=("seller_id", "buyer_id"),
        )
        return RatingOut.model_validate(row)

    async def for_seller(self, seller_id: int) -> list[RatingOut]:
        rows = await self._client.select(
            "seller_ratings",
            filters={"seller_id": seller_id},
            joins=("buyer",),
            order=(Order("updated_at", desc=True),),
        )
        return [RatingOut.model_validate(r) for r in rows]

    async def mine(self, seller_id: int) -> RatingOut | None:
        if self._session.user_id is None:
            return None
        rows = await self._client.select(
            "seller_ratings",
            filters={"seller_id": seller_id, "buyer_id": self._session.user_id},
            limit=1,
        )
        return RatingOut.model_validate(rows[0]) if rows else None
