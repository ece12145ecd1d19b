from __future__ import annotations

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from sharespace.models import AuthIdentity, Profile, UserRoleAssignment, Product, Conversation, Message, Feedback, SellerRating
from sharespace.repos.rating_repo import RatingRepo


class AccountRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _all(self, stmt) -> list:
        res = await self.session.execute(stmt)
        return list(res.scalars().all())

    async def delete_account(self, user_id: int) -> dict[str, list]:
        """Delete a user and everything they own.

        Returns the deleted rows per table name, children first, so the caller
        can publish change notifications for each of them.
        """
        conversations = await self._all(
            select(Conversation).where(or_(Conversation.buyer_id == user_id, Conversation.seller_id == user_id))
        )
        conv_ids = [c.id for c in conversations]
        msg_cond = Message.sender_id == user_id
        if conv_ids:
            msg_cond = or_(msg_cond, Message.conversation_id.in_(conv_ids))
        messages = await self._all(select(Message).where(msg_cond))

        ratings = await self._all(
            select(SellerRating).where(or_(SellerRating.seller_id == user_id, SellerRating.buyer_id == user_id))
        )
        rated_sellers = {r.seller_id for r in ratings if r.seller_id != user_id}

        deleted: dict[str, list] = {
            "messages": messages,
            "conversations": conversations,
            "seller_ratings": ratings,
            "feedback": await self._all(select(Feedback).where(Feedback.user_id == user_id)),
            "products": await self._all(select(Product).where(Product.seller_id == user_id)),
            "user_roles": await self._all(select(UserRoleAssignment).where(UserRoleAssignment.user_id == user_id)),
            "profiles": await self._all(select(Profile).where(Profile.id == user_id)),
        }
        for rows in deleted.values():
            for row in rows:
                await self.session.delete(row)
            await self.session.flush()

        ident = await self.session.get(AuthIdentity, user_id)
        if ident is not None:
            await self.session.delete(ident)
            await self.session.flush()

        rating_repo = RatingRepo(self.session)
        for seller_id in sorted(rated_sellers):
            await rating_repo.recompute_seller_aggregate(seller_id)
        return deleted
