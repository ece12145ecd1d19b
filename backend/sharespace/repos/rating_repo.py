from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from sharespace.models.profile import Profile
from sharespace.models.rating import SellerRating


class RatingRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def recompute_seller_aggregate(self, seller_id: int) -> Profile | None:
        """Refresh profiles.seller_rating / total_reviews from seller_ratings."""
        res = await self.session.execute(
            select(func.avg(SellerRating.rating), func.count(SellerRating.id)).where(SellerRating.seller_id == seller_id)
        )
        avg, count = res.one()
        profile = await self.session.get(Profile, seller_id)
        if profile is None:
            return None
        count = int(count or 0)
        profile.total_reviews = count
        profile.seller_rating = (
            Decimal(str(avg)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) if count else Decimal("0")
        )
        await self.session.flush()
        return profile
