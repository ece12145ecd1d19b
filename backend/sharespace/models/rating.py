from __future__ import annotations

from datetime import datetime
from sqlalchemy import Integer, Text, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharespace.models.base import Base, UTCDateTime, utcnow


class SellerRating(Base):
    __tablename__ = "seller_ratings"

    id: Mapped[int] = mapped_column(primary_key=True)
    seller_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False)

    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    buyer = relationship("Profile", foreign_keys=[buyer_id], lazy="raise")

    __table_args__ = (
        UniqueConstraint("seller_id", "buyer_id", name="uq_seller_ratings_seller_buyer"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_seller_ratings_range"),
    )
