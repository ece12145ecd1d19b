from __future__ import annotations

from datetime import datetime
from sqlalchemy import String, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column

from sharespace.models.base import Base, UTCDateTime, utcnow


class AuthIdentity(Base):
    """Credentials owned by the identity service; never exposed as a table."""

    __tablename__ = "auth_identities"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # Increment to invalidate all existing access tokens.
    session_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    attributes: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
