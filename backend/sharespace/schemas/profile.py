from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class RegistrationForm(BaseModel):
    full_name: str = Field(min_length=1, max_length=160)
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str | None = None
    college: str | None = None
    department: str | None = None
    roll_number: str | None = None


class ProfileOut(BaseModel):
    id: int
    full_name: str
    email: str
    phone: str | None = None
    college: str | None = None
    department: str | None = None
    roll_number: str | None = None
    seller_rating: Decimal = Decimal("0")
    total_reviews: int = 0
    verified_seller: bool = False
    created_at: datetime | None = None

    # Derived from user_roles, not stored on the profile row.
    is_admin: bool = False

    class Config:
        from_attributes = True


class PublicProfile(BaseModel):
    profile: ProfileOut
    product_count: int = 0
