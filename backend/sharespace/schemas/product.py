from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, model_validator

from sharespace.models.enums import ProductCondition, ProductStatus


class ProductDraft(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    category: str = Field(min_length=1, max_length=80)
    condition: ProductCondition
    image_url: str | None = None


class ProductUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    price: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    category: str | None = Field(default=None, min_length=1, max_length=80)
    condition: ProductCondition | None = None
    image_url: str | None = None
    status: ProductStatus | None = None
    is_sold: bool | None = None


class ProductOut(BaseModel):
    id: int
    seller_id: int
    title: str
    description: str = ""
    price: Decimal
    category: str
    condition: ProductCondition
    image_url: str | None = None
    status: ProductStatus
    is_sold: bool = False
    created_at: datetime
    updated_at: datetime | None = None

    # Joined from the seller's profile at read time.
    seller_name: str | None = None
    seller_rating: Decimal | None = None
    seller_total_reviews: int = 0
    seller_verified: bool = False

    @model_validator(mode="before")
    @classmethod
    def _flatten_seller(cls, data):
        if isinstance(data, dict) and isinstance(data.get("seller"), dict):
            seller = data["seller"]
            data = {
                **data,
                "seller_name": seller.get("full_name"),
                "seller_rating": seller.get("seller_rating"),
                "seller_total_reviews": seller.get("total_reviews") or 0,
                "seller_verified": bool(seller.get("verified_seller")),
            }
        return data

    @property
    def is_listed(self) -> bool:
        return self.status == ProductStatus.active and not self.is_sold
