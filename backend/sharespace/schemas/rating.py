from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field, model_validator


class RatingCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = None


class RatingOut(BaseModel):
    id: int
    seller_id: int
    buyer_id: int
    rating: int
    comment: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    buyer_name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_buyer(cls, data):
        if isinstance(data, dict) and isinstance(data.get("buyer"), dict):
            data = {**data, "buyer_name": data["buyer"].get("full_name")}
        return data
