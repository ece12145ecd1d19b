from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field, model_validator

from sharespace.models.enums import FeedbackCategory, FeedbackStatus


class FeedbackCreate(BaseModel):
    message: str = Field(min_length=1)
    category: FeedbackCategory
    subject: str | None = Field(default=None, max_length=200)


class FeedbackOut(BaseModel):
    id: int
    user_id: int
    subject: str | None = None
    message: str
    category: FeedbackCategory
    status: FeedbackStatus
    created_at: datetime

    author_name: str | None = None
    author_email: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_author(cls, data):
        if isinstance(data, dict) and isinstance(data.get("author"), dict):
            author = data["author"]
            data = {**data, "author_name": author.get("full_name"), "author_email": author.get("email")}
        return data
