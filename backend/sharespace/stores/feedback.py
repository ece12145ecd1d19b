from __future__ import annotations

import logging

from sharespace.backend.query import Order
from sharespace.backend.realtime import ChangePayload, Subscription
from sharespace.client.client import MarketplaceClient
from sharespace.core.errors import AuthenticationError, AuthorizationError, NotFoundError
from sharespace.models.enums import FeedbackCategory, FeedbackStatus
from sharespace.schemas.base import validate_input
from sharespace.schemas.feedback import FeedbackCreate, FeedbackOut
from sharespace.stores.session import SessionStore


log = logging.getLogger(__name__)


class FeedbackStore:
    def __init__(self, client: MarketplaceClient, session: SessionStore):
        self._client = client
        self._session = session
        self._items: list[FeedbackOut] = []
        self._sub: Subscription | None = None

    @property
    def items(self) -> list[FeedbackOut]:
        return list(self._items)

    def pending_count(self) -> int:
        return sum(1 for f in self._items if f.status == FeedbackStatus.pending)

    def by_status(self, status: FeedbackStatus | str) -> list[FeedbackOut]:
        st = FeedbackStatus(status)
        return [f for f in self._items if f.status == st]

    async def start(self) -> None:
        if self._sub is None:
            self._sub = self._client.subscribe("feedback", self._on_change)
        await self.list()

    async def aclose(self) -> None:
        if self._sub is not None:
            self._client.unsubscribe(self._sub)
            self._sub = None
        self._items = []

    async def _on_change(self, payload: ChangePayload) -> None:
        if self._session.is_authenticated:
            await self.list()

    def _require_admin(self) -> None:
        if not self._session.is_admin:
            raise AuthorizationError("Only administrators can moderate feedback")

    async def list(self) -> list[FeedbackOut]:
        """All feedback, newest first. Anonymous callers see nothing."""
        if not self._session.is_authenticated:
            raise AuthenticationError("Sign in to view feedback")
        rows = await self._client.select(
            "feedback",
            joins=("author",),
            order=(Order("created_at", desc=True),),
        )
        self._items = [FeedbackOut.model_validate(r) for r in rows]
        return self.items

    async def submit(
        self,
        message: str,
        category: FeedbackCategory | str,
        subject: str | None = None,
    ) -> FeedbackOut:
        if self._session.user_id is None:
            raise AuthenticationError("Sign in to send feedback")
        data = validate_input(FeedbackCreate, {"message": message, "category": category, "subject": subject})
        row = await self._client.insert(
            "feedback",
            {
                **data.model_dump(mode="python"),
                "user_id": self._session.user_id,
                "status": FeedbackStatus.pending,
            },
        )
        log.info("[feedback] %s submitted %s feedback #%s", self._session.user_id, data.category.value, row["id"])
        await self.list()
        return FeedbackOut.model_validate(row)

    async def set_status(self, feedback_id: int, status: FeedbackStatus | str) -> FeedbackOut:
        self._require_admin()
        rows = await self._client.update("feedback", {"id": feedback_id}, {"status": FeedbackStatus(status)})
        if not rows:
            raise NotFoundError("Feedback not found")
        await self.list()
        return FeedbackOut.model_validate(rows[0])

    async def remove(self, feedback_id: int) -> None:
        self._require_admin()
        rows = await self._client.delete("feedback", {"id": feedback_id})
        if not rows:
            raise NotFoundError("Feedback not found")
        await self.list()
