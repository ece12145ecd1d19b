from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, TypeVar

from sharespace.core.errors import MarketplaceError
from sharespace.models.base import utcnow


log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    created_at: datetime = field(default_factory=utcnow)


class Notifier:
    """Transient user-facing notices (the toast queue)."""

    def __init__(self, maxlen: int = 50):
        self._items: deque[Notice] = deque(maxlen=maxlen)

    def success(self, message: str) -> None:
        self._items.append(Notice("success", message))

    def error(self, message: str) -> None:
        self._items.append(Notice("error", message))

    @property
    def items(self) -> list[Notice]:
        return list(self._items)

    def latest(self) -> Notice | None:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    async def attempt(self, op: Awaitable[T], success: str | None = None) -> T | None:
        """Run a mutation; failures become an error notice instead of an exception."""
        try:
            result = await op
        except MarketplaceError as e:
            log.info("[notify] %s: %s", type(e).__name__, e)
            self.error(str(e))
            return None
        if success:
            self.success(success)
        return result
