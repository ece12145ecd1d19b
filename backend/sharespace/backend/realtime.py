"""In-process change feed and presence channels.

Both deliver notifications as independent asyncio tasks, so a callback never
runs inside the write that triggered it and may interleave with other
in-flight operations of the same client.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

from sharespace.core.errors import AuthenticationError
from sharespace.models.base import utcnow
from sharespace.models.enums import ChangeEvent


log = logging.getLogger(__name__)

Callback = Callable[..., Awaitable[None] | None]


class Dispatcher:
    """Runs callbacks detached from the caller and tracks the pending ones."""

    def __init__(self) -> None:
        self._pending: set[asyncio.Task] = set()

    def fire(self, callback: Callback, *args: Any) -> None:
        try:
            res = callback(*args)
        except Exception as e:
            log.warning("[realtime] callback %r failed: %s", callback, e)
            return
        if inspect.isawaitable(res):
            task = asyncio.ensure_future(res)
            self._pending.add(task)
            task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("[realtime] async callback failed: %s: %s", type(exc).__name__, exc)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until every scheduled callback, including ones they schedule, finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


@dataclass(frozen=True)
class ChangePayload:
    table: str
    event: ChangeEvent
    new: dict | None
    old: dict | None
    audience: frozenset[int] | None = None
    commit_timestamp: datetime = field(default_factory=utcnow)

    @property
    def record(self) -> dict:
        return self.new if self.new is not None else (self.old or {})


@dataclass(eq=False)
class Subscription:
    id: int
    table: str
    events: frozenset[ChangeEvent]
    callback: Callback
    filters: dict[str, Any] = field(default_factory=dict)
    # Resolves the subscriber's current actor; None for trusted server-side listeners.
    actor: Callable[[], Awaitable[Any]] | None = None
    active: bool = True

    def matches(self, payload: ChangePayload) -> bool:
        if not self.active or payload.table != self.table or payload.event not in self.events:
            return False
        rec = payload.record
        return all(rec.get(k) == v for k, v in self.filters.items())


class ChangeFeed:
    def __init__(self, dispatcher: Dispatcher, visible: Callable[[Any, ChangePayload], bool] | None = None):
        self._dispatcher = dispatcher
        self._visible = visible
        self._subs: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(
        self,
        table: str,
        callback: Callback,
        *,
        events: Iterable[ChangeEvent | str] | None = None,
        filters: dict[str, Any] | None = None,
        actor: Callable[[], Awaitable[Any]] | None = None,
    ) -> Subscription:
        evs = frozenset(ChangeEvent(e) for e in events) if events else frozenset(ChangeEvent)
        sub = Subscription(
            id=next(self._ids),
            table=table,
            events=evs,
            callback=callback,
            filters=dict(filters or {}),
            actor=actor,
        )
        self._subs[sub.id] = sub
        log.debug("[realtime] subscribed #%s to %s %s", sub.id, table, sorted(e.value for e in evs))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.active = False
        self._subs.pop(sub.id, None)

    @property
    def active_count(self) -> int:
        return len(self._subs)

    def publish(self, payload: ChangePayload) -> None:
        for sub in list(self._subs.values()):
            if not sub.matches(payload):
                continue
            if sub.actor is None:
                self._dispatcher.fire(sub.callback, payload)
            else:
                self._dispatcher.fire(self._deliver, sub, payload)

    async def _deliver(self, sub: Subscription, payload: ChangePayload) -> None:
        """Hand a change to a client subscription if its row is visible to the subscriber."""
        try:
            actor = await sub.actor()
        except AuthenticationError as e:
            log.debug("[realtime] subscription #%s dropped %s event: %s", sub.id, payload.table, e)
            return
        if not sub.active:
            return
        if self._visible is not None and not self._visible(actor, payload):
            return
        res = sub.callback(payload)
        if inspect.isawaitable(res):
            await res


class PresenceHub:
    """Ephemeral per-topic state; nothing here touches the database."""

    def __init__(self, dispatcher: Dispatcher):
        self._dispatcher = dispatcher
        self._state: dict[str, dict[str, dict]] = {}
        self._channels: dict[str, set[PresenceChannel]] = {}

    def channel(self, topic: str, key: str) -> "PresenceChannel":
        ch = PresenceChannel(self, topic, key)
        self._channels.setdefault(topic, set()).add(ch)
        return ch

    def state(self, topic: str) -> dict[str, dict]:
        return dict(self._state.get(topic, {}))

    def channel_count(self, topic: str | None = None) -> int:
        if topic is not None:
            return len(self._channels.get(topic, ()))
        return sum(len(v) for v in self._channels.values())

    def _set(self, topic: str, key: str, payload: dict | None) -> None:
        state = self._state.setdefault(topic, {})
        if payload is None:
            state.pop(key, None)
        else:
            state[key] = dict(payload)
        if not state:
            self._state.pop(topic, None)
        snapshot = self.state(topic)
        for ch in list(self._channels.get(topic, ())):
            for cb in list(ch._listeners):
                self._dispatcher.fire(cb, snapshot)

    def _remove(self, ch: "PresenceChannel") -> None:
        chans = self._channels.get(ch.topic)
        if chans is not None:
            chans.discard(ch)
            if not chans:
                self._channels.pop(ch.topic, None)


class PresenceChannel:
    def __init__(self, hub: PresenceHub, topic: str, key: str):
        self._hub = hub
        self.topic = topic
        self.key = key
        self._listeners: list[Callback] = []
        self.closed = False

    def on_sync(self, callback: Callback) -> None:
        self._listeners.append(callback)

    def state(self) -> dict[str, dict]:
        return self._hub.state(self.topic)

    async def track(self, payload: dict) -> None:
        if self.closed:
            return
        self._hub._set(self.topic, self.key, payload)

    async def untrack(self) -> None:
        if self.closed:
            return
        self._hub._set(self.topic, self.key, None)

    async def aclose(self) -> None:
        if self.closed:
            return
        await self.untrack()
        self.closed = True
        self._listeners.clear()
        self._hub._remove(self)
