"""Typing indicators: the local debounce timer and the remote typing set."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from enum import Enum
from typing import Any

from campuslive.core.entities import Profile, TypingUser
from campuslive.core.errors import CampusLiveError, DecodeError
from campuslive.core.events import ChangeEvent, Operation
from campuslive.defaults.config import TYPING_EVENT, TYPING_STOPPED_EVENT
from campuslive.realtime.client import RealtimeClient
from campuslive.sync.live_list import ErrorHandler, LiveList
from campuslive.sync.scheduler import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

NameResolver = Callable[[str], Awaitable[Profile]]
Sender = Callable[[str, dict[str, Any]], Awaitable[None]]


class PresenceState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


class PresenceTimer:
    """Debounce state machine behind "user is typing".

    ``input`` moves Idle -> Active (firing ``on_active``) or restarts the
    quiet timer while Active. The timer elapsing, or ``stop``, moves back to
    Idle and fires ``on_idle``. At most one timer is pending at any time.
    """

    def __init__(
        self,
        on_active: Callable[[], None],
        on_idle: Callable[[], None],
        *,
        interval: float = 2.0,
        scheduler: Scheduler | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.on_active = on_active
        self.on_idle = on_idle
        self.interval = interval
        self.scheduler: Scheduler = scheduler or LoopScheduler()
        self.state = PresenceState.IDLE
        self._handle: TimerHandle | None = None

    @property
    def is_active(self) -> bool:
        return self.state is PresenceState.ACTIVE

    def input(self) -> None:
        self._cancel()
        if self.state is PresenceState.IDLE:
            self.state = PresenceState.ACTIVE
            self.on_active()
        self._handle = self.scheduler.call_later(self.interval, self._elapsed)

    def stop(self) -> None:
        self._cancel()
        if self.state is PresenceState.ACTIVE:
            self.state = PresenceState.IDLE
            self.on_idle()

    def _elapsed(self) -> None:
        self._handle = None
        if self.state is PresenceState.ACTIVE:
            self.state = PresenceState.IDLE
            self.on_idle()

    def _cancel(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()


class TypingPublisher:
    """Broadcasts the local user's typing state over a presence topic."""

    def __init__(
        self,
        send: Sender,
        user: Profile,
        *,
        interval: float = 2.0,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.send = send
        self.user = user
        self.timer = PresenceTimer(
            lambda: self._publish(TYPING_EVENT),
            lambda: self._publish(TYPING_STOPPED_EVENT),
            interval=interval,
            scheduler=scheduler,
        )
        self._last: asyncio.Task[None] | None = None

    def input(self) -> None:
        self.timer.input()

    def stop(self) -> None:
        self.timer.stop()

    async def aclose(self) -> None:
        self.timer.stop()
        if self._last is not None:
            await asyncio.gather(self._last, return_exceptions=True)
            self._last = None

    def _publish(self, event: str) -> None:
        payload = {"user_id": self.user.id, "name": self.user.name}
        self._last = asyncio.ensure_future(self._send_after(self._last, event, payload))

    async def _send_after(self, previous: asyncio.Task[None] | None, event: str, payload: dict[str, Any]) -> None:
        # keeps typing/typing_stopped on the wire in the order they happened
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        try:
            await self.send(event, payload)
        except CampusLiveError as exc:
            logger.debug("typing %s not sent: %s", event, exc)


class TypingRoster:
    """Remote peers currently typing in one topic.

    Built on :class:`LiveList` over a broadcast topic. "typing" events add
    the peer (deduplicated by user id, display name resolved when the payload
    lacks one), "typing_stopped" removes them, and every entry expires on its
    own after ``expiry`` seconds unless refreshed.
    """

    def __init__(
        self,
        realtime: RealtimeClient,
        topic: str,
        *,
        self_id: str | None = None,
        resolve: NameResolver | None = None,
        expiry: float | None = 6.0,
        scheduler: Scheduler | None = None,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self.topic = topic
        self.self_id = self_id
        self.resolve = resolve
        self.expiry = expiry
        self.scheduler: Scheduler = scheduler or LoopScheduler()
        self._expiry_handles: dict[str, TimerHandle] = {}
        self.live: LiveList[TypingUser] = LiveList(
            realtime,
            broadcast_topic=topic,
            decode=self._decode,
            enrich=self._enrich,
            adapt=self._adapt,
            on_applied=self._on_applied,
            on_error=on_error,
        )

    @property
    def store(self):
        return self.live.store

    @property
    def users(self) -> list[TypingUser]:
        return self.live.items

    def names(self) -> list[str]:
        return [user.name for user in self.live.items]

    async def mount(self) -> None:
        await self.live.mount()

    async def unmount(self) -> None:
        for handle in self._expiry_handles.values():
            handle.cancel()
        self._expiry_handles.clear()
        await self.live.unmount()
        self.live.store.clear()

    def _adapt(self, event: ChangeEvent) -> ChangeEvent | None:
        if event.operation is not Operation.BROADCAST:
            return None
        user_id = event.payload.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            logger.debug("typing event without user_id on %s", event.topic)
            return None
        if self.self_id is not None and user_id == self.self_id:
            return None
        if event.event == TYPING_EVENT:
            operation = Operation.INSERT
        elif event.event == TYPING_STOPPED_EVENT:
            operation = Operation.DELETE
        else:
            return None
        return replace(event, operation=operation, affected_id=user_id)

    def _decode(self, payload: dict[str, Any]) -> TypingUser:
        user_id = payload.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            raise DecodeError("typing event without user_id", field="user_id")
        name = payload.get("name")
        return TypingUser(
            user_id=user_id,
            name=name if isinstance(name, str) else "",
            started_at=self.scheduler.time(),
        )

    async def _enrich(self, user: TypingUser) -> TypingUser:
        existing = self.live.store.get(user.user_id)
        if existing is not None:
            return existing
        if user.name or self.resolve is None:
            return user
        profile = await self.resolve(user.user_id)
        return replace(user, name=profile.name)

    def _on_applied(self, event: ChangeEvent) -> None:
        user_id = event.affected_id
        handle = self._expiry_handles.pop(user_id, None)
        if handle is not None:
            handle.cancel()
        if event.operation is Operation.INSERT and self.expiry is not None:
            self._expiry_handles[user_id] = self.scheduler.call_later(self.expiry, lambda: self._expire(user_id))

    def _expire(self, user_id: str) -> None:
        self._expiry_handles.pop(user_id, None)
        logger.debug("typing flag for %s expired on %s", user_id, self.topic)
        self.live.apply_local(Operation.DELETE, user_id)
