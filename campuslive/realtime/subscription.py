"""Handle for one joined realtime topic."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from campuslive.core.events import ChangeEvent, SubscriptionStatus
from campuslive.realtime.protocol import EqFilter

if TYPE_CHECKING:
    from campuslive.realtime.client import RealtimeClient

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[None]]
StatusHandler = Callable[["Subscription", SubscriptionStatus, Any], Awaitable[None]]


class Subscription:
    """A topic joined on the shared socket.

    Created by :meth:`RealtimeClient.subscribe` or
    :meth:`RealtimeClient.subscribe_broadcast`. Once :meth:`close` has been
    called (or the owning client disconnects explicitly) no further events
    reach ``on_event``.
    """

    def __init__(
        self,
        client: "RealtimeClient",
        topic: str,
        on_event: EventHandler,
        *,
        table: str | None = None,
        filter: EqFilter | None = None,
        schema: str = "public",
        on_status: StatusHandler | None = None,
    ) -> None:
        self.client = client
        self.topic = topic
        self.table = table
        self.filter = filter
        self.schema = schema
        self.on_event = on_event
        self.on_status = on_status
        self.status = SubscriptionStatus.JOINING
        self.join_ref: str | None = None

    @property
    def is_broadcast(self) -> bool:
        return self.table is None

    @property
    def is_closed(self) -> bool:
        return self.status is SubscriptionStatus.CLOSED

    async def close(self) -> None:
        await self.client.unsubscribe(self)

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        await self.client.send(self.topic, event, payload)

    def _mark_closed(self) -> None:
        self.status = SubscriptionStatus.CLOSED

    async def _deliver(self, event: ChangeEvent) -> None:
        if self.is_closed:
            return
        await self.on_event(event)

    async def _set_status(self, status: SubscriptionStatus, detail: Any = None) -> None:
        if self.is_closed:
            return
        self.status = status
        if self.on_status is None:
            return
        try:
            await self.on_status(self, status, detail)
        except Exception as exc:
            logger.warning("status handler for %s failed: %s", self.topic, exc, exc_info=True)

    def __repr__(self) -> str:
        return f"Subscription(topic={self.topic!r}, status={self.status.value})"
