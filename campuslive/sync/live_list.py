"""Generic open/merge/close lifecycle shared by every realtime list."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Generic, TypeVar

from campuslive.core.errors import CampusLiveError, DecodeError, SubscribeError
from campuslive.core.events import ChangeEvent, Operation, SubscriptionStatus
from campuslive.realtime.client import RealtimeClient
from campuslive.realtime.protocol import EqFilter
from campuslive.realtime.subscription import Subscription
from campuslive.sync.merge import Decoder, apply_item, bulk_load, default_key, default_timestamp
from campuslive.sync.store import ViewStore

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[Sequence[T]]]
Enricher = Callable[[T], Awaitable[T]]
Adapter = Callable[[ChangeEvent], "ChangeEvent | None"]
ErrorHandler = Callable[[Exception], None]

logger = logging.getLogger(__name__)

_RESYNC = object()


class LiveList(Generic[T]):
    """A list kept in sync with one realtime topic.

    ``mount`` runs the bulk fetch, loads the store and opens the
    subscription; incoming events are merged one at a time in delivery order.
    ``unmount`` closes the subscription and drops any work still in flight.

    Row feeds pass ``table`` and ``filter``; broadcast feeds pass
    ``broadcast_topic`` instead and usually an ``adapt`` hook that turns
    broadcast events into insert/delete events.
    """

    def __init__(
        self,
        realtime: RealtimeClient,
        *,
        decode: Decoder[T],
        fetch: Fetcher[T] | None = None,
        table: str | None = None,
        filter: EqFilter | None = None,
        broadcast_topic: str | None = None,
        name: str | None = None,
        enrich: Enricher[T] | None = None,
        adapt: Adapter | None = None,
        on_applied: Callable[[ChangeEvent], None] | None = None,
        on_error: ErrorHandler | None = None,
        key: Callable[[T], Any] = default_key,
        timestamp: Callable[[T], Any] = default_timestamp,
        store: ViewStore[T] | None = None,
    ) -> None:
        if (table is None) == (broadcast_topic is None):
            raise ValueError("exactly one of table or broadcast_topic is required")
        self.realtime = realtime
        self.decode = decode
        self.fetch = fetch
        self.table = table
        self.filter = filter
        self.broadcast_topic = broadcast_topic
        self.name = name
        self.enrich = enrich
        self.adapt = adapt
        self.on_applied = on_applied
        self.on_error = on_error
        self.key = key
        self.timestamp = timestamp
        self.store: ViewStore[T] = store or ViewStore()

        self.error: Exception | None = None
        self.subscription: Subscription | None = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._mounted = False
        self._closed = True

    @property
    def items(self) -> list[T]:
        return self.store.items

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    @property
    def is_live(self) -> bool:
        return self.subscription is not None and not self.subscription.is_closed

    async def mount(self) -> None:
        if self._mounted:
            raise RuntimeError("live list is already mounted")
        self._mounted = True
        self._closed = False
        self.error = None
        self._queue = asyncio.Queue()
        self._consumer = asyncio.create_task(self._consume())

        await self.refresh()
        if self._closed:
            return

        try:
            if self.table is not None:
                sub = await self.realtime.subscribe(
                    self.table,
                    self.filter,
                    self._on_event,
                    name=self.name,
                    on_status=self._on_status,
                )
            else:
                sub = await self.realtime.subscribe_broadcast(
                    self.broadcast_topic or "",
                    self._on_event,
                    on_status=self._on_status,
                )
        except SubscribeError as exc:
            logger.warning("live updates unavailable, showing snapshot only: %s", exc)
            self._report(exc)
            return

        if self._closed:
            await sub.close()
            return
        self.subscription = sub

    async def unmount(self) -> None:
        if not self._mounted:
            return
        self._closed = True
        self._mounted = False
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.cancel()
        sub, self.subscription = self.subscription, None
        if sub is not None:
            await sub.close()
        if consumer is not None:
            await asyncio.gather(consumer, return_exceptions=True)

    async def refresh(self) -> None:
        """Re-run the bulk fetch and replace the snapshot."""
        if self.fetch is None:
            return
        try:
            rows = await self.fetch()
        except CampusLiveError as exc:
            logger.warning("bulk fetch failed: %s", exc)
            self._report(exc)
            return
        if self._closed:
            return
        self.store.set(bulk_load(rows, key=self.key, timestamp=self.timestamp))

    def apply_local(self, operation: Operation, item_id: str, item: T | None = None) -> None:
        """Merge a locally originated change (e.g. an expired presence flag)."""
        if self._closed:
            return
        self.store.set(
            apply_item(self.store.items, operation, item_id, item, key=self.key, timestamp=self.timestamp)
        )

    async def _on_event(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    async def _on_status(self, sub: Subscription, status: SubscriptionStatus, detail: Any) -> None:
        if self._closed:
            return
        if status is SubscriptionStatus.RESUBSCRIBED:
            self._queue.put_nowait(_RESYNC)
        elif status is SubscriptionStatus.ERRORED:
            error = detail if isinstance(detail, Exception) else SubscribeError(f"subscription {sub.topic} errored", topic=sub.topic)
            self._report(error)

    async def _consume(self) -> None:
        while True:
            entry = await self._queue.get()
            if self._closed:
                return
            try:
                if entry is _RESYNC:
                    await self.refresh()
                else:
                    await self._apply(entry)
            except Exception as exc:
                # failures stay scoped to the entry
                logger.warning("failed to apply update on %s: %s", self.name or self.table or self.broadcast_topic, exc, exc_info=True)
                self._report(exc)

    async def _apply(self, event: ChangeEvent) -> None:
        if self.adapt is not None:
            adapted = self.adapt(event)
            if adapted is None:
                return
            event = adapted

        item: T | None = None
        if event.operation in (Operation.INSERT, Operation.UPDATE):
            try:
                item = self.decode(event.payload)
            except DecodeError as exc:
                logger.warning("dropping %s on %s: %s", event.operation.value, event.topic, exc)
                return
            if self.enrich is not None:
                try:
                    item = await self.enrich(item)
                except CampusLiveError as exc:
                    logger.warning("enrich failed for %s: %s", event.affected_id, exc)
            if self._closed:
                return

        self.store.set(
            apply_item(self.store.items, event.operation, event.affected_id, item, key=self.key, timestamp=self.timestamp)
        )
        if self.on_applied is not None:
            self.on_applied(event)

    def _report(self, exc: Exception) -> None:
        self.error = exc
        if self.on_error is None:
            return
        try:
            self.on_error(exc)
        except Exception as handler_exc:
            logger.warning("error handler failed: %s", handler_exc, exc_info=True)
