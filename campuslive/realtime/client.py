"""Realtime socket client: joins topics and routes change events."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from campuslive.core.decode import decode_change
from campuslive.core.errors import ConnectionError as CampusConnectionError
from campuslive.core.errors import CloseReason, DecodeError, SubscribeError
from campuslive.core.events import ConnectionEvent, SubscriptionStatus
from campuslive.defaults.config import DEFAULT_REALTIME_CONFIG, PHOENIX_TOPIC
from campuslive.infra.websocket import WebSocketTransport
from campuslive.realtime.protocol import (
    ACCESS_TOKEN,
    BROADCAST,
    CHANGE_EVENTS,
    PHX_CLOSE,
    PHX_ERROR,
    PHX_JOIN,
    PHX_LEAVE,
    PHX_REPLY,
    SYSTEM,
    EqFilter,
    Frame,
    broadcast_payload,
    build_join_payload,
    decode_frame,
    encode_frame,
    heartbeat_frame,
    reply_status,
    wire_topic,
)
from campuslive.realtime.subscription import EventHandler, StatusHandler, Subscription

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RealtimeClient:
    """One websocket shared by every subscription of a portal session."""

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        transport: WebSocketTransport | None = None,
        **config_overrides: Any,
    ) -> None:
        self.config: dict[str, Any] = {**DEFAULT_REALTIME_CONFIG, **config_overrides}
        self.api_key = api_key
        self.access_token = access_token
        query = urlencode({"apikey": api_key, "vsn": self.config["realtime_vsn"]})
        self.endpoint = f"{url}?{query}"

        self.ws = transport or WebSocketTransport(
            self.endpoint,
            connect_timeout=float(self.config["connect_timeout"]),
        )
        self.ws.on_message = self._handle_raw_message
        self.ws.on_disconnect = self._handle_ws_disconnect

        self.is_connected = False
        self.on_connection_update: Callable[[ConnectionEvent], Awaitable[None]] = self._default_connection_handler
        self.on_disconnected: Callable[[Exception], Awaitable[None]] = self._default_disconnect_handler

        self._subscriptions: dict[str, Subscription] = {}
        self._pending_replies: dict[str, asyncio.Future[Frame]] = {}
        self._ref = 0
        self._pending_heartbeat_ref: str | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._explicit_disconnect = False
        self._sleep = asyncio.sleep

    async def connect(self) -> None:
        self._explicit_disconnect = False
        await self.on_connection_update(ConnectionEvent(status="connecting"))
        await self.ws.connect()
        self.is_connected = True
        self._pending_heartbeat_ref = None
        self._start_heartbeat()
        await self.on_connection_update(ConnectionEvent(status="open"))

    async def disconnect(self) -> None:
        self._explicit_disconnect = True
        if self._reconnect_task and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
        self._reconnect_task = None
        self._stop_heartbeat()
        for sub in list(self._subscriptions.values()):
            sub._mark_closed()
        self._subscriptions.clear()
        self._fail_pending(CampusConnectionError("client disconnected"))
        self.is_connected = False
        await self.ws.disconnect()

    async def subscribe(
        self,
        topic: str,
        filter: EqFilter | None,
        on_event: EventHandler,
        *,
        name: str | None = None,
        schema: str = "public",
        on_status: StatusHandler | None = None,
    ) -> Subscription:
        """Join the row-change feed of table ``topic`` restricted by ``filter``.

        ``name`` sets the wire topic; by default it is derived from the table
        and the filter. Raises :class:`SubscribeError` when the join fails.
        """
        if not topic:
            raise ValueError("topic must be non-empty")
        channel_name = name or (f"{topic}:{filter.render()}" if filter is not None else topic)
        sub = Subscription(
            self,
            wire_topic(channel_name),
            on_event,
            table=topic,
            filter=filter,
            schema=schema,
            on_status=on_status,
        )
        await self._open(sub)
        return sub

    async def subscribe_broadcast(
        self,
        topic: str,
        on_event: EventHandler,
        *,
        on_status: StatusHandler | None = None,
    ) -> Subscription:
        """Join an ephemeral broadcast topic (no persistence, no row changes)."""
        if not topic:
            raise ValueError("topic must be non-empty")
        sub = Subscription(self, wire_topic(topic), on_event, on_status=on_status)
        await self._open(sub)
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        if sub.is_closed:
            return
        sub._mark_closed()
        if self._subscriptions.get(sub.topic) is sub:
            del self._subscriptions[sub.topic]
        if not self.is_connected:
            return
        try:
            await self._send_frame(Frame(topic=sub.topic, event=PHX_LEAVE, ref=self._generate_ref(), join_ref=sub.join_ref))
        except CampusConnectionError as exc:
            logger.debug("leave for %s not sent: %s", sub.topic, exc)

    async def send(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        """Publish a broadcast ``event`` on a joined topic."""
        key = wire_topic(topic)
        sub = self._subscriptions.get(key)
        if sub is None:
            raise SubscribeError(f"not subscribed to {key}", topic=key)
        await self._send_frame(
            Frame(topic=key, event=BROADCAST, payload=broadcast_payload(event, payload), ref=self._generate_ref(), join_ref=sub.join_ref)
        )

    async def set_access_token(self, token: str | None) -> None:
        self.access_token = token
        if not self.is_connected:
            return
        for sub in list(self._subscriptions.values()):
            await self._send_frame(
                Frame(topic=sub.topic, event=ACCESS_TOKEN, payload={"access_token": token}, ref=self._generate_ref(), join_ref=sub.join_ref)
            )

    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    async def _open(self, sub: Subscription) -> None:
        existing = self._subscriptions.get(sub.topic)
        if existing is not None and not existing.is_closed:
            raise SubscribeError(f"topic {sub.topic} already has an active subscription", topic=sub.topic)
        if not self.is_connected:
            raise SubscribeError(f"cannot join {sub.topic}: socket is not connected", topic=sub.topic)
        self._subscriptions[sub.topic] = sub
        try:
            await self._join(sub)
        except SubscribeError:
            sub._mark_closed()
            if self._subscriptions.get(sub.topic) is sub:
                del self._subscriptions[sub.topic]
            raise
        await sub._set_status(SubscriptionStatus.SUBSCRIBED)

    async def _join(self, sub: Subscription) -> None:
        ref = self._generate_ref()
        sub.join_ref = ref
        payload = build_join_payload(
            table=sub.table,
            filter=sub.filter,
            schema=sub.schema,
            access_token=self.access_token or self.api_key,
        )
        try:
            reply = await self._request(Frame(topic=sub.topic, event=PHX_JOIN, payload=payload, ref=ref, join_ref=ref))
        except asyncio.TimeoutError as exc:
            raise SubscribeError(f"join {sub.topic} timed out", topic=sub.topic) from exc
        except CampusConnectionError as exc:
            raise SubscribeError(f"join {sub.topic} failed: {exc}", topic=sub.topic) from exc

        status, response = reply_status(reply)
        if status != "ok":
            reason = response.get("reason") or response.get("message") or status
            raise SubscribeError(f"join {sub.topic} rejected: {reason}", topic=sub.topic)
        logger.debug("joined %s", sub.topic)

    async def _request(self, frame: Frame, timeout: float | None = None) -> Frame:
        timeout_s = timeout if timeout is not None else float(self.config["join_timeout"])
        if frame.ref is None:
            frame.ref = self._generate_ref()
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[Frame] = loop.create_future()
        self._pending_replies[frame.ref] = fut
        try:
            await self._send_frame(frame)
            return await asyncio.wait_for(fut, timeout=timeout_s)
        finally:
            self._pending_replies.pop(frame.ref, None)

    async def _send_frame(self, frame: Frame) -> None:
        if not self.is_connected:
            raise CampusConnectionError("Cannot send frame: not connected")
        await self.ws.send(encode_frame(frame))

    async def _handle_raw_message(self, raw: str) -> None:
        try:
            frame = decode_frame(raw)
        except DecodeError as exc:
            logger.warning("dropping undecodable frame: %s", exc)
            return

        if frame.event == PHX_REPLY and frame.ref is not None:
            if frame.topic == PHOENIX_TOPIC and frame.ref == self._pending_heartbeat_ref:
                self._pending_heartbeat_ref = None
                return
            waiter = self._pending_replies.get(frame.ref)
            if waiter and not waiter.done():
                waiter.set_result(frame)
            return

        sub = self._subscriptions.get(frame.topic)
        if sub is None:
            logger.debug("frame %s for unknown topic %s", frame.event, frame.topic)
            return
        if frame.join_ref is not None and sub.join_ref is not None and frame.join_ref != sub.join_ref:
            logger.debug("stale frame for %s (join_ref %s)", frame.topic, frame.join_ref)
            return

        if frame.event in CHANGE_EVENTS:
            try:
                event = decode_change(frame.topic, frame.event, frame.payload)
            except DecodeError as exc:
                logger.warning("dropping %s on %s: %s", frame.event, frame.topic, exc)
                return
            await sub._deliver(event)
            return

        if frame.event in (PHX_ERROR, PHX_CLOSE):
            logger.warning("server %s on %s", frame.event, frame.topic)
            await sub._set_status(SubscriptionStatus.ERRORED, frame.payload)
            return

        if frame.event == SYSTEM and frame.payload.get("status") == "error":
            logger.warning("system error on %s: %s", frame.topic, frame.payload.get("message"))
            await sub._set_status(SubscriptionStatus.ERRORED, frame.payload)

    def _generate_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task:
            return

        async def _loop() -> None:
            interval = float(self.config["heartbeat_interval"])
            while self.is_connected:
                await self._sleep(interval)
                if not self.is_connected:
                    return
                if self._pending_heartbeat_ref is not None:
                    logger.warning("heartbeat %s not acknowledged; dropping socket", self._pending_heartbeat_ref)
                    self._heartbeat_task = None
                    await self.ws.disconnect()
                    await self._handle_ws_disconnect(CampusConnectionError("heartbeat timeout"))
                    return
                ref = self._generate_ref()
                self._pending_heartbeat_ref = ref
                try:
                    await self._send_frame(heartbeat_frame(ref))
                except CampusConnectionError as exc:  # pragma: no cover - network dependent
                    logger.warning("heartbeat failed: %s", exc)
                    return

        self._heartbeat_task = asyncio.create_task(_loop())

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task and task is not asyncio.current_task():
            task.cancel()

    def _fail_pending(self, exc: Exception) -> None:
        for fut in self._pending_replies.values():
            if not fut.done():
                fut.set_exception(exc)
        self._pending_replies.clear()

    async def _handle_ws_disconnect(self, exc: Exception) -> None:
        if not self.is_connected:
            return
        self.is_connected = False
        self._stop_heartbeat()
        self._fail_pending(CampusConnectionError(f"socket dropped: {exc}"))
        await self.on_connection_update(ConnectionEvent(status="close", reason=exc))
        if self._explicit_disconnect:
            return
        if not self._should_reconnect(exc):
            await self.on_disconnected(exc)
            return
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop(exc))

    def _should_reconnect(self, reason: Exception) -> bool:
        if not self.config.get("auto_reconnect", True):
            return False
        if isinstance(reason, CampusConnectionError) and reason.status_code == int(CloseReason.POLICY_VIOLATION):
            # 1008: credentials rejected
            logger.warning("server closed the socket with policy violation, not reconnecting")
            return False
        return True

    def _backoff_delay(self, attempt: int) -> float:
        base = float(self.config["reconnect_base_delay"])
        ceiling = float(self.config["reconnect_max_delay"])
        return min(base * (2 ** attempt), ceiling)

    async def _reconnect_loop(self, reason: Exception) -> None:
        limit = self.config.get("max_reconnect_attempts")
        attempt = 0
        while not self._explicit_disconnect:
            if limit is not None and attempt >= int(limit):
                logger.error("giving up after %s reconnect attempts", attempt)
                await self.on_disconnected(reason)
                return
            delay = self._backoff_delay(attempt)
            attempt += 1
            await self.on_connection_update(ConnectionEvent(status="reconnecting", reason=reason, attempt=attempt))
            logger.info("reconnecting in %.1fs (attempt %s)", delay, attempt)
            await self._sleep(delay)
            if self._explicit_disconnect:
                return
            try:
                await self.connect()
            except CampusConnectionError as exc:
                reason = exc
                continue
            await self._rejoin_all()
            return

    async def _rejoin_all(self) -> None:
        for sub in list(self._subscriptions.values()):
            if sub.is_closed:
                continue
            try:
                await self._join(sub)
            except SubscribeError as exc:
                logger.warning("rejoin failed: %s", exc)
                await sub._set_status(SubscriptionStatus.ERRORED, exc)
                continue
            await sub._set_status(SubscriptionStatus.RESUBSCRIBED)

    async def _default_disconnect_handler(self, exc: Exception) -> None:
        logger.debug("disconnected: %s", exc)

    async def _default_connection_handler(self, event: ConnectionEvent) -> None:
        logger.info("connection update: %s", event.status)
