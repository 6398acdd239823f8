"""One-to-one conversation kept live."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from campuslive.app.portal import Portal
from campuslive.client.rest import eq, or_
from campuslive.core.decode import decode_direct_message
from campuslive.core.entities import DirectMessage
from campuslive.core.errors import DecodeError, FetchError
from campuslive.core.events import ChangeEvent, Operation
from campuslive.realtime.protocol import EqFilter
from campuslive.sync.live_list import LiveList

logger = logging.getLogger(__name__)


class DirectMessagesScreen:
    """Conversation between the signed-in user and ``peer_id``.

    The feed is filtered on ``receiver_id`` (the only column both peers can
    be matched on with one equality predicate); messages from other senders
    are dropped and the user's own sends are merged locally.
    """

    def __init__(
        self,
        portal: Portal,
        peer_id: str,
        *,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        if not peer_id:
            raise ValueError("peer_id must be non-empty")
        self.portal = portal
        self.peer_id = peer_id
        me = portal.session.user_id
        self.live: LiveList[DirectMessage] = LiveList(
            portal.realtime,
            table="direct_messages",
            filter=EqFilter("receiver_id", me),
            name=f"direct:{me}:{peer_id}:{uuid.uuid4().hex[:8]}",
            decode=decode_direct_message,
            fetch=self._fetch,
            adapt=self._only_peer,
            on_error=on_error,
        )

    @property
    def messages(self) -> list[DirectMessage]:
        return self.live.items

    async def mount(self) -> None:
        await self.live.mount()

    async def unmount(self) -> None:
        await self.live.unmount()

    async def send(self, text: str) -> DirectMessage | None:
        content = text.strip()
        if not content:
            return None
        row = await self.portal.rest.insert(
            "direct_messages",
            {
                "sender_id": self.portal.session.user_id,
                "receiver_id": self.peer_id,
                "content": content,
            },
        )
        try:
            message = decode_direct_message(row)
        except DecodeError as exc:
            raise FetchError(f"direct message insert returned a malformed row: {exc}") from exc
        self.live.apply_local(Operation.INSERT, message.id, message)
        return message

    async def mark_read(self) -> int:
        """Flag every unread message from the peer as read; returns the count."""
        rows = await self.portal.rest.update(
            "direct_messages",
            {"is_read": True},
            filters={
                "sender_id": eq(self.peer_id),
                "receiver_id": eq(self.portal.session.user_id),
                "is_read": eq("false"),
            },
        )
        for row in rows:
            try:
                message = decode_direct_message(row)
            except DecodeError:
                continue
            self.live.apply_local(Operation.UPDATE, message.id, message)
        return len(rows)

    def _only_peer(self, event: ChangeEvent) -> ChangeEvent | None:
        if event.operation is Operation.DELETE:
            return event
        if event.payload.get("sender_id") != self.peer_id:
            return None
        return event

    async def _fetch(self) -> list[DirectMessage]:
        me, peer = self.portal.session.user_id, self.peer_id
        rows = await self.portal.rest.select(
            "direct_messages",
            filters={
                "or": or_(
                    f"and(sender_id.eq.{me},receiver_id.eq.{peer})",
                    f"and(sender_id.eq.{peer},receiver_id.eq.{me})",
                )
            },
            order="created_at.asc",
        )
        messages = []
        for row in rows:
            try:
                messages.append(decode_direct_message(row))
            except DecodeError as exc:
                logger.warning("skipping malformed direct message: %s", exc)
        return messages
