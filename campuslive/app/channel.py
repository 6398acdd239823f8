"""Channel detail screen: messages, members and typing indicators."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from campuslive.app.portal import Portal
from campuslive.client.rest import eq
from campuslive.core.decode import decode_channel, decode_member, decode_message
from campuslive.core.entities import Channel, Member, Message, unknown_profile
from campuslive.core.errors import DecodeError, FetchError
from campuslive.realtime.protocol import EqFilter
from campuslive.sync.live_list import LiveList
from campuslive.sync.presence import TypingPublisher, TypingRoster

logger = logging.getLogger(__name__)

MESSAGE_COLUMNS = "id,channel_id,user_id,content,created_at,is_pinned"
MEMBER_COLUMNS = "id,channel_id,user_id,joined_at,profiles:user_id(id,name,role,avatar_url)"


def typing_topic(channel_id: str) -> str:
    return f"typing:{channel_id}"


class MessageComposer:
    def __init__(self, portal: Portal, channel_id: str, typing: TypingPublisher | None = None) -> None:
        self.portal = portal
        self.channel_id = channel_id
        self.typing = typing

    def on_input(self) -> None:
        if self.typing is not None:
            self.typing.input()

    async def send(self, text: str) -> Message | None:
        """Insert a message; the realtime feed delivers it to every viewer."""
        content = text.strip()
        if not content:
            return None
        if self.typing is not None:
            self.typing.stop()
        row = await self.portal.rest.insert(
            "messages",
            {
                "channel_id": self.channel_id,
                "user_id": self.portal.session.user_id,
                "content": content,
            },
        )
        try:
            return decode_message(row).with_author(self.portal.session.user)
        except DecodeError as exc:
            raise FetchError(f"message insert returned a malformed row: {exc}") from exc

    async def aclose(self) -> None:
        if self.typing is not None:
            await self.typing.aclose()


class ChannelScreen:
    """Everything the channel detail page renders, kept live."""

    def __init__(
        self,
        portal: Portal,
        channel_id: str,
        *,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        if not channel_id:
            raise ValueError("channel_id must be non-empty")
        self.portal = portal
        self.on_error = on_error
        self.channel: Channel | None = None
        self.not_found = False
        self._mounted = False
        self._generation = 0
        self._build(channel_id)

    def _build(self, channel_id: str) -> None:
        self.channel_id = channel_id
        self.channel = None
        self.not_found = False
        # unique per screen so two screens never share a subscription
        instance = uuid.uuid4().hex[:8]
        self.messages: LiveList[Message] = LiveList(
            self.portal.realtime,
            table="messages",
            filter=EqFilter("channel_id", channel_id),
            name=f"messages:{channel_id}:{instance}",
            decode=decode_message,
            fetch=self._fetch_messages,
            enrich=self._attach_author,
            on_error=self._report,
        )
        self.members: LiveList[Member] = LiveList(
            self.portal.realtime,
            table="channel_members",
            filter=EqFilter("channel_id", channel_id),
            name=f"members:{channel_id}:{instance}",
            decode=decode_member,
            fetch=self._fetch_members,
            enrich=self._attach_profile,
            on_error=self._report,
        )
        self.typing = TypingRoster(
            self.portal.realtime,
            typing_topic(channel_id),
            self_id=self.portal.session.user_id,
            resolve=self.portal.profiles.get,
            expiry=self.portal.config.get("typing_expiry"),
            scheduler=self.portal.scheduler,
            on_error=self._report,
        )
        publisher = TypingPublisher(
            self._send_typing,
            self.portal.session.user,
            interval=float(self.portal.config["typing_interval"]),
            scheduler=self.portal.scheduler,
        )
        self.composer = MessageComposer(self.portal, channel_id, publisher)

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    async def mount(self) -> None:
        if self._mounted:
            return
        self._mounted = True
        generation = self._generation = self._generation + 1
        try:
            row = await self.portal.rest.select_one("channels", filters={"id": eq(self.channel_id)})
        except FetchError as exc:
            if generation != self._generation:
                return
            logger.warning("failed to load channel %s: %s", self.channel_id, exc)
            self._report(exc)
            return
        if generation != self._generation:
            logger.debug("channel %s unmounted while loading", self.channel_id)
            return
        if row is None:
            self.not_found = True
            return
        try:
            self.channel = decode_channel(row)
        except DecodeError as exc:
            self._report(exc)
            return

        # unmount() tears down whichever part already started
        for part in (self.messages, self.members, self.typing):
            if generation != self._generation:
                return
            await part.mount()

    async def unmount(self) -> None:
        if not self._mounted:
            return
        self._mounted = False
        self._generation += 1
        # force-clears the local typing flag before the topic is left
        await self.composer.aclose()
        await self.typing.unmount()
        await self.messages.unmount()
        await self.members.unmount()

    async def switch_channel(self, channel_id: str) -> None:
        if channel_id == self.channel_id and self._mounted:
            return
        await self.unmount()
        self._build(channel_id)
        await self.mount()

    async def _send_typing(self, event: str, payload: dict) -> None:
        await self.portal.realtime.send(typing_topic(self.channel_id), event, payload)

    async def _fetch_messages(self) -> list[Message]:
        rows = await self.portal.rest.select(
            "messages",
            columns=MESSAGE_COLUMNS,
            filters={"channel_id": eq(self.channel_id)},
            order="created_at.asc",
        )
        messages = []
        for row in rows:
            try:
                messages.append(decode_message(row))
            except DecodeError as exc:
                logger.warning("skipping malformed message row: %s", exc)
        profiles = await self.portal.profiles.prefetch(m.user_id for m in messages)
        return [
            m.with_author(profiles.get(m.user_id) or unknown_profile(m.user_id))
            for m in messages
        ]

    async def _fetch_members(self) -> list[Member]:
        rows = await self.portal.rest.select(
            "channel_members",
            columns=MEMBER_COLUMNS,
            filters={"channel_id": eq(self.channel_id)},
            order="joined_at.asc",
        )
        members = []
        for row in rows:
            try:
                member = decode_member(row)
            except DecodeError as exc:
                logger.warning("skipping malformed member row: %s", exc)
                continue
            if member.profile is not None:
                self.portal.profiles.remember(member.profile)
            members.append(member)
        missing = [m.user_id for m in members if m.profile is None]
        if not missing:
            return members
        profiles = await self.portal.profiles.prefetch(missing)
        return [
            m if m.profile is not None else m.with_profile(profiles.get(m.user_id) or unknown_profile(m.user_id))
            for m in members
        ]

    async def _attach_author(self, message: Message) -> Message:
        if message.author is not None:
            return message
        return message.with_author(await self.portal.profiles.get(message.user_id))

    async def _attach_profile(self, member: Member) -> Member:
        if member.profile is not None:
            return member
        return member.with_profile(await self.portal.profiles.get(member.user_id))

    def _report(self, exc: Exception) -> None:
        if self.on_error is not None:
            self.on_error(exc)

