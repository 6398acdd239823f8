# ruff: noqa: E402
"""Live channel watcher for manual testing against a real backend.

Usage:
    python examples/watch_channel.py

Required env:
    CAMPUSLIVE_URL=https://<project>.supabase.co
    CAMPUSLIVE_ANON_KEY=<anon key>
    CAMPUSLIVE_CHANNEL_ID=<channel uuid>

Optional env:
    CAMPUSLIVE_SESSION_DB=campuslive.db
    CAMPUSLIVE_LOG_LEVEL=INFO
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from campuslive.app.channel import ChannelScreen
from campuslive.app.portal import open_portal
from campuslive.core.errors import CampusLiveError
from campuslive.core.events import ConnectionEvent
from campuslive.defaults.config import settings_from_env
from campuslive.infra.logger import configure_logging


def _print_messages(messages: list) -> None:
    print(f"\n=== {len(messages)} messages ===")
    for message in messages[-10:]:
        author = message.author.name if message.author else message.user_id
        print(f"[{message.created_at:%H:%M}] {author}: {message.content}")


def _print_members(members: list) -> None:
    names = ", ".join(m.profile.name if m.profile else m.user_id for m in members)
    print(f"[members] {len(members)}: {names}")


def _print_typing(users: list) -> None:
    if users:
        print(f"[typing] {', '.join(u.name or u.user_id for u in users)} ...")
    else:
        print("[typing] nobody")


async def main() -> None:
    channel_id = os.getenv("CAMPUSLIVE_CHANNEL_ID")
    if not channel_id:
        raise SystemExit("CAMPUSLIVE_CHANNEL_ID is required")

    settings = settings_from_env()
    configure_logging(settings.log_level)

    try:
        portal = await open_portal(settings)
    except CampusLiveError as exc:
        raise SystemExit(f"cannot open portal: {exc}") from exc

    async def _on_connection_update(event: ConnectionEvent) -> None:
        suffix = f" (attempt {event.attempt})" if event.attempt else ""
        print(f"[connection] status={event.status}{suffix}")
        if event.reason:
            print(f"[connection] reason={event.reason}")

    portal.realtime.on_connection_update = _on_connection_update

    screen = ChannelScreen(portal, channel_id, on_error=lambda exc: print(f"[error] {exc}"))
    screen.messages.store.listen(_print_messages)
    screen.members.store.listen(_print_members)
    screen.typing.store.listen(_print_typing)

    await screen.mount()
    if screen.not_found:
        print(f"channel {channel_id} not found")
    elif screen.channel is not None:
        print(f"watching #{screen.channel.name} as {portal.session.user.name}; Ctrl+C to stop")
        _print_messages(screen.messages.items)

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        with contextlib.suppress(CampusLiveError):
            await screen.unmount()
        await portal.close()


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
