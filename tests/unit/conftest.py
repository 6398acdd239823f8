import asyncio
import itertools
import json
from typing import Any

import pytest

from campuslive.app.portal import Portal
from campuslive.app.session import Session
from campuslive.client.profiles import ProfileDirectory
from campuslive.core.entities import Profile
from campuslive.core.errors import ConnectionError, FetchError
from campuslive.realtime.client import RealtimeClient


class FakeTransport:
    """In-memory stand-in for WebSocketTransport.

    Joins are answered inline with ``ok`` unless the topic is listed in
    ``reject`` (answered with ``error``) or ``silent`` (never answered).
    """

    def __init__(self) -> None:
        self.on_message = None
        self.on_disconnect = None
        self.sent: list[dict[str, Any]] = []
        self.open = False
        self.connects = 0
        self.fail_connects = 0
        self.reject: set[str] = set()
        self.silent: set[str] = set()
        self.answer_heartbeats = True

    async def connect(self) -> None:
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ConnectionError("refused")
        self.connects += 1
        self.open = True

    async def disconnect(self) -> None:
        self.open = False

    def is_open(self) -> bool:
        return self.open

    async def send(self, data: str) -> None:
        if not self.open:
            raise ConnectionError("WebSocket is disconnected")
        frame = json.loads(data)
        self.sent.append(frame)
        if frame["event"] == "heartbeat" and self.answer_heartbeats:
            await self.reply("phoenix", frame["ref"])
            return
        if frame["event"] == "phx_join":
            topic = frame["topic"]
            if topic in self.silent:
                return
            status = "error" if topic in self.reject else "ok"
            response = {"reason": "unauthorized"} if status == "error" else {}
            await self.reply(topic, frame["ref"], status, response)

    async def reply(self, topic: str, ref: str, status: str = "ok", response: dict | None = None) -> None:
        await self.push(topic, "phx_reply", {"status": status, "response": response or {}}, ref=ref)

    async def push(self, topic: str, event: str, payload: dict, *, ref: str | None = None, join_ref: str | None = None) -> None:
        raw = json.dumps({"topic": topic, "event": event, "payload": payload, "ref": ref, "join_ref": join_ref})
        await self.on_message(raw)

    async def push_change(self, topic: str, kind: str, record: dict | None = None, old: dict | None = None, table: str = "messages") -> None:
        await self.push(
            topic,
            "postgres_changes",
            {
                "ids": [1],
                "data": {
                    "schema": "public",
                    "table": table,
                    "commit_timestamp": "2024-01-01T00:00:00Z",
                    "type": kind,
                    "record": record or {},
                    "old_record": old or {},
                    "columns": [],
                    "errors": None,
                },
            },
        )

    async def push_broadcast(self, topic: str, event: str, payload: dict) -> None:
        await self.push(topic, "broadcast", {"type": "broadcast", "event": event, "payload": payload})

    async def drop(self, exc: Exception | None = None) -> None:
        self.open = False
        await self.on_disconnect(exc or ConnectionError("dropped"))

    def frames(self, event: str) -> list[dict[str, Any]]:
        return [f for f in self.sent if f["event"] == event]


class _Handle:
    def __init__(self, when: float, callback) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock; timers only fire inside ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[_Handle] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback) -> _Handle:
        handle = _Handle(self.now + delay, callback)
        self._timers.append(handle)
        return handle

    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = target


def _matches(row: dict, column: str, expr: str) -> bool:
    if expr.startswith("eq."):
        return str(row.get(column)).lower() == expr[3:].lower()
    if expr.startswith("in.(") and expr.endswith(")"):
        return str(row.get(column)) in expr[4:-1].split(",")
    return True


class FakeRest:
    """Table store that speaks the RestClient surface used by the app."""

    def __init__(self, tables: dict[str, list[dict]] | None = None) -> None:
        self.tables: dict[str, list[dict]] = {k: list(v) for k, v in (tables or {}).items()}
        self.calls: list[tuple[str, str, dict]] = []
        self.fail: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self._ids = itertools.count(1000)

    async def select(self, table, *, columns="*", filters=None, order=None, limit=None):
        self.calls.append(("select", table, dict(filters or {})))
        gate = self.gates.get(table)
        if gate is not None:
            await gate.wait()
        if table in self.fail:
            raise FetchError(f"GET {table} returned 500", status_code=500)
        rows = [dict(r) for r in self.tables.get(table, [])]
        for column, expr in (filters or {}).items():
            rows = [r for r in rows if _matches(r, column, expr)]
        if order:
            column = order.split(".")[0]
            rows.sort(key=lambda r: r.get(column) or "")
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def select_one(self, table, **kwargs):
        rows = await self.select(table, limit=1, **kwargs)
        return rows[0] if rows else None

    async def insert(self, table, row):
        self.calls.append(("insert", table, dict(row)))
        if table in self.fail:
            raise FetchError(f"POST {table} returned 500", status_code=500)
        stored = {"id": f"row-{next(self._ids)}", "created_at": "2024-01-01T12:00:00+00:00", **row}
        self.tables.setdefault(table, []).append(stored)
        return dict(stored)

    async def update(self, table, values, *, filters):
        self.calls.append(("update", table, dict(filters)))
        updated = []
        for row in self.tables.get(table, []):
            if all(_matches(row, c, e) for c, e in filters.items()):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def aclose(self) -> None:
        return None

    def count(self, kind: str, table: str) -> int:
        return sum(1 for c in self.calls if c[0] == kind and c[1] == table)


ALICE = Profile(id="u-alice", name="Alice", role="student")
BOB = Profile(id="u-bob", name="Bob", role="academic")


def profile_row(profile: Profile) -> dict:
    return {"id": profile.id, "name": profile.name, "role": profile.role, "avatar_url": profile.avatar_url}


def make_realtime(transport: FakeTransport, **config) -> RealtimeClient:
    config.setdefault("reconnect_base_delay", 0.0)
    return RealtimeClient("ws://test/realtime/v1/websocket", "anon", transport=transport, **config)


def make_portal(rest: FakeRest, transport: FakeTransport, scheduler: FakeScheduler, user: Profile = ALICE, **config) -> Portal:
    realtime = make_realtime(transport, **config)
    return Portal(
        session=Session(access_token="token", user=user),
        rest=rest,  # type: ignore[arg-type]
        realtime=realtime,
        profiles=ProfileDirectory(rest),  # type: ignore[arg-type]
        config={**realtime.config},
        scheduler=scheduler,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


async def settle(rounds: int = 20) -> None:
    """Let queued consumer tasks drain."""
    for _ in range(rounds):
        await asyncio.sleep(0)
