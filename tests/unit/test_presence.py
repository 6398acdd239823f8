import asyncio
from typing import Any

import pytest

from campuslive.core.entities import Profile
from campuslive.core.errors import SubscribeError
from campuslive.sync.presence import PresenceState, PresenceTimer, TypingPublisher, TypingRoster
from conftest import ALICE, BOB, FakeScheduler, FakeTransport, make_realtime, settle


def _run(coro: Any) -> Any:
    return asyncio.run(coro)


def _timer(scheduler: FakeScheduler, interval: float = 2.0):
    log: list[tuple[str, float]] = []
    timer = PresenceTimer(
        lambda: log.append(("typing", scheduler.time())),
        lambda: log.append(("stopped", scheduler.time())),
        interval=interval,
        scheduler=scheduler,
    )
    return timer, log


def test_first_input_fires_active_once(scheduler: FakeScheduler) -> None:
    timer, log = _timer(scheduler)
    timer.input()
    timer.input()
    timer.input()
    assert log == [("typing", 0.0)]
    assert timer.state is PresenceState.ACTIVE
    assert scheduler.pending() == 1


def test_quiet_timer_restarts_on_each_input(scheduler: FakeScheduler) -> None:
    timer, log = _timer(scheduler)
    timer.input()
    scheduler.advance(1.0)
    timer.input()
    scheduler.advance(1.0)
    scheduler.advance(0.5)
    assert log == [("typing", 0.0)]
    scheduler.advance(0.5)
    assert log == [("typing", 0.0), ("stopped", 3.0)]
    scheduler.advance(10.0)
    assert log == [("typing", 0.0), ("stopped", 3.0)]
    assert timer.state is PresenceState.IDLE


def test_stop_cancels_timer_and_fires_idle_once(scheduler: FakeScheduler) -> None:
    timer, log = _timer(scheduler)
    timer.input()
    scheduler.advance(0.5)
    timer.stop()
    timer.stop()
    scheduler.advance(5.0)
    assert log == [("typing", 0.0), ("stopped", 0.5)]
    assert scheduler.pending() == 0


def test_stop_while_idle_is_silent(scheduler: FakeScheduler) -> None:
    timer, log = _timer(scheduler)
    timer.stop()
    assert log == []


def test_typing_again_after_idle_fires_active_again(scheduler: FakeScheduler) -> None:
    timer, log = _timer(scheduler)
    timer.input()
    scheduler.advance(2.0)
    timer.input()
    assert [entry[0] for entry in log] == ["typing", "stopped", "typing"]


def test_interval_must_be_positive(scheduler: FakeScheduler) -> None:
    with pytest.raises(ValueError):
        PresenceTimer(lambda: None, lambda: None, interval=0, scheduler=scheduler)


def test_publisher_sends_events_in_order() -> None:
    async def _case() -> None:
        scheduler = FakeScheduler()
        sent: list[tuple[str, dict]] = []

        async def _send(event: str, payload: dict) -> None:
            await asyncio.sleep(0)
            sent.append((event, payload))

        publisher = TypingPublisher(_send, ALICE, interval=2.0, scheduler=scheduler)
        publisher.input()
        publisher.input()
        publisher.stop()
        publisher.input()
        scheduler.advance(2.0)
        await publisher.aclose()

        assert [event for event, _ in sent] == ["typing", "typing_stopped", "typing", "typing_stopped"]
        assert sent[0][1] == {"user_id": ALICE.id, "name": ALICE.name}

    _run(_case())


def test_publisher_tolerates_send_failure() -> None:
    async def _case() -> None:
        scheduler = FakeScheduler()

        async def _send(event: str, payload: dict) -> None:
            raise SubscribeError("not subscribed")

        publisher = TypingPublisher(_send, ALICE, scheduler=scheduler)
        publisher.input()
        await publisher.aclose()
        assert publisher.timer.state is PresenceState.IDLE

    _run(_case())


TOPIC = "realtime:typing:c1"


async def _roster(transport: FakeTransport, scheduler: FakeScheduler, **kwargs: Any) -> TypingRoster:
    realtime = make_realtime(transport)
    await realtime.connect()
    roster = TypingRoster(realtime, "typing:c1", self_id=ALICE.id, scheduler=scheduler, **kwargs)
    await roster.mount()
    return roster


def test_roster_adds_peer_once(transport: FakeTransport, scheduler: FakeScheduler) -> None:
    async def _case() -> None:
        roster = await _roster(transport, scheduler)
        await transport.push_broadcast(TOPIC, "typing", {"user_id": BOB.id, "name": BOB.name})
        await transport.push_broadcast(TOPIC, "typing", {"user_id": BOB.id, "name": BOB.name})
        await settle()
        assert roster.names() == ["Bob"]
        await roster.unmount()

    _run(_case())


def test_roster_removes_on_stop_and_cancels_expiry(transport: FakeTransport, scheduler: FakeScheduler) -> None:
    async def _case() -> None:
        roster = await _roster(transport, scheduler)
        await transport.push_broadcast(TOPIC, "typing", {"user_id": BOB.id, "name": BOB.name})
        await settle()
        assert scheduler.pending() == 1
        await transport.push_broadcast(TOPIC, "typing_stopped", {"user_id": BOB.id})
        await settle()
        assert roster.users == []
        assert scheduler.pending() == 0
        await roster.unmount()

    _run(_case())


def test_roster_ignores_own_typing(transport: FakeTransport, scheduler: FakeScheduler) -> None:
    async def _case() -> None:
        roster = await _roster(transport, scheduler)
        await transport.push_broadcast(TOPIC, "typing", {"user_id": ALICE.id, "name": ALICE.name})
        await transport.push_broadcast(TOPIC, "typing", {"name": "nobody"})
        await transport.push_broadcast(TOPIC, "wave", {"user_id": BOB.id})
        await settle()
        assert roster.users == []
        await roster.unmount()

    _run(_case())


def test_roster_entry_expires_without_stop(transport: FakeTransport, scheduler: FakeScheduler) -> None:
    async def _case() -> None:
        roster = await _roster(transport, scheduler, expiry=6.0)
        await transport.push_broadcast(TOPIC, "typing", {"user_id": BOB.id, "name": BOB.name})
        await settle()
        scheduler.advance(5.5)
        assert roster.names() == ["Bob"]
        scheduler.advance(0.5)
        assert roster.users == []
        await roster.unmount()

    _run(_case())


def test_roster_expiry_is_refreshed_by_new_typing(transport: FakeTransport, scheduler: FakeScheduler) -> None:
    async def _case() -> None:
        roster = await _roster(transport, scheduler, expiry=6.0)
        await transport.push_broadcast(TOPIC, "typing", {"user_id": BOB.id, "name": BOB.name})
        await settle()
        scheduler.advance(4.0)
        await transport.push_broadcast(TOPIC, "typing", {"user_id": BOB.id, "name": BOB.name})
        await settle()
        scheduler.advance(4.0)
        assert roster.names() == ["Bob"]
        assert scheduler.pending() == 1
        scheduler.advance(2.0)
        assert roster.users == []
        await roster.unmount()

    _run(_case())


def test_roster_resolves_missing_name(transport: FakeTransport, scheduler: FakeScheduler) -> None:
    async def _case() -> None:
        calls: list[str] = []

        async def _resolve(user_id: str) -> Profile:
            calls.append(user_id)
            return BOB

        roster = await _roster(transport, scheduler, resolve=_resolve)
        await transport.push_broadcast(TOPIC, "typing", {"user_id": BOB.id})
        await settle()
        assert roster.names() == ["Bob"]
        assert calls == [BOB.id]
        await roster.unmount()

    _run(_case())


def test_roster_discards_lookup_that_finishes_after_unmount(transport: FakeTransport, scheduler: FakeScheduler) -> None:
    async def _case() -> None:
        gate = asyncio.Event()
        finished: list[str] = []

        async def _resolve(user_id: str) -> Profile:
            await gate.wait()
            finished.append(user_id)
            return BOB

        roster = await _roster(transport, scheduler, resolve=_resolve)
        await transport.push_broadcast(TOPIC, "typing", {"user_id": BOB.id})
        await settle()
        await roster.unmount()
        gate.set()
        await settle()
        assert roster.users == []
        assert scheduler.pending() == 0
        assert finished == []

        await roster.mount()
        await settle()
        assert roster.users == []
        await roster.unmount()

    _run(_case())


def test_roster_unmount_leaves_topic(transport: FakeTransport, scheduler: FakeScheduler) -> None:
    async def _case() -> None:
        roster = await _roster(transport, scheduler)
        await transport.push_broadcast(TOPIC, "typing", {"user_id": BOB.id, "name": BOB.name})
        await settle()
        await roster.unmount()
        assert [f["topic"] for f in transport.frames("phx_leave")] == [TOPIC]
        assert roster.users == []
        assert scheduler.pending() == 0

    _run(_case())
