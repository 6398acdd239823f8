import asyncio

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close
from websockets.protocol import State

from campuslive.core.errors import CloseReason, ConnectionError
from campuslive.infra.websocket import WebSocketTransport

URL = "ws://test/realtime/v1/websocket?apikey=anon&vsn=1.0.0"


class _LegacyWs:
    def __init__(self, closed: bool) -> None:
        self.closed = closed
        self.sent: list[str] = []

    async def send(self, data: str) -> None:
        self.sent.append(data)


class _StateWs:
    def __init__(self, state: State, incoming: list | None = None) -> None:
        self.state = state
        self.sent: list[str] = []
        self.incoming = list(incoming or [])
        self.close_calls = 0

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def recv(self):
        if not self.incoming:
            raise ConnectionClosedOK(None, None)
        return self.incoming.pop(0)

    async def close(self) -> None:
        self.close_calls += 1
        self.state = State.CLOSED


def _run(coro):
    return asyncio.run(coro)


def test_send_with_legacy_open_socket() -> None:
    transport = WebSocketTransport(URL)
    ws = _LegacyWs(closed=False)
    transport._ws = ws

    _run(transport.send('{"event":"heartbeat"}'))

    assert ws.sent == ['{"event":"heartbeat"}']


def test_send_with_state_based_open_socket() -> None:
    transport = WebSocketTransport(URL)
    ws = _StateWs(state=State.OPEN)
    transport._ws = ws

    _run(transport.send("xyz"))

    assert ws.sent == ["xyz"]


def test_send_raises_when_state_based_socket_closed() -> None:
    transport = WebSocketTransport(URL)
    transport._ws = _StateWs(state=State.CLOSED)

    with pytest.raises(ConnectionError):
        _run(transport.send("x"))


def test_send_raises_before_connect() -> None:
    transport = WebSocketTransport(URL)
    assert transport.is_open() is False
    with pytest.raises(ConnectionError):
        _run(transport.send("x"))


def test_listen_loop_delivers_in_order_then_reports_close() -> None:
    async def _case() -> None:
        transport = WebSocketTransport(URL)
        transport._ws = _StateWs(state=State.OPEN, incoming=["one", b"two", "three"])
        received: list[str] = []
        dropped: list[Exception] = []

        async def _on_message(message: str) -> None:
            await asyncio.sleep(0)
            received.append(message)

        async def _on_disconnect(exc: Exception) -> None:
            dropped.append(exc)

        transport.on_message = _on_message
        transport.on_disconnect = _on_disconnect
        await transport._listen_loop()

        assert received == ["one", "two", "three"]
        assert len(dropped) == 1
        assert transport.is_open() is False

    _run(_case())


def test_disconnect_closes_socket_without_reporting() -> None:
    async def _case() -> None:
        transport = WebSocketTransport(URL)
        ws = _StateWs(state=State.OPEN)
        transport._ws = ws
        dropped: list[Exception] = []

        async def _on_disconnect(exc: Exception) -> None:
            dropped.append(exc)

        transport.on_disconnect = _on_disconnect
        await transport.disconnect()

        assert ws.close_calls == 1
        assert dropped == []
        assert transport.is_open() is False

    _run(_case())


def test_connect_failure_raises_connection_error() -> None:
    transport = WebSocketTransport("ws://127.0.0.1:1/realtime/v1/websocket", connect_timeout=2.0)
    with pytest.raises(ConnectionError):
        _run(transport.connect())


def test_close_code_is_carried_on_the_reported_error() -> None:
    class _RefusedWs(_StateWs):
        async def recv(self):
            raise ConnectionClosedError(Close(1008, "invalid token"), None)

    async def _case() -> None:
        transport = WebSocketTransport(URL)
        transport._ws = _RefusedWs(state=State.OPEN)
        dropped: list[Exception] = []

        async def _on_disconnect(exc: Exception) -> None:
            dropped.append(exc)

        transport.on_disconnect = _on_disconnect
        await transport._listen_loop()

        assert isinstance(dropped[0], ConnectionError)
        assert dropped[0].status_code == CloseReason.POLICY_VIOLATION

    _run(_case())
