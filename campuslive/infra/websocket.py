import asyncio
import logging
from typing import Any, Awaitable, Callable

import websockets
from websockets.protocol import State

from campuslive.core.errors import ConnectionError

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Async WebSocket transport carrying realtime text frames."""

    def __init__(self, url: str, *, connect_timeout: float = 20.0):
        self.url = url
        self.connect_timeout = connect_timeout
        self._ws: Any | None = None
        self._recv_task: asyncio.Task | None = None
        self.on_message: Callable[[str], Awaitable[None]] | None = None
        self.on_disconnect: Callable[[Exception], Awaitable[None]] | None = None

    async def connect(self) -> None:
        """Opens the socket and starts the receive loop."""
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(self.url, ping_interval=None),
                timeout=self.connect_timeout,
            )
        except Exception as e:
            raise ConnectionError(f"Failed to connect to realtime endpoint: {e}") from e

        self._recv_task = asyncio.create_task(self._listen_loop())

    async def disconnect(self) -> None:
        """Cleanly disconnects without reporting a drop."""
        if self._recv_task:
            self._recv_task.cancel()
            self._recv_task = None
        if self._ws:
            ws, self._ws = self._ws, None
            await ws.close()
            wait_closed = getattr(ws, "wait_closed", None)
            if callable(wait_closed):
                await wait_closed()

    async def send(self, data: str) -> None:
        if not self.is_open():
            raise ConnectionError("WebSocket is disconnected")
        await self._ws.send(data)

    def is_open(self) -> bool:
        ws = self._ws
        if ws is None:
            return False

        # websockets<=11 style API
        if hasattr(ws, "closed"):
            return not bool(getattr(ws, "closed"))

        # websockets>=12 style API
        state = getattr(ws, "state", None)
        if state is None:
            return False
        return state == State.OPEN or state == 1

    async def _listen_loop(self) -> None:
        """Receives frames and hands them to the handler in arrival order."""
        try:
            while True:
                message = await self._ws.recv()
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                if self.on_message:
                    # awaited inline: per-topic ordering depends on it
                    await self.on_message(message)
        except websockets.exceptions.ConnectionClosed as e:
            logger.info("realtime socket closed: %s", e)
            self._ws = None
            if self.on_disconnect:
                code = e.rcvd.code if e.rcvd is not None else None
                await self.on_disconnect(ConnectionError(f"socket closed: {e}", status_code=code))
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("realtime receive loop failed: %s", e, exc_info=True)
            self._ws = None
            if self.on_disconnect:
                await self.on_disconnect(e)
