import asyncio
from typing import Optional, Protocol

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from constants import OUTBOUND_QUEUE_SIZE, TRANSPORT_FLUSH_SECONDS, WS_INTERNAL_ERROR, WS_NORMAL_CLOSURE
from logging_config import get_logger

logger = get_logger(__name__)


class Transport(Protocol):
    """What the relay needs from a client connection.

    ``send_text`` must never block: it either buffers the frame and returns True,
    or returns False when the peer can no longer be reached.
    """

    @property
    def is_open(self) -> bool: ...

    def send_text(self, text: str) -> bool: ...

    async def close(self, code: int = WS_NORMAL_CLOSURE, reason: str = "") -> None: ...


class WebSocketTransport:
    """Buffered, non-blocking sender on top of a Starlette WebSocket.

    Frames are queued and written by a per-connection writer task, so a slow or dead
    peer never stalls the handler that produced the frame.
    """

    def __init__(self, websocket: WebSocket, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.websocket = websocket
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._closing = False
        self._failed = False

    def start(self, name: str = "ws-writer") -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop(), name=name)

    @property
    def is_open(self) -> bool:
        if self._closing or self._failed:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def send_text(self, text: str) -> bool:
        if not self.is_open:
            return False
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning(f"Outbound buffer full ({self._queue.maxsize} frames), dropping slow peer")
            self._failed = True
            self._close_task = asyncio.ensure_future(
                self.close(code=WS_INTERNAL_ERROR, reason="Outbound buffer overflow")
            )
            return False
        return True

    async def _write_loop(self) -> None:
        try:
            while True:
                text = await self._queue.get()
                if text is None:
                    break
                await self.websocket.send_text(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Peer went away mid-write; later sends report "not delivered"
            self._failed = True
            logger.debug(f"WebSocket write failed: {e}")

    async def close(self, code: int = WS_NORMAL_CLOSURE, reason: str = "") -> None:
        """Flush buffered frames, then close the socket. Safe to call more than once."""
        if self._closing:
            return
        self._closing = True

        if self._writer is not None and not self._writer.done():
            try:
                self._queue.put_nowait(None)
            except asyncio.QueueFull:
                self._writer.cancel()
            done, _ = await asyncio.wait({self._writer}, timeout=TRANSPORT_FLUSH_SECONDS)
            if not done:
                logger.debug("Writer did not flush in time, cancelling")
                self._writer.cancel()

        if (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        ):
            try:
                await self.websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")
