"""Per-client session state and its outbound writer.

Room and registry code only ever calls ``Connection.send``, which never
awaits: frames go into a bounded queue and a writer task owns the socket.
A peer that stops reading fills its own queue and loses frames; nobody else
waits on it.
"""
import asyncio
import json
import uuid
from collections import deque
from typing import Any, Deque, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from constants import CLOSE_NORMAL, SEND_QUEUE_SIZE
from logging_config import get_logger

logger = get_logger(__name__)


class _CloseRequest:
    def __init__(self, code: int, reason: str):
        self.code = code
        self.reason = reason


class Connection:
    def __init__(self, websocket: WebSocket, send_queue_size: int = SEND_QUEUE_SIZE):
        self.connection_id = str(uuid.uuid4())

        self.websocket = websocket
        self.client_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.message_timestamps: Deque[float] = deque()
        self.is_alive = True

        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=send_queue_size)
        self._closing = False
        self.close_code = CLOSE_NORMAL
        self._closed = asyncio.Event()
        self._writer: Optional[asyncio.Task] = None
        self._torn_down = False

    def __repr__(self):
        return f"<Connection {self.connection_id} client={self.client_id} room={self.room_id}>"

    @property
    def is_open(self) -> bool:
        return (
            not self._closing
            and self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        )

    @property
    def is_closing(self) -> bool:
        return self._closing

    def bind(self, room_id: str, client_id: str):
        self.room_id = room_id
        self.client_id = client_id

    def unbind(self):
        self.room_id = None
        self.client_id = None

    def mark_torn_down(self) -> bool:
        """Returns True exactly once, for whichever path gets here first."""
        if self._torn_down:
            return False
        self._torn_down = True
        return True

    def mark_alive(self):
        self.is_alive = True

    def start(self):
        if self._writer is None:
            self._writer = asyncio.create_task(self._pump(), name=f"writer-{self.connection_id}")

    def send(self, message: Dict[str, Any]) -> bool:
        """Queue a frame. Returns False if it was dropped."""
        if not self.is_open:
            return False
        try:
            self._outbox.put_nowait(json.dumps(message))
        except asyncio.QueueFull:
            logger.warning(f"Send queue full for {self.connection_id}, dropping {message.get('type')} frame")
            return False
        return True

    @property
    def transport_connected(self) -> bool:
        """True while the socket is up and the writer has not given up on it."""
        if self._writer is not None and self._writer.done():
            return False
        return (
            self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        )

    def check_transport(self) -> bool:
        """Heartbeat check. uvicorn closes a socket whose protocol pongs stop, which shows up here."""
        if self._closing or not self.transport_connected:
            return False
        self.mark_alive()
        return True

    def close(self, code: int = CLOSE_NORMAL, reason: str = ""):
        """Close after the frames already queued have been written."""
        if self._closing:
            return
        self._closing = True
        self.close_code = code
        try:
            self._outbox.put_nowait(_CloseRequest(code, reason))
        except asyncio.QueueFull:
            logger.debug(f"Send queue full while closing {self.connection_id}, terminating instead")
            self._abort_writer()

    def terminate(self, code: Optional[int] = None):
        """Drop the connection now without flushing anything."""
        if code is not None:
            self.close_code = code
        self._closing = True
        self._abort_writer()

    def _abort_writer(self):
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
        self._closed.set()

    async def wait_closed(self):
        await self._closed.wait()

    async def _pump(self):
        try:
            while True:
                item = await self._outbox.get()
                if isinstance(item, _CloseRequest):
                    await self._close_transport(item.code, item.reason)
                    return
                await self.websocket.send_text(item)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug(f"Write failed for {self.connection_id}: {e}")
        finally:
            self._closing = True
            self._closed.set()

    async def _close_transport(self, code: int, reason: str = ""):
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        if self.websocket.client_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug(f"Error closing WebSocket for {self.connection_id}: {e}")

    async def release(self, timeout: float, code: int = CLOSE_NORMAL):
        """Wait for the writer to finish (bounded), then make sure the socket is closed.

        A connection that was already closed or terminated keeps the code chosen then.
        """
        self.close(code)
        writer = self._writer
        if writer is not None and not writer.done():
            done, _ = await asyncio.wait({writer}, timeout=timeout)
            if not done:
                logger.debug(f"Writer for {self.connection_id} did not drain in {timeout}s, cancelling")
                writer.cancel()
                await asyncio.gather(writer, return_exceptions=True)
        self._closed.set()
        await self._close_transport(self.close_code)
