"""Connection lifecycle: accept, read loop, teardown and shutdown drain."""
import asyncio
from typing import Optional, Union

from fastapi import WebSocket

from backend import RoomDirectory
from connection import Connection
from constants import (
    CLOSE_GOING_AWAY,
    CLOSE_POLICY_VIOLATION,
    SEND_QUEUE_SIZE,
    SHUTDOWN_TIMEOUT_S,
)
from logging_config import get_logger
from message_router import MessageRouter
from rate_limiter import RateLimiter, monotonic_millis
from registry import ConnectionRegistry
from schemas.signals import ErrorMessage, parse_signal

logger = get_logger(__name__)


class LifecycleController:
    def __init__(
        self,
        directory: RoomDirectory,
        registry: ConnectionRegistry,
        rate_limiter: RateLimiter,
        send_queue_size: int = SEND_QUEUE_SIZE,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT_S,
    ):
        self.directory = directory
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.router = MessageRouter(directory)
        self.send_queue_size = send_queue_size
        self.shutdown_timeout = shutdown_timeout
        self.shutting_down = False
        self.registry.on_expired = self.teardown

    async def serve(self, websocket: WebSocket):
        """Run one client session until the transport closes or the relay drops it."""
        await websocket.accept()
        connection = Connection(websocket, send_queue_size=self.send_queue_size)
        if self.shutting_down:
            await connection.release(self.shutdown_timeout, CLOSE_GOING_AWAY)
            return

        self.registry.register(connection)
        connection.start()
        logger.info(f"Connection {connection.connection_id} accepted ({len(self.registry)} live)")

        reader = asyncio.create_task(self._read_loop(connection), name=f"reader-{connection.connection_id}")
        closed = asyncio.create_task(connection.wait_closed())
        try:
            await asyncio.wait({reader, closed}, return_when=asyncio.FIRST_COMPLETED)
            if reader.done() and not reader.cancelled() and reader.exception() is not None:
                logger.error(
                    f"Read loop failed for {connection.connection_id}: {reader.exception()}",
                    exc_info=reader.exception(),
                )
        finally:
            for task in (reader, closed):
                task.cancel()
            await asyncio.gather(reader, closed, return_exceptions=True)
            self.teardown(connection)
            await connection.release(self.shutdown_timeout)
            logger.info(f"Connection {connection.connection_id} closed ({len(self.registry)} live)")

    async def _read_loop(self, connection: Connection):
        websocket = connection.websocket
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug(f"{connection!r} disconnected (code={message.get('code')})")
                return
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if not self.handle_frame(connection, raw):
                return

    def handle_frame(self, connection: Connection, raw: Union[str, bytes, None], now: Optional[float] = None) -> bool:
        """Rate-limit, parse and dispatch one frame. Returns False when the connection must stop reading."""
        if now is None:
            now = monotonic_millis()
        if not self.rate_limiter.allow(connection, now):
            logger.warning(f"Rate limit exceeded by {connection!r}, closing")
            connection.send(ErrorMessage(message="rate limit exceeded").model_dump())
            connection.close(CLOSE_POLICY_VIOLATION, "rate limit")
            return False

        message = parse_signal(raw)
        if message is None:
            logger.debug(f"Dropping unparsable frame from {connection!r}")
            return True

        self.router.dispatch(connection, message)
        return True

    def teardown(self, connection: Connection):
        """Unregister and leave the room. Runs once per connection whichever path calls it."""
        if not connection.mark_torn_down():
            return
        self.registry.unregister(connection)
        if connection.room_id and connection.client_id:
            self.directory.leave(connection.room_id, connection.client_id, connection)

    async def shutdown(self):
        """Stop the heartbeat, then close every connection and wait for them to drain."""
        if self.shutting_down:
            return
        self.shutting_down = True
        logger.info(f"Shutting down relay, closing {len(self.registry)} connections")
        await self.registry.stop_heartbeat()

        connections = self.registry.connections()
        for connection in connections:
            connection.close(CLOSE_GOING_AWAY, "server shutdown")
        if connections:
            waiters = [asyncio.create_task(c.wait_closed()) for c in connections]
            done, pending = await asyncio.wait(waiters, timeout=self.shutdown_timeout)
            for connection, waiter in zip(connections, waiters):
                if waiter in pending:
                    waiter.cancel()
                    connection.terminate()
            if pending:
                logger.warning(f"{len(pending)} connections did not close within {self.shutdown_timeout}s")
        for connection in connections:
            self.teardown(connection)
        logger.info("Relay shutdown complete")
