import asyncio
from typing import Callable, Dict, List, Optional

from constants import CLOSE_HEARTBEAT_TIMEOUT, HEARTBEAT_INTERVAL_MS
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionRegistry:
    """Live connections plus the heartbeat sweep that reaps dead ones.

    Ping/pong itself happens at the WebSocket protocol level (uvicorn is
    started with ws_ping_interval/ws_ping_timeout from the same interval), so
    clients never answer application frames. A missed pong closes the
    transport; the sweep clears each liveness flag and lets
    ``Connection.check_transport`` set it again only while the transport is still up.

    ``on_expired`` is called (synchronously, from the sweep) for every
    connection terminated for missing a heartbeat, so the owner can run its
    normal teardown path.
    """

    def __init__(self, heartbeat_interval_ms: int = HEARTBEAT_INTERVAL_MS,
                 on_expired: Optional[Callable] = None):
        if heartbeat_interval_ms <= 0:
            raise ValueError("heartbeat_interval_ms must be positive")
        self.heartbeat_interval_ms = heartbeat_interval_ms
        self.on_expired = on_expired
        self._connections: Dict[str, object] = {}
        self._heartbeat_task: Optional[asyncio.Task] = None

    def register(self, connection):
        self._connections[connection.connection_id] = connection
        logger.debug(f"Registered {connection!r} ({len(self._connections)} live)")

    def unregister(self, connection) -> bool:
        removed = self._connections.pop(connection.connection_id, None) is not None
        if removed:
            logger.debug(f"Unregistered {connection!r} ({len(self._connections)} live)")
        return removed

    def __contains__(self, connection) -> bool:
        return connection.connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def connections(self) -> List:
        return list(self._connections.values())

    def sweep(self) -> List:
        """One heartbeat pass. Returns the connections that were terminated."""
        expired = []
        for connection in self.connections():
            if not connection.is_alive:
                logger.info(f"Heartbeat missed, terminating {connection!r}")
                connection.terminate(CLOSE_HEARTBEAT_TIMEOUT)
                self.unregister(connection)
                expired.append(connection)
                if self.on_expired is not None:
                    self.on_expired(connection)
                continue
            connection.is_alive = False
            connection.check_transport()
        return expired

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    def start_heartbeat(self):
        if self.heartbeat_running:
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="heartbeat")
        logger.info(f"Heartbeat started (interval {self.heartbeat_interval_ms}ms)")

    async def stop_heartbeat(self):
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Heartbeat stopped")

    async def _heartbeat_loop(self):
        interval = self.heartbeat_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Heartbeat sweep failed: {e}", exc_info=True)
