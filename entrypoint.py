import sys

import uvicorn

from constants import HEARTBEAT_INTERVAL_MS, HOST, LOG_FILE, LOG_LEVEL, PORT, SHUTDOWN_TIMEOUT_S
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from app import app
from logging_config import get_logger

logger = get_logger(__name__)


class RelayServer(uvicorn.Server):
    """uvicorn server that drains the relay before releasing the listening socket."""

    async def shutdown(self, sockets=None):
        await app.state.controller.shutdown()
        await super().shutdown(sockets=sockets)


def build_config(heartbeat_interval_ms: int = HEARTBEAT_INTERVAL_MS) -> uvicorn.Config:
    # Protocol-level keepalive: a peer that misses a pong for one interval is
    # closed by the websockets backend, which the relay sees as a disconnect.
    heartbeat_s = heartbeat_interval_ms / 1000
    return uvicorn.Config(
        app,
        host=HOST,
        port=PORT,
        ws="websockets",
        ws_ping_interval=heartbeat_s,
        ws_ping_timeout=heartbeat_s,
        log_level=LOG_LEVEL.lower(),
        timeout_graceful_shutdown=int(SHUTDOWN_TIMEOUT_S) + 1,
    )


def main():
    logger.info(f"Starting signaling relay on {HOST}:{PORT}")
    server = RelayServer(build_config())
    server.run()
    if not server.started:
        logger.error(f"Could not start listener on {HOST}:{PORT}")
        sys.exit(1)


if __name__ == "__main__":
    main()
