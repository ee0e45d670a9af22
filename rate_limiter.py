"""
Per-connection message rate limiting.

Approximate sliding window: each connection keeps the timestamps of the
messages it was allowed to send inside the trailing window. Rejected
messages are not recorded.
"""
import time

from constants import RATE_LIMIT_MAX_MSGS, RATE_LIMIT_WINDOW_MS
from logging_config import get_logger

logger = get_logger(__name__)


def monotonic_millis() -> float:
    return time.monotonic() * 1000


class RateLimiter:
    def __init__(self, window_ms: int = RATE_LIMIT_WINDOW_MS, max_messages: int = RATE_LIMIT_MAX_MSGS):
        """
        Args:
            window_ms: Length of the trailing window in milliseconds
            max_messages: Messages accepted per window before rejecting
        """
        if window_ms <= 0 or max_messages <= 0:
            raise ValueError("window_ms and max_messages must be positive")
        self.window_ms = window_ms
        self.max_messages = max_messages

    def allow(self, connection, now: float = None) -> bool:
        """
        Record a message from ``connection`` at ``now`` (milliseconds) if it fits the window.

        Returns:
            bool: True if the message is allowed, False if the connection is over its limit
        """
        if now is None:
            now = monotonic_millis()
        timestamps = connection.message_timestamps

        while timestamps and now - timestamps[0] >= self.window_ms:
            timestamps.popleft()

        if len(timestamps) >= self.max_messages:
            logger.debug(f"Rate limit hit for {connection!r}: {len(timestamps)} messages in {self.window_ms}ms")
            return False

        timestamps.append(now)
        return True
