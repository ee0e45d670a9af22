"""Logging setup shared by every relay module.

Modules call ``get_logger(__name__)`` at import time; the entrypoint (or the
app module) calls ``setup_logging`` once so handlers are installed before the
first connection arrives.
"""
import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ROOT_LOGGER_NAME = "signaling"

_configured = False


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Install console (and optional file) handlers on the relay's root logger.

    Safe to call more than once: later calls only adjust the level.
    """
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    root.setLevel(level)

    if _configured:
        return root

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.propagate = False
    _configured = True
    root.debug(f"Logging configured: level={logging.getLevelName(level)}, file={log_file}")
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the relay's root logger."""
    if name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
