"""Logging configuration for the relay service."""

from __future__ import annotations

import logging
import sys

_HANDLER_NAME = "manus_relay.console"


def configure_logging(level: str | int = "INFO") -> None:
    """Attach one stderr handler to the ``manus_relay`` logger.

    Safe to call repeatedly: the handler is replaced, never duplicated.
    Records must never carry API keys or the encryption secret.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO

    package_logger = logging.getLogger("manus_relay")
    package_logger.setLevel(level)
    for handler in list(package_logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    package_logger.addHandler(handler)
