"""
Logging Setup

All modules log under the ``ux_critique`` namespace:

    from .log import get_logger
    logger = get_logger("ux_critique.pipeline")
    logger.info("Stage %s done", stage)
"""

import logging
import sys

_configured = False


def setup_logging(level: int = logging.INFO) -> None:
    """Attach a single stderr handler to the package logger."""
    global _configured
    root = logging.getLogger("ux_critique")
    root.setLevel(level)
    if _configured:
        for handler in root.handlers:
            handler.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger under the ``ux_critique`` namespace.

    Calls ``setup_logging()`` on first use so the handler is attached.
    """
    if not _configured:
        setup_logging()
    return logging.getLogger(name)
