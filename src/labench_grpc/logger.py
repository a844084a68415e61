"""Logger helpers shared across labench_grpc modules."""

from __future__ import annotations

import logging
import os

DEFAULT_FORMAT = "[%(name)s] %(levelname)s %(message)s"
LEVEL_ENV = "LABENCH_LOG_LEVEL"


def configure(name: str) -> logging.Logger:
    """Return the named logger, applying LABENCH_LOG_LEVEL when it is set."""
    logger = logging.getLogger(name)
    level = os.environ.get(LEVEL_ENV)
    if level:
        logger.setLevel(level.upper())
    return logger


def setup_console(level: int = logging.INFO) -> None:
    """Attach a stderr handler to the package logger (used by the CLI)."""
    root = logging.getLogger("labench_grpc")
    for existing in [h for h in root.handlers if getattr(h, "_labench_console", False)]:
        root.removeHandler(existing)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    handler._labench_console = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    override = os.environ.get(LEVEL_ENV)
    root.setLevel(override.upper() if override else level)
