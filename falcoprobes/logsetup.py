"""Process-wide logging for the falcoprobes tools."""

from __future__ import annotations

import logging
import sys

_ROOT_NAME = "falcoprobes"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class _StderrHandler(logging.StreamHandler):
    """Stream handler that always writes to the current ``sys.stderr``."""

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    def emit(self, record: logging.LogRecord) -> None:
        # Resolve the target on every write so a replaced sys.stderr is honoured.
        self.stream = sys.stderr
        super().emit(record)


def _root_logger() -> logging.Logger:
    root = logging.getLogger(_ROOT_NAME)
    if not any(isinstance(handler, _StderrHandler) for handler in root.handlers):
        handler = _StderrHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)
        root.propagate = False
    return root


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger below the package's root logger, which logs to stderr."""
    root = _root_logger()
    if not name:
        return root
    return logging.getLogger(f"{_ROOT_NAME}.{name}")


def configure_logging(verbosity: int) -> int:
    """Set the package log level from the number of ``-v`` flags and return it.

    Exactly one ``-v`` enables debug output; anything else keeps info level.
    """
    level = logging.DEBUG if verbosity == 1 else logging.INFO
    _root_logger().setLevel(level)
    return level