from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def init_logger(level: str = "INFO") -> None:
    """Initialize root logger once per session (re-callable to change level)."""
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(stream=sys.stderr)],
        force=True,
    )


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-level logger (default root)."""
    return logging.getLogger(name)
