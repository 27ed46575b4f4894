"""Logging-related utilities.

The library modules only create module loggers; handlers are installed by the
CLI (or by an embedding application) through :func:`configure_logging`.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def configure_logging(level: Union[int, str] = logging.INFO, log_path: Optional[Path] = None) -> None:
    """Install a stdout handler (and optionally a file handler) on the root logger.

    An existing configuration (e.g. when embedded in another tool) is not
    clobbered: only the level is adjusted and the file handler is appended.
    """
    lvl = _coerce_level(level)
    root = logging.getLogger()

    if not root.handlers:
        handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
        if log_path is not None:
            handlers.append(logging.FileHandler(str(log_path), mode="a", encoding="utf-8"))
        logging.basicConfig(level=lvl, format=LOG_FORMAT, handlers=handlers)
        return

    root.setLevel(lvl)
    if log_path is not None:
        fh = logging.FileHandler(str(log_path), mode="a", encoding="utf-8")
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(fh)
