"""Logging helper for console output (and optional GUI/file hooks)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

_LOGGER_NAME = "cristae_density"
_FORMAT = "[%(asctime)s] [%(levelname)s] %(module)s region=%(region)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _RegionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "region"):
            record.region = "-"
        return True


def _formatter() -> logging.Formatter:
    return logging.Formatter(_FORMAT, datefmt=_DATEFMT)


def get_logger(name: str) -> logging.Logger:
    """Return a logger configured for console output.

    Parameters
    ----------
    name : str
        Module name, typically ``__name__``.
    """
    base = logging.getLogger(_LOGGER_NAME)
    if not base.handlers:
        base.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(_formatter())
        handler.addFilter(_RegionFilter())
        base.addHandler(handler)
        base.propagate = False
    if name.startswith(_LOGGER_NAME + "."):
        name = name[len(_LOGGER_NAME) + 1 :]
    logger = logging.getLogger(f"{_LOGGER_NAME}.{name}")
    logger.setLevel(base.level)
    return logger


def set_level(level: int) -> None:
    """Update log level for the base logger, its children and all handlers."""
    base = logging.getLogger(_LOGGER_NAME)
    base.setLevel(level)
    for handler in base.handlers:
        handler.setLevel(level)
    for logger_name, logger in logging.Logger.manager.loggerDict.items():
        if logger_name.startswith(_LOGGER_NAME + ".") and isinstance(logger, logging.Logger):
            logger.setLevel(level)


def attach_handler(handler: Optional[logging.Handler]) -> None:
    """Optionally attach an extra handler (e.g., a GUI log view)."""
    if handler is None:
        return
    base = logging.getLogger(_LOGGER_NAME)
    if handler not in base.handlers:
        handler.addFilter(_RegionFilter())
        base.addHandler(handler)


def log_to_file(path: Path) -> logging.Handler:
    """Mirror package log output into ``path`` and return the new handler."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.getLogger(_LOGGER_NAME).level)
    handler.setFormatter(_formatter())
    attach_handler(handler)
    return handler


def detach_handler(handler: Optional[logging.Handler]) -> None:
    """Remove and close a handler added by ``attach_handler``/``log_to_file``."""
    if handler is None:
        return
    base = logging.getLogger(_LOGGER_NAME)
    base.removeHandler(handler)
    handler.close()
