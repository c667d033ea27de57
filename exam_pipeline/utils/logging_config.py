from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _env_level() -> int:
    value = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    return logging.getLevelName(value) if isinstance(logging.getLevelName(value), int) else logging.INFO


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Create or reuse a module-level logger with a single stdout handler.

    The level defaults to ``LOG_LEVEL`` from the environment (INFO when unset).
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level if level is not None else _env_level())
    return logger


__all__ = ["LOG_FORMAT", "get_logger"]
