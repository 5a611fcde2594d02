"""Logging setup for the soundwave CLI.

Standard output carries WAV bytes or the info report, so the only handler
installed here writes to standard error.

Example Usage:
    from soundwave.logging_config import configure_logging, get_logger

    configure_logging("DEBUG")
    logger = get_logger(__name__)
    logger.debug("negotiated rate=%d", rate)
"""
from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def parse_log_level(level_str: Optional[str], default: int = logging.WARNING) -> int:
    """Map a level name (case-insensitive) to its numeric value."""
    if not level_str:
        return default
    return _LEVELS.get(level_str.strip().upper(), default)


def is_valid_log_level(level_str: Optional[str]) -> bool:
    return bool(level_str) and level_str.strip().upper() in _LEVELS


def configure_logging(level: Optional[str] = None, *, stream: Optional[TextIO] = None) -> None:
    """Install a single stderr handler on the package logger."""
    root = logging.getLogger("soundwave")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(parse_log_level(level))
    root.propagate = False


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
