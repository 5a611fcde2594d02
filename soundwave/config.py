"""Configuration helpers for the soundwave CLI."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Device discovery (directory, node naming) and the playback period are
    fixed constants of the device layer, not settings.
    """

    log_level: str = os.getenv("LOG_LEVEL", "WARNING")
    # 0 keeps the write loop a pure busy-retry on EAGAIN; a positive value
    # waits up to that many seconds for the device to become writable first.
    write_wait_seconds: float = _env_float("SOUNDWAVE_WRITE_WAIT_SECONDS", 0.0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
