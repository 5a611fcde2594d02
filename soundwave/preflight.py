"""Preflight checks for soundwave playback.

Run this before `soundwave dj` to catch a missing or inaccessible audio device:
  soundwave-preflight

Checks only; nothing here opens the device for playback.
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, TextIO

from dotenv import load_dotenv

from soundwave.logging_config import is_valid_log_level
from soundwave.services.device import (
    DEVICE_DIR,
    DEVICE_PREFIX,
    PLAYBACK_SUFFIX,
    DeviceDiscoveryError,
    find_playback_device,
)


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass
class Report:
    """Check outcomes in the order the checks ran."""

    results: list[tuple[CheckStatus, str]] = field(default_factory=list)

    def ok(self, message: str) -> None:
        self.results.append((CheckStatus.PASS, message))

    def warn(self, message: str) -> None:
        self.results.append((CheckStatus.WARN, message))

    def fail(self, message: str) -> None:
        self.results.append((CheckStatus.FAIL, message))

    def messages(self, status: CheckStatus) -> list[str]:
        return [message for result, message in self.results if result is status]

    @property
    def warnings(self) -> list[str]:
        return self.messages(CheckStatus.WARN)

    @property
    def failures(self) -> list[str]:
        return self.messages(CheckStatus.FAIL)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


def _load_environment() -> None:
    """Load local env files in precedence order without overwriting existing vars."""
    repo_dir = Path(__file__).resolve().parent.parent
    candidates = [
        repo_dir / ".env.local",
        repo_dir / ".env",
    ]
    for env_file in candidates:
        if env_file.exists():
            load_dotenv(env_file, override=False)


def check_logging_env(report: Report) -> None:
    """Validate LOG_LEVEL so a typo does not silently hide diagnostics."""
    raw = os.getenv("LOG_LEVEL")
    if raw is None or not raw.strip():
        report.ok("LOG_LEVEL not set; defaulting to WARNING.")
    elif not is_valid_log_level(raw):
        report.fail(f"LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR. Got: {raw!r}")
    else:
        report.ok(f"LOG_LEVEL={raw.strip().upper()}")

    wait = (os.getenv("SOUNDWAVE_WRITE_WAIT_SECONDS") or "").strip()
    if wait:
        try:
            value = float(wait)
        except ValueError:
            report.fail(f"SOUNDWAVE_WRITE_WAIT_SECONDS must be a number. Got: {wait!r}")
            return
        if value < 0:
            report.fail(f"SOUNDWAVE_WRITE_WAIT_SECONDS must be >= 0. Got: {value}")
        elif value > 1.0:
            report.warn(
                "SOUNDWAVE_WRITE_WAIT_SECONDS is high; a stalled device will be polled slowly."
            )
        else:
            report.ok(f"SOUNDWAVE_WRITE_WAIT_SECONDS={value}")


def check_device_dir(report: Report, device_dir: str) -> bool:
    """The kernel sound directory must exist before any node can be found."""
    if not os.path.isdir(device_dir):
        report.fail(f"{device_dir} does not exist; is the sound driver loaded?")
        return False
    report.ok(f"{device_dir} present.")
    return True


def check_playback_node(report: Report, device_dir: str) -> Optional[str]:
    """Locate the node `soundwave dj` would pick and check we may write to it."""
    try:
        path = find_playback_device(device_dir)
    except DeviceDiscoveryError:
        report.fail(
            f"No {DEVICE_PREFIX}*{PLAYBACK_SUFFIX} playback node found in {device_dir}."
        )
        return None
    report.ok(f"Playback node: {path}")

    if not os.access(path, os.W_OK):
        report.fail(
            f"{path} is not writable by this user; add the user to the 'audio' group."
        )
    else:
        report.ok(f"{path} is writable.")
    return path


def print_report(report: Report, stream: Optional[TextIO] = None) -> None:
    """One ``[STATUS] message`` line per check, then the tally."""
    out = stream if stream is not None else sys.stdout
    for status, message in report.results:
        print(f"[{status.value}] {message}", file=out)
    tally = ", ".join(
        f"{len(report.messages(status))} {status.value.lower()}" for status in CheckStatus
    )
    print(f"\nSummary: {tally}.", file=out)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="soundwave playback preflight checks")
    parser.add_argument(
        "--device-dir",
        default=DEVICE_DIR,
        help=argparse.SUPPRESS,
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run preflight suite and return process exit code."""
    args = parse_args(argv)
    _load_environment()
    report = Report()

    check_logging_env(report)
    if check_device_dir(report, args.device_dir):
        check_playback_node(report, args.device_dir)

    print_report(report)
    return 1 if report.has_failures else 0


if __name__ == "__main__":
    sys.exit(main())
