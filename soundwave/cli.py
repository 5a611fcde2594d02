"""Command-line shell for soundwave.

Usage:
  soundwave info < in.wav
  soundwave rate 1.5 < in.wav > out.wav
  soundwave channel left < in.wav > out.wav
  soundwave volume 0.5 < in.wav > out.wav
  soundwave generate --dur 2 --fc 440 > tone.wav
  soundwave dj < in.wav
"""
from __future__ import annotations

import argparse
import math
import sys
from typing import BinaryIO, Optional, Sequence, TextIO

from soundwave.commands import (
    LEFT_CHANNEL,
    RIGHT_CHANNEL,
    channel_command,
    generate_command,
    info_command,
    play_command,
    rate_command,
    volume_command,
)
from soundwave.config import settings
from soundwave.logging_config import configure_logging, get_logger
from soundwave.models import GenerateOptions
from soundwave.services.byte_reader import ByteCursorReader
from soundwave.services.device import (
    AudioDeviceError,
    DeviceDiscoveryError,
    NegotiationError,
    StreamWriteError,
)
from soundwave.services.wave_codec import WaveContainerError


logger = get_logger(__name__)

CHANNELS = {"left": LEFT_CHANNEL, "right": RIGHT_CHANNEL}

HELP_TEXT = """
SoundWave - A simple WAV audio utility

Usage soundwave <command> [parameters]

Commands:
  {:<30}{}
  {:<30}{}
  {:<30}{}
  {:<30}{}
  {:<30}{}
  {:<30}{}
  {:<30}{}

Generate command options:
  {:<30}{}
  {:<30}{}
  {:<30}{}
  {:<30}{}
  {:<30}{}
  {:<30}{}
""".format(
    "--help or -h", "displays this help message",
    "info", "display the properties of the wav file",
    "rate <value>", "changes the rate of the wav file",
    "channel <left|right>", "keeps the data from one channel if wav is stereo",
    "volume <value>", "changes the volume of the wav data",
    "generate [options]", "generate a WAV file with the specified options",
    "dj", "plays the wav file on the first playback device",
    "--dur <seconds>", "Duration of the sound (Default: 3)",
    "--sr <rate>", "Sample rate in Hz (Default: 44100)",
    "--fm <modulation>", "Frequency modulation (Default: 2.0)",
    "--fc <carrier>", "Frequency carrier (Default: 1500.0)",
    "--mi <index>", "Modulation index (Default: 100.0)",
    "--amp <amplitude>", "Amplitude (Default: 30000.0)",
)


class UsageError(Exception):
    """Raised for malformed command lines; reported with exit code 1."""


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(f"{self.prog}: {message}")


def _number(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number, got {raw!r}") from None
    if not math.isfinite(value):
        raise argparse.ArgumentTypeError(f"expected a finite number, got {raw!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(prog="soundwave", add_help=False)
    parser.add_argument("-h", "--help", action="store_true")
    sub = parser.add_subparsers(dest="command", parser_class=_ArgumentParser)

    sub.add_parser("info", add_help=False)

    rate = sub.add_parser("rate", add_help=False)
    rate.add_argument("value", type=_number)

    channel = sub.add_parser("channel", add_help=False)
    channel.add_argument("side")

    volume = sub.add_parser("volume", add_help=False)
    volume.add_argument("value", type=_number)

    generate = sub.add_parser("generate", add_help=False)
    defaults = GenerateOptions()
    generate.add_argument("--dur", type=_number, default=float(defaults.duration_seconds))
    generate.add_argument("--sr", type=_number, default=float(defaults.sample_rate))
    generate.add_argument("--fm", type=_number, default=defaults.fm)
    generate.add_argument("--fc", type=_number, default=defaults.fc)
    generate.add_argument("--mi", type=_number, default=defaults.modulation_index)
    generate.add_argument("--amp", type=_number, default=defaults.amplitude)

    sub.add_parser("dj", aliases=["play"], add_help=False)
    return parser


def print_help(stream: Optional[TextIO] = None) -> None:
    print(HELP_TEXT, file=stream if stream is not None else sys.stdout)


def _run(args: argparse.Namespace, stdin: BinaryIO, stdout: BinaryIO) -> None:
    reader = ByteCursorReader(stdin)
    command = args.command
    if command == "info":
        info_command(reader, stdout)
    elif command == "rate":
        rate_command(reader, stdout, args.value)
    elif command == "channel":
        channel_command(reader, stdout, CHANNELS[args.side])
    elif command == "volume":
        volume_command(reader, stdout, args.value)
    elif command == "generate":
        options = GenerateOptions(
            duration_seconds=int(args.dur),
            sample_rate=int(args.sr),
            fm=args.fm,
            fc=args.fc,
            modulation_index=args.mi,
            amplitude=args.amp,
        )
        generate_command(stdout, options)
    elif command in ("dj", "play"):
        play_command(reader)


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
) -> int:
    """Run one command and return the process exit code (0 or 1)."""
    configure_logging(settings.log_level)
    argv = list(sys.argv[1:] if argv is None else argv)
    stdin = stdin if stdin is not None else sys.stdin.buffer
    stdout = stdout if stdout is not None else sys.stdout.buffer

    if not argv:
        print_help()
        return 1

    parser = build_parser()
    try:
        args, unknown = parser.parse_known_args(argv)
        if args.help:
            print_help()
            return 0
        if args.command is None:
            raise UsageError(f"soundwave: unknown command {argv[0]!r}")
        if unknown:
            if args.command != "generate":
                raise UsageError(f"soundwave: unrecognized arguments: {' '.join(unknown)}")
            for item in unknown:
                logger.warning("undefined parameter %s in the generate command", item)
                print(
                    f"Warning: undefined parameter {item} in the generate command",
                    file=sys.stderr,
                )
        if args.command == "channel" and args.side not in CHANNELS:
            print_help()
            return 1
    except UsageError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        print("Run 'soundwave --help' for usage.", file=sys.stderr)
        return 1

    try:
        _run(args, stdin, stdout)
    except WaveContainerError as exc:
        print(f"Error! {exc}", file=sys.stderr)
        return 1
    except DeviceDiscoveryError as exc:
        logger.info("device discovery failed: %s", exc)
        print("Error: Unable to detect a valid audio device to use", file=sys.stderr)
        return 1
    except NegotiationError as exc:
        logger.info("negotiation phase %d failed: %s", exc.phase, exc)
        print(
            f"Error: Unable to configure audio device (Error code: {exc.phase})",
            file=sys.stderr,
        )
        return 1
    except StreamWriteError as exc:
        logger.info("stream write failed: %s", exc)
        print(
            "Error: An unexpected error occurred while playing your WAV file",
            file=sys.stderr,
        )
        return 1
    except (AudioDeviceError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
