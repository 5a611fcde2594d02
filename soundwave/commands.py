"""The command pipelines behind the CLI.

Every pipeline reads its whole input and validates it before the first
byte reaches ``sink``, so a failing command never emits partial output.
"""
from __future__ import annotations

import logging
from typing import BinaryIO, Callable

from soundwave.models import GenerateOptions
from soundwave.services.byte_reader import ByteCursorReader
from soundwave.services.device import AudioDeviceSession
from soundwave.services.playback import play
from soundwave.services.synth import synthesize
from soundwave.services.transforms import (
    extract_channel_container,
    scale_for_rate,
    scale_volume,
)
from soundwave.services.wave_codec import (
    WaveContainer,
    format_report,
    read_container,
    write_container,
)


logger = logging.getLogger(__name__)

LEFT_CHANNEL = 0
RIGHT_CHANNEL = 1


def info_command(reader: ByteCursorReader, sink: BinaryIO) -> WaveContainer:
    container = read_container(reader, strict_end=True)
    report = "\n".join(format_report(container.header)) + "\n"
    sink.write(report.encode("ascii"))
    return container


def rate_command(reader: ByteCursorReader, sink: BinaryIO, rate: float) -> WaveContainer:
    container = read_container(reader, strict_end=False)
    header = scale_for_rate(container.header, rate)
    logger.debug("rate x%s: %d -> %d Hz", rate, container.header.sample_rate, header.sample_rate)
    result = WaveContainer(
        header=header,
        payload=container.payload,
        trailing=container.trailing,
        extra=container.extra,
    )
    write_container(sink, result)
    return result


def channel_command(reader: ByteCursorReader, sink: BinaryIO, channel: int) -> WaveContainer:
    container = read_container(reader, strict_end=False)
    result = extract_channel_container(container, channel)
    write_container(sink, result)
    return result


def volume_command(reader: ByteCursorReader, sink: BinaryIO, volume: float) -> WaveContainer:
    container = read_container(reader, strict_end=False)
    header = container.header
    payload = scale_volume(container.payload, header.bits_per_sample, volume)
    logger.debug("volume x%s over %d bytes", volume, len(payload))
    result = WaveContainer(
        header=header,
        payload=payload,
        trailing=container.trailing,
        extra=container.extra,
    )
    write_container(sink, result)
    return result


def generate_command(sink: BinaryIO, options: GenerateOptions) -> WaveContainer:
    header, payload = synthesize(
        options.duration_seconds,
        options.sample_rate,
        options.fm,
        options.fc,
        options.modulation_index,
        options.amplitude,
    )
    result = WaveContainer(header=header, payload=payload)
    write_container(sink, result)
    return result


def play_command(
    reader: ByteCursorReader,
    *,
    session_factory: Callable[[], AudioDeviceSession] = AudioDeviceSession.open,
) -> WaveContainer:
    return play(reader, session_factory=session_factory)
