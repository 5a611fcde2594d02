from __future__ import annotations

import logging
import math
import struct
from dataclasses import replace

from soundwave.services.wave_codec import SIZE_OF_WAVE_HEADER, WaveContainer, WaveHeader


logger = logging.getLogger(__name__)

_U32_MAX = 0xFFFFFFFF
INT16_MIN = -32768
INT16_MAX = 32767


def _require_finite(value: float, name: str) -> float:
    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number. Got: {value!r}")
    return value


def _scaled_u32(value: int, multiplier: float, name: str) -> int:
    scaled = int(value * multiplier)
    if scaled < 0 or scaled > _U32_MAX:
        raise ValueError(f"{name} out of range after scaling: {scaled}")
    return scaled


def scale_for_rate(header: WaveHeader, multiplier: float) -> WaveHeader:
    """Reinterpret playback speed by scaling ``sample_rate`` and ``byte_rate``.

    Both values are truncated to integers independently, so the
    ``byte_rate == sample_rate * block_align`` relation may drift by the
    truncation error. No resampling happens: the payload is untouched.
    """
    _require_finite(multiplier, "rate")
    return replace(
        header,
        sample_rate=_scaled_u32(header.sample_rate, multiplier, "sample rate"),
        byte_rate=_scaled_u32(header.byte_rate, multiplier, "byte rate"),
    )


def extract_channel(
    payload: bytes, bits_per_sample: int, num_channels: int, channel_index: int
) -> bytes:
    """Keep one channel of the payload; the result is always half as long.

    Stereo input is de-interleaved: sample unit ``2k + channel_index`` of the
    input becomes unit ``k`` of the output. Mono input forces channel 0 and
    yields the first half of the buffer with only even-indexed sample
    positions copied (for 16-bit the step is one whole sample, so every
    byte of the first half survives; for 8-bit the odd bytes stay zero).
    """
    width = bits_per_sample // 8
    half = len(payload) // 2
    out = bytearray(half)

    if num_channels == 1:
        for i in range(0, half, 2):
            out[i : i + width] = payload[i : i + width]
        del out[half:]
        return bytes(out)

    channel = 0 if channel_index == 0 else 1
    frame = width * 2
    frames = len(payload) // frame
    for k in range(frames):
        src = k * frame + channel * width
        out[k * width : (k + 1) * width] = payload[src : src + width]
    return bytes(out)


def extract_channel_container(container: WaveContainer, channel_index: int) -> WaveContainer:
    """Apply :func:`extract_channel` and rewrite the header for a mono result."""
    header = container.header
    if header.num_channels == 1:
        channel_index = 0
    payload = extract_channel(
        container.payload, header.bits_per_sample, header.num_channels, channel_index
    )
    data_size = header.data_size // 2
    new_header = replace(
        header,
        num_channels=1,
        byte_rate=header.byte_rate // 2,
        block_align=header.block_align // 2,
        data_size=data_size,
        file_size=SIZE_OF_WAVE_HEADER + data_size + len(container.trailing),
    )
    logger.debug(
        "extracted channel %d: %d -> %d bytes", channel_index, header.data_size, data_size
    )
    return replace(container, header=new_header, payload=payload)


def _clamp(value: float, low: int, high: int) -> int:
    if value < low:
        return low
    if value > high:
        return high
    return int(value)


def scale_volume(payload: bytes, bits_per_sample: int, multiplier: float) -> bytes:
    """Multiply every sample by ``multiplier`` with saturating clamps.

    8-bit samples are unsigned and clamp to [0, 255]; 16-bit samples are
    signed little-endian and clamp to [-32768, 32767]. Products are
    truncated toward zero before clamping.
    """
    _require_finite(multiplier, "volume")
    if bits_per_sample == 8:
        return bytes(_clamp(sample * multiplier, 0, 255) for sample in payload)

    count = len(payload) // 2
    samples = struct.unpack(f"<{count}h", payload[: count * 2])
    scaled = [_clamp(sample * multiplier, INT16_MIN, INT16_MAX) for sample in samples]
    # An odd trailing byte cannot form a sample; it is passed through.
    return struct.pack(f"<{count}h", *scaled) + payload[count * 2 :]
