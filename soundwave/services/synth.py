from __future__ import annotations

import math
import struct

from soundwave.services.wave_codec import WaveHeader, build_header


BITS_PER_SAMPLE = 16


def wrap_int16(value: int) -> int:
    """Reduce an integer modulo 2**16 into the signed 16-bit range."""
    return ((value + 0x8000) & 0xFFFF) - 0x8000


def fm_sample(
    index: int,
    *,
    sample_rate: int,
    fm: float,
    fc: float,
    modulation_index: float,
    amplitude: float,
) -> int:
    """One FM sample: ``amp * sin(2*pi*fc*t - mi * sin(2*pi*fm*t))``, ``t = i / sr``.

    The value is truncated toward zero and then narrowed to 16 bits the way
    a native int16 store would, so out-of-range amplitudes wrap instead of
    saturating.
    """
    t = index / sample_rate
    value = amplitude * math.sin(
        2 * math.pi * fc * t - modulation_index * math.sin(2 * math.pi * fm * t)
    )
    return wrap_int16(math.trunc(value))


def synthesize(
    duration_seconds: int,
    sample_rate: int,
    fm: float,
    fc: float,
    modulation_index: float,
    amplitude: float,
) -> tuple[WaveHeader, bytes]:
    """Render a mono 16-bit FM tone and the header describing it."""
    if duration_seconds < 0:
        raise ValueError("duration must be >= 0")
    if sample_rate <= 0:
        raise ValueError("sample rate must be > 0")
    for name, value in (
        ("fm", fm),
        ("fc", fc),
        ("modulation index", modulation_index),
        ("amplitude", amplitude),
    ):
        if not math.isfinite(value):
            raise ValueError(f"{name} must be a finite number. Got: {value!r}")

    total_samples = duration_seconds * sample_rate
    header = build_header(
        num_channels=1,
        sample_rate=sample_rate,
        bits_per_sample=BITS_PER_SAMPLE,
        data_size=total_samples * (BITS_PER_SAMPLE // 8),
    )
    samples = [
        fm_sample(
            i,
            sample_rate=sample_rate,
            fm=fm,
            fc=fc,
            modulation_index=modulation_index,
            amplitude=amplitude,
        )
        for i in range(total_samples)
    ]
    return header, struct.pack(f"<{total_samples}h", *samples)
