from __future__ import annotations

import math
import struct

import pytest

from soundwave.services.synth import fm_sample, synthesize, wrap_int16


def test_wrap_int16_behaves_like_a_native_store() -> None:
    assert wrap_int16(32767) == 32767
    assert wrap_int16(32768) == -32768
    assert wrap_int16(-32769) == 32767
    assert wrap_int16(70000) == 4464


def test_first_sample_is_silent() -> None:
    assert fm_sample(0, sample_rate=44_100, fm=2.0, fc=1500.0, modulation_index=100.0, amplitude=30000.0) == 0


def test_amplitude_above_int16_wraps() -> None:
    # t = 1/4 puts the carrier at its peak.
    value = fm_sample(1, sample_rate=4, fm=0.0, fc=1.0, modulation_index=0.0, amplitude=40000.0)

    assert value == 40000 - 65536


def test_synthesize_builds_a_mono_16bit_container() -> None:
    header, payload = synthesize(1, 8_000, 2.0, 440.0, 5.0, 1000.0)

    assert header.num_channels == 1
    assert header.bits_per_sample == 16
    assert header.sample_rate == 8_000
    assert header.byte_rate == 16_000
    assert header.block_align == 2
    assert header.data_size == 16_000
    assert header.file_size == 36 + 16_000
    assert len(payload) == 16_000

    samples = struct.unpack("<8000h", payload)
    for i in (0, 1, 17, 4_000, 7_999):
        assert samples[i] == fm_sample(
            i, sample_rate=8_000, fm=2.0, fc=440.0, modulation_index=5.0, amplitude=1000.0
        )
    assert max(abs(s) for s in samples) <= 1000


def test_zero_duration_yields_an_empty_payload() -> None:
    header, payload = synthesize(0, 44_100, 2.0, 1500.0, 100.0, 30000.0)

    assert payload == b""
    assert header.data_size == 0
    assert header.file_size == 36


@pytest.mark.parametrize(
    ("duration", "rate", "amplitude"),
    [(-1, 44_100, 1.0), (1, 0, 1.0), (1, 44_100, float("inf"))],
)
def test_synthesize_rejects_bad_parameters(duration: int, rate: int, amplitude: float) -> None:
    with pytest.raises(ValueError):
        synthesize(duration, rate, 2.0, 1500.0, 100.0, amplitude)


def test_unmodulated_tone_is_a_pure_sine() -> None:
    header, payload = synthesize(1, 8_000, 0.0, 440.0, 0.0, 1000.0)

    assert header.data_size == 2 * 1 * 8_000
    samples = struct.unpack("<8000h", payload)
    assert samples[0] == 0
    expected = [
        math.trunc(1000.0 * math.sin(2 * math.pi * 440.0 * (i / 8_000))) for i in range(8_000)
    ]
    assert list(samples) == expected


def test_default_tone_opens_with_known_samples() -> None:
    _, payload = synthesize(1, 44_100, 2.0, 1500.0, 100.0, 30000.0)

    assert struct.unpack_from("<3h", payload) == (0, 5524, 10860)
