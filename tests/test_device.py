from __future__ import annotations

import ctypes
import fcntl
import os
from pathlib import Path

import pytest

from soundwave.services import alsa
from soundwave.services.alsa import (
    HW_PARAM_CHANNELS,
    HW_PARAM_FIRST_INTERVAL,
    INTERVAL_INTEGER,
    PCM_ACCESS_RW_INTERLEAVED,
    PCM_FORMAT_S16_LE,
    PCM_FORMAT_U8,
    SNDRV_PCM_IOCTL_DRAIN,
    SNDRV_PCM_IOCTL_HW_PARAMS,
    SNDRV_PCM_IOCTL_HW_REFINE,
    SNDRV_PCM_IOCTL_PREPARE,
    SNDRV_PCM_IOCTL_SW_PARAMS,
    UFRAMES_MAX,
    UINT_MAX,
    PcmDriver,
    SndPcmHwParams,
    SndPcmSwParams,
)
from soundwave.services.device import (
    DRAIN_POLL_SECONDS,
    AudioDeviceSession,
    DeviceDiscoveryError,
    DeviceStateError,
    HardwareParams,
    HwParam,
    NegotiatedParams,
    NegotiationError,
    SessionState,
    StreamWriteError,
    clamp_to_bounds,
    find_playback_device,
)

_LP64 = ctypes.sizeof(ctypes.c_ulong) == 8


def _session(transport, wait: float = 0.0) -> AudioDeviceSession:  # noqa: ANN001
    return AudioDeviceSession(transport, write_wait_seconds=wait)


def _playing(transport) -> AudioDeviceSession:  # noqa: ANN001
    session = _session(transport)
    session.negotiate(2, 16, 44_100, 1024)
    session.start()
    return session


@pytest.mark.skipif(not _LP64, reason="struct layout checked for 64-bit longs")
def test_kernel_structures_match_asound_layout() -> None:
    assert ctypes.sizeof(SndPcmHwParams) == 608
    assert ctypes.sizeof(SndPcmSwParams) == 136
    assert SNDRV_PCM_IOCTL_HW_REFINE == 0xC2604110
    assert SNDRV_PCM_IOCTL_HW_PARAMS == 0xC2604111
    assert SNDRV_PCM_IOCTL_SW_PARAMS == 0xC0884113


def test_plain_ioctl_codes() -> None:
    assert SNDRV_PCM_IOCTL_PREPARE == 0x4140
    assert SNDRV_PCM_IOCTL_DRAIN == 0x4144


def test_any_opens_every_interval() -> None:
    params = HardwareParams.any()

    assert params.current_bounds(HwParam.RATE) == (0, UINT_MAX)
    assert params.current_bounds(HwParam.BUFFER_SIZE) == (0, UINT_MAX)
    assert params.raw.masks[0].bits[0] == 0xFFFFFFFF


def test_fix_value_on_a_mask_leaves_one_bit() -> None:
    params = HardwareParams.any()

    params.fix_value(HwParam.FORMAT, PCM_FORMAT_S16_LE)

    bits = list(params.raw.masks[1].bits)
    assert bits[0] == 1 << PCM_FORMAT_S16_LE
    assert all(word == 0 for word in bits[1:])


def test_fix_value_on_an_interval_pins_it() -> None:
    params = HardwareParams.any()

    params.fix_value(HwParam.CHANNELS, 2)

    interval = params.raw.intervals[HW_PARAM_CHANNELS - HW_PARAM_FIRST_INTERVAL]
    assert (interval.min, interval.max) == (2, 2)
    assert interval.flags == INTERVAL_INTEGER


def test_mask_and_interval_accessors_do_not_mix() -> None:
    params = HardwareParams.any()

    with pytest.raises(ValueError):
        params.current_bounds(HwParam.ACCESS)
    with pytest.raises(ValueError):
        params.propose_range(HwParam.FORMAT, 0, 1)


def test_clamp_to_bounds_moves_to_nearest_end() -> None:
    assert clamp_to_bounds(5, (1, 2)) == 2
    assert clamp_to_bounds(0, (1, 2)) == 1
    assert clamp_to_bounds(2, (1, 4)) == 2


def test_negotiate_applies_request_inside_bounds(fake_transport) -> None:  # noqa: ANN001
    fake_transport.bounds = {
        HwParam.CHANNELS: (1, 2),
        HwParam.RATE: (8_000, 48_000),
        HwParam.PERIOD_SIZE: (64, 4_096),
        HwParam.BUFFER_SIZE: (256, 16_384),
    }
    session = _session(fake_transport)

    negotiated = session.negotiate(2, 16, 44_100, 1024)

    assert negotiated == NegotiatedParams(
        channels=2,
        rate=44_100,
        period_size=1024,
        buffer_size=4096,
        sample_format=PCM_FORMAT_S16_LE,
    )
    assert session.state is SessionState.CONFIGURED
    assert fake_transport.calls == ["hw_refine", "hw_params", "sw_params", "prepare"]
    assert fake_transport.applied[HwParam.RATE] == (44_100, 44_100)
    assert fake_transport.applied[HwParam.BUFFER_SIZE] == (4096, 4096)
    assert fake_transport.format_bits == 1 << PCM_FORMAT_S16_LE


def test_negotiate_clamps_to_advertised_bounds(fake_transport) -> None:  # noqa: ANN001
    fake_transport.bounds = {
        HwParam.CHANNELS: (2, 2),
        HwParam.RATE: (8_000, 48_000),
        HwParam.PERIOD_SIZE: (64, 512),
        HwParam.BUFFER_SIZE: (256, 1024),
    }
    session = _session(fake_transport)

    negotiated = session.negotiate(1, 8, 96_000, 1024)

    assert negotiated.channels == 2
    assert negotiated.rate == 48_000
    assert negotiated.period_size == 512
    assert negotiated.buffer_size == 1024
    assert negotiated.sample_format == PCM_FORMAT_U8
    assert fake_transport.applied[HwParam.CHANNELS] == (2, 2)


def test_negotiate_sets_software_thresholds(fake_transport) -> None:  # noqa: ANN001
    _session(fake_transport).negotiate(1, 16, 22_050, 1024)

    sw = fake_transport.sw
    assert sw is not None
    assert sw.period_step == 1
    assert sw.start_threshold == 1
    assert sw.stop_threshold == UFRAMES_MAX
    assert sw.avail_min == 1024
    assert sw.silence_threshold == 0
    assert sw.silence_size == 0


@pytest.mark.parametrize(
    ("failing_call", "phase"),
    [("hw_refine", 1), ("hw_params", 2), ("sw_params", 3), ("prepare", 4)],
)
def test_negotiation_failure_reports_phase_and_closes(
    fake_transport, failing_call: str, phase: int  # noqa: ANN001
) -> None:
    fake_transport.fail_on = failing_call
    session = _session(fake_transport)

    with pytest.raises(NegotiationError) as excinfo:
        with session:
            session.negotiate(2, 16, 44_100, 1024)

    assert excinfo.value.phase == phase
    assert session.state is SessionState.CLOSED
    assert fake_transport.closed
    assert "drop" not in fake_transport.calls


def test_access_is_interleaved_read_write(fake_transport) -> None:  # noqa: ANN001
    captured = {}

    def hw_params(params: SndPcmHwParams) -> None:
        captured["access"] = params.masks[0].bits[0]

    fake_transport.hw_params = hw_params
    _session(fake_transport).negotiate(1, 16, 8_000, 1024)

    assert captured["access"] == 1 << PCM_ACCESS_RW_INTERLEAVED


def test_start_failure_is_not_fatal(fake_transport) -> None:  # noqa: ANN001
    fake_transport.fail_on = "start"
    session = _session(fake_transport)
    session.negotiate(2, 16, 44_100, 1024)

    session.start()

    assert session.state is SessionState.PLAYING


def test_write_before_start_is_a_state_error(fake_transport) -> None:  # noqa: ANN001
    session = _session(fake_transport)

    with pytest.raises(DeviceStateError):
        session.write_chunk(b"\x00\x00")


def test_write_retries_busy_device_and_partial_writes(fake_transport) -> None:  # noqa: ANN001
    session = _playing(fake_transport)
    fake_transport.write_script = [BlockingIOError(), 3, BlockingIOError(), BlockingIOError()]

    session.write_chunk(b"abcdefgh")

    assert bytes(fake_transport.written) == b"abcdefgh"
    assert fake_transport.write_sizes == [3, 5]
    assert fake_transport.waits == []


def test_write_waits_for_device_when_configured(fake_transport) -> None:  # noqa: ANN001
    session = AudioDeviceSession(fake_transport, write_wait_seconds=0.25)
    session.negotiate(2, 16, 44_100, 1024)
    session.start()
    fake_transport.write_script = [BlockingIOError()]

    session.write_chunk(b"\x01\x02")

    assert fake_transport.waits == [0.25]
    assert bytes(fake_transport.written) == b"\x01\x02"


def test_write_error_stops_without_draining(fake_transport) -> None:  # noqa: ANN001
    session = _playing(fake_transport)
    fake_transport.write_script = [OSError(5, "Input/output error")]

    with pytest.raises(StreamWriteError):
        with session:
            session.write_chunk(b"\x00" * 16)

    assert fake_transport.calls[-2:] == ["drop", "close"]
    assert "drain" not in fake_transport.calls
    assert session.state is SessionState.CLOSED


def test_drain_and_close_releases_device(fake_transport) -> None:  # noqa: ANN001
    session = _playing(fake_transport)

    session.drain_and_close()

    assert fake_transport.calls[-2:] == ["drain", "close"]
    assert session.state is SessionState.CLOSED


def test_drain_failure_still_closes(fake_transport) -> None:  # noqa: ANN001
    fake_transport.fail_on = "drain"
    session = _playing(fake_transport)

    session.drain_and_close()

    assert fake_transport.closed
    assert session.state is SessionState.CLOSED


def test_close_is_idempotent(fake_transport) -> None:  # noqa: ANN001
    session = _session(fake_transport)

    session.close()
    session.close()
    session.stop_and_close()

    assert fake_transport.calls.count("close") == 1


def _touch(directory: Path, *names: str) -> None:
    for name in names:
        (directory / name).write_bytes(b"")


def test_find_playback_device_picks_first_playback_node(tmp_path: Path) -> None:
    _touch(tmp_path, "controlC0", "pcmC1D0p", "pcmC0D0c", "pcmC0D0p", "timer")

    assert find_playback_device(str(tmp_path)) == str(tmp_path / "pcmC0D0p")


def test_find_playback_device_without_playback_node(tmp_path: Path) -> None:
    _touch(tmp_path, "controlC0", "pcmC0D0c")

    with pytest.raises(DeviceDiscoveryError) as excinfo:
        find_playback_device(str(tmp_path))

    assert str(excinfo.value) == "Unable to detect a valid audio device to use"


def test_find_playback_device_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(DeviceDiscoveryError):
        find_playback_device(str(tmp_path / "snd"))


def test_open_uses_discovered_node(tmp_path: Path, fake_transport) -> None:  # noqa: ANN001
    _touch(tmp_path, "pcmC0D0p")
    opened: list[str] = []

    def factory(path: str):  # noqa: ANN202
        opened.append(path)
        return fake_transport

    session = AudioDeviceSession.open(device_dir=str(tmp_path), driver_factory=factory)

    assert opened == [str(tmp_path / "pcmC0D0p")]
    assert session.state is SessionState.OPENED


def test_open_failure_is_a_discovery_error(tmp_path: Path) -> None:
    _touch(tmp_path, "pcmC0D0p")

    def factory(path: str):  # noqa: ANN202
        raise PermissionError(13, "Permission denied", path)

    with pytest.raises(DeviceDiscoveryError):
        AudioDeviceSession.open(device_dir=str(tmp_path), driver_factory=factory)


def test_drain_waits_while_device_reports_busy(fake_transport) -> None:  # noqa: ANN001
    session = _playing(fake_transport)
    fake_transport.drain_script = [BlockingIOError(11, "Resource temporarily unavailable")] * 2

    session.drain_and_close()

    assert fake_transport.calls[-4:] == ["drain", "drain", "drain", "close"]
    assert fake_transport.waits == [DRAIN_POLL_SECONDS, DRAIN_POLL_SECONDS]
    assert session.state is SessionState.CLOSED


def test_zero_byte_write_is_retried_not_counted(fake_transport) -> None:  # noqa: ANN001
    session = AudioDeviceSession(fake_transport, write_wait_seconds=0.1)
    session.negotiate(1, 16, 8_000, 1024)
    session.start()
    fake_transport.write_script = [0, 2, 0]

    session.write_chunk(b"\x01\x02\x03\x04")

    assert bytes(fake_transport.written) == b"\x01\x02\x03\x04"
    assert fake_transport.write_sizes == [0, 2, 0, 2]
    assert fake_transport.waits == [0.1, 0.1]


def test_driver_drain_switches_node_to_blocking(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    node = tmp_path / "pcmC0D0p"
    node.write_bytes(b"")
    requests: list[int] = []
    monkeypatch.setattr(alsa.fcntl, "ioctl", lambda fd, request, *args: requests.append(request))
    driver = PcmDriver(str(node))
    try:
        assert fcntl.fcntl(driver.fd, fcntl.F_GETFL) & os.O_NONBLOCK

        driver.drain()

        assert not fcntl.fcntl(driver.fd, fcntl.F_GETFL) & os.O_NONBLOCK
        assert requests == [SNDRV_PCM_IOCTL_DRAIN]
    finally:
        driver.close()
