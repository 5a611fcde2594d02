from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from soundwave.config import settings
from soundwave.services.alsa import (
    HW_PARAM_ACCESS,
    HW_PARAM_BUFFER_SIZE,
    HW_PARAM_CHANNELS,
    HW_PARAM_FIRST_INTERVAL,
    HW_PARAM_FIRST_MASK,
    HW_PARAM_FORMAT,
    HW_PARAM_LAST_INTERVAL,
    HW_PARAM_PERIOD_SIZE,
    HW_PARAM_RATE,
    INTERVAL_COUNT,
    INTERVAL_INTEGER,
    MASK_COUNT,
    PCM_ACCESS_RW_INTERLEAVED,
    PCM_FORMAT_S16_LE,
    PCM_FORMAT_U8,
    UFRAMES_MAX,
    UINT_MAX,
    PcmDriver,
    PcmTransport,
    SndPcmHwParams,
    SndPcmSwParams,
)


logger = logging.getLogger(__name__)

DEVICE_DIR = "/dev/snd"
DEVICE_PREFIX = "pcmC"
PLAYBACK_SUFFIX = "p"
DRAIN_POLL_SECONDS = 0.05


class AudioDeviceError(RuntimeError):
    """Raised when the audio device cannot be used for playback."""


class DeviceDiscoveryError(AudioDeviceError):
    """Raised when no playback-capable PCM node can be found or opened."""


class NegotiationError(AudioDeviceError):
    """Raised when one of the numbered configuration phases fails."""

    def __init__(self, phase: int, message: str) -> None:
        super().__init__(message)
        self.phase = phase


class StreamWriteError(AudioDeviceError):
    """Raised when the device rejects a write for any reason but "not ready"."""


class DeviceStateError(AudioDeviceError):
    """Raised when a session method is called out of order."""


class SessionState(str, Enum):
    CLOSED = "closed"
    OPENED = "opened"
    CONFIGURED = "configured"
    PLAYING = "playing"
    DRAINED = "drained"


class HwParam(str, Enum):
    """Named hardware parameters understood by :class:`HardwareParams`."""

    ACCESS = "access"
    FORMAT = "format"
    CHANNELS = "channels"
    RATE = "rate"
    PERIOD_SIZE = "period_size"
    BUFFER_SIZE = "buffer_size"

    @property
    def is_mask(self) -> bool:
        return self in {HwParam.ACCESS, HwParam.FORMAT}

    @property
    def index(self) -> int:
        return _PARAM_INDEX[self]


_PARAM_INDEX = {
    HwParam.ACCESS: HW_PARAM_ACCESS,
    HwParam.FORMAT: HW_PARAM_FORMAT,
    HwParam.CHANNELS: HW_PARAM_CHANNELS,
    HwParam.RATE: HW_PARAM_RATE,
    HwParam.PERIOD_SIZE: HW_PARAM_PERIOD_SIZE,
    HwParam.BUFFER_SIZE: HW_PARAM_BUFFER_SIZE,
}


def clamp_to_bounds(value: int, bounds: tuple[int, int]) -> int:
    """Move ``value`` to the nearest end of ``bounds`` when it lies outside."""
    low, high = bounds
    if value < low:
        return low
    if value > high:
        return high
    return value


class HardwareParams:
    """Typed view over ``snd_pcm_hw_params``.

    Masks are driven through :meth:`fix_value` with a single allowed bit;
    intervals through :meth:`propose_range` / :meth:`fix_value` and read
    back with :meth:`current_bounds`.
    """

    def __init__(self, raw: Optional[SndPcmHwParams] = None) -> None:
        self.raw = raw if raw is not None else SndPcmHwParams()

    @classmethod
    def any(cls) -> "HardwareParams":
        """Every format allowed and every interval opened to its widest range."""
        params = cls()
        raw = params.raw
        raw.flags = 0
        raw.rmask = (1 << (HW_PARAM_LAST_INTERVAL + 1)) - 1
        raw.cmask = 0
        for i in range(MASK_COUNT):
            mask = raw.masks[i]
            for word in range(len(mask.bits)):
                mask.bits[word] = 0xFFFFFFFF
        for i in range(INTERVAL_COUNT):
            interval = raw.intervals[i]
            interval.min = 0
            interval.max = UINT_MAX
            interval.flags = 0
        return params

    def _interval(self, param: HwParam):
        if param.is_mask:
            raise ValueError(f"{param.value} is a mask parameter")
        return self.raw.intervals[param.index - HW_PARAM_FIRST_INTERVAL]

    def _mask(self, param: HwParam):
        if not param.is_mask:
            raise ValueError(f"{param.value} is an interval parameter")
        return self.raw.masks[param.index - HW_PARAM_FIRST_MASK]

    def current_bounds(self, param: HwParam) -> tuple[int, int]:
        interval = self._interval(param)
        return (interval.min, interval.max)

    def propose_range(self, param: HwParam, low: int, high: int) -> None:
        interval = self._interval(param)
        interval.min = low
        interval.max = high
        interval.flags = 0

    def fix_value(self, param: HwParam, value: int) -> None:
        if param.is_mask:
            mask = self._mask(param)
            for word in range(len(mask.bits)):
                mask.bits[word] = 0
            mask.bits[value // 32] = 1 << (value % 32)
            return
        interval = self._interval(param)
        interval.min = value
        interval.max = value
        interval.flags = INTERVAL_INTEGER


@dataclass(slots=True)
class NegotiatedParams:
    """The concrete configuration applied to the device."""

    channels: int
    rate: int
    period_size: int
    buffer_size: int
    sample_format: int


def pcm_format_for_bits(bits_per_sample: int) -> int:
    return PCM_FORMAT_U8 if bits_per_sample == 8 else PCM_FORMAT_S16_LE


def find_playback_device(device_dir: str = DEVICE_DIR) -> str:
    """Return the first ``pcmC*p`` node found in ``device_dir``."""
    try:
        names = sorted(os.listdir(device_dir))
    except OSError as exc:
        raise DeviceDiscoveryError(f"Unable to scan {device_dir}: {exc}") from exc
    for name in names:
        if name.startswith(DEVICE_PREFIX) and name.endswith(PLAYBACK_SUFFIX):
            return os.path.join(device_dir, name)
    raise DeviceDiscoveryError("Unable to detect a valid audio device to use")


class AudioDeviceSession:
    """One exclusive playback session on a kernel PCM device.

    Lifecycle: ``closed -> opened -> configured -> playing -> drained -> closed``.
    Usable as a context manager; leaving the block always releases the
    descriptor, stopping playback immediately if it is still running.
    """

    def __init__(
        self,
        transport: PcmTransport,
        *,
        write_wait_seconds: Optional[float] = None,
    ) -> None:
        self._transport = transport
        self._state = SessionState.OPENED
        self._write_wait_seconds = (
            settings.write_wait_seconds if write_wait_seconds is None else write_wait_seconds
        )
        self.negotiated: Optional[NegotiatedParams] = None

    @classmethod
    def open(
        cls,
        *,
        device_dir: str = DEVICE_DIR,
        driver_factory: Callable[[str], PcmTransport] = PcmDriver,
        write_wait_seconds: Optional[float] = None,
    ) -> "AudioDeviceSession":
        """Open the first playback node non-blocking and write-only."""
        path = find_playback_device(device_dir)
        try:
            transport = driver_factory(path)
        except OSError as exc:
            raise DeviceDiscoveryError(f"Unable to open audio device {path}: {exc}") from exc
        logger.info("opened playback device %s", path)
        return cls(transport, write_wait_seconds=write_wait_seconds)

    @property
    def state(self) -> SessionState:
        return self._state

    def _require(self, *states: SessionState) -> None:
        if self._state not in states:
            expected = ", ".join(state.value for state in states)
            raise DeviceStateError(
                f"Session is {self._state.value}; expected one of: {expected}"
            )

    def negotiate(
        self,
        channels: int,
        bits_per_sample: int,
        sample_rate: int,
        period_size: int,
    ) -> NegotiatedParams:
        """Configure the device in four numbered phases.

        1. refine against the full parameter space,
        2. clamp the request into the advertised bounds and apply it,
        3. apply software parameters,
        4. prepare the stream.
        """
        self._require(SessionState.OPENED)

        hw = HardwareParams.any()
        try:
            self._transport.hw_refine(hw.raw)
        except OSError as exc:
            raise NegotiationError(1, f"Hardware parameter refine failed: {exc}") from exc

        requested = {
            HwParam.CHANNELS: channels,
            HwParam.RATE: sample_rate,
            HwParam.PERIOD_SIZE: period_size,
        }
        applied: dict[HwParam, int] = {}
        for param, value in requested.items():
            applied[param] = clamp_to_bounds(value, hw.current_bounds(param))
        requested[HwParam.BUFFER_SIZE] = applied[HwParam.PERIOD_SIZE] * 4
        applied[HwParam.BUFFER_SIZE] = clamp_to_bounds(
            requested[HwParam.BUFFER_SIZE], hw.current_bounds(HwParam.BUFFER_SIZE)
        )
        for param, value in applied.items():
            if value != requested[param]:
                logger.info(
                    "%s %d outside device range %s; using %d",
                    param.value,
                    requested[param],
                    hw.current_bounds(param),
                    value,
                )

        sample_format = pcm_format_for_bits(bits_per_sample)
        hw.fix_value(HwParam.FORMAT, sample_format)
        hw.fix_value(HwParam.ACCESS, PCM_ACCESS_RW_INTERLEAVED)
        for param, value in applied.items():
            hw.fix_value(param, value)
        try:
            self._transport.hw_params(hw.raw)
        except OSError as exc:
            raise NegotiationError(2, f"Hardware parameter setup failed: {exc}") from exc

        negotiated = NegotiatedParams(
            channels=applied[HwParam.CHANNELS],
            rate=applied[HwParam.RATE],
            period_size=applied[HwParam.PERIOD_SIZE],
            buffer_size=applied[HwParam.BUFFER_SIZE],
            sample_format=sample_format,
        )

        sw = SndPcmSwParams()
        sw.period_step = 1
        sw.start_threshold = 1
        sw.stop_threshold = UFRAMES_MAX
        sw.silence_threshold = 0
        sw.silence_size = 0
        sw.avail_min = negotiated.period_size
        try:
            self._transport.sw_params(sw)
        except OSError as exc:
            raise NegotiationError(3, f"Software parameter setup failed: {exc}") from exc

        try:
            self._transport.prepare()
        except OSError as exc:
            raise NegotiationError(4, f"Prepare failed: {exc}") from exc

        logger.debug("negotiated %s", negotiated)
        self.negotiated = negotiated
        self._state = SessionState.CONFIGURED
        return negotiated

    def start(self) -> None:
        """Kick off the stream; the start threshold of 1 frame makes this best-effort."""
        self._require(SessionState.CONFIGURED)
        try:
            self._transport.start()
        except OSError as exc:
            # The first write starts the stream anyway.
            logger.debug("explicit start ignored: %s", exc)
        self._state = SessionState.PLAYING

    def write_chunk(self, buffer: bytes) -> None:
        """Write all of ``buffer``, retrying without limit while the device is busy."""
        self._require(SessionState.PLAYING)
        view = memoryview(buffer)
        offset = 0
        while offset < len(view):
            try:
                written = self._transport.write(view[offset:])
            except BlockingIOError:
                written = 0
            except OSError as exc:
                raise StreamWriteError(f"Write to audio device failed: {exc}") from exc
            if written <= 0:
                # Not ready yet: a zero-byte write counts the same as EAGAIN.
                if self._write_wait_seconds > 0:
                    self._transport.wait_writable(self._write_wait_seconds)
                continue
            offset += written

    def drain_and_close(self) -> None:
        """Wait until buffered audio has played, then release the device."""
        self._require(SessionState.PLAYING)
        while True:
            try:
                self._transport.drain()
            except BlockingIOError:
                self._transport.wait_writable(max(self._write_wait_seconds, DRAIN_POLL_SECONDS))
                continue
            except OSError as exc:
                logger.warning("drain failed: %s", exc)
            break
        self._state = SessionState.DRAINED
        self.close()

    def stop_and_close(self) -> None:
        """Discard pending audio immediately and release the device."""
        if self._state is SessionState.CLOSED:
            return
        if self._state is SessionState.PLAYING:
            try:
                self._transport.drop()
            except OSError as exc:
                logger.warning("drop failed: %s", exc)
        self.close()

    def close(self) -> None:
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        self._transport.close()

    def __enter__(self) -> "AudioDeviceSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: ANN001
        _ = exc, tb
        if exc_type is not None:
            self.stop_and_close()
        else:
            self.close()
        return False
