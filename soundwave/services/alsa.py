"""Thin binding to the kernel PCM playback interface (``/dev/snd/pcmC*D*p``).

Mirrors the structures from ``<sound/asound.h>`` with ctypes and issues the
PCM ioctls directly, so no userspace ALSA library is needed. Everything
above this module talks to :class:`PcmDriver` (or a fake with the same
methods) rather than to raw structures.
"""
from __future__ import annotations

import ctypes
import errno
import fcntl
import os
import select
from typing import Optional, Protocol


# Parameter indices (SNDRV_PCM_HW_PARAM_*).
HW_PARAM_ACCESS = 0
HW_PARAM_FORMAT = 1
HW_PARAM_SUBFORMAT = 2
HW_PARAM_FIRST_MASK = HW_PARAM_ACCESS
HW_PARAM_LAST_MASK = HW_PARAM_SUBFORMAT

HW_PARAM_SAMPLE_BITS = 8
HW_PARAM_FRAME_BITS = 9
HW_PARAM_CHANNELS = 10
HW_PARAM_RATE = 11
HW_PARAM_PERIOD_TIME = 12
HW_PARAM_PERIOD_SIZE = 13
HW_PARAM_PERIOD_BYTES = 14
HW_PARAM_PERIODS = 15
HW_PARAM_BUFFER_TIME = 16
HW_PARAM_BUFFER_SIZE = 17
HW_PARAM_BUFFER_BYTES = 18
HW_PARAM_TICK_TIME = 19
HW_PARAM_FIRST_INTERVAL = HW_PARAM_SAMPLE_BITS
HW_PARAM_LAST_INTERVAL = HW_PARAM_TICK_TIME

MASK_COUNT = HW_PARAM_LAST_MASK - HW_PARAM_FIRST_MASK + 1
INTERVAL_COUNT = HW_PARAM_LAST_INTERVAL - HW_PARAM_FIRST_INTERVAL + 1

PCM_ACCESS_RW_INTERLEAVED = 3
PCM_FORMAT_U8 = 1
PCM_FORMAT_S16_LE = 2

UINT_MAX = 0xFFFFFFFF
UFRAMES_MAX = (1 << (8 * ctypes.sizeof(ctypes.c_ulong))) - 1

_MASK_WORDS = (256 + 31) // 32

# Interval flag bits, in declaration order of the C bitfield.
INTERVAL_OPENMIN = 1 << 0
INTERVAL_OPENMAX = 1 << 1
INTERVAL_INTEGER = 1 << 2
INTERVAL_EMPTY = 1 << 3


class SndMask(ctypes.Structure):
    _fields_ = [("bits", ctypes.c_uint32 * _MASK_WORDS)]


class SndInterval(ctypes.Structure):
    _fields_ = [
        ("min", ctypes.c_uint),
        ("max", ctypes.c_uint),
        ("flags", ctypes.c_uint),
    ]


class SndPcmHwParams(ctypes.Structure):
    _fields_ = [
        ("flags", ctypes.c_uint),
        ("masks", SndMask * MASK_COUNT),
        ("mres", SndMask * 5),
        ("intervals", SndInterval * INTERVAL_COUNT),
        ("ires", SndInterval * 9),
        ("rmask", ctypes.c_uint),
        ("cmask", ctypes.c_uint),
        ("info", ctypes.c_uint),
        ("msbits", ctypes.c_uint),
        ("rate_num", ctypes.c_uint),
        ("rate_den", ctypes.c_uint),
        ("fifo_size", ctypes.c_ulong),
        ("sync", ctypes.c_ubyte * 16),
        ("reserved", ctypes.c_ubyte * 48),
    ]


class SndPcmSwParams(ctypes.Structure):
    _fields_ = [
        ("tstamp_mode", ctypes.c_int),
        ("period_step", ctypes.c_uint),
        ("sleep_min", ctypes.c_uint),
        ("avail_min", ctypes.c_ulong),
        ("xfer_align", ctypes.c_ulong),
        ("start_threshold", ctypes.c_ulong),
        ("stop_threshold", ctypes.c_ulong),
        ("silence_threshold", ctypes.c_ulong),
        ("silence_size", ctypes.c_ulong),
        ("boundary", ctypes.c_ulong),
        ("proto", ctypes.c_uint),
        ("tstamp_type", ctypes.c_uint),
        ("reserved", ctypes.c_ubyte * 56),
    ]


_IOC_NRSHIFT = 0
_IOC_TYPESHIFT = 8
_IOC_SIZESHIFT = 16
_IOC_DIRSHIFT = 30
_IOC_NONE = 0
_IOC_WRITE = 1
_IOC_READ = 2


def _ioc(direction: int, type_char: str, nr: int, size: int) -> int:
    return (
        (direction << _IOC_DIRSHIFT)
        | (ord(type_char) << _IOC_TYPESHIFT)
        | (nr << _IOC_NRSHIFT)
        | (size << _IOC_SIZESHIFT)
    )


def _io(type_char: str, nr: int) -> int:
    return _ioc(_IOC_NONE, type_char, nr, 0)


def _iowr(type_char: str, nr: int, struct_type: type) -> int:
    return _ioc(_IOC_READ | _IOC_WRITE, type_char, nr, ctypes.sizeof(struct_type))


SNDRV_PCM_IOCTL_HW_REFINE = _iowr("A", 0x10, SndPcmHwParams)
SNDRV_PCM_IOCTL_HW_PARAMS = _iowr("A", 0x11, SndPcmHwParams)
SNDRV_PCM_IOCTL_SW_PARAMS = _iowr("A", 0x13, SndPcmSwParams)
SNDRV_PCM_IOCTL_PREPARE = _io("A", 0x40)
SNDRV_PCM_IOCTL_START = _io("A", 0x42)
SNDRV_PCM_IOCTL_DROP = _io("A", 0x43)
SNDRV_PCM_IOCTL_DRAIN = _io("A", 0x44)


class PcmTransport(Protocol):
    """Operations the device session needs from the kernel.

    Every method raises :class:`OSError` on failure, like the syscalls
    behind it. ``write`` raises :class:`BlockingIOError` when the device
    cannot take more data yet.
    """

    def hw_refine(self, params: SndPcmHwParams) -> None: ...

    def hw_params(self, params: SndPcmHwParams) -> None: ...

    def sw_params(self, params: SndPcmSwParams) -> None: ...

    def prepare(self) -> None: ...

    def start(self) -> None: ...

    def drop(self) -> None: ...

    def drain(self) -> None: ...

    def write(self, data: memoryview) -> int: ...

    def wait_writable(self, timeout_seconds: float) -> None: ...

    def close(self) -> None: ...


class PcmDriver:
    """A PCM playback node opened write-only and non-blocking."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._fd: Optional[int] = os.open(path, os.O_WRONLY | os.O_NONBLOCK)

    @property
    def fd(self) -> int:
        if self._fd is None:
            raise OSError(errno.EBADF, "PCM device already closed", self.path)
        return self._fd

    def hw_refine(self, params: SndPcmHwParams) -> None:
        fcntl.ioctl(self.fd, SNDRV_PCM_IOCTL_HW_REFINE, params, True)

    def hw_params(self, params: SndPcmHwParams) -> None:
        fcntl.ioctl(self.fd, SNDRV_PCM_IOCTL_HW_PARAMS, params, True)

    def sw_params(self, params: SndPcmSwParams) -> None:
        fcntl.ioctl(self.fd, SNDRV_PCM_IOCTL_SW_PARAMS, params, True)

    def prepare(self) -> None:
        fcntl.ioctl(self.fd, SNDRV_PCM_IOCTL_PREPARE)

    def start(self) -> None:
        fcntl.ioctl(self.fd, SNDRV_PCM_IOCTL_START)

    def drop(self) -> None:
        fcntl.ioctl(self.fd, SNDRV_PCM_IOCTL_DROP)

    def drain(self) -> None:
        # A non-blocking node answers DRAIN with EAGAIN instead of waiting.
        self.set_blocking()
        fcntl.ioctl(self.fd, SNDRV_PCM_IOCTL_DRAIN)

    def set_blocking(self) -> None:
        flags = fcntl.fcntl(self.fd, fcntl.F_GETFL)
        if flags & os.O_NONBLOCK:
            fcntl.fcntl(self.fd, fcntl.F_SETFL, flags & ~os.O_NONBLOCK)

    def write(self, data: memoryview) -> int:
        return os.write(self.fd, data)

    def wait_writable(self, timeout_seconds: float) -> None:
        select.select([], [self.fd], [], timeout_seconds)

    def close(self) -> None:
        if self._fd is not None:
            fd, self._fd = self._fd, None
            os.close(fd)
