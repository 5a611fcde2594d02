from __future__ import annotations

import errno
from typing import Optional, Union

import pytest

from soundwave.services.alsa import HW_PARAM_FORMAT, SndPcmHwParams, SndPcmSwParams
from soundwave.services.device import HardwareParams, HwParam


class FakeTransport:
    """Stands in for a kernel PCM node.

    ``bounds`` narrows intervals during refine, ``fail_on`` makes the named
    call raise, and ``write_script`` lists per-call write outcomes: an
    exception to raise or a count of bytes to accept. Once the script runs
    out, writes accept everything. ``drain_script`` lists exceptions for
    successive drain calls.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.bounds: dict[HwParam, tuple[int, int]] = {}
        self.fail_on: Optional[str] = None
        self.write_script: list[Union[int, BaseException]] = []
        self.drain_script: list[BaseException] = []
        self.write_sizes: list[int] = []
        self.written = bytearray()
        self.waits: list[float] = []
        self.applied: dict[HwParam, tuple[int, int]] = {}
        self.format_bits: Optional[int] = None
        self.sw: Optional[SndPcmSwParams] = None
        self.closed = False

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise OSError(errno.EINVAL, f"{name} rejected")

    def hw_refine(self, params: SndPcmHwParams) -> None:
        self._enter("hw_refine")
        view = HardwareParams(params)
        for param, (low, high) in self.bounds.items():
            view.propose_range(param, low, high)

    def hw_params(self, params: SndPcmHwParams) -> None:
        self._enter("hw_params")
        view = HardwareParams(params)
        for param in HwParam:
            if not param.is_mask:
                self.applied[param] = view.current_bounds(param)
        self.format_bits = params.masks[HW_PARAM_FORMAT].bits[0]

    def sw_params(self, params: SndPcmSwParams) -> None:
        self._enter("sw_params")
        self.sw = params

    def prepare(self) -> None:
        self._enter("prepare")

    def start(self) -> None:
        self._enter("start")

    def drop(self) -> None:
        self._enter("drop")

    def drain(self) -> None:
        self._enter("drain")
        if self.drain_script:
            raise self.drain_script.pop(0)

    def write(self, data: memoryview) -> int:
        self.calls.append("write")
        accepted = len(data)
        if self.write_script:
            outcome = self.write_script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            accepted = min(outcome, len(data))
        self.write_sizes.append(accepted)
        self.written += bytes(data[:accepted])
        return accepted

    def wait_writable(self, timeout_seconds: float) -> None:
        self.waits.append(timeout_seconds)

    def close(self) -> None:
        self.calls.append("close")
        self.closed = True


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()
