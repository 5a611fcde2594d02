"""Streaming reader/validator and writer for canonical 44-byte-header PCM WAV files.

Only the layout ``RIFF`` / ``WAVE`` / 16-byte ``fmt `` / ``data`` is accepted:
no chunks between ``fmt `` and ``data``, linear PCM only, mono or stereo,
8-bit unsigned or 16-bit signed samples.
"""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import BinaryIO

from soundwave.services.byte_reader import ByteCursorReader


logger = logging.getLogger(__name__)

# RIFF tag through bitsPerSample. The data tag and size follow.
SIZE_OF_WAVE_HEADER = 36
HEADER_BYTES = SIZE_OF_WAVE_HEADER + 8
FMT_CHUNK_SIZE = 16
PCM_FORMAT = 1

_HEADER_STRUCT = struct.Struct("<4sI4s4sIHHIIHh4sI")


class WaveContainerError(ValueError):
    """Raised when a WAV container cannot be read as declared."""


class ContainerValidationError(WaveContainerError):
    """Raised when a header field fails its constraint."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class TruncatedInputError(WaveContainerError):
    """Raised when the stream ends before the declared payload/trailing bytes."""

    def __init__(self, message: str = "insufficient data") -> None:
        super().__init__(message)


class TrailingDataError(WaveContainerError):
    """Raised when bytes remain past the declared end of the container."""

    def __init__(
        self, message: str = "bad file size (found data past the expected end of file)"
    ) -> None:
        super().__init__(message)


@dataclass(slots=True)
class WaveHeader:
    """Every field that precedes the PCM payload, in file order."""

    riff_id: bytes
    file_size: int
    wave_id: bytes
    fmt_id: bytes
    fmt_chunk_size: int
    audio_format: int
    num_channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_id: bytes
    data_size: int

    @property
    def declared_trailing_size(self) -> int:
        """Bytes between the end of the payload and ``file_size + 8``."""
        return self.file_size - SIZE_OF_WAVE_HEADER - self.data_size

    def to_bytes(self) -> bytes:
        return _HEADER_STRUCT.pack(
            self.riff_id,
            self.file_size,
            self.wave_id,
            self.fmt_id,
            self.fmt_chunk_size,
            self.audio_format,
            self.num_channels,
            self.sample_rate,
            self.byte_rate,
            self.block_align,
            self.bits_per_sample,
            self.data_id,
            self.data_size,
        )


@dataclass(slots=True)
class WaveContainer:
    """A fully read container.

    ``trailing`` holds the declared bytes after the payload (opaque chunks);
    ``extra`` holds anything the stream carried beyond ``file_size + 8``.
    """

    header: WaveHeader
    payload: bytes
    trailing: bytes = b""
    extra: bytes = b""


def build_header(
    *,
    num_channels: int,
    sample_rate: int,
    bits_per_sample: int,
    data_size: int,
    trailing_size: int = 0,
) -> WaveHeader:
    """Derive a consistent PCM header from the stream parameters."""
    if sample_rate <= 0:
        raise ValueError("sample_rate must be > 0")
    if num_channels not in (1, 2):
        raise ValueError("num_channels must be 1 or 2")
    if bits_per_sample not in (8, 16):
        raise ValueError("bits_per_sample must be 8 or 16")

    block_align = (bits_per_sample // 8) * num_channels
    file_size = SIZE_OF_WAVE_HEADER + data_size + trailing_size
    if file_size > 0xFFFFFFFF or data_size < 0:
        raise ValueError(f"data_size out of range for a RIFF container: {data_size}")
    return WaveHeader(
        riff_id=b"RIFF",
        file_size=file_size,
        wave_id=b"WAVE",
        fmt_id=b"fmt ",
        fmt_chunk_size=FMT_CHUNK_SIZE,
        audio_format=PCM_FORMAT,
        num_channels=num_channels,
        sample_rate=sample_rate,
        byte_rate=sample_rate * block_align,
        block_align=block_align,
        bits_per_sample=bits_per_sample,
        data_id=b"data",
        data_size=data_size,
    )


def pcm_to_wav(
    pcm: bytes,
    *,
    sample_rate: int = 44_100,
    channels: int = 1,
    bits_per_sample: int = 16,
) -> bytes:
    """Wrap raw little-endian PCM in a minimal WAV container."""
    header = build_header(
        num_channels=channels,
        sample_rate=sample_rate,
        bits_per_sample=bits_per_sample,
        data_size=len(pcm),
    )
    return header.to_bytes() + pcm


def _read_u32(reader: ByteCursorReader) -> int:
    raw = reader.read(4)
    if len(raw) < 4:
        raise TruncatedInputError()
    return struct.unpack("<I", raw)[0]


def _read_u16(reader: ByteCursorReader) -> int:
    raw = reader.read(2)
    if len(raw) < 2:
        raise TruncatedInputError()
    return struct.unpack("<H", raw)[0]


def _read_i16(reader: ByteCursorReader) -> int:
    raw = reader.read(2)
    if len(raw) < 2:
        raise TruncatedInputError()
    return struct.unpack("<h", raw)[0]


def _expect_tag(reader: ByteCursorReader, expected: bytes, field: str) -> bytes:
    tag = reader.read(4)
    if tag != expected:
        raise ContainerValidationError(field, f'"{expected.decode("ascii")}" not found')
    return tag


def read_header(reader: ByteCursorReader) -> WaveHeader:
    """Read and validate the header field by field.

    Stops at the first failing field, so on error the reader sits right
    after that field. The byte-rate check needs ``block_align`` and is
    therefore made once both have been read.
    """
    riff_id = _expect_tag(reader, b"RIFF", "riff_id")
    file_size = _read_u32(reader)
    wave_id = _expect_tag(reader, b"WAVE", "wave_id")
    fmt_id = _expect_tag(reader, b"fmt ", "fmt_id")

    fmt_chunk_size = _read_u32(reader)
    if fmt_chunk_size != FMT_CHUNK_SIZE:
        raise ContainerValidationError("fmt_chunk_size", "size of format chunk should be 16")

    audio_format = _read_u16(reader)
    if audio_format != PCM_FORMAT:
        raise ContainerValidationError("audio_format", "WAVE type format should be 1")

    num_channels = _read_u16(reader)
    if num_channels not in (1, 2):
        raise ContainerValidationError("num_channels", "mono/stereo should be 1 or 2")

    sample_rate = _read_u32(reader)
    if sample_rate == 0:
        raise ContainerValidationError("sample_rate", "sample rate should be greater than 0")

    byte_rate = _read_u32(reader)
    block_align = _read_u16(reader)
    if byte_rate != sample_rate * block_align:
        raise ContainerValidationError(
            "byte_rate", "bytes/second should be sample rate x block alignment"
        )

    bits_per_sample = _read_i16(reader)
    if bits_per_sample not in (8, 16):
        raise ContainerValidationError("bits_per_sample", "bits/sample should be 8 or 16")
    if block_align != (bits_per_sample // 8) * num_channels:
        raise ContainerValidationError(
            "block_align", "block alignment should be bits per sample / 8 x mono/stereo"
        )

    data_id = _expect_tag(reader, b"data", "data_id")
    data_size = _read_u32(reader)

    header = WaveHeader(
        riff_id=riff_id,
        file_size=file_size,
        wave_id=wave_id,
        fmt_id=fmt_id,
        fmt_chunk_size=fmt_chunk_size,
        audio_format=audio_format,
        num_channels=num_channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits_per_sample,
        data_id=data_id,
        data_size=data_size,
    )
    if header.declared_trailing_size < 0:
        raise ContainerValidationError(
            "file_size", "bad file size (declared size smaller than header and data)"
        )
    logger.debug(
        "header ok: channels=%d rate=%d bits=%d data=%d",
        num_channels,
        sample_rate,
        bits_per_sample,
        data_size,
    )
    return header


def read_payload(reader: ByteCursorReader, data_size: int) -> bytes:
    """Read exactly ``data_size`` payload bytes."""
    payload = reader.read(data_size)
    if len(payload) < data_size:
        raise TruncatedInputError()
    return payload


def read_trailing(reader: ByteCursorReader, file_size: int, data_size: int) -> bytes:
    """Read the declared bytes after the payload verbatim; never validated."""
    remaining = file_size - SIZE_OF_WAVE_HEADER - data_size
    if remaining <= 0:
        return b""
    trailing = reader.read(remaining)
    if len(trailing) < remaining:
        raise TruncatedInputError()
    return trailing


def expect_end_of_stream(reader: ByteCursorReader) -> bool:
    """Return False when any byte remains after the expected end."""
    return reader.at_end()


def read_container(reader: ByteCursorReader, *, strict_end: bool) -> WaveContainer:
    """Read header, payload and trailing region fully into memory.

    With ``strict_end`` the stream must end at ``file_size + 8``; otherwise
    any extra bytes are kept so they can be written back out unchanged.
    """
    header = read_header(reader)
    payload = read_payload(reader, header.data_size)
    trailing = read_trailing(reader, header.file_size, header.data_size)
    if strict_end:
        if not expect_end_of_stream(reader):
            raise TrailingDataError()
        extra = b""
    else:
        extra = reader.read_to_end()
    return WaveContainer(header=header, payload=payload, trailing=trailing, extra=extra)


def write_header(sink: BinaryIO, header: WaveHeader) -> None:
    sink.write(header.to_bytes())


def write_payload(sink: BinaryIO, payload: bytes) -> None:
    sink.write(payload)


def write_container(sink: BinaryIO, container: WaveContainer) -> None:
    write_header(sink, container.header)
    write_payload(sink, container.payload)
    write_payload(sink, container.trailing)
    write_payload(sink, container.extra)


def format_report(header: WaveHeader) -> list[str]:
    """Human-readable header fields, one per line, in file order."""
    return [
        f"size of file: {header.file_size}",
        f"size of format chunk: {header.fmt_chunk_size}",
        f"WAVE type format: {header.audio_format}",
        f"mono/stereo: {header.num_channels}",
        f"sample rate: {header.sample_rate}",
        f"byte/sec: {header.byte_rate}",
        f"block align: {header.block_align}",
        f"bits/sample: {header.bits_per_sample}",
        f"size of data chunk: {header.data_size}",
    ]
