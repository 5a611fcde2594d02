from __future__ import annotations

import logging
from typing import Callable

from soundwave.services.byte_reader import ByteCursorReader
from soundwave.services.device import AudioDeviceSession
from soundwave.services.wave_codec import WaveContainer, read_container


logger = logging.getLogger(__name__)

PERIOD_FRAMES = 1024
CHUNK_BYTES = 1024


def play_container(
    container: WaveContainer,
    *,
    session_factory: Callable[[], AudioDeviceSession] = AudioDeviceSession.open,
) -> None:
    """Stream an in-memory container to the first playback device.

    A trailing partial frame is not sent. A failed chunk write stops the
    device without draining; the session is released on every exit path.
    """
    header = container.header
    payload = container.payload
    # The kernel rejects writes that are not whole frames.
    remainder = len(payload) % header.block_align
    if remainder:
        logger.info("dropping %d bytes of incomplete final frame", remainder)
        payload = payload[: len(payload) - remainder]
    with session_factory() as session:
        session.negotiate(
            header.num_channels,
            header.bits_per_sample,
            header.sample_rate,
            PERIOD_FRAMES,
        )
        session.start()
        logger.info("playing %d bytes", len(payload))
        for offset in range(0, len(payload), CHUNK_BYTES):
            session.write_chunk(payload[offset : offset + CHUNK_BYTES])
        session.drain_and_close()
    logger.info("playback finished")


def play(
    reader: ByteCursorReader,
    *,
    session_factory: Callable[[], AudioDeviceSession] = AudioDeviceSession.open,
) -> WaveContainer:
    """Validate the whole file first, then play it."""
    container = read_container(reader, strict_end=True)
    play_container(container, session_factory=session_factory)
    return container
