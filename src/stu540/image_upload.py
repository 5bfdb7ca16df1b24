"""
Chunked bitmap upload.

Sequence (all feature-report writes)::

    WRITE_IMAGE_START  [format]               format 0x04 = 24-bit BGR
    WRITE_IMAGE_DATA   [len, 0] + chunk       once per chunk, in order
    WRITE_IMAGE_END    [0]

Each chunk write completes before the next one starts; the device keeps a
single transaction in flight.  The last chunk set is cached so
``set_image(None)`` can repaint the screen (e.g. after a reconnect).
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .constants import (
    DEFAULT_CHUNK_SIZE,
    IMAGE_FORMAT_24BGR,
    MAX_CHUNK_SIZE,
    CommandId,
)

log = logging.getLogger(__name__)


def split_to_chunks(data: bytes, size: int = DEFAULT_CHUNK_SIZE) -> List[bytes]:
    """Split *data* into ordered slices of at most *size* bytes."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return [bytes(data[pos:pos + size]) for pos in range(0, len(data), size)]


def build_chunk_packet(chunk: bytes) -> bytes:
    """WRITE_IMAGE_DATA payload: length byte, reserved 0, then the chunk."""
    if len(chunk) > MAX_CHUNK_SIZE:
        raise ValueError(f"Chunk of {len(chunk)} bytes exceeds {MAX_CHUNK_SIZE}")
    return bytes([len(chunk), 0]) + bytes(chunk)


class ImageUploader:
    """Drives the three-phase upload over a session link.

    The link must provide ``ensure_ready(operation)``, ``transaction()``,
    ``write_report(report_id, payload)`` and a ``config`` attribute
    (the negotiated DeviceConfig).
    """

    def __init__(self, link, chunk_size: int = DEFAULT_CHUNK_SIZE,
                 image_format: int = IMAGE_FORMAT_24BGR):
        if not 0 < chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(
                f"Chunk size must be 1..{MAX_CHUNK_SIZE}, got {chunk_size}")
        self._link = link
        self.chunk_size = chunk_size
        self.image_format = image_format
        self._chunks: Optional[List[bytes]] = None

    @property
    def cached_chunks(self) -> Optional[List[bytes]]:
        return self._chunks

    def set_image(self, image: Optional[bytes]) -> bool:
        """Upload *image* (raw BGR24, width*height*3 bytes).

        ``None`` re-sends the cached image.  Returns False when there is
        nothing to send.

        Raises:
            NotConnectedError: Session not ready.
            ValueError: Image size does not match the screen.
        """
        self._link.ensure_ready('set_image')
        if image is not None:
            expected = self._link.config.image_size
            if len(image) != expected:
                raise ValueError(
                    f"Image is {len(image)} bytes, screen needs {expected} "
                    f"({self._link.config.width}x{self._link.config.height} BGR24)"
                )
            self._chunks = split_to_chunks(image, self.chunk_size)
        if self._chunks is None:
            log.debug("No cached image to send")
            return False

        chunks = self._chunks
        with self._link.transaction():
            self._link.write_report(CommandId.WRITE_IMAGE_START,
                                    bytes([self.image_format]))
            for chunk in chunks:
                self._link.write_report(CommandId.WRITE_IMAGE_DATA,
                                        build_chunk_packet(chunk))
            self._link.write_report(CommandId.WRITE_IMAGE_END, bytes([0]))
        log.info("Uploaded image: %d chunks, %d bytes%s",
                 len(chunks), sum(len(c) for c in chunks),
                 "" if image is not None else " (cached)")
        return True

    def clear_cache(self) -> None:
        self._chunks = None
