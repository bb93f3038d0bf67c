import logging
from typing import Iterator

from slowpipe.errors import PayloadError

logger = logging.getLogger(__name__)

# 900 MB, large enough that writing it outlives any sane proxy timeout
DEFAULT_PAYLOAD_SIZE = 900 * 1000 * 1000
DEFAULT_CHUNK_SIZE = 64 * 1024


def build_payload(size: int) -> bytearray:
    """
    Allocate the zero-filled buffer that makes up the response body.

    Raises:
        PayloadError: if ``size`` is not a non-negative int or the buffer
            cannot be allocated.
    """
    if isinstance(size, bool) or not isinstance(size, int):
        raise PayloadError(f"payload size must be an int, got: {size!r}")
    if size < 0:
        raise PayloadError(f"payload size must not be negative, got: {size}")
    try:
        buffer = bytearray(size)
    except MemoryError as e:
        raise PayloadError(f"cannot allocate {size} bytes") from e
    logger.debug("allocated payload of %d bytes", size)
    return buffer


def iter_chunks(buffer: bytearray, chunk_size: int) -> Iterator[bytes]:
    """Yield consecutive slices of ``buffer``, each at most ``chunk_size`` long."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be greater than 0, got: {chunk_size}")
    view = memoryview(buffer)
    try:
        for offset in range(0, len(view), chunk_size):
            yield bytes(view[offset : offset + chunk_size])
    finally:
        view.release()
