"""
Stream Pump

Moves exactly ``total_bytes`` from a source to a sink in bounded chunks,
feeding every chunk to the integrity accumulator and reporting cumulative
progress after each one.

Sources only need ``async read(n)`` (``asyncio.StreamReader``, aiofiles
file objects); sinks only need ``async write(data)`` (aiofiles file
objects, or ``WriterSink`` around an ``asyncio.StreamWriter``).
"""

import asyncio
import logging
from typing import Callable, Optional

from .integrity import IntegrityAccumulator

logger = logging.getLogger(__name__)

# 1 MiB
CHUNK_SIZE = 1024 * 1024

# (bytes_transferred, total_bytes)
ProgressCallback = Callable[[int, int], None]


class WriterSink:
    """Adapts an ``asyncio.StreamWriter`` to the ``async write`` sink shape."""

    def __init__(self, writer: asyncio.StreamWriter):
        self.writer = writer

    async def write(self, data: bytes):
        self.writer.write(data)
        await self.writer.drain()


class StreamPump:
    """
    Chunked copy between a byte source and a byte sink.

    Stops when ``total_bytes`` have moved, or when the source returns no
    bytes (peer closed / EOF). The caller compares the returned count with
    ``total_bytes`` to tell a complete transfer from a short one. I/O
    errors propagate unchanged; nothing is retried.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self.bytes_moved = 0

    async def pump(self, source, sink, total_bytes: int,
                   accumulator: IntegrityAccumulator,
                   on_progress: Optional[ProgressCallback] = None) -> int:
        """
        Copy up to ``total_bytes`` from ``source`` to ``sink``.

        ``bytes_moved`` is updated after every chunk, so it is accurate
        even when the copy is interrupted by an exception.

        Returns:
            Number of payload bytes moved
        """
        self.bytes_moved = 0

        while self.bytes_moved < total_bytes:
            want = min(self.chunk_size, total_bytes - self.bytes_moved)
            chunk = await source.read(want)
            if not chunk:
                logger.debug(f"Source closed after {self.bytes_moved:,}/{total_bytes:,} bytes")
                break

            await sink.write(chunk)
            accumulator.update(chunk)
            self.bytes_moved += len(chunk)

            if on_progress:
                on_progress(self.bytes_moved, total_bytes)

        return self.bytes_moved
