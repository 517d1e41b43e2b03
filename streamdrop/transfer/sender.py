"""
File Sender

Design Decision: Multi-File Dispatch
====================================

Options Considered:
1. Sequential, one connection reused for every file
   - Simple, but one slow file blocks the rest
   - Needs a multi-file wire format

2. One connection per file, all at once
   - Fast, but opens unbounded sockets for large batches

3. One connection per file, bounded by a semaphore
   - Parallel up to a fixed cap, then queued
   - Files fail independently

Decision: One fresh connection per file, at most MAX_PARALLEL_TRANSFERS
in flight
- A file acquires a budget unit BEFORE connecting and releases it when its
  session ends, whatever the outcome
- A failed file never cancels its siblings; every file gets a result
- Results come back in completion order, not input order
- No timeouts: a stalled receiver holds its unit until the connection is
  reset from outside
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from .errors import TransferError
from .protocol import DEFAULT_HEADER_GAP, HeaderCodec, connect
from .pump import CHUNK_SIZE
from .session import (
    SendSession, SessionProgressCallback, SessionState, TransferResult,
)
from ..utils import Address, format_address, parse_address

logger = logging.getLogger(__name__)

MAX_PARALLEL_TRANSFERS = 5

# Called once per file as soon as its result is known
ResultCallback = Callable[[TransferResult], None]


class FileSender:
    """
    Sends files to a receiver, one connection per file.

    The semaphore is the only state shared between sessions.
    """

    def __init__(self, max_parallel: int = MAX_PARALLEL_TRANSFERS,
                 chunk_size: int = CHUNK_SIZE,
                 header_gap: float = DEFAULT_HEADER_GAP,
                 progress_callback: Optional[SessionProgressCallback] = None,
                 result_callback: Optional[ResultCallback] = None):
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
        self.max_parallel = max_parallel
        self.chunk_size = chunk_size
        self.codec = HeaderCodec(header_gap=header_gap)
        self.progress_callback = progress_callback
        self.result_callback = result_callback

        # Statistics
        self.files_sent = 0
        self.files_failed = 0
        self.bytes_sent = 0

    async def send_all(self, address: Address,
                       paths: Iterable[Union[str, Path]]) -> List[TransferResult]:
        """
        Send every path concurrently, at most ``max_parallel`` at a time.

        Returns:
            One result per path, in completion order
        """
        host, port = parse_address(address)
        paths = [Path(p) for p in paths]
        budget = asyncio.Semaphore(self.max_parallel)
        results: List[TransferResult] = []

        logger.info(f"Sending {len(paths)} file(s) to {format_address(host, port)} "
                    f"({self.max_parallel} in parallel)")

        async def send_guarded(path: Path):
            async with budget:
                result = await self._send_one(host, port, path)
            self._record(result)
            results.append(result)

        await asyncio.gather(*(send_guarded(path) for path in paths))

        logger.info(f"Sent {self.files_sent} file(s), {self.files_failed} failed, "
                    f"{self.bytes_sent:,} bytes")
        return results

    async def _send_one(self, host: str, port: int, path: Path) -> TransferResult:
        """Connect, run one send session, close. Never raises TransferError."""
        peer = format_address(host, port)
        try:
            reader, writer = await connect(host, port)
        except TransferError as e:
            logger.error(f"Error sending file '{path.name}': [{e.kind}] {e}")
            return TransferResult(
                file_name=path.name,
                peer=peer,
                direction='send',
                state=SessionState.FAILED,
                error=e,
                source_path=path,
            )

        session = SendSession(
            path, reader, writer,
            peer=peer,
            codec=self.codec,
            chunk_size=self.chunk_size,
            progress_callback=self.progress_callback,
        )
        try:
            return await session.run()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError as e:
                logger.debug(f"Connection to {peer} closed uncleanly: {e}")

    def _record(self, result: TransferResult):
        if result.ok:
            self.files_sent += 1
            self.bytes_sent += result.bytes_transferred
        else:
            self.files_failed += 1
        if self.result_callback:
            self.result_callback(result)

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            'files_sent': self.files_sent,
            'files_failed': self.files_failed,
            'bytes_sent': self.bytes_sent,
            'max_parallel': self.max_parallel,
        }


async def send_all(address: Address, paths: Iterable[Union[str, Path]],
                   max_parallel: int = MAX_PARALLEL_TRANSFERS,
                   progress_callback: Optional[SessionProgressCallback] = None,
                   result_callback: Optional[ResultCallback] = None,
                   **kwargs) -> List[TransferResult]:
    """Send ``paths`` to ``address``; see ``FileSender.send_all``."""
    sender = FileSender(
        max_parallel=max_parallel,
        progress_callback=progress_callback,
        result_callback=result_callback,
        **kwargs
    )
    return await sender.send_all(address, paths)
