"""
Transfer Server

Accepts connections forever and runs one receive session per connection,
concurrently. A failing session is logged and reported through the result
callback; the listener and the other sessions carry on.

How many sessions may run at once is decided by an admission policy, kept
apart from the session code. The default admits every connection
immediately (no cap, no backpressure).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional, Union

from .errors import PeerConnectionError
from .protocol import HeaderCodec
from .pump import CHUNK_SIZE
from .session import (
    ReceiveSession, SessionProgressCallback, TransferResult, format_peer,
)
from ..utils import Address, format_address, parse_address

logger = logging.getLogger(__name__)

DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 8080

ResultCallback = Callable[[TransferResult], None]


class UnboundedAdmission:
    """Serve every accepted connection right away."""

    @asynccontextmanager
    async def admit(self):
        yield

    def describe(self) -> str:
        return "unbounded"


class BoundedAdmission:
    """Serve at most ``limit`` connections at once; the rest wait their turn."""

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)

    @asynccontextmanager
    async def admit(self):
        async with self._semaphore:
            yield

    def describe(self) -> str:
        return f"at most {self.limit} at once"


def admission_for(max_incoming: Optional[int]):
    """Pick the admission policy for a configured cap (None = no cap)."""
    if max_incoming is None:
        return UnboundedAdmission()
    return BoundedAdmission(max_incoming)


class TransferServer:
    """
    TCP listener that saves incoming files into ``output_dir``.

    With no ``output_dir``, files land in the current directory under the
    name the sender announced.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                 output_dir: Optional[Union[str, Path]] = None,
                 chunk_size: int = CHUNK_SIZE,
                 codec: Optional[HeaderCodec] = None,
                 admission=None,
                 progress_callback: Optional[SessionProgressCallback] = None,
                 result_callback: Optional[ResultCallback] = None):
        self.host = host
        self.requested_port = port
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.chunk_size = chunk_size
        self.codec = codec or HeaderCodec()
        self.admission = admission or UnboundedAdmission()
        self.progress_callback = progress_callback
        self.result_callback = result_callback
        self.server: Optional[asyncio.AbstractServer] = None

        # Statistics
        self.active_sessions = 0
        self.files_received = 0
        self.files_failed = 0
        self.bytes_received = 0

    @property
    def port(self) -> int:
        """Bound port (useful when listening on port 0)."""
        if self.server and self.server.sockets:
            return self.server.sockets[0].getsockname()[1]
        return self.requested_port

    @property
    def address(self) -> str:
        return format_address(self.host, self.port)

    async def start(self):
        """
        Bind and start accepting connections.

        Raises:
            PeerConnectionError: if the address cannot be bound
        """
        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                self.requested_port
            )
        except OSError as e:
            raise PeerConnectionError(
                f"Failed to bind {format_address(self.host, self.requested_port)}: {e}"
            ) from e

        logger.info(f"Server listening on {self.address} "
                    f"(sessions: {self.admission.describe()})")

    async def stop(self):
        """Stop accepting connections."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
            logger.info(f"Server stopped. Received {self.files_received} file(s), "
                        f"{self.bytes_received:,} bytes")

    async def serve_forever(self):
        """Accept connections until cancelled."""
        if self.server is None:
            await self.start()
        await self.server.serve_forever()

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle one incoming connection: exactly one file."""
        peer = format_peer(writer)
        logger.debug(f"New transfer connection from {peer}")

        try:
            async with self.admission.admit():
                session = ReceiveSession(
                    reader,
                    output_dir=self.output_dir,
                    peer=peer,
                    codec=self.codec,
                    chunk_size=self.chunk_size,
                    progress_callback=self.progress_callback,
                )
                self.active_sessions += 1
                try:
                    result = await session.run()
                finally:
                    self.active_sessions -= 1

            self._record(result)
        except Exception as e:
            logger.error(f"Error handling connection from {peer}: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError as e:
                logger.debug(f"Connection from {peer} closed uncleanly: {e}")
            logger.debug(f"Connection closed: {peer}")

    def _record(self, result: TransferResult):
        if result.ok:
            self.files_received += 1
            self.bytes_received += result.bytes_transferred
        else:
            self.files_failed += 1
        if self.result_callback:
            self.result_callback(result)

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            'address': self.address,
            'active_sessions': self.active_sessions,
            'files_received': self.files_received,
            'files_failed': self.files_failed,
            'bytes_received': self.bytes_received,
        }


async def serve(address: Address = f"{DEFAULT_HOST}:{DEFAULT_PORT}",
                output_dir: Optional[Union[str, Path]] = None,
                **kwargs):
    """Bind ``address`` and receive files into ``output_dir`` forever."""
    host, port = parse_address(address)
    server = TransferServer(host=host, port=port, output_dir=output_dir, **kwargs)
    await server.start()
    try:
        await server.serve_forever()
    finally:
        await server.stop()
