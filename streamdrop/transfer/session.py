"""
Transfer Session

One file over one connection, end to end.

State Machine:
```
IDLE -> HEADER_EXCHANGED -> STREAMING -> INTEGRITY_CHECKED -> COMPLETED
  |            |                |
  +------------+----------------+--------------------------> FAILED
```

Sender: write header, pump file -> connection, write digest trailer.
Receiver: read header, create/truncate destination, pump connection -> file,
read trailer and compare with the local digest.

A digest mismatch does NOT fail the receive: the session completes with
``integrity_verified=False`` and the received bytes stay on disk for
inspection. Any I/O or framing error moves the session to FAILED; nothing
is retried and a partially written destination file is left in place.

``run()`` is the session boundary: it never raises,
it returns a ``TransferResult`` describing what happened.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Tuple

import aiofiles
import aiofiles.os

from .errors import (
    TransferError, PeerConnectionError, LocalIOError, ProtocolError,
    ShortTransferError, IntegrityMismatch,
)
from .integrity import IntegrityAccumulator, digests_match
from .protocol import HeaderCodec, TransferHeader
from .pump import CHUNK_SIZE, StreamPump, WriterSink

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Transfer session states."""
    IDLE = "idle"
    HEADER_EXCHANGED = "header_exchanged"
    STREAMING = "streaming"
    INTEGRITY_CHECKED = "integrity_checked"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferOutcome:
    """Summary of a completed transfer."""
    bytes_transferred: int
    elapsed: float  # seconds
    integrity_verified: bool
    digest: bytes = b''
    destination_path: Optional[Path] = None  # receiver only

    @property
    def average_throughput(self) -> float:
        """Bytes/second over the payload phase."""
        if self.elapsed <= 0:
            return 0.0
        return self.bytes_transferred / self.elapsed

    @property
    def megabytes_per_second(self) -> float:
        return self.average_throughput / 1024 / 1024


@dataclass
class TransferResult:
    """Per-file result handed back to callers, success or failure."""
    file_name: str
    peer: str
    direction: str  # 'send' | 'receive'
    state: SessionState
    bytes_transferred: int = 0
    outcome: Optional[TransferOutcome] = None
    error: Optional[TransferError] = None
    warning: Optional[IntegrityMismatch] = None
    source_path: Optional[Path] = None  # sender only

    @property
    def ok(self) -> bool:
        return self.state == SessionState.COMPLETED

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/JSON."""
        return {
            'file_name': self.file_name,
            'peer': self.peer,
            'direction': self.direction,
            'state': self.state.value,
            'bytes_transferred': self.bytes_transferred,
            'elapsed': self.outcome.elapsed if self.outcome else None,
            'throughput': self.outcome.average_throughput if self.outcome else None,
            'integrity_verified': self.outcome.integrity_verified if self.outcome else False,
            'destination_path': (
                str(self.outcome.destination_path)
                if self.outcome and self.outcome.destination_path else None
            ),
            'error_kind': self.error.kind if self.error else None,
            'error': str(self.error) if self.error else None,
            'warning': str(self.warning) if self.warning else None,
        }


@dataclass
class TransferProgress:
    """Live view of one session, passed to progress callbacks."""
    direction: str
    peer: str
    file_name: str = ''
    total_bytes: int = 0
    bytes_transferred: int = 0
    phase: SessionState = SessionState.IDLE
    start_time: float = field(default_factory=time.time)

    @property
    def progress_percent(self) -> float:
        if self.total_bytes == 0:
            return 100.0 if self.phase == SessionState.COMPLETED else 0.0
        return self.bytes_transferred / self.total_bytes * 100

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    @property
    def speed_bytes_per_sec(self) -> float:
        elapsed = self.elapsed_seconds
        if elapsed == 0:
            return 0
        return self.bytes_transferred / elapsed

    @property
    def finished(self) -> bool:
        return self.phase in (SessionState.COMPLETED, SessionState.FAILED)


# Progress callback type
SessionProgressCallback = Callable[[TransferProgress], None]


def format_peer(writer: Optional[asyncio.StreamWriter]) -> str:
    """Render a connection's remote address as host:port."""
    if writer is None:
        return ''
    peername = writer.get_extra_info('peername')
    if not peername:
        return ''
    return f"{peername[0]}:{peername[1]}"


class TransferSession:
    """Shared state machine and error boundary for both directions."""

    direction = ''

    def __init__(self, peer: str = '', codec: Optional[HeaderCodec] = None,
                 chunk_size: int = CHUNK_SIZE,
                 progress_callback: Optional[SessionProgressCallback] = None):
        self.peer = peer
        self.codec = codec or HeaderCodec()
        self.pump = StreamPump(chunk_size)
        self.progress_callback = progress_callback
        self.state = SessionState.IDLE
        self.file_name = ''
        self.progress = TransferProgress(direction=self.direction, peer=peer)

    def _advance(self, state: SessionState):
        logger.debug(f"[{self.direction} {self.file_name or '?'}] "
                     f"{self.state.value} -> {state.value}")
        self.state = state
        self.progress.phase = state
        self._notify()

    def _notify(self):
        if self.progress_callback:
            self.progress_callback(self.progress)

    def _on_pump_progress(self, bytes_transferred: int, total_bytes: int):
        self.progress.bytes_transferred = bytes_transferred
        self.progress.total_bytes = total_bytes
        self._notify()

    def _announce(self, header: TransferHeader):
        self.file_name = header.file_name
        self.progress.file_name = header.file_name
        self.progress.total_bytes = header.file_size

    async def _transfer(self) -> Tuple[TransferOutcome, Optional[IntegrityMismatch]]:
        raise NotImplementedError

    def _result(self, **kwargs) -> TransferResult:
        return TransferResult(
            file_name=self.file_name,
            peer=self.peer,
            direction=self.direction,
            state=self.state,
            bytes_transferred=self.pump.bytes_moved,
            **kwargs
        )

    async def run(self) -> TransferResult:
        """Run the transfer to completion and report the result."""
        try:
            outcome, warning = await self._transfer()
        except TransferError as e:
            error = e
        except asyncio.IncompleteReadError as e:
            error = ProtocolError(f"Unexpected end of stream: {e}")
        except ConnectionError as e:
            error = PeerConnectionError(f"Connection to {self.peer or 'peer'} lost: {e}")
        except OSError as e:
            error = LocalIOError(str(e))
        except Exception as e:
            error = TransferError(f"Unexpected {type(e).__name__}: {e}")
            logger.debug("Unexpected error in transfer session", exc_info=True)
        else:
            self._advance(SessionState.COMPLETED)
            return self._result(outcome=outcome, warning=warning)

        self._advance(SessionState.FAILED)
        logger.error(f"Error {'sending' if self.direction == 'send' else 'receiving'} "
                     f"file '{self.file_name or '<unknown>'}' "
                     f"({'to' if self.direction == 'send' else 'from'} {self.peer or '?'}): "
                     f"[{error.kind}] {error}")
        return self._result(error=error)


class SendSession(TransferSession):
    """Streams one local file over an already open connection."""

    direction = 'send'

    def __init__(self, path: Path, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter, peer: Optional[str] = None,
                 **kwargs):
        super().__init__(peer=peer if peer is not None else format_peer(writer),
                         **kwargs)
        self.path = Path(path)
        self.reader = reader
        self.writer = writer
        self.file_name = self.path.name
        self.progress.file_name = self.file_name

    def _result(self, **kwargs) -> TransferResult:
        return super()._result(source_path=self.path, **kwargs)

    async def _transfer(self) -> Tuple[TransferOutcome, Optional[IntegrityMismatch]]:
        try:
            file_size = (await aiofiles.os.stat(self.path)).st_size
            source = await aiofiles.open(self.path, 'rb')
        except OSError as e:
            raise LocalIOError(f"Cannot open {self.path}: {e}") from e

        try:
            header = TransferHeader(file_name=self.file_name, file_size=file_size)
            self._announce(header)
            await self.codec.write_header(self.writer, header)
            self._advance(SessionState.HEADER_EXCHANGED)

            start_time = time.time()
            accumulator = IntegrityAccumulator()
            self._advance(SessionState.STREAMING)
            moved = await self.pump.pump(
                source, WriterSink(self.writer), file_size,
                accumulator, self._on_pump_progress
            )
            elapsed = time.time() - start_time

            if moved < file_size:
                raise ShortTransferError(
                    moved, file_size,
                    f"{self.path} ended after {moved:,} of {file_size:,} bytes"
                )

            digest = accumulator.finalize()
            await self.codec.write_trailer(self.writer, digest)
        finally:
            await source.close()

        self._advance(SessionState.INTEGRITY_CHECKED)
        outcome = TransferOutcome(
            bytes_transferred=moved,
            elapsed=elapsed,
            integrity_verified=True,
            digest=digest,
        )
        logger.info(f"Transfer complete in {elapsed:.2f}s "
                    f"({outcome.megabytes_per_second:.2f} MB/s)")
        logger.info(f"'{self.file_name}' sent to {self.peer}")
        return outcome, None


class ReceiveSession(TransferSession):
    """Reads one file from an accepted connection into ``output_dir``."""

    direction = 'receive'

    def __init__(self, reader: asyncio.StreamReader,
                 output_dir: Optional[Path] = None, peer: str = '',
                 **kwargs):
        super().__init__(peer=peer, **kwargs)
        self.reader = reader
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.destination: Optional[Path] = None

    def destination_for(self, file_name: str) -> Path:
        """
        Resolve where a received name is written.

        Only bare names are accepted; anything that would leave the
        output directory is a protocol error.
        """
        if '/' in file_name or '\\' in file_name or file_name in ('.', '..'):
            raise ProtocolError(f"Refusing file name with path components: {file_name!r}")
        if '\x00' in file_name:
            raise ProtocolError(f"Refusing file name with embedded NUL: {file_name!r}")
        if self.output_dir is None:
            return Path(file_name)
        return self.output_dir / file_name

    async def _transfer(self) -> Tuple[TransferOutcome, Optional[IntegrityMismatch]]:
        header = await self.codec.read_header(self.reader)
        self._announce(header)
        self.destination = self.destination_for(header.file_name)
        logger.debug(f"Receiving '{header.file_name}' ({header.file_size:,} bytes) "
                     f"from {self.peer}")

        try:
            sink = await aiofiles.open(self.destination, 'wb')
        except OSError as e:
            raise LocalIOError(f"Cannot create {self.destination}: {e}") from e
        self._advance(SessionState.HEADER_EXCHANGED)

        start_time = time.time()
        accumulator = IntegrityAccumulator()
        try:
            self._advance(SessionState.STREAMING)
            moved = await self.pump.pump(
                self.reader, sink, header.file_size,
                accumulator, self._on_pump_progress
            )
        finally:
            await sink.close()
        elapsed = time.time() - start_time

        if moved < header.file_size:
            raise ShortTransferError(moved, header.file_size)

        received_digest = await self.codec.read_trailer(self.reader)
        local_digest = accumulator.finalize()
        logger.debug(f"Local digest over {accumulator.bytes_seen:,} bytes: "
                     f"{local_digest.hex()}")
        verified = digests_match(received_digest, local_digest)
        self._advance(SessionState.INTEGRITY_CHECKED)

        outcome = TransferOutcome(
            bytes_transferred=moved,
            elapsed=elapsed,
            integrity_verified=verified,
            digest=local_digest,
            destination_path=self.destination,
        )
        logger.info(f"Transfer complete in {elapsed:.2f}s "
                    f"({outcome.megabytes_per_second:.2f} MB/s)")

        warning = None
        if verified:
            logger.info("File integrity verified")
        else:
            warning = IntegrityMismatch(received_digest, local_digest)
            logger.warning(f"Warning: File integrity check failed for "
                           f"'{self.file_name}' from {self.peer}: {warning}")

        logger.info(f"File received and saved to {self.destination}")
        return outcome, warning
