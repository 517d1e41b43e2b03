"""
File Transfer Protocol

Design Decision: Header Framing
===============================

Options Considered:
1. Length-prefixed name + size
   - Unambiguous framing
   - Not what existing senders put on the wire

2. Raw name bytes + fixed 8-byte size (no name length, no terminator)
   - Compatible with existing peers
   - Receiver has to take the name from a single opportunistic read

Decision: Raw name + 8-byte big-endian size, behind ``HeaderCodec``
- Receiver reads up to 256 bytes once and treats whatever arrived as the
  name, then reads exactly 8 bytes for the size
- If the stream fragments the name, the receiver keeps the truncated name;
  if the name and size arrive in the same read, the size bytes end up in
  the name. Both are properties of the wire format, not bugs in the codec
- The sender pauses for ``header_gap`` seconds after the name so that it
  normally arrives as its own read
- All framing goes through ``HeaderCodec`` so a length-prefixed variant
  can replace it without touching the session code

Wire Format (one file per connection):
```
+----------------+-------------+-------------------+---------------+
| Name (raw)     | Size (8B BE)| Payload (Size B)  | SHA-256 (32B) |
+----------------+-------------+-------------------+---------------+
```
"""

import asyncio
import logging
import re
import struct
from dataclasses import dataclass
from typing import Tuple

from .errors import PeerConnectionError, ProtocolError
from .integrity import DIGEST_SIZE

logger = logging.getLogger(__name__)

MAX_NAME_BYTES = 256
SIZE_BYTES = 8
MAX_FILE_SIZE = 2 ** 64 - 1
DEFAULT_HEADER_GAP = 0.05  # seconds

_SIZE = struct.Struct('>Q')
_EDGE_JUNK = re.compile(r'^[\s\x00-\x1f\x7f]+|[\s\x00-\x1f\x7f]+$')


@dataclass(frozen=True)
class TransferHeader:
    """Name and payload size announced by the sender."""
    file_name: str
    file_size: int


def encode_name(file_name: str) -> bytes:
    """Encode the file name field (raw UTF-8, no prefix, no terminator)."""
    try:
        name_bytes = file_name.encode('utf-8')
    except UnicodeEncodeError as e:
        raise ProtocolError(f"File name is not valid UTF-8: {file_name!r}") from e
    if not name_bytes:
        raise ProtocolError("File name is empty")
    if len(name_bytes) > MAX_NAME_BYTES:
        raise ProtocolError(
            f"File name is {len(name_bytes)} bytes, "
            f"receiver accepts at most {MAX_NAME_BYTES}"
        )
    return name_bytes


def encode_size(file_size: int) -> bytes:
    """Encode the payload size as an unsigned 64-bit big-endian integer."""
    if not 0 <= file_size <= MAX_FILE_SIZE:
        raise ProtocolError(f"File size out of range: {file_size}")
    return _SIZE.pack(file_size)


def encode_header(file_name: str, file_size: int) -> bytes:
    """Encode a complete header: name bytes immediately followed by size."""
    return encode_name(file_name) + encode_size(file_size)


def clean_name(raw: bytes) -> str:
    """Decode received name bytes lossily and trim whitespace/control chars."""
    text = raw.decode('utf-8', errors='replace')
    return _EDGE_JUNK.sub('', text)


async def decode_header(reader: asyncio.StreamReader) -> TransferHeader:
    """
    Read a header from the stream.

    The name is taken from ONE read of at most ``MAX_NAME_BYTES`` bytes;
    the size is read exactly.

    Raises:
        ProtocolError: stream closed before a name or a full size arrived
    """
    raw_name = await reader.read(MAX_NAME_BYTES)
    if not raw_name:
        raise ProtocolError("Connection closed before the file name was received")

    file_name = clean_name(raw_name)
    if not file_name:
        raise ProtocolError("Received an empty file name")

    try:
        size_bytes = await reader.readexactly(SIZE_BYTES)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError(
            f"Short read on file size ({len(e.partial)} of {SIZE_BYTES} bytes)"
        ) from e

    file_size = _SIZE.unpack(size_bytes)[0]
    return TransferHeader(file_name=file_name, file_size=file_size)


class HeaderCodec:
    """
    Reads and writes the framing around the payload.

    Sessions only talk to the wire through this class.
    """

    def __init__(self, header_gap: float = DEFAULT_HEADER_GAP):
        self.header_gap = header_gap

    async def write_header(self, writer: asyncio.StreamWriter,
                           header: TransferHeader):
        """Send name, then size, as two separate writes."""
        name_bytes = encode_name(header.file_name)
        size_bytes = encode_size(header.file_size)

        writer.write(name_bytes)
        await writer.drain()
        if self.header_gap > 0:
            await asyncio.sleep(self.header_gap)

        writer.write(size_bytes)
        await writer.drain()

    async def read_header(self, reader: asyncio.StreamReader) -> TransferHeader:
        return await decode_header(reader)

    async def write_trailer(self, writer: asyncio.StreamWriter, digest: bytes):
        """Send the payload digest."""
        if len(digest) != DIGEST_SIZE:
            raise ProtocolError(f"Digest must be {DIGEST_SIZE} bytes, got {len(digest)}")
        writer.write(digest)
        await writer.drain()

    async def read_trailer(self, reader: asyncio.StreamReader) -> bytes:
        """Read exactly one digest from the stream."""
        try:
            return await reader.readexactly(DIGEST_SIZE)
        except asyncio.IncompleteReadError as e:
            raise ProtocolError(
                f"Short read on digest trailer ({len(e.partial)} of {DIGEST_SIZE} bytes)"
            ) from e


async def connect(host: str, port: int) -> Tuple[asyncio.StreamReader,
                                                  asyncio.StreamWriter]:
    """
    Open a fresh connection to a receiver.

    Raises:
        PeerConnectionError: if the connection could not be established
    """
    try:
        reader, writer = await asyncio.open_connection(host, port)
    except OSError as e:
        raise PeerConnectionError(f"Failed to connect to {host}:{port}: {e}") from e
    logger.debug(f"Connected to {host}:{port}")
    return reader, writer
