"""
Fakes and wire helpers for the transfer tests.
"""

import asyncio
import hashlib

from streamdrop.transfer.protocol import encode_size
from streamdrop.transfer.session import ReceiveSession

MiB = 1024 * 1024


class FakeWriter:
    """Stands in for asyncio.StreamWriter; records everything written."""

    def __init__(self, fail_after: int = None, peername=('10.0.0.2', 9000)):
        self.writes = []
        self.fail_after = fail_after
        self.peername = peername
        self.drains = 0
        self.closed = False

    @property
    def data(self) -> bytes:
        return b''.join(self.writes)

    def write(self, data: bytes):
        self.writes.append(bytes(data))

    async def drain(self):
        self.drains += 1
        if self.fail_after is not None and len(self.writes) > self.fail_after:
            raise ConnectionResetError("Connection reset by peer")

    def get_extra_info(self, name, default=None):
        if name == 'peername':
            return self.peername
        return default

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


class BytesSource:
    """async read(n) over an in-memory buffer, optionally capping each read."""

    def __init__(self, data: bytes, max_read: int = None):
        self.data = data
        self.pos = 0
        self.max_read = max_read
        self.requests = []

    async def read(self, n: int) -> bytes:
        self.requests.append(n)
        if self.max_read is not None:
            n = min(n, self.max_read)
        chunk = self.data[self.pos:self.pos + n]
        self.pos += len(chunk)
        return chunk


class BytesSink:
    """async write(data) into memory."""

    def __init__(self, fail_on_write: int = None):
        self.chunks = []
        self.fail_on_write = fail_on_write

    @property
    def data(self) -> bytes:
        return b''.join(self.chunks)

    async def write(self, data: bytes):
        if self.fail_on_write is not None and len(self.chunks) + 1 == self.fail_on_write:
            raise OSError(28, "No space left on device")
        self.chunks.append(data)


async def receive_from_bytes(output_dir, name: bytes, rest: bytes,
                             eof: bool = True, **kwargs):
    """
    Drive a ReceiveSession from raw wire bytes.

    The name is fed first and the session is allowed to take it as its own
    read before the rest arrives, the way a well-behaved sender delivers it.
    """
    reader = asyncio.StreamReader()
    reader.feed_data(name)
    session = ReceiveSession(reader, output_dir=output_dir, peer='test-peer', **kwargs)
    task = asyncio.ensure_future(session.run())
    await asyncio.sleep(0)
    reader.feed_data(rest)
    if eof:
        reader.feed_eof()
    result = await task
    return session, result


def wire_rest(payload: bytes, size: int = None, trailer: bytes = None) -> bytes:
    """Size + payload + trailer, with the correct digest unless overridden."""
    if size is None:
        size = len(payload)
    if trailer is None:
        trailer = hashlib.sha256(payload).digest()
    return encode_size(size) + payload + trailer
