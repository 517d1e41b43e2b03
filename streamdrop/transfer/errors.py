"""
Transfer Errors

Every failure inside a transfer session is expressed as one of these,
so reporting code only has to look at ``kind`` and the message.
"""

from typing import Optional


class TransferError(Exception):
    """Base class for all transfer failures."""
    kind = 'transfer'


class PeerConnectionError(TransferError):
    """Bind/connect/accept failure, or the connection dropped mid-session."""
    kind = 'connection'


class LocalIOError(TransferError):
    """Local file could not be opened, read or written."""
    kind = 'io'


class ProtocolError(TransferError):
    """The peer sent something that does not fit the wire format."""
    kind = 'protocol'


class ShortTransferError(ProtocolError):
    """Peer closed the stream before the announced payload size was reached."""
    kind = 'short-transfer'

    def __init__(self, bytes_transferred: int, expected: int,
                 message: Optional[str] = None):
        self.bytes_transferred = bytes_transferred
        self.expected = expected
        super().__init__(
            message or f"Stream closed after {bytes_transferred:,} of "
                       f"{expected:,} bytes"
        )


class IntegrityMismatch(TransferError):
    """
    Digest trailer did not match the received payload.

    Not raised: attached to an otherwise completed result as a warning.
    """
    kind = 'integrity'

    def __init__(self, expected: bytes, actual: bytes):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Digest mismatch (sent {expected.hex()[:16]}..., "
            f"got {actual.hex()[:16]}...)"
        )
