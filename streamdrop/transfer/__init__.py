"""
Transfer Module - Point-to-Point File Streaming

Framing, integrity checking, chunk pumping and the per-connection
session state machine, plus the send-side dispatcher and the listener.
"""

from .errors import (
    TransferError, PeerConnectionError, LocalIOError, ProtocolError,
    ShortTransferError, IntegrityMismatch,
)
from .integrity import DIGEST_SIZE, IntegrityAccumulator
from .protocol import (
    MAX_NAME_BYTES, HeaderCodec, TransferHeader, encode_header, decode_header,
)
from .pump import CHUNK_SIZE, StreamPump, WriterSink
from .session import (
    SessionState, TransferOutcome, TransferResult, TransferProgress,
    SendSession, ReceiveSession,
)
from .sender import MAX_PARALLEL_TRANSFERS, FileSender, send_all
from .receiver import (
    TransferServer, UnboundedAdmission, BoundedAdmission, serve,
)

__all__ = [
    'TransferError',
    'PeerConnectionError',
    'LocalIOError',
    'ProtocolError',
    'ShortTransferError',
    'IntegrityMismatch',
    'DIGEST_SIZE',
    'IntegrityAccumulator',
    'MAX_NAME_BYTES',
    'HeaderCodec',
    'TransferHeader',
    'encode_header',
    'decode_header',
    'CHUNK_SIZE',
    'StreamPump',
    'WriterSink',
    'SessionState',
    'TransferOutcome',
    'TransferResult',
    'TransferProgress',
    'SendSession',
    'ReceiveSession',
    'MAX_PARALLEL_TRANSFERS',
    'FileSender',
    'send_all',
    'TransferServer',
    'UnboundedAdmission',
    'BoundedAdmission',
    'serve',
]
