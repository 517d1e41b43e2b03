"""
Integrity Accumulator

Incremental SHA-256 over the payload, fed chunk by chunk in stream order
on both ends of a transfer. Sender and receiver end up with the same
32-byte digest iff they saw the same bytes.
"""

import hashlib
import hmac

DIGEST_SIZE = 32


class IntegrityAccumulator:
    """Running SHA-256 over a payload stream."""

    def __init__(self):
        self._hasher = hashlib.sha256()
        self._finalized = False
        self.bytes_seen = 0

    def update(self, chunk: bytes):
        """Feed the next payload bytes, in transmission order."""
        if self._finalized:
            raise RuntimeError("Accumulator already finalized")
        self._hasher.update(chunk)
        self.bytes_seen += len(chunk)

    def finalize(self) -> bytes:
        """Return the digest. The accumulator cannot be used afterwards."""
        if self._finalized:
            raise RuntimeError("Accumulator already finalized")
        self._finalized = True
        return self._hasher.digest()


def digests_match(expected: bytes, actual: bytes) -> bool:
    """Byte-for-byte digest comparison."""
    return hmac.compare_digest(expected, actual)
