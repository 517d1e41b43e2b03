"""
Tests for the send/receive session state machines.
"""

import asyncio
import hashlib
import os

import pytest

from streamdrop.transfer.errors import (
    IntegrityMismatch, LocalIOError, PeerConnectionError, ProtocolError,
    ShortTransferError, TransferError,
)
from streamdrop.transfer.protocol import HeaderCodec, encode_size
from streamdrop.transfer.session import (
    ReceiveSession, SendSession, SessionState, TransferOutcome,
)
from tests.helpers import FakeWriter, receive_from_bytes, wire_rest


def sha(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


class TestReceiveSession:
    """Receiver path"""

    def test_complete(self, tmp_path):
        payload = b"hello world" * 1000
        session, result = asyncio.run(
            receive_from_bytes(tmp_path, b"greeting.txt", wire_rest(payload))
        )

        assert result.ok
        assert session.state == SessionState.COMPLETED
        assert result.file_name == "greeting.txt"
        assert result.direction == "receive"
        assert result.bytes_transferred == len(payload)
        assert result.outcome.integrity_verified
        assert result.outcome.digest == sha(payload)
        assert result.outcome.destination_path == tmp_path / "greeting.txt"
        assert result.warning is None
        assert (tmp_path / "greeting.txt").read_bytes() == payload

    def test_zero_length(self, tmp_path):
        """Header with size 0, then the trailer straight away"""
        _, result = asyncio.run(
            receive_from_bytes(tmp_path, b"empty.dat", wire_rest(b""))
        )
        assert result.ok
        assert result.outcome.integrity_verified
        assert result.bytes_transferred == 0
        assert (tmp_path / "empty.dat").read_bytes() == b""

    def test_small_chunks(self, tmp_path):
        payload = bytes(range(256)) * 40
        _, result = asyncio.run(
            receive_from_bytes(tmp_path, b"c.bin", wire_rest(payload), chunk_size=100)
        )
        assert result.ok
        assert (tmp_path / "c.bin").read_bytes() == payload

    def test_truncates_existing_file(self, tmp_path):
        (tmp_path / "old.txt").write_bytes(b"x" * 5000)
        _, result = asyncio.run(
            receive_from_bytes(tmp_path, b"old.txt", wire_rest(b"new"))
        )
        assert result.ok
        assert (tmp_path / "old.txt").read_bytes() == b"new"

    def test_short_transfer(self, tmp_path):
        """Peer closes after M < size bytes: failed, M reported, partial file kept"""
        rest = encode_size(10) + b"abcd"
        session, result = asyncio.run(receive_from_bytes(tmp_path, b"part.bin", rest))

        assert not result.ok
        assert session.state == SessionState.FAILED
        assert isinstance(result.error, ShortTransferError)
        assert result.error.kind == "short-transfer"
        assert result.error.expected == 10
        assert result.bytes_transferred == 4
        assert result.outcome is None
        assert (tmp_path / "part.bin").read_bytes() == b"abcd"

    def test_corrupted_payload_is_kept(self, tmp_path):
        """Digest mismatch completes with integrity_verified=False"""
        original = b"important data"
        corrupted = bytearray(original)
        corrupted[3] ^= 0xFF
        rest = wire_rest(bytes(corrupted), trailer=sha(original))

        session, result = asyncio.run(receive_from_bytes(tmp_path, b"data.bin", rest))

        assert result.ok
        assert session.state == SessionState.COMPLETED
        assert result.outcome.integrity_verified is False
        assert isinstance(result.warning, IntegrityMismatch)
        assert result.warning.expected == sha(original)
        assert result.warning.actual == sha(bytes(corrupted))
        assert (tmp_path / "data.bin").read_bytes() == bytes(corrupted)

    def test_missing_trailer(self, tmp_path):
        rest = encode_size(3) + b"abc" + b"\x00" * 10
        _, result = asyncio.run(receive_from_bytes(tmp_path, b"t.bin", rest))
        assert not result.ok
        assert isinstance(result.error, ProtocolError)
        assert not isinstance(result.error, ShortTransferError)
        assert result.bytes_transferred == 3

    def test_extra_bytes_after_trailer_ignored(self, tmp_path):
        payload = b"payload"
        _, result = asyncio.run(
            receive_from_bytes(tmp_path, b"p.bin", wire_rest(payload) + b"garbage")
        )
        assert result.ok
        assert (tmp_path / "p.bin").read_bytes() == payload

    def test_rejects_path_components(self, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        _, result = asyncio.run(
            receive_from_bytes(out, b"../escape.txt", wire_rest(b"x"))
        )
        assert not result.ok
        assert result.error.kind == "protocol"
        assert not (tmp_path / "escape.txt").exists()

    def test_rejects_embedded_nul(self, tmp_path):
        _, result = asyncio.run(
            receive_from_bytes(tmp_path, b"a\x00b", wire_rest(b"xyz"))
        )
        assert not result.ok
        assert result.state == SessionState.FAILED
        assert isinstance(result.error, ProtocolError)
        assert "NUL" in str(result.error)
        assert list(tmp_path.iterdir()) == []

    def test_destination_for_rejects_nul(self, tmp_path):
        session = ReceiveSession(None, output_dir=tmp_path)
        with pytest.raises(ProtocolError):
            session.destination_for("a\x00b")

    def test_unwritable_destination(self, tmp_path):
        missing = tmp_path / "does" / "not" / "exist"
        _, result = asyncio.run(
            receive_from_bytes(missing, b"a.txt", wire_rest(b"x"))
        )
        assert not result.ok
        assert isinstance(result.error, LocalIOError)
        assert result.error.kind == "io"

    def test_no_output_dir_uses_bare_name(self):
        session = ReceiveSession(None, output_dir=None)
        assert str(session.destination_for("f.txt")) == "f.txt"

    def test_progress_phases(self, tmp_path):
        seen = []

        def on_progress(p):
            seen.append((p.phase, p.bytes_transferred, p.total_bytes, p.file_name))

        payload = b"z" * 250
        _, result = asyncio.run(
            receive_from_bytes(tmp_path, b"prog.bin", wire_rest(payload),
                               chunk_size=100, progress_callback=on_progress)
        )
        assert result.ok

        phases = [s[0] for s in seen]
        assert phases[0] == SessionState.HEADER_EXCHANGED
        assert phases[-1] == SessionState.COMPLETED
        assert SessionState.INTEGRITY_CHECKED in phases
        streaming = [s[1] for s in seen if s[0] == SessionState.STREAMING]
        assert streaming[-3:] == [100, 200, 250]
        assert all(s[2] == 250 and s[3] == "prog.bin" for s in seen)


class TestSendSession:
    """Sender path"""

    def test_wire_bytes(self, make_file):
        payload = b"0123456789" * 500
        path = make_file("numbers.txt", payload)
        writer = FakeWriter()
        session = SendSession(path, None, writer, codec=HeaderCodec(header_gap=0))

        result = asyncio.run(session.run())

        assert result.ok
        assert session.state == SessionState.COMPLETED
        assert result.peer == "10.0.0.2:9000"
        assert result.source_path == path
        assert writer.data == b"numbers.txt" + encode_size(len(payload)) + payload + sha(payload)
        assert writer.writes[0] == b"numbers.txt"
        assert result.outcome.digest == sha(payload)
        assert result.outcome.bytes_transferred == len(payload)

    def test_zero_length(self, make_file):
        path = make_file("empty", b"")
        writer = FakeWriter()
        result = asyncio.run(
            SendSession(path, None, writer, codec=HeaderCodec(header_gap=0)).run()
        )
        assert result.ok
        assert writer.data == b"empty" + encode_size(0) + sha(b"")

    def test_sends_base_name_only(self, make_file):
        path = make_file("deep.bin", b"abc")
        writer = FakeWriter()
        asyncio.run(SendSession(path, None, writer, codec=HeaderCodec(header_gap=0)).run())
        assert writer.writes[0] == b"deep.bin"

    def test_missing_file(self, tmp_path):
        writer = FakeWriter()
        result = asyncio.run(
            SendSession(tmp_path / "nope.bin", None, writer, peer="h:1").run()
        )
        assert not result.ok
        assert isinstance(result.error, LocalIOError)
        assert result.file_name == "nope.bin"
        assert result.state == SessionState.FAILED
        assert writer.writes == []

    def test_undecodable_name(self, tmp_path):
        path = tmp_path / os.fsdecode(b"bad\xff.bin")
        path.write_bytes(b"abc")
        writer = FakeWriter()
        result = asyncio.run(
            SendSession(path, None, writer, codec=HeaderCodec(header_gap=0)).run()
        )
        assert not result.ok
        assert result.state == SessionState.FAILED
        assert result.error.kind == "protocol"
        assert writer.writes == []

    def test_unexpected_error_becomes_result(self, make_file):
        class BrokenCodec(HeaderCodec):
            async def write_header(self, writer, header):
                raise RuntimeError("codec blew up")

        path = make_file("a.bin", b"abc")
        result = asyncio.run(
            SendSession(path, None, FakeWriter(), codec=BrokenCodec()).run()
        )
        assert result.state == SessionState.FAILED
        assert type(result.error) is TransferError
        assert result.error.kind == "transfer"
        assert "codec blew up" in str(result.error)

    def test_connection_reset(self, make_file):
        path = make_file("big.bin", b"x" * 1000)
        writer = FakeWriter(fail_after=3)
        result = asyncio.run(
            SendSession(path, None, writer, chunk_size=100,
                        codec=HeaderCodec(header_gap=0)).run()
        )
        assert not result.ok
        assert isinstance(result.error, PeerConnectionError)
        assert result.error.kind == "connection"
        # name, size, then one payload chunk before the reset on the next drain
        assert result.bytes_transferred == 100


def test_outcome_throughput():
    outcome = TransferOutcome(bytes_transferred=2 * 1024 * 1024, elapsed=2.0,
                              integrity_verified=True)
    assert outcome.average_throughput == 1024 * 1024
    assert outcome.megabytes_per_second == 1.0
    assert TransferOutcome(10, 0.0, True).average_throughput == 0.0
