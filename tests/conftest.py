"""
Shared fixtures for the transfer tests.
"""

import os
import socket

import pytest


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep STREAMDROP_* settings from the outer environment out of tests."""
    for key in list(os.environ):
        if key.startswith('STREAMDROP_'):
            monkeypatch.delenv(key)


@pytest.fixture
def make_file(tmp_path):
    """Write a source file and return its path."""
    src_dir = tmp_path / "src"
    src_dir.mkdir()

    def _make(name: str, data: bytes):
        path = src_dir / name
        path.write_bytes(data)
        return path

    return _make


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
