"""Pytest configuration and fixtures."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock


class FakeSocket:
    """Connected socket stand-in: replays scripted proxy bytes, records writes."""

    def __init__(self, incoming: bytes = b"", chunk: int | None = None):
        self.incoming = bytearray(incoming)
        self.chunk = chunk
        self.sent: list[bytes] = []
        self.timeout = None
        self.closed = False

    def sendall(self, data):
        self.sent.append(bytes(data))

    def recv(self, n):
        if self.chunk is not None:
            n = min(n, self.chunk)
        data = bytes(self.incoming[:n])
        del self.incoming[:n]
        return data

    def settimeout(self, timeout):
        self.timeout = timeout

    def gettimeout(self):
        return self.timeout

    def close(self):
        self.closed = True


@pytest.fixture
def fake_socket():
    """Factory for FakeSocket instances."""
    return FakeSocket


@pytest.fixture
def stream_pair():
    """Create a (reader, writer) pair; the reader is fed with proxy bytes."""

    def make(incoming: bytes = b"", eof: bool = True):
        reader = asyncio.StreamReader()
        reader.feed_data(incoming)
        if eof:
            reader.feed_eof()
        writer = MagicMock()
        writer.drain = AsyncMock()
        writer.wait_closed = AsyncMock()
        return reader, writer

    return make


@pytest.fixture
def mock_socket(mocker):
    """Create a mock socket."""
    return mocker.MagicMock()
