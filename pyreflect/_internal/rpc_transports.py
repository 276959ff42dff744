"""
RPC Transport Layer.

This module contains:
- LineTransport Protocol
- StreamLineTransport
- SocketLineTransport

All transports frame messages as UTF-8 text, one message per
newline-terminated line.
"""

from __future__ import annotations

import contextlib
import logging
import socket
import threading
from typing import (
    BinaryIO,
    Protocol,
    runtime_checkable,
)

from typing_extensions import override

logger = logging.getLogger(__name__)


@runtime_checkable
class LineTransport(Protocol):
    """Protocol for line-framed duplex transports.

    Implementations must provide thread-safe read/write operations and a
    close() that can be called from another thread.
    """

    def read_line(self) -> str | None:
        """Return the next line without its terminator, or None at end of stream."""
        ...

    def write_line(self, line: str) -> None:
        """Write *line* followed by a newline and flush."""
        ...

    def close(self) -> None:
        """Close the transport. Further read/write calls may fail."""
        ...


class StreamLineTransport:
    """Transport over a pair of binary file objects (pipes, files, socket files).

    Closing a plain stream does not reliably unblock a thread already blocked
    in read_line(); use a transport that can interrupt its source
    (SocketLineTransport) when sessions must be stopped on demand.
    """

    def __init__(self, reader: BinaryIO, writer: BinaryIO, encoding: str = "utf-8") -> None:
        self._reader = reader
        self._writer = writer
        self._encoding = encoding
        self._lock = threading.Lock()
        self._recv_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def read_line(self) -> str | None:
        with self._recv_lock:
            try:
                raw = self._reader.readline()
            except (OSError, ValueError) as exc:
                if self._closed:
                    logger.debug("Read interrupted by close: %s", exc)
                    return None
                raise
        if not raw:
            return None
        return raw.decode(self._encoding).rstrip("\r\n")

    def write_line(self, line: str) -> None:
        if "\n" in line:
            raise ValueError("Line-framed messages cannot contain raw newlines")
        data = (line + "\n").encode(self._encoding)
        with self._lock:
            self._writer.write(data)
            self._writer.flush()

    def close(self) -> None:
        self._closed = True
        with contextlib.suppress(Exception):
            self._writer.close()
        with contextlib.suppress(Exception):
            self._reader.close()


class SocketLineTransport(StreamLineTransport):
    """Transport over a connected stream socket.

    close() shuts the socket down before closing it, which forces a read
    blocked in another thread to return end-of-stream.
    """

    def __init__(self, sock: socket.socket, encoding: str = "utf-8") -> None:
        self._sock = sock
        super().__init__(sock.makefile("rb"), sock.makefile("wb"), encoding)

    @property
    def peer(self) -> str:
        try:
            return str(self._sock.getpeername())
        except OSError:
            return "<disconnected>"

    @override
    def close(self) -> None:
        self._closed = True
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        super().close()
        with contextlib.suppress(Exception):
            self._sock.close()
