"""In-memory transports and connection helpers for tests."""

from __future__ import annotations

import queue
import socket
import threading

from pyreflect import RPCClient, RPCServer, RPCSession, SocketLineTransport

# Seconds a test client waits for any single reply
CLIENT_TIMEOUT = 10.0


class ScriptedTransport:
    """LineTransport that replays canned reply lines and records what was written.

    read_line() blocks until a line is queued or the transport is closed.
    ``reading`` is set each time read_line() is entered.
    """

    def __init__(self, replies: list[str] | None = None) -> None:
        self.written: list[str] = []
        self.closed = False
        self.reading = threading.Event()
        self._replies: queue.Queue[str | None] = queue.Queue()
        for reply in replies or []:
            self._replies.put(reply)

    def feed(self, line: str) -> None:
        self._replies.put(line)

    def end_stream(self) -> None:
        """Queue end of stream after the lines fed so far."""
        self._replies.put(None)

    def read_line(self) -> str | None:
        self.reading.set()
        if self.closed:
            return None
        return self._replies.get()

    def write_line(self, line: str) -> None:
        if self.closed:
            raise OSError("transport closed")
        self.written.append(line)

    def close(self) -> None:
        self.closed = True
        self._replies.put(None)


def connect_pair(server: RPCServer) -> tuple[RPCClient, RPCSession]:
    """Start a session over a socketpair and return a client connected to it."""
    server_sock, client_sock = socket.socketpair()
    client_sock.settimeout(CLIENT_TIMEOUT)
    session = server.create_session(SocketLineTransport(server_sock), daemon=True)
    client = RPCClient(SocketLineTransport(client_sock))
    return client, session


def raw_pair(server: RPCServer) -> tuple[SocketLineTransport, RPCSession]:
    """Like connect_pair, but return the bare client-side transport."""
    server_sock, client_sock = socket.socketpair()
    client_sock.settimeout(CLIENT_TIMEOUT)
    session = server.create_session(SocketLineTransport(server_sock), daemon=True)
    return SocketLineTransport(client_sock), session
