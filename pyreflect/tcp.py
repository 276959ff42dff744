"""TCP listener that starts one RPC session per accepted connection."""

from __future__ import annotations

import logging
import socketserver
import threading
from typing import TYPE_CHECKING, Any

from ._internal.rpc_transports import SocketLineTransport

if TYPE_CHECKING:
    from ._internal.session import RPCSession
    from .server import RPCServer

logger = logging.getLogger(__name__)


class ThreadingTCPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    # connection threads must not keep the interpreter alive
    daemon_threads = True
    allow_reuse_address = True


class SessionRequestHandler(socketserver.BaseRequestHandler):
    """Serves one accepted socket as a session on the handler thread.

    socketserver already gives each connection its own thread, so the session
    loop runs there instead of on a second thread.
    """

    server: _ListenerTCPServer

    def handle(self) -> None:
        listener = self.server.listener
        transport = SocketLineTransport(self.request)
        logger.info("Accepted connection from %s", transport.peer)
        listener._track(transport)
        try:
            session = listener.rpc_server.create_session(transport, start=False)
            listener._track(transport, session)
            session.run_in_current_thread()
        finally:
            listener._untrack(transport)
        logger.info("Connection from %s closed", transport.peer)


class _ListenerTCPServer(ThreadingTCPServer):
    listener: TCPListener


class TCPListener:
    """Accepts TCP connections for an :class:`~pyreflect.server.RPCServer`.

    Like a thread: call :meth:`serve_forever` to serve on the calling thread,
    or :meth:`start` to serve on a background thread.
    """

    def __init__(self, rpc_server: RPCServer, host: str = "127.0.0.1", port: int = 4444) -> None:
        self.rpc_server = rpc_server
        self._tcp_server = _ListenerTCPServer((host, port), SessionRequestHandler)
        self._tcp_server.listener = self
        self._connections: dict[SocketLineTransport, RPCSession | None] = {}
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._serving = False

    @property
    def address(self) -> tuple[str, int]:
        """The ``(host, port)`` actually bound; useful after binding port 0."""
        host, port = self._tcp_server.server_address[:2]
        return str(host), int(port)

    @property
    def is_serving(self) -> bool:
        return self._serving

    def _track(self, transport: SocketLineTransport, session: RPCSession | None = None) -> None:
        with self._lock:
            self._connections[transport] = session

    def _untrack(self, transport: SocketLineTransport) -> None:
        with self._lock:
            self._connections.pop(transport, None)

    def serve_forever(self, poll_interval: float = 0.5) -> None:
        host, port = self.address
        logger.info("Serving RPC on %s:%s", host, port)
        self._serving = True
        try:
            self._tcp_server.serve_forever(poll_interval)
        finally:
            self._serving = False
            logger.info("Stopped serving on %s:%s", host, port)

    def start(self) -> TCPListener:
        """Serve on a daemon thread and return self."""
        if self._thread is not None:
            raise RuntimeError("Listener already started")
        self._thread = threading.Thread(target=self.serve_forever, name="pyreflect-listener", daemon=True)
        self._thread.start()
        return self

    def close(self, return_immediately: bool = False) -> None:
        """Stop accepting connections and close the sessions this listener started."""
        if self._thread is not None:
            self._tcp_server.shutdown()
            self._thread.join()
            self._thread = None
        self._tcp_server.server_close()

        with self._lock:
            connections = list(self._connections.items())
        # Closing the transport ends its session, even one not yet started
        for transport, _ in connections:
            transport.close()
        if not return_immediately:
            for _, session in connections:
                if session is not None:
                    session.join()

    def __enter__(self) -> TCPListener:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def serve_tcp(rpc_server: RPCServer, host: str | None = None, port: int | None = None) -> TCPListener:
    """Bind a listener for *rpc_server* and start serving it in the background.

    Host and port default to the server's configuration.
    """
    listener = TCPListener(
        rpc_server,
        host if host is not None else rpc_server.config["host"],
        port if port is not None else rpc_server.config["port"],
    )
    return listener.start()
