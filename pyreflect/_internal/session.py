"""Server-side RPC session: one connection, one thread, one object table."""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable

from ..errors import ProtocolError, describe_exception
from .codec import JSONCodec
from .dispatcher import Dispatcher
from .remote_objects import RemoteObjectTable
from .rpc_messages import RPCResponse, debugprint, request_from_json
from .rpc_transports import LineTransport

logger = logging.getLogger(__name__)

_session_ids = itertools.count(1)


class RPCSession:
    """Strictly sequential read -> dispatch -> write loop over one transport.

    Cancellation is cooperative: :meth:`cancel` sets a flag checked between
    requests, which cannot interrupt a read that is already blocked waiting
    for data. :meth:`close` also closes the transport, and is the reliable way
    to stop a session.
    """

    def __init__(
        self,
        transport: LineTransport,
        dispatcher: Dispatcher,
        codec: JSONCodec,
        on_close: Callable[[RPCSession], None] | None = None,
    ) -> None:
        self.session_id = next(_session_ids)
        self.name = f"pyreflect-session-{self.session_id}"
        self.transport = transport
        self.objects = RemoteObjectTable()
        self._dispatcher = dispatcher
        self._codec = codec
        self._on_close = on_close
        self._cancelled = threading.Event()
        self._finished = threading.Event()
        self._thread: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"<RPCSession {self.name} alive={self.is_alive}>"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, daemon: bool = False) -> None:
        if self._thread is not None:
            raise RuntimeError(f"{self.name} already started")
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=daemon)
        self._thread.start()

    def run_in_current_thread(self) -> None:
        """Serve on the calling thread until the session ends.

        For callers that already own a thread per connection, such as a
        socketserver request handler.
        """
        if self._thread is not None:
            raise RuntimeError(f"{self.name} already started")
        self._thread = threading.current_thread()
        self.run()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self.finished

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def cancel(self) -> None:
        """Ask the loop to stop before its next request.

        This alone does not unblock a pending read; see :meth:`close`.
        """
        self._cancelled.set()

    def close(self, return_immediately: bool = False) -> None:
        """Cancel the session, close its transport and optionally wait for it.

        Args:
            return_immediately: If True, return without waiting for the
                session thread to exit.
        """
        self.cancel()
        self.transport.close()
        if not return_immediately:
            self.join()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the session thread; returns True once it has exited."""
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return self.finished
        thread.join(timeout)
        return not thread.is_alive()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Serve requests until end of stream, close, or a fatal error."""
        logger.debug("%s started", self.name)
        try:
            while not self._cancelled.is_set():
                line = self.transport.read_line()
                if line is None:
                    logger.debug("%s reached end of stream", self.name)
                    break
                if not line.strip():
                    continue

                debugprint("Received request:", line)
                response = self.handle_line(line)
                encoded = self._codec.encode_response(response)
                debugprint("Sending response:", encoded)
                self.transport.write_line(encoded)
        except ProtocolError as exc:
            logger.error("%s: unrecoverable protocol error, closing session: %s", self.name, exc)
        except (OSError, ValueError) as exc:
            if self._cancelled.is_set():
                logger.debug("%s shutting down (%s)", self.name, exc)
            else:
                logger.error("%s transport failed: %s", self.name, exc)
        finally:
            self._finish()

    def handle_line(self, line: str) -> RPCResponse:
        """Decode one request line, dispatch it and return the response.

        Raises:
            ProtocolError: If the line is not a JSON object. Schema violations
                inside a JSON object are answered instead.
        """
        raw = self._codec.loads(line)
        if not isinstance(raw, dict):
            raise ProtocolError(f"Request must be a JSON object, got {type(raw).__name__}")
        try:
            request = request_from_json(raw)
        except ProtocolError as exc:
            logger.warning("%s rejected malformed request: %s", self.name, exc)
            return self._dispatcher.error_response(exc.request_id, describe_exception(exc), "protocol")

        if request["instantiate"]:
            response, instance = self._dispatcher.instantiate_object(request, self.objects)
            if not response["isException"]:
                self.objects.put(request["objectName"], instance)
            return response
        return self._dispatcher.invoke_method(request, self.objects)

    def _finish(self) -> None:
        self.transport.close()
        self.objects.clear()
        self._finished.set()
        logger.debug("%s finished", self.name)
        if self._on_close is not None:
            try:
                self._on_close(self)
            except Exception:
                logger.exception("%s close callback failed", self.name)
