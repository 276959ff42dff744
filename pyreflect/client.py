"""Client stub for pyreflect servers.

Every call sends one request and blocks for exactly one response line. A
client is not reentrant: threads sharing one client must serialize their
calls (``thread_safe`` config) or use a client each.
"""

from __future__ import annotations

import contextlib
import logging
import socket
import threading
from collections.abc import Sequence
from typing import Any, ContextManager

from ._internal.codec import JSONCodec
from ._internal.remote_objects import RemoteObjectHandle
from ._internal.rpc_messages import debugprint, make_request
from ._internal.rpc_transports import LineTransport, SocketLineTransport
from ._internal.type_registry import qualified_name
from .config import DEFAULT_CLIENT_CONFIG, ClientConfig
from .errors import CorrelationError, RemoteError

logger = logging.getLogger(__name__)

_BUILTIN_TYPE_NAMES: dict[type, str] = {
    bool: "bool",
    int: "int",
    float: "float",
    str: "str",
    list: "list",
    tuple: "list",
    dict: "dict",
    type(None): "NoneType",
}


def infer_type_name(arg: Any) -> str:
    """Return the wire type name for *arg* when the caller does not give one."""
    if isinstance(arg, RemoteObjectHandle):
        return arg.arg_type_name
    name = _BUILTIN_TYPE_NAMES.get(type(arg))
    return name if name is not None else qualified_name(type(arg))


class RPCClient:
    """Issues requests with increasing ids and matches each reply to its request."""

    def __init__(self, transport: LineTransport, config: ClientConfig | None = None) -> None:
        self.config: ClientConfig = {**DEFAULT_CLIENT_CONFIG, **(config or {})}  # type: ignore[typeddict-item]
        self._transport = transport
        self._codec = JSONCodec()
        self._next_id = 0
        self._broken = False
        self._lock: ContextManager[Any] = (
            threading.Lock() if self.config["thread_safe"] else contextlib.nullcontext()
        )

    @classmethod
    def connect(
        cls,
        host: str | None = None,
        port: int | None = None,
        timeout: float | None = None,
        config: ClientConfig | None = None,
    ) -> RPCClient:
        """Open a TCP connection to a server and return a client for it.

        Arguments left as None take their values from *config*, then from the
        defaults.
        """
        merged: ClientConfig = {**DEFAULT_CLIENT_CONFIG, **(config or {})}  # type: ignore[typeddict-item]
        if timeout is not None:
            merged["timeout"] = timeout
        address = (host or merged["host"], port if port is not None else merged["port"])
        sock = socket.create_connection(address, timeout=merged["timeout"])
        logger.debug("Connected to %s:%s", *address)
        return cls(SocketLineTransport(sock), merged)

    # ------------------------------------------------------------------
    # Core call path
    # ------------------------------------------------------------------

    @property
    def next_id(self) -> int:
        return self._next_id

    def _prepare_args(
        self, arg_type_names: Sequence[str] | None, args: Sequence[Any] | None
    ) -> tuple[list[str], list[Any]]:
        args = list(args or [])
        if arg_type_names is None:
            type_names = [infer_type_name(arg) for arg in args]
        else:
            type_names = list(arg_type_names)
            if len(type_names) != len(args):
                raise ValueError("argClassNames and args must have same length!")
        values = [arg.object_id if isinstance(arg, RemoteObjectHandle) else arg for arg in args]
        return type_names, [self._codec.to_json(value) for value in values]

    def _read_reply(self) -> str:
        while True:
            line = self._transport.read_line()
            if line is None:
                raise ConnectionError("Connection closed while waiting for a response")
            if line.strip():
                return line

    def _send_request(
        self,
        instantiate: bool,
        class_name: str,
        object_name: str,
        method_name: str,
        arg_type_names: Sequence[str] | None,
        args: Sequence[Any] | None,
        result_type: Any = None,
    ) -> Any:
        type_names, values = self._prepare_args(arg_type_names, args)
        with self._lock:
            if self._broken:
                raise CorrelationError("Client is out of sync with the server; open a new client")

            request = make_request(self._next_id, instantiate, class_name, object_name, method_name, type_names, values)
            self._next_id += 1
            line = self._codec.encode_request(request)
            debugprint("Sending request:", line)
            self._transport.write_line(line)

            reply = self._read_reply()
            debugprint("Received response:", reply)
            response = self._codec.decode_response(reply)

            if response["id"] != request["id"]:
                self._broken = True
                raise CorrelationError(
                    f"Somehow the calls are out of sync! Are you using multithreading? "
                    f"(sent id {request['id']}, received id {response['id']})"
                )

        if response["isException"]:
            raise RemoteError(str(response["value"]), response.get("errorKind"))

        value = response["value"]
        if result_type is not None:
            return self._codec.from_json(value, result_type)
        return value

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def execute_static_method(
        self,
        class_name: str,
        method_name: str,
        arg_type_names: Sequence[str] | None = None,
        args: Sequence[Any] | None = None,
        *,
        result_type: Any = None,
    ) -> Any:
        """Execute a static method.

        Args:
            class_name: Registered name of the class defining the method.
            method_name: Name of the staticmethod or classmethod.
            arg_type_names: Type names of the arguments; prefix with
                ``REMOTE:`` to pass a remote object, whose name then goes in
                *args*. Inferred from *args* when omitted.
            args: The arguments.
            result_type: Type to decode the result into.
        """
        return self._send_request(False, class_name, "", method_name, arg_type_names, args, result_type)

    def execute_method(
        self,
        object_name: str,
        method_name: str,
        arg_type_names: Sequence[str] | None = None,
        args: Sequence[Any] | None = None,
        *,
        result_type: Any = None,
    ) -> Any:
        """Execute a method on a remote object created by :meth:`instantiate_object`."""
        return self._send_request(False, "", object_name, method_name, arg_type_names, args, result_type)

    def execute_method_on_static_object(
        self,
        class_name: str,
        object_name: str,
        method_name: str,
        arg_type_names: Sequence[str] | None = None,
        args: Sequence[Any] | None = None,
        *,
        result_type: Any = None,
    ) -> Any:
        """Execute a method on the class attribute *object_name* of *class_name*."""
        return self._send_request(False, class_name, object_name, method_name, arg_type_names, args, result_type)

    def instantiate_object(
        self,
        class_name: str,
        object_name: str,
        arg_type_names: Sequence[str] | None = None,
        args: Sequence[Any] | None = None,
        *,
        result_type: Any = None,
    ) -> Any:
        """Construct a remote object stored under *object_name*; returns its encoded state."""
        return self._send_request(True, class_name, object_name, "", arg_type_names, args, result_type)

    def instantiate(
        self,
        class_name: str,
        object_name: str,
        arg_type_names: Sequence[str] | None = None,
        args: Sequence[Any] | None = None,
    ) -> RemoteObjectHandle:
        """Like :meth:`instantiate_object`, but return a handle usable as an argument."""
        self.instantiate_object(class_name, object_name, arg_type_names, args)
        return RemoteObjectHandle(object_name, class_name)

    def close(self) -> None:
        """Close the connection. A closed client cannot be used any more."""
        self._transport.close()

    def __enter__(self) -> RPCClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
