"""
pyreflect - Schema-less RPC over line-delimited JSON, driven by reflection.

A client names a class, an object, a method and the argument types; the
server resolves them by introspection against an explicit registry of exposed
types and runs the call. Objects created remotely live in the caller's
session and can be passed back as arguments by name.

Key Features:
    - One thread and one remote object table per connection
    - Exact signature matching on argument type names
    - Pluggable exclusion strategies for serialized fields
    - Request/response correlation on the client

Basic Usage:
    >>> import pyreflect
    >>> server = pyreflect.RPCServer({"port": 0})
    >>> server.expose(Counter, "Counter")
    >>> listener = pyreflect.serve_tcp(server)
    >>> client = pyreflect.RPCClient.connect(*listener.address)
    >>> client.instantiate_object("Counter", "c1", ["int"], [5])
    >>> client.execute_method("c1", "increment")
    6
"""

from ._internal.exclusion import (
    ExclusionPolicy,
    FieldAttributes,
    FieldNameExclusionStrategy,
    StrategyType,
    SuperclassExclusionStrategy,
    WhitelistExclusionStrategy,
)
from ._internal.remote_objects import RemoteObjectHandle
from ._internal.rpc_transports import LineTransport, SocketLineTransport, StreamLineTransport
from ._internal.session import RPCSession
from ._internal.type_registry import TypeRegistry
from .client import RPCClient
from .config import ClientConfig, ServerConfig, load_server_config
from .errors import (
    CorrelationError,
    ProtocolError,
    PyReflectError,
    RemoteError,
    ResolutionError,
    TargetError,
)
from .interfaces import ExclusionStrategy, TypeRegistryProtocol
from .server import RPCServer
from .tcp import TCPListener, serve_tcp

__version__ = "0.0.1"

__all__ = [
    "RPCServer",
    "RPCSession",
    "RPCClient",
    "RemoteObjectHandle",
    "TypeRegistry",
    "ServerConfig",
    "ClientConfig",
    "load_server_config",
    "ExclusionStrategy",
    "TypeRegistryProtocol",
    "ExclusionPolicy",
    "FieldAttributes",
    "StrategyType",
    "SuperclassExclusionStrategy",
    "WhitelistExclusionStrategy",
    "FieldNameExclusionStrategy",
    "LineTransport",
    "StreamLineTransport",
    "SocketLineTransport",
    "TCPListener",
    "serve_tcp",
    "PyReflectError",
    "ProtocolError",
    "CorrelationError",
    "ResolutionError",
    "TargetError",
    "RemoteError",
]
