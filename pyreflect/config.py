from __future__ import annotations

import importlib
import logging
import os
from typing import Any, TypedDict

import yaml

logger = logging.getLogger(__name__)


class ServerConfig(TypedDict, total=False):
    """Configuration for an :class:`~pyreflect.server.RPCServer`."""

    host: str
    """Interface the TCP listener binds to."""

    port: int
    """TCP port (``0`` picks a free port)."""

    exposed_types: list[str]
    """``"module.ClassName"`` references registered in the server's type registry at startup."""

    daemon_sessions: bool
    """Whether session threads are daemon threads."""

    include_error_kind: bool
    """If True, exception responses carry an ``errorKind`` field."""

    whitelist_types: list[str]
    """Extra ``"module.ClassName"`` references added to the serialization whitelist."""

    log_level: str
    """Logging level name used by the command line entry point."""


class ClientConfig(TypedDict, total=False):
    """Configuration for an :class:`~pyreflect.client.RPCClient`."""

    host: str
    port: int

    timeout: float | None
    """Socket timeout in seconds for connect and each reply; None blocks forever."""

    thread_safe: bool
    """If True, calls are serialized with a lock so threads may share one client."""


DEFAULT_SERVER_CONFIG: ServerConfig = {
    "host": "127.0.0.1",
    "port": 4444,
    "exposed_types": [],
    "daemon_sessions": False,
    "include_error_kind": True,
    "whitelist_types": [],
    "log_level": "INFO",
}

DEFAULT_CLIENT_CONFIG: ClientConfig = {
    "host": "127.0.0.1",
    "port": 4444,
    "timeout": None,
    "thread_safe": False,
}

_SERVER_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "host": (str,),
    "port": (int,),
    "exposed_types": (list,),
    "daemon_sessions": (bool,),
    "include_error_kind": (bool,),
    "whitelist_types": (list,),
    "log_level": (str,),
}


def validate_server_config(config: dict[str, Any]) -> ServerConfig:
    """Merge *config* over the defaults and validate it.

    Raises:
        ValueError: On unknown keys, wrong value types or an invalid port.
    """
    unknown = set(config) - set(_SERVER_FIELD_TYPES)
    if unknown:
        raise ValueError(f"Unknown server config keys: {', '.join(sorted(unknown))}")

    merged: dict[str, Any] = {**DEFAULT_SERVER_CONFIG, **config}
    for key, expected in _SERVER_FIELD_TYPES.items():
        value = merged[key]
        if isinstance(value, bool) and bool not in expected or not isinstance(value, expected):
            raise ValueError(f"Config key '{key}' must be {expected[0].__name__}, got {type(value).__name__}")

    for key in ("exposed_types", "whitelist_types"):
        merged[key] = list(merged[key])
        if not all(isinstance(item, str) and "." in item for item in merged[key]):
            raise ValueError(f"Config key '{key}' must list 'module.ClassName' references")
    if not 0 <= merged["port"] <= 65535:
        raise ValueError(f"Port out of range: {merged['port']}")
    return ServerConfig(**merged)  # type: ignore[typeddict-item]


def load_server_config(path: str | os.PathLike[str]) -> ServerConfig:
    """Read a YAML server configuration file.

    An empty file yields the defaults.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Server config {path} must be a mapping, got {type(data).__name__}")
    logger.debug("Loaded server config from %s", path)
    return validate_server_config(data)


def resolve_type_reference(reference: str) -> type:
    """Import and return the class named by ``"module.ClassName"``.

    Nested classes are addressed as ``"module.Outer.Inner"``; the longest
    importable module prefix wins.
    """
    parts = reference.split(".")
    for split in range(len(parts) - 1, 0, -1):
        module_name = ".".join(parts[:split])
        try:
            module = importlib.import_module(module_name)
        except ImportError:
            continue
        obj: Any = module
        try:
            for attr in parts[split:]:
                obj = getattr(obj, attr)
        except AttributeError:
            break
        if isinstance(obj, type):
            return obj
        raise ValueError(f"{reference} is not a class")
    raise ValueError(f"Cannot resolve type reference '{reference}'")
