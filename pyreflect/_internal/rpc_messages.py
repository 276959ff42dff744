"""
RPC Message Envelopes.

This module contains:
1. Data Structures: RPCRequest / RPCResponse TypedDicts
2. Constructors and schema validation for both envelopes
3. Helpers for the ``REMOTE:`` argument marker
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from typing import Any, Literal, TypedDict

from typing_extensions import NotRequired

from ..errors import ProtocolError

logger = logging.getLogger(__name__)

REMOTE_PREFIX = "REMOTE:"

ErrorKind = Literal["resolution", "target", "protocol"]

# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


class RPCRequest(TypedDict):
    id: int
    instantiate: bool
    className: str
    objectName: str
    methodName: str
    argClassNames: list[str]
    args: list[Any]


class RPCResponse(TypedDict):
    id: int
    isException: bool
    value: Any
    errorKind: NotRequired[ErrorKind]


# ---------------------------------------------------------------------------
# Globals / Debug Logic
# ---------------------------------------------------------------------------

# Verbose per-line message logging (set via PYREFLECT_DEBUG_RPC=1)
debug_all_messages = bool(os.environ.get("PYREFLECT_DEBUG_RPC"))


def debugprint(*args: Any) -> None:
    if debug_all_messages:
        logger.debug(" ".join(str(arg) for arg in args))


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def make_request(
    request_id: int,
    instantiate: bool,
    class_name: str | None,
    object_name: str | None,
    method_name: str | None,
    arg_class_names: Sequence[str] | None = None,
    args: Sequence[Any] | None = None,
) -> RPCRequest:
    """Build a request envelope, normalizing ``None`` to empty values."""
    arg_class_names = list(arg_class_names or [])
    args = list(args or [])
    if len(arg_class_names) != len(args):
        raise ValueError("argClassNames and args must have same length!")
    return RPCRequest(
        id=request_id,
        instantiate=instantiate,
        className=class_name or "",
        objectName=object_name or "",
        methodName=method_name or "",
        argClassNames=arg_class_names,
        args=args,
    )


def make_response(
    request_id: int,
    value: Any,
    is_exception: bool = False,
    error_kind: ErrorKind | None = None,
) -> RPCResponse:
    response = RPCResponse(id=request_id, isException=is_exception, value=value)
    if is_exception and error_kind is not None:
        response["errorKind"] = error_kind
    return response


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_REQUEST_FIELDS: dict[str, tuple[type, Any]] = {
    "id": (int, 0),
    "instantiate": (bool, False),
    "className": (str, ""),
    "objectName": (str, ""),
    "methodName": (str, ""),
    "argClassNames": (list, None),
    "args": (list, None),
}


def _extract_id(raw: dict[str, Any]) -> int:
    value = raw.get("id", 0)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def request_from_json(raw: Any) -> RPCRequest:
    """Validate a decoded JSON value as an :class:`RPCRequest`.

    Missing keys take their default values. Unknown keys are ignored.

    Raises:
        ProtocolError: If *raw* is not an object or violates the schema. The
            error carries the request id when one could be read.
    """
    if not isinstance(raw, dict):
        raise ProtocolError(f"Request must be a JSON object, got {type(raw).__name__}")

    request_id = _extract_id(raw)
    fields: dict[str, Any] = {}
    for key, (expected, default) in _REQUEST_FIELDS.items():
        value = raw.get(key)
        if value is None:
            fields[key] = [] if default is None else default
            continue
        if expected is int and isinstance(value, bool) or not isinstance(value, expected):
            raise ProtocolError(
                f"Field '{key}' must be {expected.__name__}, got {type(value).__name__}",
                request_id,
            )
        fields[key] = value

    if not all(isinstance(name, str) for name in fields["argClassNames"]):
        raise ProtocolError("argClassNames must contain only strings", request_id)
    if len(fields["argClassNames"]) != len(fields["args"]):
        raise ProtocolError("argClassNames and args must have same length", request_id)
    if fields["instantiate"]:
        if fields["methodName"]:
            raise ProtocolError("Instantiation requests cannot name a method", request_id)
        if not fields["className"]:
            raise ProtocolError("Instantiation requests require a className", request_id)

    return RPCRequest(**fields)  # type: ignore[typeddict-item]


def response_from_json(raw: Any) -> RPCResponse:
    """Validate a decoded JSON value as an :class:`RPCResponse`."""
    if not isinstance(raw, dict):
        raise ProtocolError(f"Response must be a JSON object, got {type(raw).__name__}")
    request_id = raw.get("id")
    if not isinstance(request_id, int) or isinstance(request_id, bool):
        raise ProtocolError(f"Response id must be an integer, got {request_id!r}")
    is_exception = raw.get("isException", False)
    if not isinstance(is_exception, bool):
        raise ProtocolError("Response isException must be a boolean", request_id)
    response = make_response(request_id, raw.get("value"), is_exception)
    kind = raw.get("errorKind")
    if is_exception and isinstance(kind, str):
        response["errorKind"] = kind  # type: ignore[typeddict-item]
    return response


# ---------------------------------------------------------------------------
# REMOTE: marker
# ---------------------------------------------------------------------------


def is_remote_type_name(type_name: str) -> bool:
    return type_name.startswith(REMOTE_PREFIX)


def strip_remote_marker(type_name: str) -> str:
    """Return the type name after the ``REMOTE:`` marker, or *type_name* unchanged."""
    if is_remote_type_name(type_name):
        return type_name.split(":", 1)[1]
    return type_name


def remote_type_name(type_name: str) -> str:
    """Mark *type_name* as a remote-object reference."""
    return REMOTE_PREFIX + strip_remote_marker(type_name)
