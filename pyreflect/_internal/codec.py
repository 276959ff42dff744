"""JSON codec for wire messages and RPC values.

Encoding turns arbitrary return values into JSON-compatible structures,
consulting the serialization exclusion chain for every object field.
Decoding turns JSON values back into a requested Python type, consulting the
deserialization chain when populating object fields.
"""

from __future__ import annotations

import base64
import enum
import json
import logging
import math
import typing
from collections.abc import Mapping
from typing import Any

from ..errors import ProtocolError, describe_exception
from .exclusion import (
    ExclusionPolicy,
    declared_field_types,
    field_attributes,
    iter_fields,
    should_skip,
    unwrap_optional,
)
from .rpc_messages import (
    RPCRequest,
    RPCResponse,
    request_from_json,
    response_from_json,
)

logger = logging.getLogger(__name__)

NoneType = type(None)


class JSONCodec:
    """Single-line JSON encode/decode bound to an :class:`ExclusionPolicy`.

    A codec without a policy applies no exclusion strategies (the client side
    uses one of those).
    """

    def __init__(self, policy: ExclusionPolicy | None = None) -> None:
        self.policy = policy

    # -- lines -------------------------------------------------------------

    def dumps(self, value: Any) -> str:
        """Encode *value* as one line of JSON (no embedded newlines)."""
        return json.dumps(self.to_json(value), separators=(",", ":"), allow_nan=False)

    def loads(self, line: str) -> Any:
        try:
            return json.loads(line)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Malformed JSON message: {e}") from e

    def encode_request(self, request: RPCRequest) -> str:
        return self.dumps(request)

    def decode_request(self, line: str) -> RPCRequest:
        return request_from_json(self.loads(line))

    def encode_response(self, response: RPCResponse) -> str:
        return self.dumps(response)

    def decode_response(self, line: str) -> RPCResponse:
        return response_from_json(self.loads(line))

    # -- encoding ----------------------------------------------------------

    def to_json(self, value: Any) -> Any:
        """Convert *value* into plain JSON data, applying the serialization chain.

        Raises:
            TypeError: For values that have no JSON representation.
            ValueError: For circular references.
        """
        chain = self.policy.serialization_strategies if self.policy else ()
        return self._to_json(value, chain, set())

    def _to_json(self, obj: Any, chain: tuple[Any, ...], active: set[int]) -> Any:
        if isinstance(obj, float) and not math.isfinite(obj):
            raise ValueError(f"Out of range float values are not JSON compliant: {obj}")
        if obj is None or isinstance(obj, (bool, int, float, str)):
            return obj

        # Enums before the generic object path (Enums have __dict__)
        if isinstance(obj, enum.Enum):
            return obj.name

        if isinstance(obj, (bytes, bytearray)):
            return base64.b64encode(bytes(obj)).decode("ascii")

        if isinstance(obj, BaseException):
            return describe_exception(obj)

        if isinstance(obj, type) or callable(obj):
            raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

        identity = id(obj)
        if identity in active:
            raise ValueError(f"Circular reference detected while encoding {type(obj).__name__}")
        active.add(identity)
        try:
            if isinstance(obj, Mapping):
                encoded: dict[str, Any] = {}
                for key, item in obj.items():
                    if not isinstance(key, (str, int, float, bool)):
                        raise TypeError(f"Dict keys must be primitives, got {type(key).__name__}")
                    encoded[key if isinstance(key, str) else json.dumps(key)] = self._to_json(item, chain, active)
                return encoded

            if isinstance(obj, (list, tuple, set, frozenset)):
                return [self._to_json(item, chain, active) for item in obj]

            fields = list(iter_fields(obj))
            if not fields and not hasattr(obj, "__dict__") and not hasattr(type(obj), "__slots__"):
                raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

            encoded = {}
            for attributes, item in fields:
                if should_skip(chain, attributes):
                    continue
                encoded[attributes.name] = self._to_json(item, chain, active)
            return encoded
        finally:
            active.discard(identity)

    # -- decoding ----------------------------------------------------------

    def from_json(self, value: Any, tp: Any) -> Any:
        """Decode a JSON value into an instance of *tp*.

        Raises:
            TypeError: If *value* cannot represent *tp*.
        """
        chain = self.policy.deserialization_strategies if self.policy else ()
        return self._from_json(value, tp, chain)

    def _from_json(self, value: Any, tp: Any, chain: tuple[Any, ...]) -> Any:
        if tp is Any or tp is object:
            return value

        origin = typing.get_origin(tp)
        if unwrap_optional(tp) is not tp:
            return None if value is None else self._from_json(value, unwrap_optional(tp), chain)

        if tp is NoneType:
            if value is not None:
                raise TypeError(f"Expected null, got {type(value).__name__}")
            return None

        if tp is bool:
            if not isinstance(value, bool):
                raise TypeError(f"Expected boolean, got {type(value).__name__}")
            return value

        if tp is int:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"Expected integer, got {type(value).__name__}")
            if isinstance(value, float) and not value.is_integer():
                raise TypeError(f"Expected integer, got non-integral number {value}")
            return int(value)

        if tp is float:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"Expected number, got {type(value).__name__}")
            return float(value)

        if tp is str:
            if not isinstance(value, str):
                raise TypeError(f"Expected string, got {type(value).__name__}")
            return value

        container = origin or tp
        if container in (list, tuple, set, frozenset):
            if not isinstance(value, list):
                raise TypeError(f"Expected array, got {type(value).__name__}")
            args = typing.get_args(tp)
            if container is tuple and args and args[-1] is not Ellipsis:
                if len(args) != len(value):
                    raise TypeError(f"Expected array of length {len(args)}, got {len(value)}")
                return tuple(self._from_json(item, arg, chain) for item, arg in zip(value, args))
            item_type = args[0] if args else object
            return container(self._from_json(item, item_type, chain) for item in value)

        if container is dict:
            if not isinstance(value, dict):
                raise TypeError(f"Expected object, got {type(value).__name__}")
            args = typing.get_args(tp)
            item_type = args[1] if len(args) == 2 else object
            return {key: self._from_json(item, item_type, chain) for key, item in value.items()}

        if isinstance(tp, type) and issubclass(tp, enum.Enum):
            if isinstance(value, str) and value in tp.__members__:
                return tp[value]
            try:
                return tp(value)
            except ValueError as e:
                raise TypeError(f"{value!r} is not a member of {tp.__name__}") from e

        if isinstance(tp, type):
            return self._object_from_json(value, tp, chain)

        raise TypeError(f"Cannot decode into {tp!r}")

    def _object_from_json(self, value: Any, cls: type, chain: tuple[Any, ...]) -> Any:
        if not isinstance(value, dict):
            raise TypeError(f"Expected object for {cls.__name__}, got {type(value).__name__}")

        # Allocate without running __init__, then populate the fields
        obj = cls.__new__(cls)
        declared = declared_field_types(cls)
        for name, item in value.items():
            if not isinstance(name, str) or name.startswith("_"):
                continue
            if declared and name not in declared:
                logger.debug("Ignoring undeclared field %s for %s", name, cls.__name__)
                continue
            attributes = field_attributes(cls, name, item)
            if should_skip(chain, attributes):
                continue
            setattr(obj, name, self._from_json(item, declared.get(name, object), chain))
        return obj
