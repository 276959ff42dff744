"""Field-level exclusion strategies and the serialization policy.

An :class:`ExclusionPolicy` holds two ordered chains of strategies, one used
while encoding outgoing values and one while decoding incoming values. A field
is skipped when *any* strategy in the applicable chain says so.
"""

from __future__ import annotations

import enum
import inspect
import logging
import threading
import types
import typing
from collections.abc import Iterable, Iterator
from typing import Any

from ..interfaces import ExclusionStrategy
from .rpc_messages import RPCResponse

logger = logging.getLogger(__name__)

NoneType = type(None)

PRIMITIVE_TYPES: frozenset[Any] = frozenset({int, float, bool, str, NoneType})
ARRAY_TYPES: frozenset[Any] = frozenset({list, tuple, set, frozenset, dict})
DEFAULT_WHITELIST: frozenset[Any] = PRIMITIVE_TYPES | {RPCResponse}

_MISSING = object()


class StrategyType(enum.Enum):
    SERIALIZATION = "serialization"
    DESERIALIZATION = "deserialization"
    BOTH = "both"


# ---------------------------------------------------------------------------
# Field model
# ---------------------------------------------------------------------------


class FieldAttributes:
    """Describes one field of an object being encoded or decoded.

    Attributes:
        name: Attribute name.
        declaring_class: Most-derived class whose own annotations declare the
            field, or the owner type for undeclared instance attributes.
        declared_type: The annotation, or the runtime type of the value when
            the field is not annotated.
        owner_type: Runtime type of the object the field belongs to.
    """

    __slots__ = ("name", "declaring_class", "declared_type", "owner_type")

    def __init__(self, name: str, declaring_class: type, declared_type: Any, owner_type: type) -> None:
        self.name = name
        self.declaring_class = declaring_class
        self.declared_type = declared_type
        self.owner_type = owner_type

    def __repr__(self) -> str:
        return (
            f"<FieldAttributes {self.owner_type.__name__}.{self.name}: "
            f"{getattr(self.declared_type, '__name__', self.declared_type)} "
            f"declared on {self.declaring_class.__name__}>"
        )


def own_annotations(cls: type) -> dict[str, Any]:
    """Return the annotations *cls* declares itself, evaluated when possible."""
    try:
        return dict(inspect.get_annotations(cls, eval_str=True))
    except Exception:
        # Unresolvable forward references: fall back to the raw annotations
        return dict(inspect.get_annotations(cls))


def _slot_names(cls: type) -> list[str]:
    slots = cls.__dict__.get("__slots__", ())
    if isinstance(slots, str):
        return [slots]
    return [name for name in slots if isinstance(name, str)]


def _user_mro(cls: type) -> list[type]:
    return [klass for klass in cls.__mro__ if klass is not object]


def declared_field_types(cls: type) -> dict[str, Any]:
    """Public annotated fields of *cls* across its MRO, most-derived annotation winning."""
    fields: dict[str, Any] = {}
    for klass in reversed(_user_mro(cls)):
        for name, annotation in own_annotations(klass).items():
            if not name.startswith("_") and typing.get_origin(annotation) is not typing.ClassVar:
                fields[name] = annotation
    return fields


def declaring_class_of(cls: type, name: str) -> type:
    for klass in _user_mro(cls):
        if name in own_annotations(klass) or name in _slot_names(klass):
            return klass
    return cls


def field_attributes(owner: type, name: str, value: Any = _MISSING) -> FieldAttributes:
    declaring = declaring_class_of(owner, name)
    declared = own_annotations(declaring).get(name, _MISSING)
    if declared is _MISSING:
        declared = type(value) if value is not _MISSING else object
    return FieldAttributes(name, declaring, declared, owner)


def iter_fields(obj: Any) -> Iterator[tuple[FieldAttributes, Any]]:
    """Yield ``(FieldAttributes, value)`` for each public data field of *obj*.

    Annotated fields come first (base classes before subclasses), then any
    remaining instance attributes. Callables and unset fields are skipped.
    """
    owner = type(obj)
    names: list[str] = list(declared_field_types(owner))
    for klass in reversed(_user_mro(owner)):
        names.extend(n for n in _slot_names(klass) if n not in names)
    instance_dict = getattr(obj, "__dict__", None)
    if isinstance(instance_dict, dict):
        names.extend(n for n in instance_dict if n not in names)

    for name in names:
        if name.startswith("_"):
            continue
        value = getattr(obj, name, _MISSING)
        if value is _MISSING or callable(value):
            continue
        yield field_attributes(owner, name, value), value


# ---------------------------------------------------------------------------
# Type helpers
# ---------------------------------------------------------------------------


def unwrap_optional(tp: Any) -> Any:
    """Return ``X`` for ``Optional[X]`` / ``X | None``; anything else unchanged."""
    origin = typing.get_origin(tp)
    if origin is typing.Union or origin is types.UnionType:
        args = [arg for arg in typing.get_args(tp) if arg is not NoneType]
        if len(args) == 1:
            return args[0]
    return tp


def is_array_like(tp: Any) -> bool:
    tp = unwrap_optional(tp)
    origin = typing.get_origin(tp) or tp
    return origin in ARRAY_TYPES


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class SuperclassExclusionStrategy:
    """Skip any field declared on a superclass of the value's runtime type."""

    def should_skip_field(self, field: FieldAttributes) -> bool:
        return any(
            field.name in own_annotations(klass) or field.name in _slot_names(klass)
            for klass in _user_mro(field.owner_type)[1:]
        )

    def should_skip_class(self, cls: type) -> bool:
        return False


class WhitelistExclusionStrategy:
    """Skip fields whose declared type is not whitelisted.

    A field survives when its declared type is in the include set or is
    array-like, when its declaring class is in the include set, or when its
    declared type itself declares a field of a whitelisted type (one level
    deep only).
    """

    def __init__(self, include_set: Iterable[Any]) -> None:
        self.include_set = frozenset(include_set)

    def _is_whitelisted(self, tp: Any) -> bool:
        tp = unwrap_optional(tp)
        return tp in self.include_set or is_array_like(tp)

    def should_skip_field(self, field: FieldAttributes) -> bool:
        declared = unwrap_optional(field.declared_type)
        if self._is_whitelisted(declared):
            return False
        if field.declaring_class in self.include_set:
            return False
        if not isinstance(declared, type):
            return True
        return not any(self._is_whitelisted(tp) for tp in declared_field_types(declared).values())

    def should_skip_class(self, cls: type) -> bool:
        return False


class FieldNameExclusionStrategy:
    """Skip fields by name; used for operator-configured blocklists."""

    def __init__(self, names: Iterable[str]) -> None:
        self.names = frozenset(names)

    def should_skip_field(self, field: FieldAttributes) -> bool:
        return field.name in self.names

    def should_skip_class(self, cls: type) -> bool:
        return False


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class ExclusionPolicy:
    """Two copy-on-write exclusion chains (serialization and deserialization).

    Readers take a snapshot of the current tuple; writers swap in a new tuple
    under a lock. Changes therefore affect only values processed afterwards.
    """

    def __init__(self, whitelist: Iterable[Any] = ()) -> None:
        self._lock = threading.Lock()
        self._whitelist = DEFAULT_WHITELIST | frozenset(whitelist)
        self._serialization: tuple[ExclusionStrategy, ...] = ()
        self._deserialization: tuple[ExclusionStrategy, ...] = ()
        self.reset_strategies()

    @property
    def whitelist(self) -> frozenset[Any]:
        return self._whitelist

    @property
    def serialization_strategies(self) -> tuple[ExclusionStrategy, ...]:
        return self._serialization

    @property
    def deserialization_strategies(self) -> tuple[ExclusionStrategy, ...]:
        return self._deserialization

    def reset_strategies(self) -> None:
        """Replace both chains with the default strategies."""
        with self._lock:
            self._serialization = (
                SuperclassExclusionStrategy(),
                WhitelistExclusionStrategy(self._whitelist),
            )
            self._deserialization = (SuperclassExclusionStrategy(),)

    def clear_strategies(self, strategy_type: StrategyType = StrategyType.BOTH) -> None:
        """Remove every strategy from the selected chain(s), defaults included."""
        with self._lock:
            if strategy_type in (StrategyType.SERIALIZATION, StrategyType.BOTH):
                self._serialization = ()
            if strategy_type in (StrategyType.DESERIALIZATION, StrategyType.BOTH):
                self._deserialization = ()

    def add_strategies(self, strategy_type: StrategyType, *strategies: ExclusionStrategy) -> None:
        """Append *strategies* to the selected chain(s), preserving order."""
        for strategy in strategies:
            if not isinstance(strategy, ExclusionStrategy):
                raise TypeError(f"{strategy!r} does not implement ExclusionStrategy")
        if not strategies:
            return
        with self._lock:
            if strategy_type in (StrategyType.SERIALIZATION, StrategyType.BOTH):
                self._serialization = self._serialization + strategies
            if strategy_type in (StrategyType.DESERIALIZATION, StrategyType.BOTH):
                self._deserialization = self._deserialization + strategies
        logger.debug("Added %d %s exclusion strategies", len(strategies), strategy_type.value)


def should_skip(chain: tuple[ExclusionStrategy, ...], field: FieldAttributes) -> bool:
    """OR across *chain*: True if any strategy skips the field or its declared class."""
    declared = unwrap_optional(field.declared_type)
    for strategy in chain:
        if strategy.should_skip_field(field):
            return True
        if isinstance(declared, type) and strategy.should_skip_class(declared):
            return True
    return False
