"""Allow-list of types reachable by name over RPC."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import ResolutionError

logger = logging.getLogger(__name__)

NoneType = type(None)

# Wrapper / primitive type names (lower-cased, namespace stripped) and the
# Python type each one maps to before member lookup.
WRAPPER_ALIASES: dict[str, Any] = {
    "int": int,
    "integer": int,
    "long": int,
    "short": int,
    "byte": int,
    "float": float,
    "double": float,
    "bool": bool,
    "boolean": bool,
    "str": str,
    "string": str,
    "char": str,
    "character": str,
    "list": list,
    "tuple": tuple,
    "dict": dict,
    "object": object,
    "any": object,
    "none": NoneType,
    "nonetype": NoneType,
}

_NAMESPACE_PREFIXES = ("builtins.",)


def qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def primitive_for(type_name: str) -> Any | None:
    """Return the primitive type a wrapper/builtin *type_name* maps to, if any."""
    key = type_name
    for prefix in _NAMESPACE_PREFIXES:
        if key.startswith(prefix):
            key = key[len(prefix):]
            break
    return WRAPPER_ALIASES.get(key.lower())


class TypeRegistry:
    """Explicit registry of classes that requests may name.

    Populated at startup, by code or from the ``exposed_types`` config list.
    Each server owns its own registry; there is no process-wide instance.
    Wrapper and builtin type names always resolve, to their primitive type.
    """

    def __init__(self) -> None:
        self._types: dict[str, type] = {}
        self._signatures: dict[tuple[type, str], tuple[Any, ...]] = {}

    def register(
        self,
        cls: type,
        name: str | None = None,
        *,
        aliases: tuple[str, ...] = (),
        signatures: dict[str, tuple[Any, ...]] | None = None,
    ) -> None:
        """Register *cls* under its qualified name, *name* and *aliases*.

        Args:
            cls: The class to expose.
            name: Optional short name clients may use instead of the
                ``module.QualName`` form.
            aliases: Further names for the class.
            signatures: Explicit parameter types for members (``"__init__"``
                for the constructor) whose annotations are missing or should
                be overridden.
        """
        if not isinstance(cls, type):
            raise TypeError(f"Only classes can be registered, got {cls!r}")

        names = [qualified_name(cls)]
        if name:
            names.append(name)
        names.extend(aliases)
        for type_name in names:
            existing = self._types.get(type_name)
            if existing is not None and existing is not cls:
                logger.debug("Overwriting registration of %s (%s -> %s)", type_name, existing, cls)
            self._types[type_name] = cls

        for member, param_types in (signatures or {}).items():
            self._signatures[(cls, member)] = tuple(param_types)
        logger.debug("Registered type %s as %s", cls.__qualname__, ", ".join(names))

    def resolve(self, type_name: str) -> Any:
        """Return the type registered (or aliased) under *type_name*.

        Raises:
            ResolutionError: If the name is neither registered nor a builtin alias.
        """
        cls = self._types.get(type_name)
        if cls is not None:
            return cls
        primitive = primitive_for(type_name)
        if primitive is not None:
            return primitive
        raise ResolutionError(f"Unknown or unexposed type '{type_name}'")

    def is_registered(self, type_name: str) -> bool:
        return type_name in self._types or primitive_for(type_name) is not None

    def signature_override(self, cls: type, member: str) -> tuple[Any, ...] | None:
        for klass in cls.__mro__:
            override = self._signatures.get((klass, member))
            if override is not None:
                return override
        return None

    def names(self) -> list[str]:
        return sorted(self._types)

    def clear(self) -> None:
        """Remove all registrations (useful for tests)."""
        self._types.clear()
        self._signatures.clear()
