"""Public extension protocols for pyreflect.

These interfaces define the contract between the pyreflect engine and
operator-supplied plug-ins. They enable structural typing so strategies and
registries can be implemented without inheriting from concrete base classes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ._internal.exclusion import FieldAttributes


@runtime_checkable
class ExclusionStrategy(Protocol):
    """Decides whether a field (or every field of a type) crosses the wire.

    Strategies are combined with logical OR: one ``True`` from any strategy in
    a chain excludes the field.
    """

    def should_skip_field(self, field: FieldAttributes) -> bool:
        """Return True to omit *field* when encoding (or ignore it when decoding)."""

    def should_skip_class(self, cls: type) -> bool:
        """Return True to omit every field whose declared type is *cls*."""


@runtime_checkable
class TypeRegistryProtocol(Protocol):
    """Interface for the allow-list of types reachable by name over RPC."""

    def register(
        self,
        cls: type,
        name: str | None = None,
        *,
        aliases: tuple[str, ...] = (),
        signatures: dict[str, tuple[type, ...]] | None = None,
    ) -> None:
        """Expose *cls* under its qualified name, *name* and *aliases*."""

    def resolve(self, type_name: str) -> type:
        """Return the class registered under *type_name*."""

    def is_registered(self, type_name: str) -> bool:
        """Return True if *type_name* resolves."""

    def signature_override(self, cls: type, member: str) -> tuple[Any, ...] | None:
        """Return an explicit parameter-type tuple for ``cls.member`` if one was registered."""
