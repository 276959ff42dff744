"""Remote objects: the per-session table and the client-side handle.

A remote object is an instance created on the server by an instantiate
request and referenced by its caller-chosen name for the rest of the session.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from ..errors import ResolutionError
from .rpc_messages import remote_type_name

logger = logging.getLogger(__name__)


class RemoteObjectHandle:
    """Client-side reference to an object held in a server session's table.

    Passing a handle as a call argument sends ``REMOTE:<type_name>`` with the
    handle's name, so the server substitutes the live instance.

    Attributes:
        object_id: Name of the remote object in the session's table.
        type_name: Type name the server resolves the object's type from.
    """

    def __init__(self, object_id: str, type_name: str) -> None:
        self.object_id = object_id
        self.type_name = type_name

    @property
    def arg_type_name(self) -> str:
        return remote_type_name(self.type_name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoteObjectHandle):
            return NotImplemented
        return (self.object_id, self.type_name) == (other.object_id, other.type_name)

    def __hash__(self) -> int:
        return hash((self.object_id, self.type_name))

    def __repr__(self) -> str:
        return f"<RemoteObject id={self.object_id} type={self.type_name}>"


class RemoteObjectTable:
    """Name -> instance map owned by exactly one session.

    Never shared between sessions, so it needs no locking.
    """

    def __init__(self) -> None:
        self._objects: dict[str, Any] = {}

    def put(self, name: str, obj: Any) -> None:
        if name in self._objects:
            logger.debug("Replacing remote object %s", name)
        self._objects[name] = obj

    def get(self, name: str) -> Any:
        """Return the object stored under *name*.

        Raises:
            ResolutionError: If no such object exists in this session.
        """
        try:
            return self._objects[name]
        except KeyError:
            raise ResolutionError(f"No remote object named '{name}' in this session") from None

    def remove(self, name: str) -> None:
        self._objects.pop(name, None)

    def clear(self) -> None:
        self._objects.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._objects

    def __len__(self) -> int:
        return len(self._objects)

    def __iter__(self) -> Iterator[str]:
        return iter(self._objects)
