"""Exception types raised by pyreflect.

Server-side failures never cross the wire as typed exceptions: the dispatcher
turns :class:`ResolutionError` and :class:`TargetError` into exception
responses, and the client raises :class:`RemoteError` for those.
"""

from __future__ import annotations


class PyReflectError(Exception):
    """Base class for all pyreflect errors."""


class ProtocolError(PyReflectError):
    """Raised for a message that does not decode or violates the wire schema."""

    def __init__(self, message: str, request_id: int = 0) -> None:
        super().__init__(message)
        self.request_id = request_id


class CorrelationError(PyReflectError):
    """Raised when a response id does not match the outstanding request id.

    This signals misuse of a client (usually unsynchronized sharing between
    threads) rather than a server problem. The client refuses further calls.
    """


class ResolutionError(PyReflectError):
    """Raised when a request cannot be resolved to a constructor or method."""


class TargetError(PyReflectError):
    """Wraps an exception raised by invoked user code.

    Attributes:
        original: The exception the invoked callable raised.
    """

    def __init__(self, original: BaseException) -> None:
        super().__init__(describe_exception(original))
        self.original = original


class RemoteError(PyReflectError):
    """Raised by the client when the server answered with an exception response.

    Attributes:
        detail: Textual description sent by the server.
        kind: ``"resolution"``, ``"target"``, ``"protocol"`` or ``None`` when the
            server does not report error kinds.
    """

    def __init__(self, detail: str, kind: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.kind = kind


def describe_exception(exc: BaseException) -> str:
    """Return ``"<TypeName>: <message>"`` (or just the type name) for *exc*."""
    message = str(exc)
    type_name = type(exc).__name__
    return f"{type_name}: {message}" if message else type_name
