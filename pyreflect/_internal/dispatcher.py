"""Resolution and invocation of RPC requests.

Target resolution for a non-instantiate request, in precedence order:

1. ``className`` and ``objectName`` set: read the class attribute
   ``objectName`` of the registered class and call the method on it.
2. ``className`` only: call a staticmethod/classmethod of the class.
3. ``objectName`` only: call the method on the session's remote object.
4. Neither: invalid request.

Members are matched by name and by the exact list of parameter types; there
is no overload scoring, no numeric widening and no varargs expansion.
"""

from __future__ import annotations

import inspect
import logging
import typing
from collections.abc import Callable
from typing import Any

from ..errors import ResolutionError, TargetError, describe_exception
from .codec import JSONCodec
from .exclusion import unwrap_optional
from .remote_objects import RemoteObjectTable
from .rpc_messages import (
    ErrorKind,
    RPCRequest,
    RPCResponse,
    is_remote_type_name,
    make_response,
    strip_remote_marker,
)
from .type_registry import TypeRegistry

logger = logging.getLogger(__name__)

_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


def _type_label(tp: Any) -> str:
    if typing.get_args(tp):
        # Parameterized aliases forward __qualname__ to their origin
        return str(tp)
    return getattr(tp, "__qualname__", None) or str(tp)


def _type_hints(func: Any) -> dict[str, Any]:
    try:
        return typing.get_type_hints(func)
    except Exception as exc:
        logger.debug("Cannot evaluate type hints of %r, evaluating them one by one: %s", func, exc)

    try:
        raw = inspect.get_annotations(func)
    except TypeError:
        return {}
    globalns = getattr(inspect.unwrap(func), "__globals__", {})
    hints: dict[str, Any] = {}
    for name, annotation in raw.items():
        if isinstance(annotation, str):
            try:
                annotation = eval(annotation, globalns)  # noqa: S307
            except Exception as exc:
                logger.debug("Unresolvable annotation %r for parameter '%s' of %r: %s", annotation, name, func, exc)
        hints[name] = annotation
    return hints


def erased_type(tp: Any) -> Any:
    """Return the class a wire type name must resolve to for annotation *tp*.

    ``Optional[X]`` and ``X | None`` erase to ``X``; parameterized generics
    such as ``list[int]`` erase to their origin (``list``).
    """
    tp = unwrap_optional(tp)
    return typing.get_origin(tp) or tp


def parameter_types(func: Callable[..., Any], hints_source: Any = None) -> tuple[Any, ...]:
    """Return the annotated types of the positional parameters of *func*.

    *func* should already be bound (no ``self``/``cls``). Unannotated
    parameters have type ``object``. A callable with required keyword-only
    parameters cannot be called positionally and is rejected.

    Raises:
        ResolutionError: If the callable cannot be introspected or called
            positionally.
    """
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError) as e:
        raise ResolutionError(f"Cannot introspect {func!r}: {e}") from e

    hints = _type_hints(hints_source if hints_source is not None else func)
    types: list[Any] = []
    for param in signature.parameters.values():
        if param.kind in _POSITIONAL:
            types.append(hints.get(param.name, object))
        elif param.kind is inspect.Parameter.KEYWORD_ONLY and param.default is inspect.Parameter.empty:
            raise ResolutionError(f"{func!r} requires keyword-only argument '{param.name}'")
    return tuple(types)


class Dispatcher:
    """Resolves requests against a :class:`TypeRegistry` and invokes them.

    Every resolution or invocation failure is turned into an exception
    response; nothing raised by user code escapes :meth:`invoke_method` or
    :meth:`instantiate_object`.
    """

    def __init__(self, registry: TypeRegistry, codec: JSONCodec, include_error_kind: bool = True) -> None:
        self.registry = registry
        self.codec = codec
        self.include_error_kind = include_error_kind

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def error_response(self, request_id: int, detail: str, kind: ErrorKind) -> RPCResponse:
        return make_response(request_id, detail, True, kind if self.include_error_kind else None)

    def _success_response(self, request_id: int, result: Any) -> RPCResponse:
        try:
            value = self.codec.to_json(result)
        except (TypeError, ValueError) as serialize_exc:
            logger.error("RPC response serialization failed for id=%s: %s", request_id, serialize_exc)
            return self.error_response(
                request_id, f"Response serialization failed: {describe_exception(serialize_exc)}", "target"
            )
        return make_response(request_id, value)

    def _run(self, request: RPCRequest, resolve: Callable[[], tuple[Any, Any]]) -> tuple[RPCResponse, Any]:
        request_id = request["id"]
        try:
            result, created = resolve()
        except ResolutionError as exc:
            logger.warning("RPC resolution failed for id=%s: %s", request_id, exc)
            return self.error_response(request_id, describe_exception(exc), "resolution"), None
        except TargetError as exc:
            logger.exception("RPC target raised for id=%s", request_id)
            return self.error_response(request_id, str(exc), "target"), None
        except Exception as exc:
            # Unexpected failure inside resolution itself; still a request-level error
            logger.exception("RPC dispatch failed for id=%s", request_id)
            return self.error_response(request_id, describe_exception(exc), "resolution"), None
        response = self._success_response(request_id, result)
        return response, None if response["isException"] else created

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def instantiate_object(self, request: RPCRequest, table: RemoteObjectTable) -> tuple[RPCResponse, Any]:
        """Construct an object; returns ``(response, instance_or_None)``.

        The caller registers the instance when the response is not an exception.
        """
        if not request["instantiate"]:
            raise ValueError("RPCRequest must be an instantiation request!")

        def resolve() -> tuple[Any, Any]:
            cls = self._resolve_class(request["className"])
            constructor, declared = self._find_constructor(cls, self._argument_types(request))
            instance = self._call(constructor, self.resolve_arguments(request, table, declared))
            return instance, instance

        return self._run(request, resolve)

    def invoke_method(self, request: RPCRequest, table: RemoteObjectTable) -> RPCResponse:
        if request["instantiate"]:
            raise ValueError("RPCRequest cannot be an instantiation request!")

        def resolve() -> tuple[Any, Any]:
            method, declared = self.resolve_method(request, table)
            return self._call(method, self.resolve_arguments(request, table, declared)), None

        response, _ = self._run(request, resolve)
        return response

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _resolve_class(self, class_name: str) -> type:
        cls = self.registry.resolve(class_name)
        if not isinstance(cls, type):
            raise ResolutionError(f"'{class_name}' does not name a class")
        return cls

    def resolve_arguments(
        self, request: RPCRequest, table: RemoteObjectTable, declared: tuple[Any, ...] | None = None
    ) -> list[Any]:
        """Return the argument values for *request*.

        ``REMOTE:`` arguments are replaced by the named objects from *table*.
        All others are decoded into the matching *declared* parameter
        annotation (so ``list[int]`` elements are checked too), or into their
        named types when *declared* is not given.
        """
        values: list[Any] = []
        for index, (type_name, raw) in enumerate(zip(request["argClassNames"], request["args"])):
            param_type = self.registry.resolve(strip_remote_marker(type_name))
            if is_remote_type_name(type_name):
                if not isinstance(raw, str):
                    raise ResolutionError(f"Argument {index} must name a remote object, got {raw!r}")
                value = table.get(raw)
                if isinstance(param_type, type) and not isinstance(value, param_type):
                    raise ResolutionError(
                        f"Remote object '{raw}' is a {type(value).__qualname__}, not {_type_label(param_type)}"
                    )
            else:
                target = declared[index] if declared is not None else param_type
                try:
                    value = self.codec.from_json(raw, target)
                except (TypeError, ValueError) as e:
                    raise ResolutionError(f"Cannot decode argument {index} as {_type_label(target)}: {e}") from e
            values.append(value)
        return values

    def resolve_method(self, request: RPCRequest, table: RemoteObjectTable) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        """Resolve the callable a non-instantiate request targets.

        Returns the callable and its declared parameter annotations.
        """
        class_name = request["className"]
        object_name = request["objectName"]
        method_name = request["methodName"]
        param_types = self._argument_types(request)

        if class_name and object_name:
            cls = self._resolve_class(class_name)
            receiver = self._static_field(cls, object_name)
            return self._find_method(receiver, method_name, param_types)
        if class_name:
            cls = self._resolve_class(class_name)
            return self._find_static_method(cls, method_name, param_types)
        if object_name:
            receiver = table.get(object_name)
            return self._find_method(receiver, method_name, param_types)
        raise ResolutionError("Both className and objectName cannot be empty strings!")

    def _argument_types(self, request: RPCRequest) -> tuple[Any, ...]:
        return tuple(self.registry.resolve(strip_remote_marker(name)) for name in request["argClassNames"])

    @staticmethod
    def _check_public(owner: type, name: str) -> Any:
        if not name or name.startswith("_"):
            raise ResolutionError(f"Member '{name}' of {owner.__qualname__} is not accessible")
        try:
            return inspect.getattr_static(owner, name)
        except AttributeError:
            raise ResolutionError(f"{owner.__qualname__} has no member '{name}'") from None

    def _static_field(self, cls: type, field_name: str) -> Any:
        attr = self._check_public(cls, field_name)
        if isinstance(attr, (staticmethod, classmethod, property)) or inspect.isfunction(attr):
            raise ResolutionError(f"{cls.__qualname__}.{field_name} is not a field")
        return getattr(cls, field_name)

    def _match(self, owner: type, name: str, declared: tuple[Any, ...], actual: tuple[Any, ...]) -> tuple[Any, ...]:
        if tuple(erased_type(tp) for tp in declared) != actual:
            wanted = ", ".join(_type_label(tp) for tp in actual)
            signature = ", ".join(_type_label(tp) for tp in declared)
            raise ResolutionError(f"No method {owner.__qualname__}.{name}({wanted}); declared ({signature})")
        return declared

    def _declared_types(self, owner: type, name: str, bound: Callable[..., Any], hints_source: Any) -> tuple[Any, ...]:
        override = self.registry.signature_override(owner, name)
        if override is not None:
            return override
        return parameter_types(bound, hints_source)

    def _find_static_method(
        self, cls: type, name: str, param_types: tuple[Any, ...]
    ) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        attr = self._check_public(cls, name)
        if not isinstance(attr, (staticmethod, classmethod)):
            raise ResolutionError(f"{cls.__qualname__}.{name} is not a static method")
        bound = getattr(cls, name)
        return bound, self._match(cls, name, self._declared_types(cls, name, bound, attr.__func__), param_types)

    def _find_method(
        self, receiver: Any, name: str, param_types: tuple[Any, ...]
    ) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        cls = type(receiver)
        attr = self._check_public(cls, name)
        if isinstance(attr, property):
            raise ResolutionError(f"{cls.__qualname__}.{name} is a property, not a method")
        bound = getattr(receiver, name)
        if not callable(bound):
            raise ResolutionError(f"{cls.__qualname__}.{name} is not a method")
        hints_source = attr.__func__ if isinstance(attr, (staticmethod, classmethod)) else attr
        return bound, self._match(cls, name, self._declared_types(cls, name, bound, hints_source), param_types)

    def _find_constructor(self, cls: type, param_types: tuple[Any, ...]) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        override = self.registry.signature_override(cls, "__init__")
        if override is not None:
            declared = override
        elif cls.__init__ is object.__init__:
            declared = ()
        else:
            declared = parameter_types(cls.__init__, cls.__init__)[1:]
        return cls, self._match(cls, "__init__", declared, param_types)

    @staticmethod
    def _call(func: Callable[..., Any], values: list[Any]) -> Any:
        try:
            return func(*values)
        except KeyboardInterrupt:
            raise
        except BaseException as exc:
            # SystemExit and friends raised by invoked code end the call, not the session
            raise TargetError(exc) from exc
