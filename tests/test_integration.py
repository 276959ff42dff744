"""End-to-end tests: a real client talking to a server session over sockets."""

import threading

import pytest

from pyreflect import (
    FieldNameExclusionStrategy,
    RemoteError,
    RemoteObjectHandle,
    RPCClient,
    RPCServer,
    StrategyType,
)

from .fixtures.sample_types import MathUtils, Point
from .fixtures.transports import connect_pair


class TestCorrelation:
    def test_sequential_calls_match_ids(self, client):
        """Each call returns the answer to its own request."""
        results = [client.execute_static_method("MathUtils", "add", ["int", "int"], [i, i]) for i in range(20)]

        assert results == [2 * i for i in range(20)]
        assert client.next_id == 20

    def test_thread_safe_client_shared_between_threads(self, rpc_server):
        client, session = connect_pair(rpc_server)
        shared = RPCClient(client._transport, {"thread_safe": True})
        results: dict[int, list[int]] = {}
        errors: list[BaseException] = []

        def worker(offset: int) -> None:
            try:
                results[offset] = [
                    shared.execute_static_method("MathUtils", "add", ["int", "int"], [offset, i]) for i in range(25)
                ]
            except BaseException as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(offset * 100,)) for offset in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        shared.close()
        session.join(5.0)

        assert errors == []
        for offset, values in results.items():
            assert values == [offset + i for i in range(25)]


class TestRemoteObjects:
    def test_instantiate_then_invoke(self, client):
        client.instantiate_object("Counter", "obj", ["int"], [41])

        assert client.execute_method("obj", "increment") == 42
        assert client.execute_method("obj", "get") == 42

    def test_sessions_are_isolated(self, rpc_server, client):
        other, other_session = connect_pair(rpc_server)
        try:
            client.instantiate_object("Counter", "obj", ["int"], [1])
            other.instantiate_object("Counter", "obj", ["int"], [1000])
            client.execute_method("obj", "increment")

            assert client.execute_method("obj", "get") == 2
            assert other.execute_method("obj", "get") == 1000
        finally:
            other.close()
            other_session.close()

    def test_object_missing_in_other_session(self, rpc_server, client):
        other, other_session = connect_pair(rpc_server)
        try:
            client.instantiate_object("Counter", "mine", ["int"], [1])

            with pytest.raises(RemoteError) as exc_info:
                other.execute_method("mine", "get")
            assert exc_info.value.kind == "resolution"
        finally:
            other.close()
            other_session.close()

    def test_remote_argument_substitution(self, client):
        """REMOTE: arguments refer to the live instance, not the string."""
        a = client.instantiate("Counter", "a", ["int"], [10])
        b = client.instantiate("Counter", "b", ["int"], [5])

        assert client.execute_method(a.object_id, "absorb", ["REMOTE:Counter"], ["b"]) == 15
        assert client.execute_method(b.object_id, "absorb", args=[a]) == 20

    def test_handle_argument_to_static_method(self, client):
        client.instantiate_object("Counter", "c", ["int"], [3])

        with pytest.raises(RemoteError):
            # norm1 takes a Point; a Counter handle must not be accepted
            client.execute_static_method("MathUtils", "norm1", args=[RemoteObjectHandle("c", "Point")])

    def test_result_type(self, client):
        point = client.execute_static_method("MathUtils", "make_point", ["int", "int"], [2, 3], result_type=Point)

        assert point == Point(2, 3)

    def test_object_argument_by_value(self, client):
        assert client.execute_static_method("MathUtils", "norm1", ["Point"], [Point(-1, 2)]) == 3


class TestExceptionIsolation:
    def test_target_error_keeps_session(self, client):
        client.instantiate_object("Counter", "c", ["int"], [0])

        with pytest.raises(RemoteError) as exc_info:
            client.execute_method("c", "fail", ["str"], ["kaboom"])

        assert exc_info.value.detail == "RuntimeError: kaboom"
        assert exc_info.value.kind == "target"
        assert client.execute_static_method("MathUtils", "concat", ["str", "str"], ["a", "b"]) == "ab"

    def test_system_exit_keeps_session(self, client, connection):
        """sys.exit() in invoked code is answered like any other target failure."""
        _, session = connection

        with pytest.raises(RemoteError) as exc_info:
            client.execute_static_method("MathUtils", "quit", ["int"], [3])

        assert exc_info.value.detail == "SystemExit: 3"
        assert exc_info.value.kind == "target"
        assert session.is_alive
        assert client.execute_static_method("MathUtils", "add", ["int", "int"], [1, 2]) == 3

    def test_resolution_error_keeps_session(self, client):
        with pytest.raises(RemoteError) as exc_info:
            client.execute_static_method("Nope", "m")

        assert exc_info.value.kind == "resolution"
        assert client.execute_static_method("MathUtils", "describe") == "MathUtils"

    def test_unencodable_result_keeps_session(self, client):
        with pytest.raises(RemoteError, match="Response serialization failed"):
            client.execute_static_method("MathUtils", "make_lock")

        assert client.execute_static_method("MathUtils", "describe") == "MathUtils"


class TestSerializationPolicy:
    def test_whitelist_filtering(self, client):
        holder = client.execute_static_method("Holder", "create")

        assert holder == {"label": "holder", "point": {"x": 1, "y": 2}, "tags": ["a", "b"]}

    def test_superclass_fields_absent(self, client):
        assert client.instantiate_object("Derived", "d", ["str", "int"], ["n", 7]) == {"extra": 7}

    def test_strategy_changes_apply_to_later_calls(self, rpc_server, client):
        rpc_server.add_exclusion_strategies(StrategyType.SERIALIZATION, FieldNameExclusionStrategy(["label"]))
        assert "label" not in client.execute_static_method("Holder", "create")

        rpc_server.reset_exclusion_strategies()
        assert "label" in client.execute_static_method("Holder", "create")

    def test_clear_removes_defaults(self, rpc_server, client):
        rpc_server.clear_exclusion_strategies(StrategyType.SERIALIZATION)

        holder = client.execute_static_method("Holder", "create")
        assert holder["blob"] == {"data": "AAE="}


class TestResolutionPrecedence:
    def test_class_and_object_uses_static_field(self, client):
        """A same-named remote object does not shadow the class attribute."""
        client.instantiate_object("Counter", "shared", ["int"], [5])

        assert client.execute_method_on_static_object("MathUtils", "shared", "get") == MathUtils.shared.count
        assert client.execute_method("shared", "get") == 5


class TestServerConfig:
    def test_exposed_types_from_config(self):
        server = RPCServer({"exposed_types": ["tests.fixtures.sample_types.MathUtils"]})
        client, session = connect_pair(server)
        try:
            result = client.execute_static_method("tests.fixtures.sample_types.MathUtils", "add", args=[1, 1])
            assert result == 2
            with pytest.raises(RemoteError):
                client.execute_static_method("MathUtils", "add", args=[1, 1])
        finally:
            client.close()
            server.close()

    def test_whitelist_types_from_config(self, registry):
        server = RPCServer({"whitelist_types": ["tests.fixtures.sample_types.Blob"]}, registry=registry)
        client, session = connect_pair(server)
        try:
            assert client.execute_static_method("Holder", "create")["blob"] == {"data": "AAE="}
        finally:
            client.close()
            server.close()

    def test_error_kind_disabled(self, registry):
        server = RPCServer({"include_error_kind": False}, registry=registry)
        client, session = connect_pair(server)
        try:
            with pytest.raises(RemoteError) as exc_info:
                client.execute_method("ghost", "get")
            assert exc_info.value.kind is None
        finally:
            client.close()
            server.close()

    def test_expose_as_decorator(self):
        server = RPCServer()

        @server.expose
        class Echo:
            @staticmethod
            def echo(value: str) -> str:
                return value

        client, session = connect_pair(server)
        try:
            assert client.execute_static_method(f"{Echo.__module__}.{Echo.__qualname__}", "echo", args=["hi"]) == "hi"
        finally:
            client.close()
            server.close()
