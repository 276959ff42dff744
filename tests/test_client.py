"""Tests for the client stub against a scripted transport."""

import json

import pytest

from pyreflect import CorrelationError, RemoteError, RemoteObjectHandle, RPCClient
from pyreflect.client import infer_type_name

from .fixtures.sample_types import Point
from .fixtures.transports import ScriptedTransport


def reply(request_id, value=None, is_exception=False, error_kind=None):
    response = {"id": request_id, "isException": is_exception, "value": value}
    if error_kind:
        response["errorKind"] = error_kind
    return json.dumps(response)


def sent(transport):
    return [json.loads(line) for line in transport.written]


class TestRequestBuilding:
    """Tests for what the client puts on the wire."""

    def test_ids_start_at_zero_and_increase(self):
        transport = ScriptedTransport([reply(0, 1), reply(1, 2)])
        client = RPCClient(transport)

        client.execute_static_method("MathUtils", "describe")
        client.execute_static_method("MathUtils", "describe")

        assert [request["id"] for request in sent(transport)] == [0, 1]
        assert client.next_id == 2

    def test_static_call_shape(self):
        transport = ScriptedTransport([reply(0, 3)])
        RPCClient(transport).execute_static_method("MathUtils", "add", ["int", "int"], [1, 2])

        assert sent(transport) == [
            {
                "id": 0,
                "instantiate": False,
                "className": "MathUtils",
                "objectName": "",
                "methodName": "add",
                "argClassNames": ["int", "int"],
                "args": [1, 2],
            }
        ]

    def test_method_call_shape(self):
        transport = ScriptedTransport([reply(0, 3)])
        RPCClient(transport).execute_method("c1", "get")

        request = sent(transport)[0]
        assert (request["className"], request["objectName"], request["methodName"]) == ("", "c1", "get")

    def test_static_object_call_shape(self):
        transport = ScriptedTransport([reply(0, 3)])
        RPCClient(transport).execute_method_on_static_object("MathUtils", "shared", "get")

        request = sent(transport)[0]
        assert (request["className"], request["objectName"], request["methodName"]) == ("MathUtils", "shared", "get")

    def test_instantiate_shape(self):
        transport = ScriptedTransport([reply(0, {"count": 5})])
        value = RPCClient(transport).instantiate_object("Counter", "c1", ["int"], [5])

        request = sent(transport)[0]
        assert request["instantiate"] is True
        assert request["methodName"] == ""
        assert value == {"count": 5}

    def test_inferred_type_names(self):
        transport = ScriptedTransport([reply(0)])
        RPCClient(transport).execute_static_method("T", "m", args=[1, 2.5, "s", True, None, [1], {"a": 1}])

        assert sent(transport)[0]["argClassNames"] == ["int", "float", "str", "bool", "NoneType", "list", "dict"]

    def test_handle_arguments(self):
        transport = ScriptedTransport([reply(0, 3)])
        RPCClient(transport).execute_method("a", "absorb", args=[RemoteObjectHandle("b", "Counter")])

        request = sent(transport)[0]
        assert request["argClassNames"] == ["REMOTE:Counter"]
        assert request["args"] == ["b"]

    def test_object_arguments_encoded(self):
        transport = ScriptedTransport([reply(0, 7)])
        RPCClient(transport).execute_static_method("MathUtils", "norm1", ["Point"], [Point(3, -4)])

        assert sent(transport)[0]["args"] == [{"x": 3, "y": -4}]

    def test_length_mismatch_sends_nothing(self):
        transport = ScriptedTransport()
        client = RPCClient(transport)

        with pytest.raises(ValueError, match="same length"):
            client.execute_static_method("MathUtils", "add", ["int"], [1, 2])

        assert transport.written == []
        assert client.next_id == 0

    def test_infer_custom_type_uses_qualified_name(self):
        assert infer_type_name(Point(0, 0)) == "tests.fixtures.sample_types.Point"


class TestResponses:
    """Tests for reply handling."""

    def test_result_type_decoding(self):
        transport = ScriptedTransport([reply(0, {"x": 1, "y": 2})])
        point = RPCClient(transport).execute_static_method("MathUtils", "make_point", args=[1, 2], result_type=Point)

        assert point == Point(1, 2)

    def test_exception_response_raises(self):
        transport = ScriptedTransport([reply(0, "RuntimeError: bad", True, "target")])

        with pytest.raises(RemoteError) as exc_info:
            RPCClient(transport).execute_method("c1", "fail", args=["bad"])

        assert exc_info.value.detail == "RuntimeError: bad"
        assert exc_info.value.kind == "target"

    def test_exception_without_kind(self):
        transport = ScriptedTransport([reply(0, "boom", True)])

        with pytest.raises(RemoteError) as exc_info:
            RPCClient(transport).execute_method("c1", "get")

        assert exc_info.value.kind is None

    def test_blank_reply_lines_skipped(self):
        transport = ScriptedTransport(["", "  ", reply(0, 5)])

        assert RPCClient(transport).execute_method("c1", "get") == 5

    def test_end_of_stream(self):
        transport = ScriptedTransport()
        transport.close()
        transport.closed = False

        with pytest.raises(ConnectionError):
            RPCClient(transport).execute_method("c1", "get")


class TestCorrelation:
    """Tests for request/response id matching."""

    def test_mismatched_id_raises(self):
        transport = ScriptedTransport([reply(5, 1)])

        with pytest.raises(CorrelationError, match="out of sync"):
            RPCClient(transport).execute_method("c1", "get")

    def test_client_unusable_after_mismatch(self):
        transport = ScriptedTransport([reply(5, 1), reply(1, 1)])
        client = RPCClient(transport)

        with pytest.raises(CorrelationError):
            client.execute_method("c1", "get")
        with pytest.raises(CorrelationError):
            client.execute_method("c1", "get")

        assert len(transport.written) == 1


class TestLifecycle:
    def test_instantiate_returns_handle(self):
        transport = ScriptedTransport([reply(0, {"count": 5})])
        handle = RPCClient(transport).instantiate("Counter", "c1", ["int"], [5])

        assert handle == RemoteObjectHandle("c1", "Counter")

    def test_context_manager_closes_transport(self):
        transport = ScriptedTransport()
        with RPCClient(transport):
            pass

        assert transport.closed

    def test_thread_safe_config(self):
        client = RPCClient(ScriptedTransport(), {"thread_safe": True})

        assert client.config["thread_safe"] is True
        assert client.config["timeout"] is None
