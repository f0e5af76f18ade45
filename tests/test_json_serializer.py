import pytest

from minirpc.json_serializer import (
    JsonSerializer,
    SerializationError,
    escape_string,
    json_to_value,
    parse_object,
    split_array,
    unescape_string,
    value_to_json,
)
from minirpc.types import CallType, ErrorCode, RpcRequest, RpcResponse


@pytest.fixture
def serializer():
    return JsonSerializer()


def test_string_value_round_trip_and_copy():
    encoded = value_to_json("Hello World")
    assert encoded == '"Hello World"'
    decoded = json_to_value(encoded)
    copied = str(decoded)
    assert decoded == "Hello World"
    assert copied == "Hello World"


def test_escape_string_specials():
    assert escape_string('a"b\\c\nd\re\tf') == 'a\\"b\\\\c\\nd\\re\\tf'


@pytest.mark.parametrize("text", ["", "plain", 'q"uote', "back\\slash", "multi\nline\ttab\r"])
def test_escape_round_trip(text):
    assert unescape_string(escape_string(text)) == text


def test_unescape_keeps_unknown_sequence():
    assert unescape_string("a\\xb") == "a\\xb"
    assert unescape_string("end\\") == "end\\"


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, "null"),
        (True, "true"),
        (False, "false"),
        (42, "42"),
        (-7, "-7"),
        (6.28, "6.280000"),
        (2.0, "2.000000"),
        ("hi", '"hi"'),
        ([1, 2], "null"),
    ],
)
def test_value_to_json(value, expected):
    assert value_to_json(value) == expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("null", None),
        ("true", True),
        ("false", False),
        ("42", 42),
        ("  -5 ", -5),
        ("6.280000", 6.28),
        ('"a\\"b"', 'a"b'),
        ("12abc", 12),
        ("abc", "abc"),
        ("99999999999", "99999999999"),
    ],
)
def test_json_to_value(text, expected):
    assert json_to_value(text) == expected


def test_float_decodes_as_float():
    value = json_to_value(value_to_json(2.0))
    assert isinstance(value, float)
    assert value == 2.0


def test_parse_object_nested():
    fields = parse_object('{"a": 1, "b": [1, {"x": 2}], "c": {"d": "e,f"}, "s": "x,y"}')
    assert fields == {
        "a": "1",
        "b": '[1, {"x": 2}]',
        "c": '{"d": "e,f"}',
        "s": '"x,y"',
    }


def test_parse_object_empty():
    assert parse_object("{}") == {}


def test_split_array():
    assert split_array('[1, "a,b", [2,3], {"k":"v"}]') == ["1", '"a,b"', "[2,3]", '{"k":"v"}']
    assert split_array("[]") == []
    assert split_array("[ ]") == []
    assert split_array("not an array") == []


def test_serialize_request_exact(serializer):
    request = RpcRequest(id="req_1", method="add", params=[10, 20])
    assert serializer.serialize_request(request) == (
        '{"id":"req_1","method":"add","params":[10,20],"headers":{},"call_type":0,"timeout":5000}'
    )


def test_serialize_request_headers_sorted(serializer):
    request = RpcRequest(id="x", method="m", headers={"b": "2", "a": "1"})
    assert '"headers":{"a":"1","b":"2"}' in serializer.serialize_request(request)


def test_request_round_trip(serializer):
    request = RpcRequest(
        id="req_9",
        method="testMultiParams",
        params=[10, 2.5, True, "Hello World", None, 'with "quotes", and commas'],
        headers={"trace": "abc", "user": "someone"},
        call_type=CallType.ONEWAY,
        timeout_ms=1500,
    )
    decoded = serializer.deserialize_request(serializer.serialize_request(request))
    assert decoded == request


def test_request_from_bytes(serializer):
    data = serializer.serialize_request(RpcRequest(id="b", method="hello")).encode("utf-8")
    decoded = serializer.deserialize_request(data)
    assert decoded.id == "b"
    assert decoded.method == "hello"
    assert decoded.params == []


def test_serialize_response_exact(serializer):
    response = RpcResponse(id="r", result=30)
    assert serializer.serialize_response(response) == (
        '{"id":"r","result":30,"error_code":0,"error_message":"","headers":{}}'
    )


def test_response_round_trip(serializer):
    response = RpcResponse(id="r1", result="Hello, World!", headers={"k": "v"})
    decoded = serializer.deserialize_response(serializer.serialize_response(response))
    assert decoded == response
    assert decoded.is_success()


def test_error_response_round_trip(serializer):
    response = RpcResponse(
        id="r2",
        error_code=ErrorCode.METHOD_NOT_FOUND,
        error_message="Method not found: nonExistentMethod",
    )
    decoded = serializer.deserialize_response(serializer.serialize_response(response))
    assert decoded.result is None
    assert decoded.error_code == ErrorCode.METHOD_NOT_FOUND
    assert decoded.error_message == "Method not found: nonExistentMethod"
    assert not decoded.is_success()


def test_missing_fields_use_defaults(serializer):
    decoded = serializer.deserialize_response('{"id":"only"}')
    assert decoded.id == "only"
    assert decoded.error_code == ErrorCode.SUCCESS
    assert decoded.result is None
    assert decoded.headers == {}


@pytest.mark.parametrize("data", ["", "garbage", "[1,2]", b"\xff\xfe"])
def test_malformed_data_raises(serializer, data):
    with pytest.raises(SerializationError):
        serializer.deserialize_response(data)
    with pytest.raises(SerializationError):
        serializer.deserialize_request(data)


def test_unknown_codes_raise(serializer):
    with pytest.raises(SerializationError):
        serializer.deserialize_response('{"id":"x","error_code":99}')
    with pytest.raises(SerializationError):
        serializer.deserialize_request('{"id":"x","call_type":9}')


def test_content_type(serializer):
    assert serializer.content_type() == "application/json"