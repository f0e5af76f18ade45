"""JSON encoding of RPC requests and responses.

The format is a small, self-contained subset of JSON. Values are
scalars: ``None``, ``bool``, 32-bit ``int``, ``float`` and ``str``.
Floats are written with six decimal places, so they always contain a
decimal point and decode back as floats. Integers outside the signed
32-bit range do not decode as numbers; they come back as their text.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Union

from .types import CallType, ErrorCode, RpcRequest, RpcResponse, SerializationType

_WHITESPACE = " \t\n\r"
_INT_PREFIX = re.compile(r"[+-]?\d+")
_FLOAT_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

_ESCAPES = {'"': '\\"', "\\": "\\\\", "\n": "\\n", "\r": "\\r", "\t": "\\t"}
_UNESCAPES = {'"': '"', "\\": "\\", "n": "\n", "r": "\r", "t": "\t"}


class SerializationError(ValueError):
    """Raised when data cannot be decoded into a request or response."""


def escape_string(text: str) -> str:
    """Escape quotes, backslashes, newlines, carriage returns and tabs."""
    return "".join(_ESCAPES.get(char, char) for char in text)


def unescape_string(text: str) -> str:
    """Undo :func:`escape_string`; unknown escapes keep their backslash."""
    out: List[str] = []
    chars = iter(enumerate(text))
    for index, char in chars:
        if char == "\\" and index + 1 < len(text) and text[index + 1] in _UNESCAPES:
            out.append(_UNESCAPES[text[index + 1]])
            next(chars)
        else:
            out.append(char)
    return "".join(out)


def _trim(text: str) -> str:
    return text.strip(_WHITESPACE)


def _parse_int(text: str) -> Optional[int]:
    """Parse a leading signed 32-bit integer; ``None`` if there is none."""
    match = _INT_PREFIX.match(_trim(text))
    if match is None:
        return None
    value = int(match.group())
    if not _INT32_MIN <= value <= _INT32_MAX:
        return None
    return value


def _is_quoted(text: str) -> bool:
    return len(text) >= 2 and text[0] == '"' and text[-1] == '"'


def value_to_json(value: Any) -> str:
    """Encode a scalar value; unsupported types encode as ``null``."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return f"{value:.6f}"
    if isinstance(value, str):
        return f'"{escape_string(value)}"'
    return "null"


def json_to_value(text: str) -> Any:
    """Decode one scalar value.

    Anything that is not ``null``, a boolean, a quoted string or a
    number is returned as its trimmed text.
    """
    trimmed = _trim(text)
    if trimmed == "null":
        return None
    if trimmed == "true":
        return True
    if trimmed == "false":
        return False
    if _is_quoted(trimmed):
        return unescape_string(trimmed[1:-1])
    if "." in trimmed:
        match = _FLOAT_PREFIX.match(trimmed)
        if match is not None:
            return float(match.group())
    else:
        number = _parse_int(trimmed)
        if number is not None:
            return number
    return trimmed


def _find_value_end(content: str, start: int) -> int:
    """Index of the comma ending the value at ``start``, or the end of text."""
    depth_braces = 0
    depth_brackets = 0
    in_string = False
    escaped = False
    pos = start
    while pos < len(content):
        char = content[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth_braces += 1
        elif char == "}":
            depth_braces -= 1
        elif char == "[":
            depth_brackets += 1
        elif char == "]":
            depth_brackets -= 1
        elif char == "," and depth_braces == 0 and depth_brackets == 0:
            break
        pos += 1
    return pos


def _skip(content: str, pos: int, chars: str) -> int:
    while pos < len(content) and content[pos] in chars:
        pos += 1
    return pos


def parse_object(text: str) -> Dict[str, str]:
    """Split a JSON object into a mapping of key to raw, trimmed value text."""
    result: Dict[str, str] = {}
    content = _trim(text)
    if content.startswith("{") and content.endswith("}"):
        content = content[1:-1]
    pos = 0
    while True:
        pos = _skip(content, pos, _WHITESPACE)
        if pos >= len(content) or content[pos] != '"':
            break
        key_end = content.find('"', pos + 1)
        if key_end < 0:
            break
        key = content[pos + 1:key_end]
        pos = _skip(content, key_end + 1, _WHITESPACE + ":")
        if pos >= len(content):
            break
        value_end = _find_value_end(content, pos)
        result[key] = _trim(content[pos:value_end])
        pos = _skip(content, value_end, _WHITESPACE + ",")
    return result


def split_array(text: str) -> List[str]:
    """Split a JSON array into the raw, trimmed text of its elements."""
    trimmed = _trim(text)
    if not (len(trimmed) >= 2 and trimmed[0] == "[" and trimmed[-1] == "]"):
        return []
    content = trimmed[1:-1]
    items: List[str] = []
    pos = _skip(content, 0, _WHITESPACE)
    while pos < len(content):
        end = _find_value_end(content, pos)
        items.append(_trim(content[pos:end]))
        pos = _skip(content, end, _WHITESPACE + ",")
    return items


def _get_string(fields: Dict[str, str], key: str) -> str:
    value = _trim(fields.get(key, ""))
    if _is_quoted(value):
        return unescape_string(value[1:-1])
    return value


def _get_int(fields: Dict[str, str], key: str) -> int:
    if key not in fields:
        return 0
    number = _parse_int(fields[key])
    return 0 if number is None else number


def _get_headers(fields: Dict[str, str]) -> Dict[str, str]:
    if "headers" not in fields:
        return {}
    raw = parse_object(fields["headers"])
    return {name: _get_string(raw, name) for name in raw}


def _encode_headers(headers: Dict[str, str]) -> str:
    pairs = (
        f'"{escape_string(name)}":"{escape_string(value)}"'
        for name, value in sorted(headers.items())
    )
    return "{" + ",".join(pairs) + "}"


def _decode_object(data: Union[bytes, str]) -> Dict[str, str]:
    if isinstance(data, (bytes, bytearray)):
        try:
            data = bytes(data).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SerializationError(f"data is not valid UTF-8: {exc}") from exc
    trimmed = _trim(data)
    if not (len(trimmed) >= 2 and trimmed[0] == "{" and trimmed[-1] == "}"):
        raise SerializationError("data is not a JSON object")
    return parse_object(trimmed)


class JsonSerializer:
    """Encodes requests and responses as JSON text."""

    type = SerializationType.JSON

    def content_type(self) -> str:
        """MIME type for HTTP headers."""
        return "application/json"

    def serialize_request(self, request: RpcRequest) -> str:
        params = ",".join(value_to_json(param) for param in request.params)
        return (
            "{"
            f'"id":"{escape_string(request.id)}",'
            f'"method":"{escape_string(request.method)}",'
            f'"params":[{params}],'
            f'"headers":{_encode_headers(request.headers)},'
            f'"call_type":{int(request.call_type)},'
            f'"timeout":{int(request.timeout_ms)}'
            "}"
        )

    def deserialize_request(self, data: Union[bytes, str]) -> RpcRequest:
        fields = _decode_object(data)
        try:
            call_type = CallType(_get_int(fields, "call_type"))
        except ValueError as exc:
            raise SerializationError(f"unknown call type: {exc}") from exc
        return RpcRequest(
            id=_get_string(fields, "id"),
            method=_get_string(fields, "method"),
            params=[json_to_value(item) for item in split_array(fields.get("params", ""))],
            headers=_get_headers(fields),
            call_type=call_type,
            timeout_ms=_get_int(fields, "timeout"),
        )

    def serialize_response(self, response: RpcResponse) -> str:
        return (
            "{"
            f'"id":"{escape_string(response.id)}",'
            f'"result":{value_to_json(response.result)},'
            f'"error_code":{int(response.error_code)},'
            f'"error_message":"{escape_string(response.error_message)}",'
            f'"headers":{_encode_headers(response.headers)}'
            "}"
        )

    def deserialize_response(self, data: Union[bytes, str]) -> RpcResponse:
        fields = _decode_object(data)
        try:
            error_code = ErrorCode(_get_int(fields, "error_code"))
        except ValueError as exc:
            raise SerializationError(f"unknown error code: {exc}") from exc
        result = None
        if "result" in fields and fields["result"] != "null":
            result = json_to_value(fields["result"])
        return RpcResponse(
            id=_get_string(fields, "id"),
            result=result,
            error_code=error_code,
            error_message=_get_string(fields, "error_message"),
            headers=_get_headers(fields),
        )