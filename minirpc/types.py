"""Core value types shared by the RPC client, server and transports."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List


class ProtocolType(enum.Enum):
    """Wire protocol used between client and server."""

    HTTP = "http"
    TCP = "tcp"
    WEBSOCKET = "websocket"
    UDP = "udp"


class SerializationType(enum.Enum):
    """Encoding used for requests and responses."""

    JSON = "json"
    MESSAGEPACK = "msgpack"
    PROTOBUF = "protobuf"
    BINARY = "binary"


class CallType(enum.IntEnum):
    """How a call expects to be answered."""

    SYNC = 0
    ASYNC = 1
    ONEWAY = 2


class ErrorCode(enum.IntEnum):
    """Result code carried by every response."""

    SUCCESS = 0
    INVALID_REQUEST = 1
    METHOD_NOT_FOUND = 2
    INVALID_PARAMS = 3
    INTERNAL_ERROR = 4
    TIMEOUT = 5
    NETWORK_ERROR = 6
    SERIALIZATION_ERROR = 7
    AUTHENTICATION_ERROR = 8
    AUTHORIZATION_ERROR = 9


@dataclass
class RpcRequest:
    """A single remote call."""

    id: str = ""
    method: str = ""
    params: List[Any] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    call_type: CallType = CallType.SYNC
    timeout_ms: int = 5000


@dataclass
class RpcResponse:
    """The answer to an :class:`RpcRequest`."""

    id: str = ""
    result: Any = None
    error_code: ErrorCode = ErrorCode.SUCCESS
    error_message: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def is_success(self) -> bool:
        return self.error_code == ErrorCode.SUCCESS


@dataclass(frozen=True)
class ServiceEndpoint:
    """Address of a service together with its protocol settings."""

    host: str = ""
    port: int = 0
    protocol: ProtocolType = ProtocolType.TCP
    serialization: SerializationType = SerializationType.JSON

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


MethodHandler = Callable[[List[Any]], Any]
AsyncCallback = Callable[[RpcResponse], None]
ConnectionCallback = Callable[[bool, str], None]
ServiceDiscoveryCallback = Callable[[List[ServiceEndpoint]], None]


_ERROR_NAMES = {
    ErrorCode.SUCCESS: "Success",
    ErrorCode.INVALID_REQUEST: "Invalid Request",
    ErrorCode.METHOD_NOT_FOUND: "Method Not Found",
    ErrorCode.INVALID_PARAMS: "Invalid Parameters",
    ErrorCode.INTERNAL_ERROR: "Internal Error",
    ErrorCode.TIMEOUT: "Timeout",
    ErrorCode.NETWORK_ERROR: "Network Error",
    ErrorCode.SERIALIZATION_ERROR: "Serialization Error",
    ErrorCode.AUTHENTICATION_ERROR: "Authentication Error",
    ErrorCode.AUTHORIZATION_ERROR: "Authorization Error",
}

_PROTOCOL_NAMES = {
    ProtocolType.HTTP: "HTTP",
    ProtocolType.TCP: "TCP",
    ProtocolType.WEBSOCKET: "WebSocket",
    ProtocolType.UDP: "UDP",
}

_SERIALIZATION_NAMES = {
    SerializationType.JSON: "JSON",
    SerializationType.MESSAGEPACK: "MessagePack",
    SerializationType.PROTOBUF: "Protobuf",
    SerializationType.BINARY: "Binary",
}


def error_code_to_string(code: int) -> str:
    """Human readable name of an error code; unknown codes give 'Unknown Error'."""
    try:
        return _ERROR_NAMES[ErrorCode(code)]
    except ValueError:
        return "Unknown Error"


def protocol_type_to_string(protocol: ProtocolType) -> str:
    """Display name of a protocol."""
    return _PROTOCOL_NAMES.get(protocol, "Unknown")


def serialization_type_to_string(serialization: SerializationType) -> str:
    """Display name of a serialization format."""
    return _SERIALIZATION_NAMES.get(serialization, "Unknown")