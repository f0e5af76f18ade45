"""RPC client: synchronous, asynchronous and one-way calls over a transport."""

from __future__ import annotations

import itertools
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, fields
from typing import Any, Iterable, Optional

from .json_serializer import JsonSerializer, SerializationError
from .transport import TcpTransport, TransportError
from .types import (
    AsyncCallback,
    CallType,
    ConnectionCallback,
    ErrorCode,
    ProtocolType,
    RpcRequest,
    RpcResponse,
    SerializationType,
    ServiceEndpoint,
)


@dataclass
class ClientStatistics:
    """Counters kept by a client."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    timeout_requests: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0

    def reset(self) -> None:
        for item in fields(self):
            setattr(self, item.name, 0)


def _error(code: ErrorCode, message: str, request_id: str = "") -> RpcResponse:
    return RpcResponse(id=request_id, error_code=code, error_message=message)


class RpcClient:
    """Calls methods on a remote :class:`~minirpc.server.RpcServer`.

    Only the TCP protocol and JSON serialization are supported; other
    choices raise ``ValueError``. Failures of a call are reported in the
    returned :class:`RpcResponse` through its error code.
    """

    def __init__(
        self,
        protocol: ProtocolType = ProtocolType.TCP,
        serialization: SerializationType = SerializationType.JSON,
    ) -> None:
        if protocol is not ProtocolType.TCP:
            raise ValueError("Unsupported protocol type")
        if serialization is not SerializationType.JSON:
            raise ValueError("Unsupported serialization type")
        self._transport = TcpTransport()
        self._serializer = JsonSerializer()
        self.endpoint: Optional[ServiceEndpoint] = None
        self.statistics = ClientStatistics()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._call_lock = threading.Lock()

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()

    @property
    def timeout(self) -> float:
        """Seconds to wait for connecting, sending and each reply."""
        return self._transport.timeout

    @timeout.setter
    def timeout(self, seconds: float) -> None:
        self._transport.timeout = seconds

    @property
    def connection_callback(self) -> Optional[ConnectionCallback]:
        """Called with ``(connected, endpoint_text)`` when the connection changes."""
        return self._transport.connection_callback

    @connection_callback.setter
    def connection_callback(self, callback: Optional[ConnectionCallback]) -> None:
        self._transport.connection_callback = callback

    def connect(self, endpoint: ServiceEndpoint) -> None:
        """Connect to ``endpoint``; raises :class:`TransportError` on failure."""
        self.endpoint = endpoint
        self._transport.connect(endpoint)

    def disconnect(self) -> None:
        self._transport.disconnect()

    def is_connected(self) -> bool:
        return self._transport.is_connected()

    def reset_statistics(self) -> None:
        with self._stats_lock:
            self.statistics.reset()

    def _bump(self, **deltas: int) -> None:
        with self._stats_lock:
            for name, delta in deltas.items():
                setattr(self.statistics, name, getattr(self.statistics, name) + delta)

    def _next_id(self) -> str:
        with self._id_lock:
            number = next(self._ids)
        return f"req_{number}_{time.monotonic_ns()}"

    def call(self, method: str, params: Iterable[Any] = ()) -> RpcResponse:
        """Call ``method`` with ``params`` and wait for the response."""
        if not self.is_connected():
            self._bump(failed_requests=1)
            return _error(ErrorCode.NETWORK_ERROR, "Not connected to server")
        self._bump(total_requests=1)
        try:
            request = RpcRequest(
                id=self._next_id(),
                method=method,
                params=list(params),
                call_type=CallType.SYNC,
                timeout_ms=int(self.timeout * 1000),
            )
            return self._exchange(request)
        except Exception as exc:
            self._bump(failed_requests=1)
            return _error(ErrorCode.INTERNAL_ERROR, str(exc))

    def _exchange(self, request: RpcRequest) -> RpcResponse:
        payload = self._serializer.serialize_request(request).encode("utf-8")
        with self._call_lock:
            try:
                self._transport.send(payload)
            except TransportError:
                self._bump(failed_requests=1)
                return _error(ErrorCode.NETWORK_ERROR, "Failed to send request", request.id)
            self._bump(bytes_sent=len(payload))
            while True:
                try:
                    data = self._transport.receive()
                except (TimeoutError, TransportError):
                    self._bump(timeout_requests=1)
                    return _error(ErrorCode.TIMEOUT, "Request timeout", request.id)
                self._bump(bytes_received=len(data))
                try:
                    response = self._serializer.deserialize_response(data)
                except SerializationError:
                    self._bump(failed_requests=1)
                    return _error(
                        ErrorCode.SERIALIZATION_ERROR,
                        "Failed to deserialize response",
                        request.id,
                    )
                # Replies to one-way or timed-out calls may still be queued.
                if response.id and response.id != request.id:
                    continue
                break
        if response.is_success():
            self._bump(successful_requests=1)
        else:
            self._bump(failed_requests=1)
        return response

    def call_async(
        self,
        method: str,
        params: Iterable[Any] = (),
        callback: Optional[AsyncCallback] = None,
    ) -> "Future[RpcResponse]":
        """Run :meth:`call` on a background thread.

        The returned future resolves to the response; ``callback``, if
        given, is also called with it.
        """
        future: "Future[RpcResponse]" = Future()
        arguments = list(params)

        def run() -> None:
            try:
                response = self.call(method, arguments)
            except Exception as exc:
                response = _error(ErrorCode.INTERNAL_ERROR, str(exc))
            future.set_result(response)
            if callback is not None:
                callback(response)

        threading.Thread(target=run, name="rpc-async-call", daemon=True).start()
        return future

    def call_one_way(self, method: str, params: Iterable[Any] = ()) -> None:
        """Send a call without waiting for its response.

        Raises :class:`TransportError` if not connected or sending fails.
        """
        if not self.is_connected():
            self._bump(failed_requests=1)
            raise TransportError("Not connected to server")
        request = RpcRequest(
            id=self._next_id(),
            method=method,
            params=list(params),
            call_type=CallType.ONEWAY,
            timeout_ms=int(self.timeout * 1000),
        )
        payload = self._serializer.serialize_request(request).encode("utf-8")
        with self._call_lock:
            try:
                self._transport.send(payload)
            except TransportError:
                self._bump(failed_requests=1)
                raise
        self._bump(total_requests=1, bytes_sent=len(payload))