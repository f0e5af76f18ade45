"""RPC server: method registry, request dispatch, service discovery and clusters."""

from __future__ import annotations

import abc
import logging
import threading
import time
import types
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, List, Optional, Union

from .json_serializer import JsonSerializer, SerializationError
from .transport import TcpServerTransport, TransportError
from .types import (
    ErrorCode,
    MethodHandler,
    ProtocolType,
    RpcRequest,
    RpcResponse,
    SerializationType,
    ServiceDiscoveryCallback,
    ServiceEndpoint,
)

logger = logging.getLogger(__name__)


@dataclass
class CallContext:
    """Information about the call being served, handed to advanced handlers."""

    client_id: str = ""
    request_id: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    start_time: float = field(default_factory=time.monotonic)


AdvancedMethodHandler = Callable[[List[Any], CallContext], Any]
Middleware = Callable[[RpcRequest, RpcResponse, CallContext], bool]
ErrorHandler = Callable[[str, ErrorCode], None]


@dataclass
class ServerStatistics:
    """Counters kept by a running server."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    active_connections: int = 0
    bytes_received: int = 0
    bytes_sent: int = 0
    avg_response_time_ms: int = 0

    def reset(self) -> None:
        for item in fields(self):
            setattr(self, item.name, 0)


class RpcServer:
    """Serves registered methods over a transport.

    Only the TCP protocol and JSON serialization are supported; other
    choices raise ``ValueError``. ``error_handler``, if set, is called
    with ``(message, code)`` for every request that fails.
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
        self._transport = TcpServerTransport()
        self._serializer = JsonSerializer()
        self.endpoint: Optional[ServiceEndpoint] = None
        self.thread_pool_size = 4
        self.request_queue_size = 1000
        self.error_handler: Optional[ErrorHandler] = None
        self.statistics = ServerStatistics()
        self._methods: Dict[str, MethodHandler] = {}
        self._advanced_methods: Dict[str, AdvancedMethodHandler] = {}
        self._middlewares: List[Middleware] = []
        self._methods_lock = threading.Lock()
        self._middlewares_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._running = False

    def __enter__(self) -> "RpcServer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    @property
    def address(self):
        """The (host, port) the server is actually listening on."""
        return self._transport.address

    def start(self, endpoint: ServiceEndpoint) -> None:
        """Start listening on ``endpoint``.

        Raises ``RuntimeError`` if already running and
        :class:`~minirpc.transport.TransportError` if the endpoint cannot
        be bound.
        """
        with self._state_lock:
            if self._running:
                raise RuntimeError("server is already running")
            self._transport.message_handler = self.handle_request
            self._transport.start(endpoint)
            self.endpoint = endpoint
            self._running = True
        logger.info("RPC server listening on %s", endpoint)

    def stop(self) -> None:
        """Stop the server; does nothing if it is not running."""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
        self._transport.stop()
        logger.info("RPC server stopped")

    def is_running(self) -> bool:
        return self._running

    def register_method(self, name: str, handler: MethodHandler) -> None:
        """Register ``handler(params)`` under ``name``."""
        with self._methods_lock:
            self._methods[name] = handler

    def register_advanced_method(self, name: str, handler: AdvancedMethodHandler) -> None:
        """Register ``handler(params, context)``; it takes precedence over plain handlers."""
        with self._methods_lock:
            self._advanced_methods[name] = handler

    def unregister_method(self, name: str) -> None:
        with self._methods_lock:
            self._methods.pop(name, None)
            self._advanced_methods.pop(name, None)

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a check run before each call; returning False rejects the call."""
        with self._middlewares_lock:
            self._middlewares.append(middleware)

    def reset_statistics(self) -> None:
        with self._stats_lock:
            self.statistics.reset()

    def handle_request(self, data: Union[bytes, str]) -> str:
        """Decode one request, run it and return the encoded response."""
        start = time.monotonic()
        with self._stats_lock:
            self.statistics.total_requests += 1
            self.statistics.bytes_received += len(data)
        try:
            request = self._serializer.deserialize_request(data)
        except SerializationError:
            response = RpcResponse(
                error_code=ErrorCode.SERIALIZATION_ERROR,
                error_message="Failed to deserialize request",
            )
            return self._finish(response)
        context = CallContext(
            request_id=request.id, headers=dict(request.headers), start_time=start
        )
        try:
            response = self._dispatch(request, context)
        except Exception as exc:
            response = RpcResponse(
                id=request.id, error_code=ErrorCode.INTERNAL_ERROR, error_message=str(exc)
            )
        self._update_response_time(start)
        return self._finish(response)

    def _dispatch(self, request: RpcRequest, context: CallContext) -> RpcResponse:
        response = RpcResponse(id=request.id)
        with self._middlewares_lock:
            middlewares = list(self._middlewares)
        for middleware in middlewares:
            if not middleware(request, response, context):
                return response
        with self._methods_lock:
            advanced = self._advanced_methods.get(request.method)
            plain = self._methods.get(request.method)
        if advanced is None and plain is None:
            response.error_code = ErrorCode.METHOD_NOT_FOUND
            response.error_message = f"Method not found: {request.method}"
            return response
        params = list(request.params)
        try:
            if advanced is not None:
                response.result = advanced(params, context)
            else:
                response.result = plain(params)
            response.error_code = ErrorCode.SUCCESS
        except Exception as exc:
            response.result = None
            response.error_code = ErrorCode.INTERNAL_ERROR
            response.error_message = str(exc)
        return response

    def _finish(self, response: RpcResponse) -> str:
        text = self._serializer.serialize_response(response)
        success = response.is_success()
        with self._stats_lock:
            if success:
                self.statistics.successful_requests += 1
            else:
                self.statistics.failed_requests += 1
            self.statistics.bytes_sent += len(text.encode("utf-8"))
        if not success and self.error_handler is not None:
            self.error_handler(response.error_message, response.error_code)
        return text

    def _update_response_time(self, start: float) -> None:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        with self._stats_lock:
            current = self.statistics.avg_response_time_ms
            self.statistics.avg_response_time_ms = (current + elapsed_ms) // 2


def _arity_message(count: int) -> str:
    if count == 0:
        return "Method expects no parameters"
    if count == 1:
        return "Method expects 1 parameter"
    return f"Method expects {count} parameters"


def _positional_count(bound: Callable[..., Any]) -> int:
    """Number of positional parameters ``bound`` takes from a caller."""
    if isinstance(bound, types.MethodType):
        return bound.__func__.__code__.co_argcount - 1
    code = getattr(bound, "__code__", None)
    if code is None:
        code = type(bound).__call__.__code__
        return code.co_argcount - 1
    return code.co_argcount


class ServiceRegistrar:
    """Registers methods of one service object on a server.

    ``method`` may be a method name, a bound method, or a function that
    takes the service as its first argument (such as ``Service.method``).
    Calls must supply exactly as many parameters as the method takes.
    """

    def __init__(self, server: RpcServer, service: Any) -> None:
        self._server = server
        self._service = service

    def _bind(self, method: Union[str, Callable[..., Any]]) -> Callable[..., Any]:
        if isinstance(method, str):
            return getattr(self._service, method)
        if isinstance(method, types.MethodType):
            return method
        return types.MethodType(method, self._service)

    def register_method(self, name: str, method: Union[str, Callable[..., Any]]) -> None:
        bound = self._bind(method)
        expected = _positional_count(bound)

        def handler(params: List[Any]) -> Any:
            if len(params) != expected:
                raise ValueError(_arity_message(expected))
            return bound(*params)

        self._server.register_method(name, handler)


class ServiceDiscovery(abc.ABC):
    """Registry mapping service names to the endpoints that provide them."""

    @abc.abstractmethod
    def register_service(self, service_name: str, endpoint: ServiceEndpoint) -> bool:
        """Record that ``endpoint`` provides ``service_name``."""

    @abc.abstractmethod
    def unregister_service(self, service_name: str, endpoint: ServiceEndpoint) -> bool:
        """Forget ``endpoint`` for ``service_name``; False if the service is unknown."""

    @abc.abstractmethod
    def discover_service(self, service_name: str) -> List[ServiceEndpoint]:
        """Endpoints currently providing ``service_name``."""

    @abc.abstractmethod
    def set_discovery_callback(
        self, service_name: str, callback: ServiceDiscoveryCallback
    ) -> None:
        """Call ``callback`` with the endpoint list whenever it changes."""


class MemoryServiceDiscovery(ServiceDiscovery):
    """In-process service discovery."""

    def __init__(self) -> None:
        self._services: Dict[str, List[ServiceEndpoint]] = {}
        self._callbacks: Dict[str, ServiceDiscoveryCallback] = {}
        self._lock = threading.Lock()

    def register_service(self, service_name: str, endpoint: ServiceEndpoint) -> bool:
        with self._lock:
            self._services.setdefault(service_name, []).append(endpoint)
        self._notify(service_name)
        return True

    def unregister_service(self, service_name: str, endpoint: ServiceEndpoint) -> bool:
        with self._lock:
            endpoints = self._services.get(service_name)
            if endpoints is None:
                return False
            endpoints[:] = [
                ep
                for ep in endpoints
                if not (ep.host == endpoint.host and ep.port == endpoint.port)
            ]
        self._notify(service_name)
        return True

    def discover_service(self, service_name: str) -> List[ServiceEndpoint]:
        with self._lock:
            return list(self._services.get(service_name, []))

    def set_discovery_callback(
        self, service_name: str, callback: ServiceDiscoveryCallback
    ) -> None:
        with self._lock:
            self._callbacks[service_name] = callback

    def _notify(self, service_name: str) -> None:
        with self._lock:
            callback = self._callbacks.get(service_name)
            endpoints = self._services.get(service_name)
            snapshot = None if endpoints is None else list(endpoints)
        if callback is not None and snapshot is not None:
            callback(snapshot)


@dataclass(frozen=True)
class ClusterStatus:
    """Server counts of a cluster."""

    total_servers: int
    running_servers: int
    stopped_servers: int


@dataclass
class _Member:
    service_name: str
    server: RpcServer
    endpoint: ServiceEndpoint
    running: bool = False


class RpcServerCluster:
    """Starts and stops a group of servers and keeps discovery up to date."""

    def __init__(self, discovery: Optional[ServiceDiscovery]) -> None:
        self._discovery = discovery
        self._members: List[_Member] = []
        self._lock = threading.Lock()

    def __enter__(self) -> "RpcServerCluster":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop_all()

    def add_server(self, service_name: str, server: RpcServer, endpoint: ServiceEndpoint) -> None:
        with self._lock:
            self._members.append(_Member(service_name, server, endpoint))

    def remove_server(self, service_name: str) -> None:
        """Remove every server of ``service_name``, stopping those that run."""
        with self._lock:
            removed = [m for m in self._members if m.service_name == service_name]
            self._members = [m for m in self._members if m.service_name != service_name]
        for member in removed:
            if member.running:
                self._stop_member(member)

    def start_all(self) -> bool:
        """Start every stopped server; True if all of them started."""
        all_started = True
        with self._lock:
            for member in self._members:
                if member.running:
                    continue
                try:
                    member.server.start(member.endpoint)
                except (TransportError, RuntimeError) as exc:
                    logger.warning("cannot start %s on %s: %s",
                                   member.service_name, member.endpoint, exc)
                    all_started = False
                    continue
                member.running = True
                if self._discovery is not None:
                    self._discovery.register_service(member.service_name, member.endpoint)
        return all_started

    def stop_all(self) -> None:
        with self._lock:
            for member in self._members:
                if member.running:
                    self._stop_member(member)

    def _stop_member(self, member: _Member) -> None:
        member.server.stop()
        member.running = False
        if self._discovery is not None:
            self._discovery.unregister_service(member.service_name, member.endpoint)

    def status(self) -> ClusterStatus:
        with self._lock:
            running = sum(1 for m in self._members if m.running)
            total = len(self._members)
        return ClusterStatus(total, running, total - running)