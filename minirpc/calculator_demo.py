"""Calculator service demo: runs a server, a client, or both."""

from __future__ import annotations

import argparse
import threading
from typing import Dict, List, Optional

from .client import RpcClient
from .server import RpcServer, ServiceRegistrar
from .transport import TransportError
from .types import ErrorCode, ProtocolType, RpcResponse, SerializationType, ServiceEndpoint


class CalculatorService:
    """Integer arithmetic exposed over RPC."""

    def add(self, a: int, b: int) -> int:
        print(f"Server: add {a} + {b}")
        return a + b

    def subtract(self, a: int, b: int) -> int:
        print(f"Server: subtract {a} - {b}")
        return a - b

    def multiply(self, a: int, b: int) -> int:
        print(f"Server: multiply {a} * {b}")
        return a * b

    def divide(self, a: int, b: int) -> float:
        print(f"Server: divide {a} / {b}")
        if b == 0:
            raise ValueError("Divisor must not be zero")
        return a / b

    def get_info(self) -> str:
        return "RPC Calculator Service v1.0"


def build_server(service: CalculatorService) -> RpcServer:
    """Create a server with every calculator method registered (not started)."""
    server = RpcServer(ProtocolType.TCP, SerializationType.JSON)
    registrar = ServiceRegistrar(server, service)
    registrar.register_method("add", service.add)
    registrar.register_method("subtract", service.subtract)
    registrar.register_method("multiply", service.multiply)
    registrar.register_method("divide", service.divide)
    registrar.register_method("getInfo", service.get_info)

    def on_error(message: str, code: ErrorCode) -> None:
        print(f"Server error: {message} (code: {int(code)})")

    server.error_handler = on_error
    server.thread_pool_size = 4
    return server


def run_server(endpoint: ServiceEndpoint, stop_event: threading.Event) -> None:
    """Serve the calculator on ``endpoint`` until ``stop_event`` is set or Ctrl-C."""
    print("=== Starting RPC server ===")
    server = build_server(CalculatorService())
    server.start(endpoint)
    print(f"Server listening on {endpoint}")
    try:
        while not stop_event.wait(1.0):
            stats = server.statistics
            if stats.total_requests > 0:
                print(
                    f"Statistics - total: {stats.total_requests}, "
                    f"succeeded: {stats.successful_requests}, "
                    f"failed: {stats.failed_requests}, "
                    f"active connections: {stats.active_connections}"
                )
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()


_STEPS = [
    ("getInfo", [], "Service info"),
    ("add", [10, 20], "10 + 20"),
    ("subtract", [50, 30], "50 - 30"),
    ("multiply", [6, 7], "6 * 7"),
    ("divide", [100, 4], "100 / 4"),
]


def _show_connection(connected: bool, name: str) -> None:
    state = "connected" if connected else "disconnected"
    print(f"Connection state: {state} - {name}")


def run_client(endpoint: ServiceEndpoint) -> Dict[str, RpcResponse]:
    """Exercise every calculator method and return the responses by label.

    Raises :class:`~minirpc.transport.TransportError` if the server
    cannot be reached.
    """
    print("=== Starting RPC client ===")
    results: Dict[str, RpcResponse] = {}
    with RpcClient(ProtocolType.TCP, SerializationType.JSON) as client:
        client.connection_callback = _show_connection
        client.connect(endpoint)
        print("Client connected")

        for method, params, label in _STEPS:
            print(f"\n--- {method} ---")
            response = client.call(method, params)
            results[method] = response
            if response.is_success():
                print(f"{label} = {response.result}")
            else:
                print(f"{method} failed: {response.error_message}")

        print("\n--- asynchronous call ---")
        future = client.call_async("add", [15, 25])
        print("Asynchronous call sent, waiting for the result...")
        response = future.result()
        results["async_add"] = response
        if response.is_success():
            print(f"Asynchronous result: 15 + 25 = {response.result}")
        else:
            print(f"Asynchronous call failed: {response.error_message}")

        print("\n--- error case ---")
        response = client.call("divide", [10, 0])
        results["divide_by_zero"] = response
        if not response.is_success():
            print(f"Expected error: {response.error_message}")

        print("\n--- client statistics ---")
        stats = client.statistics
        print(
            f"total: {stats.total_requests}, succeeded: {stats.successful_requests}, "
            f"failed: {stats.failed_requests}, timed out: {stats.timeout_requests}, "
            f"bytes sent: {stats.bytes_sent}, bytes received: {stats.bytes_received}"
        )
    print("Client disconnected")
    return results


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="calculator-demo", description="RPC calculator demo"
    )
    parser.add_argument(
        "mode", nargs="?", choices=["server", "client", "both"], default="both",
        help="run only the server, only the client, or both (default)",
    )
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8080)
    args = parser.parse_args(argv)

    print("RPC framework demo")
    print("Protocol: TCP, serialization: JSON")
    print("=" * 40)

    endpoint = ServiceEndpoint(args.host, args.port)
    if args.mode == "server":
        try:
            run_server(endpoint, threading.Event())
        except TransportError as exc:
            print(f"Server failed to start: {exc}")
            return 1
        return 0

    if args.mode == "client":
        try:
            run_client(endpoint)
        except TransportError as exc:
            print(f"Cannot connect to server: {exc}")
            return 1
        return 0

    server = build_server(CalculatorService())
    try:
        server.start(endpoint)
    except TransportError as exc:
        print(f"Server failed to start: {exc}")
        return 1
    try:
        run_client(ServiceEndpoint(args.host, server.address[1]))
    except TransportError as exc:
        print(f"Cannot connect to server: {exc}")
        return 1
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())