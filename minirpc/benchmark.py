"""Load generator that measures call latency and throughput of the RPC stack."""

from __future__ import annotations

import argparse
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .client import RpcClient
from .server import RpcServer, ServiceRegistrar
from .transport import TransportError
from .types import (
    ProtocolType,
    SerializationType,
    ServiceEndpoint,
    protocol_type_to_string,
    serialization_type_to_string,
)

_PROTOCOLS = {"tcp": ProtocolType.TCP, "http": ProtocolType.HTTP, "udp": ProtocolType.UDP}
_SERIALIZATIONS = {
    "json": SerializationType.JSON,
    "binary": SerializationType.BINARY,
    "msgpack": SerializationType.MESSAGEPACK,
}


class BenchmarkService:
    """Methods of varying cost used as benchmark targets."""

    def add(self, a: int, b: int) -> int:
        return a + b

    def process_string(self, text: str) -> str:
        return "Processed: " + text

    def noop(self) -> None:
        """Does nothing; measures the bare cost of a call."""

    def fibonacci(self, n: int) -> int:
        if n <= 1:
            return n
        a, b = 0, 1
        for _ in range(2, n + 1):
            a, b = b, a + b
        return b


@dataclass
class BenchmarkConfig:
    """Settings of one benchmark run."""

    protocol: ProtocolType = ProtocolType.TCP
    serialization: SerializationType = SerializationType.JSON
    num_threads: int = 1
    requests_per_thread: int = 1000
    server_port: int = 8082
    test_method: str = "add"
    verbose: bool = False


@dataclass(frozen=True)
class LatencyReport:
    """Outcome of a run; latencies are in milliseconds."""

    config: BenchmarkConfig
    total_requests: int
    completed: int
    failed: int
    success_rate: float
    elapsed_ms: float
    qps: float
    min_latency: float
    max_latency: float
    avg_latency: float
    p50: float
    p95: float
    p99: float


_PARAMS: Dict[str, Callable[[int], List[Any]]] = {
    "add": lambda i: [i, i + 1],
    "processString": lambda i: [f"test_{i}"],
    "noop": lambda i: [],
    "fibonacci": lambda i: [10],
}


def parse_args(argv: Optional[List[str]] = None) -> BenchmarkConfig:
    """Build a configuration from command-line arguments.

    Unrecognised protocol or serialization names and unknown options are
    ignored and leave the defaults in place.
    """
    parser = argparse.ArgumentParser(prog="rpc-benchmark", description="RPC benchmark tool")
    parser.add_argument("--protocol", help="tcp|http|udp (default: tcp)")
    parser.add_argument("--serialization", help="json|binary|msgpack (default: json)")
    parser.add_argument("--threads", type=int, help="concurrent client threads (default: 1)")
    parser.add_argument("--requests", type=int, help="requests per thread (default: 1000)")
    parser.add_argument("--method", help="method to call (default: add)")
    parser.add_argument("--port", type=int, help="server port (default: 8082)")
    parser.add_argument("--verbose", action="store_true", help="verbose output")
    args, _unknown = parser.parse_known_args(argv)

    config = BenchmarkConfig()
    if args.protocol is not None:
        config.protocol = _PROTOCOLS.get(args.protocol, config.protocol)
    if args.serialization is not None:
        config.serialization = _SERIALIZATIONS.get(args.serialization, config.serialization)
    if args.threads is not None:
        config.num_threads = args.threads
    if args.requests is not None:
        config.requests_per_thread = args.requests
    if args.method is not None:
        config.test_method = args.method
    if args.port is not None:
        config.server_port = args.port
    config.verbose = args.verbose
    return config


def summarize(
    latencies: Iterable[float],
    config: BenchmarkConfig,
    completed: int,
    failed: int,
    elapsed_ms: float,
) -> Optional[LatencyReport]:
    """Compute the report of a run; ``None`` if no request succeeded."""
    times = sorted(latencies)
    if not times:
        return None
    count = len(times)
    total_requests = config.num_threads * config.requests_per_thread
    seconds = elapsed_ms / 1000.0
    qps = completed / seconds if seconds > 0 else float("inf")
    success_rate = 100.0 * completed / total_requests if total_requests else 0.0
    return LatencyReport(
        config=config,
        total_requests=total_requests,
        completed=completed,
        failed=failed,
        success_rate=success_rate,
        elapsed_ms=elapsed_ms,
        qps=qps,
        min_latency=times[0],
        max_latency=times[-1],
        avg_latency=sum(times) / count,
        p50=times[int(count * 0.5)],
        p95=times[int(count * 0.95)],
        p99=times[int(count * 0.99)],
    )


def format_report(report: LatencyReport) -> str:
    """Render a report as printable text."""
    config = report.config
    rule = "=" * 60
    lines = [
        "",
        rule,
        "Benchmark results",
        rule,
        "Configuration:",
        f"  Protocol: {protocol_type_to_string(config.protocol)}",
        f"  Serialization: {serialization_type_to_string(config.serialization)}",
        f"  Threads: {config.num_threads}",
        f"  Requests per thread: {config.requests_per_thread}",
        f"  Method: {config.test_method}",
        "",
        "Performance:",
        f"  Total requests: {report.total_requests}",
        f"  Succeeded: {report.completed}",
        f"  Failed: {report.failed}",
        f"  Success rate: {report.success_rate:.2f}%",
        f"  Elapsed: {report.elapsed_ms:.0f}ms",
        f"  QPS: {report.qps:.0f}",
        "",
        "Latency (ms):",
        f"  Min: {report.min_latency:.3f}",
        f"  Max: {report.max_latency:.3f}",
        f"  Avg: {report.avg_latency:.3f}",
        f"  P50: {report.p50:.3f}",
        f"  P95: {report.p95:.3f}",
        f"  P99: {report.p99:.3f}",
        rule,
    ]
    return "\n".join(lines)


def _build_server(config: BenchmarkConfig) -> RpcServer:
    server = RpcServer(config.protocol, config.serialization)
    service = BenchmarkService()
    registrar = ServiceRegistrar(server, service)
    registrar.register_method("add", service.add)
    registrar.register_method("processString", service.process_string)
    registrar.register_method("noop", service.noop)
    registrar.register_method("fibonacci", service.fibonacci)
    server.thread_pool_size = max(4, config.num_threads)
    server.request_queue_size = 10000
    return server


class _Tally:
    def __init__(self) -> None:
        self.completed = 0
        self.failed = 0
        self._lock = threading.Lock()

    def add(self, completed: int = 0, failed: int = 0) -> None:
        with self._lock:
            self.completed += completed
            self.failed += failed


def _client_worker(
    config: BenchmarkConfig, port: int, thread_id: int, tally: _Tally
) -> List[float]:
    latencies: List[float] = []
    make_params = _PARAMS.get(config.test_method, lambda i: [])
    with RpcClient(config.protocol, config.serialization) as client:
        try:
            client.connect(ServiceEndpoint("127.0.0.1", port))
        except TransportError:
            print(f"Thread {thread_id} failed to connect", file=sys.stderr)
            return latencies
        for i in range(config.requests_per_thread):
            start = time.perf_counter()
            try:
                response = client.call(config.test_method, make_params(i))
            except Exception as exc:
                tally.add(failed=1)
                if config.verbose:
                    print(f"Exception: {exc}")
            else:
                elapsed_ms = (time.perf_counter() - start) * 1000.0
                if response.is_success():
                    latencies.append(elapsed_ms)
                    tally.add(completed=1)
                else:
                    tally.add(failed=1)
                    if config.verbose:
                        print(f"Request failed: {response.error_message}")
            if config.verbose and (i + 1) % 100 == 0:
                print(f"Thread {thread_id} finished {i + 1} requests")
    return latencies


def run_benchmark(config: BenchmarkConfig) -> Optional[LatencyReport]:
    """Start a server, drive it from client threads and return the report.

    Returns ``None`` if no request succeeded.
    """
    print("Starting benchmark server...")
    server = _build_server(config)
    server.start(ServiceEndpoint("127.0.0.1", config.server_port))
    port = server.address[1]
    print(f"Benchmark server listening on port {port}")
    tally = _Tally()
    try:
        print("Running benchmark...")
        start = time.perf_counter()
        with ThreadPoolExecutor(max_workers=max(1, config.num_threads)) as pool:
            futures = [
                pool.submit(_client_worker, config, port, thread_id, tally)
                for thread_id in range(config.num_threads)
            ]
            per_thread = [future.result() for future in futures]
        elapsed_ms = (time.perf_counter() - start) * 1000.0
    finally:
        server.stop()
        stats = server.statistics
        print("\nServer final statistics:")
        print(f"  Total requests: {stats.total_requests}")
        print(f"  Succeeded: {stats.successful_requests}")
        print(f"  Failed: {stats.failed_requests}")
        print(f"  Average response time: {stats.avg_response_time_ms}ms")

    all_latencies = [value for thread_values in per_thread for value in thread_values]
    return summarize(all_latencies, config, tally.completed, tally.failed, elapsed_ms)


def main(argv: Optional[List[str]] = None) -> int:
    print("RPC benchmark tool")
    print("Version: 1.0.0")
    print("-" * 40)
    config = parse_args(argv)
    try:
        report = run_benchmark(config)
    except Exception as exc:
        print(f"Benchmark failed: {exc}", file=sys.stderr)
        return -1
    if report is None:
        print("No request succeeded!")
    else:
        print(format_report(report))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())