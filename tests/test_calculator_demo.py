import socket
import threading
import time

import pytest

from minirpc.calculator_demo import (
    CalculatorService,
    build_server,
    main,
    run_client,
    run_server,
)
from minirpc.client import RpcClient
from minirpc.json_serializer import JsonSerializer
from minirpc.transport import TransportError
from minirpc.types import ErrorCode, RpcRequest, ServiceEndpoint


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _call_in_process(server, method, params):
    serializer = JsonSerializer()
    data = serializer.serialize_request(RpcRequest(id="r1", method=method, params=params))
    return serializer.deserialize_response(server.handle_request(data))


def test_arithmetic():
    service = CalculatorService()
    assert service.add(10, 20) == 30
    assert service.subtract(50, 30) + 30 == 50
    assert service.multiply(6, 7) == service.multiply(7, 6)
    assert service.divide(100, 4) * 4 == 100


def test_divide_by_zero_raises():
    with pytest.raises(ValueError):
        CalculatorService().divide(10, 0)


def test_build_server_dispatches_methods():
    service = CalculatorService()
    server = build_server(service)
    response = _call_in_process(server, "multiply", [6, 7])
    assert response.is_success()
    assert response.id == "r1"
    assert response.result == service.multiply(6, 7)
    info = _call_in_process(server, "getInfo", [])
    assert info.result == service.get_info()


def test_build_server_reports_errors(capsys):
    server = build_server(CalculatorService())
    response = _call_in_process(server, "divide", [10, 0])
    assert response.error_code == ErrorCode.INTERNAL_ERROR
    assert "Server error" in capsys.readouterr().out
    assert server.statistics.failed_requests == 1


def test_run_client_against_server():
    service = CalculatorService()
    server = build_server(service)
    server.start(ServiceEndpoint("127.0.0.1", 0))
    try:
        results = run_client(ServiceEndpoint("127.0.0.1", server.address[1]))
    finally:
        server.stop()
    assert results["getInfo"].result == service.get_info()
    assert results["add"].result == service.add(10, 20)
    assert results["subtract"].result == service.subtract(50, 30)
    assert results["multiply"].result == service.multiply(6, 7)
    assert results["divide"].result == service.divide(100, 4)
    assert results["async_add"].result == service.add(15, 25)
    assert results["divide_by_zero"].error_code == ErrorCode.INTERNAL_ERROR


def test_run_client_without_server_raises():
    with pytest.raises(TransportError):
        run_client(ServiceEndpoint("127.0.0.1", _free_port()))


def test_run_server_until_stopped():
    port = _free_port()
    endpoint = ServiceEndpoint("127.0.0.1", port)
    stop = threading.Event()
    thread = threading.Thread(target=run_server, args=(endpoint, stop), daemon=True)
    thread.start()
    client = RpcClient()
    deadline = time.monotonic() + 5
    while True:
        try:
            client.connect(endpoint)
            break
        except TransportError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.05)
    try:
        response = client.call("add", [2, 3])
    finally:
        client.disconnect()
        stop.set()
        thread.join(5)
    assert response.result == CalculatorService().add(2, 3)
    assert not thread.is_alive()


def test_main_runs_both():
    assert main(["--port", "0"]) == 0


def test_main_client_without_server_fails(capsys):
    assert main(["client", "--port", str(_free_port())]) == 1
    assert "Cannot connect" in capsys.readouterr().out