# minirpc

minirpc is a small remote procedure call framework. It is plain Python and
uses only the standard library. It has these parts:

- `minirpc.types`: the request, response and endpoint dataclasses
  (`RpcRequest`, `RpcResponse`, `ServiceEndpoint`). It also holds the enums
  `ProtocolType`, `SerializationType`, `CallType` and `ErrorCode`.
- `minirpc.transport`: a TCP transport (`TcpTransport`,
  `TcpServerTransport`). Each message is sent as a frame, which is a 4-byte
  big-endian length followed by the payload (`encode_frame`).
- `minirpc.json_serializer`: `JsonSerializer`, which encodes requests and
  responses as JSON text.
- `minirpc.server`: `RpcServer`, `ServiceRegistrar`,
  `MemoryServiceDiscovery` and `RpcServerCluster`.
- `minirpc.client`: `RpcClient`, with blocking, asynchronous and one-way
  calls.
- `minirpc.calculator_demo` and `minirpc.benchmark`: two commands, described
  below.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Serving methods

```python
from minirpc.server import RpcServer, ServiceRegistrar
from minirpc.types import ServiceEndpoint


class Greeter:
    def hello(self):
        return "Hello from RPC Server!"

    def add(self, a, b):
        return a + b


server = RpcServer()
registrar = ServiceRegistrar(server, Greeter())
registrar.register_method("hello", Greeter.hello)
registrar.register_method("add", "add")

server.start(ServiceEndpoint("127.0.0.1", 8080))
print(server.address)        # ('127.0.0.1', 8080)
```

`ServiceRegistrar.register_method` accepts any of three forms:

- a method name;
- a bound method;
- a function that takes the service as its first argument.

A call must pass exactly as many parameters as the method takes. If it does
not, the call fails with the message "Method expects N parameters".

There are two other ways to register a handler:

- `server.register_method(name, handler)` registers a handler that takes the
  list of parameters.
- `server.register_advanced_method(name, handler)` registers a handler that
  also receives a `CallContext` (request id, headers, start time). An
  advanced handler takes precedence over a plain handler with the same name.

How calls fail:

- If a handler raises, the reply carries `ErrorCode.INTERNAL_ERROR` and the
  exception message.
- If no handler is registered under the name, the reply carries
  `ErrorCode.METHOD_NOT_FOUND`.
- If the request cannot be decoded, the reply carries
  `ErrorCode.SERIALIZATION_ERROR`.

You can add checks that run before each call with `server.add_middleware(fn)`.
The check is called as `fn(request, response, context)`. If it returns
`False`, the handler is not run, and the response is sent back in whatever
state the check left it.

If `server.error_handler` is set, it is called with `(message, code)` for
every failed request.

`server.statistics` counts:

- total, successful and failed requests;
- bytes received and sent;
- a running average of response time.

`server.reset_statistics()` sets all of these back to zero.

Each client connection is served on its own thread.

If the endpoint cannot be bound, `start` raises
`minirpc.transport.TransportError`. If the server is already running, it
raises `RuntimeError`.

To shut the server down, call `server.stop()` or use the server as a context
manager.

## Calling methods

```python
from minirpc.client import RpcClient
from minirpc.types import ServiceEndpoint

with RpcClient() as client:
    client.connect(ServiceEndpoint("127.0.0.1", 8080))

    response = client.call("add", [10, 20])
    if response.is_success():
        print(response.result)          # 30
    else:
        print(response.error_message)

    future = client.call_async("add", [15, 25])
    print(future.result().result)       # 40
```

Connecting:

- `connect` raises `TransportError` if the server cannot be reached.
- `client.timeout` is in seconds, and defaults to 5.
- `client.connection_callback` is called with `(connected, endpoint_text)`
  whenever the connection state changes.

Calls:

- `call` never raises because of the remote side. Its errors are reported
  through `response.error_code`: `NETWORK_ERROR`, `TIMEOUT`,
  `SERIALIZATION_ERROR` or `INTERNAL_ERROR`.
- `call_async` returns a `concurrent.futures.Future` and also accepts an
  optional callback.
- `call_one_way` sends the request without waiting for a reply. It raises
  `TransportError` if the client is not connected or sending fails.

`client.statistics` counts:

- total, successful, failed and timed-out requests;
- bytes sent and received.

`client.reset_statistics()` sets all of these back to zero.

Parameters and results can be integers, floats, booleans, strings or `None`:

- Floats are carried with six decimal places.
- Integers outside the signed 32-bit range come back as text.

## Service discovery and clusters

`MemoryServiceDiscovery` records which endpoints serve each service name:

- `register_service`, `unregister_service` and `discover_service` change and
  read that record.
- A callback set with `set_discovery_callback` receives the new endpoint list
  after each change.

`RpcServerCluster` starts and stops a set of servers together:

- `start_all()` returns `True` only if every server started.
- Each server is registered with the discovery when it starts, and
  unregistered when it stops.
- `status()` returns a `ClusterStatus` with the total, running and stopped
  counts.

## Commands

### Calculator demo

```
minirpc-calculator          # server and client in one process
minirpc-calculator server   # server only
minirpc-calculator client   # client only
```

Options:

- `--host` defaults to `127.0.0.1`.
- `--port` defaults to `8080`.

The server offers `add`, `subtract`, `multiply`, `divide` and `getInfo`. The
client does the following:

1. calls each of these methods;
2. makes one asynchronous call;
3. divides by zero to show an error response.

### Benchmark

```
minirpc-benchmark --threads 4 --requests 1000 --method add
```

This command does the following:

1. starts a server on `--port` (default 8082);
2. sends requests from `--threads` client threads, `--requests` requests per
   thread;
3. prints the report.

The report gives:

- the success rate;
- requests per second;
- latency in milliseconds: minimum, maximum, mean, P50, P95 and P99.

The methods are `add`, `processString`, `noop` and `fibonacci`. `--verbose`
prints each failure and progress every 100 requests. Run
`minirpc-benchmark --help` for all options.

## What is not included

The only transport is framed TCP, and the only encoding is JSON.

`ProtocolType` also names HTTP, WebSocket and UDP. `SerializationType` also
names MessagePack, Protobuf and a binary format. None of these is
implemented. `RpcClient` and `RpcServer` raise `ValueError` if asked for
any of them, and so does the benchmark's `--protocol http`.

There is no client connection pool and no load balancing across endpoints.

`RpcServer.thread_pool_size` and `request_queue_size` are stored, but they
do not limit anything.