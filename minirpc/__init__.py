"""A small RPC framework with a framed TCP transport, JSON encoding, server and client."""

__version__ = "1.0.0"

__all__ = [
    "types",
    "transport",
    "json_serializer",
    "server",
    "client",
    "calculator_demo",
    "benchmark",
]