"""Length-prefixed TCP transport for RPC clients and servers.

Every message on the wire is a 4-byte big-endian length followed by
that many bytes of payload.
"""

from __future__ import annotations

import socket
import struct
import threading
from typing import Callable, List, Optional, Set, Tuple, Union

from .types import ConnectionCallback, ProtocolType, ServiceEndpoint

_HEADER = struct.Struct("!I")

MessageHandler = Callable[[bytes], Union[bytes, str]]


class TransportError(Exception):
    """Raised when a connection cannot be made or a message cannot be moved."""


def encode_frame(payload: Union[bytes, str]) -> bytes:
    """Prefix a payload with its 4-byte big-endian length."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    if len(payload) > 0xFFFFFFFF:
        raise ValueError("payload too large for a single frame")
    return _HEADER.pack(len(payload)) + payload


def _recv_exactly(sock: socket.socket, size: int) -> bytes:
    """Read exactly ``size`` bytes; timeouts propagate as ``TimeoutError``."""
    buffer = bytearray()
    while len(buffer) < size:
        try:
            chunk = sock.recv(size - len(buffer))
        except TimeoutError:
            raise
        except OSError as exc:
            raise TransportError(f"receive failed: {exc}") from exc
        if not chunk:
            raise TransportError("connection closed by peer")
        buffer += chunk
    return bytes(buffer)


def _read_frame(sock: socket.socket) -> bytes:
    (length,) = _HEADER.unpack(_recv_exactly(sock, _HEADER.size))
    return _recv_exactly(sock, length)


def _check_ipv4(host: str) -> None:
    try:
        socket.inet_pton(socket.AF_INET, host)
    except OSError as exc:
        raise TransportError(f"invalid IPv4 address: {host!r}") from exc


class TcpTransport:
    """Client side of the framed TCP transport.

    ``timeout`` is in seconds and applies to connecting, sending and
    receiving. ``connection_callback``, if set, is called with
    ``(connected, endpoint_text)`` whenever the connection state changes.
    """

    protocol = ProtocolType.TCP

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self.connection_callback: Optional[ConnectionCallback] = None
        self._sock: Optional[socket.socket] = None
        self._connected = False
        self._lock = threading.RLock()

    def __enter__(self) -> "TcpTransport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()

    def _notify(self, connected: bool, endpoint: str) -> None:
        if self.connection_callback is not None:
            self.connection_callback(connected, endpoint)

    def connect(self, endpoint: ServiceEndpoint) -> None:
        """Open a connection; does nothing if already connected."""
        with self._lock:
            if self._connected:
                return
            name = str(endpoint)
            try:
                _check_ipv4(endpoint.host)
                try:
                    sock = socket.create_connection(
                        (endpoint.host, endpoint.port), timeout=self.timeout
                    )
                except OSError as exc:
                    raise TransportError(f"cannot connect to {name}: {exc}") from exc
            except TransportError:
                self._notify(False, name)
                raise
            self._sock = sock
            self._connected = True
            self._notify(True, name)

    def disconnect(self) -> None:
        """Close the connection if one is open."""
        with self._lock:
            was_connected = self._connected
            if self._sock is not None:
                self._sock.close()
                self._sock = None
            self._connected = False
            if was_connected:
                self._notify(False, "")

    def is_connected(self) -> bool:
        with self._lock:
            return self._connected

    def _socket(self) -> socket.socket:
        if not self._connected or self._sock is None:
            raise TransportError("not connected")
        self._sock.settimeout(self.timeout)
        return self._sock

    def send(self, data: Union[bytes, str]) -> None:
        """Send one framed message."""
        with self._lock:
            sock = self._socket()
            try:
                sock.sendall(encode_frame(data))
            except OSError as exc:
                raise TransportError(f"send failed: {exc}") from exc

    def receive(self) -> bytes:
        """Block until one framed message arrives and return its payload.

        Raises ``TimeoutError`` if nothing arrives in time and
        :class:`TransportError` if the connection fails.
        """
        with self._lock:
            return _read_frame(self._socket())


class TcpServerTransport:
    """Server side of the framed TCP transport.

    Each accepted connection is served on its own thread: every incoming
    message is passed to ``message_handler`` and its return value is sent
    back as the reply.
    """

    protocol = ProtocolType.TCP
    _POLL_INTERVAL = 0.2

    def __init__(self) -> None:
        self.message_handler: Optional[MessageHandler] = None
        self._listener: Optional[socket.socket] = None
        self._running = threading.Event()
        self._accept_thread: Optional[threading.Thread] = None
        self._clients: Set[socket.socket] = set()
        self._workers: List[threading.Thread] = []
        self._lock = threading.Lock()

    def __enter__(self) -> "TcpServerTransport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    @property
    def address(self) -> Tuple[str, int]:
        """The (host, port) the server is listening on."""
        if self._listener is None:
            raise TransportError("server is not running")
        host, port = self._listener.getsockname()[:2]
        return host, port

    def start(self, endpoint: ServiceEndpoint) -> None:
        """Bind, listen and start accepting; does nothing if already running."""
        if self._running.is_set():
            return
        if endpoint.host in ("", "0.0.0.0"):
            bind_host = ""
        else:
            _check_ipv4(endpoint.host)
            bind_host = endpoint.host
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((bind_host, endpoint.port))
            listener.listen(socket.SOMAXCONN)
            listener.settimeout(self._POLL_INTERVAL)
        except OSError as exc:
            listener.close()
            raise TransportError(f"cannot listen on {endpoint}: {exc}") from exc
        self._listener = listener
        self._running.set()
        self._accept_thread = threading.Thread(
            target=self._accept_loop, args=(listener,), name="rpc-accept", daemon=True
        )
        self._accept_thread.start()

    def stop(self) -> None:
        """Stop accepting, drop every client connection and wait for workers."""
        if not self._running.is_set():
            return
        self._running.clear()
        if self._accept_thread is not None:
            self._accept_thread.join()
            self._accept_thread = None
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        with self._lock:
            clients = list(self._clients)
            workers = list(self._workers)
            self._workers.clear()
        for conn in clients:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        current = threading.current_thread()
        for worker in workers:
            if worker is not current:
                worker.join()

    def is_running(self) -> bool:
        return self._running.is_set()

    def _accept_loop(self, listener: socket.socket) -> None:
        while self._running.is_set():
            try:
                conn, _ = listener.accept()
            except (TimeoutError, InterruptedError):
                continue
            except OSError:
                break
            conn.settimeout(None)
            with self._lock:
                if not self._running.is_set():
                    conn.close()
                    break
                worker = threading.Thread(
                    target=self._serve_client, args=(conn,), name="rpc-client", daemon=True
                )
                self._clients.add(conn)
                self._workers.append(worker)
                worker.start()

    def _serve_client(self, conn: socket.socket) -> None:
        try:
            while self._running.is_set():
                try:
                    request = _read_frame(conn)
                except (TransportError, OSError):
                    break
                if not request:
                    break
                handler = self.message_handler
                if handler is None:
                    continue
                try:
                    reply = handler(request)
                except Exception:
                    # A failing handler ends the session for this client.
                    break
                try:
                    conn.sendall(encode_frame(reply))
                except OSError:
                    break
        finally:
            with self._lock:
                self._clients.discard(conn)
            conn.close()