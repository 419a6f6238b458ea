# sepay/transport/tcp.py
from __future__ import annotations

import socket
from typing import Optional

from .base import Transport
from .errors import ConnectionLost, TransportIOError, TransportOpenError


class TCPTransport(Transport):
    """
    TCP transport over a plain stdlib socket.

    read(n) waits at most `timeout` seconds and returns b"" when nothing arrived.
    """

    def __init__(
        self,
        host: str,
        port: int = 1234,
        timeout: float = 0.05,
        connect_timeout: float = 5.0,
    ):
        self.host = host
        self.port = int(port)
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.sock: Optional[socket.socket] = None

    def open(self) -> None:
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.settimeout(self.timeout)
        except OSError as e:
            self.sock = None
            raise TransportOpenError(f"connect to {self.host}:{self.port} failed: {e}") from None
        self.sock = sock

    def close(self) -> None:
        if self.sock is not None:
            try:
                self.sock.close()
            finally:
                self.sock = None

    def is_open(self) -> bool:
        return self.sock is not None

    def read(self, n: int) -> bytes:
        sock = self.sock
        if sock is None:
            raise TransportIOError("read while transport not open")

        try:
            data = sock.recv(n)
        except socket.timeout:
            return b""
        except OSError as e:
            self.sock = None
            raise TransportIOError(f"TCP read failed: {e}") from None

        if not data:
            self.sock = None
            raise ConnectionLost(f"{self.host}:{self.port} closed the connection")
        return data

    def write(self, data: bytes) -> int:
        sock = self.sock
        if sock is None:
            raise TransportIOError("write while transport not open")

        try:
            sock.sendall(data)
        except OSError as e:
            self.sock = None
            raise TransportIOError(f"TCP write failed: {e}") from None
        return len(data)

    def flush(self) -> None:
        if self.sock is None:
            raise TransportIOError("flush while transport not open")
        # sendall() already hands every byte to the kernel.
