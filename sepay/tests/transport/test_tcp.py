from __future__ import annotations

import socket

import pytest

import sepay.transport.tcp as tcp_mod
from sepay.transport.errors import ConnectionLost, TransportIOError, TransportOpenError


class FakeSocket:
    def __init__(self):
        self.sockopts = []
        self.timeout = None
        self.sent = bytearray()
        self.recv_chunks = []
        self.raise_on_send = None
        self.closed = False

    def setsockopt(self, level, opt, value):
        self.sockopts.append((level, opt, value))

    def settimeout(self, value):
        self.timeout = value

    def recv(self, n: int) -> bytes:
        if not self.recv_chunks:
            raise socket.timeout("timed out")
        item = self.recv_chunks.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item[:n]

    def sendall(self, data: bytes) -> None:
        if self.raise_on_send is not None:
            raise self.raise_on_send
        self.sent += data

    def close(self) -> None:
        self.closed = True


def _opened(monkeypatch, **kwargs):
    sock = FakeSocket()
    calls = {}

    def fake_create_connection(address, timeout=None):
        calls["address"] = address
        calls["timeout"] = timeout
        return sock

    monkeypatch.setattr(tcp_mod.socket, "create_connection", fake_create_connection)
    t = tcp_mod.TCPTransport("10.0.0.5", **kwargs)
    t.open()
    return t, sock, calls


def test_open_connects_with_nodelay_and_read_timeout(monkeypatch):
    t, sock, calls = _opened(monkeypatch, port=4000, timeout=0.2, connect_timeout=3.0)

    assert calls == {"address": ("10.0.0.5", 4000), "timeout": 3.0}
    assert (socket.IPPROTO_TCP, socket.TCP_NODELAY, 1) in sock.sockopts
    assert sock.timeout == 0.2
    assert t.is_open() is True


def test_open_failure_raises_transport_open_error(monkeypatch):
    def refuse(address, timeout=None):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(tcp_mod.socket, "create_connection", refuse)

    t = tcp_mod.TCPTransport("10.0.0.5")
    with pytest.raises(TransportOpenError):
        t.open()
    assert t.is_open() is False


def test_read_returns_empty_on_timeout(monkeypatch):
    t, sock, _ = _opened(monkeypatch)
    assert t.read(256) == b""


def test_read_returns_received_bytes(monkeypatch):
    t, sock, _ = _opened(monkeypatch)
    sock.recv_chunks.append(b"\x02\x00\x02\x05\x7c\x03\x78")

    assert t.read(256) == b"\x02\x00\x02\x05\x7c\x03\x78"


def test_peer_close_raises_connection_lost(monkeypatch):
    t, sock, _ = _opened(monkeypatch)
    sock.recv_chunks.append(b"")

    with pytest.raises(ConnectionLost):
        t.read(256)
    assert t.is_open() is False


def test_read_os_error_raises_transport_io_error(monkeypatch):
    t, sock, _ = _opened(monkeypatch)
    sock.recv_chunks.append(ConnectionResetError("reset"))

    with pytest.raises(TransportIOError):
        t.read(256)
    assert t.is_open() is False


def test_write_sends_everything(monkeypatch):
    t, sock, _ = _opened(monkeypatch)

    assert t.write(b"abc") == 3
    assert bytes(sock.sent) == b"abc"


def test_write_failure_raises_transport_io_error(monkeypatch):
    t, sock, _ = _opened(monkeypatch)
    sock.raise_on_send = BrokenPipeError("pipe")

    with pytest.raises(TransportIOError):
        t.write(b"abc")
    assert t.is_open() is False


@pytest.mark.parametrize("op", ["read", "write", "flush"])
def test_operations_before_open_raise(op):
    t = tcp_mod.TCPTransport("10.0.0.5")
    args = {"read": (1,), "write": (b"\x00",), "flush": ()}[op]
    with pytest.raises(TransportIOError):
        getattr(t, op)(*args)


def test_close_is_idempotent(monkeypatch):
    t, sock, _ = _opened(monkeypatch)

    t.close()
    t.close()

    assert sock.closed is True
    assert t.is_open() is False
