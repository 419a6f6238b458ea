"""End-to-end session behaviour with the real RX worker thread and a scripted terminal."""
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, List, Optional

import pytest

from sepay.protocol.core.defs import load_protocol
from sepay.protocol.core.frame import decode, encode
from sepay.protocol.errors import ExtendedModeError, NegativeAcknowledged, SessionClosed
from sepay.protocol.session import TerminalSession
from sepay.protocol.terminal_client import TerminalClient
from sepay.transport.base import Transport

ACK = encode(0x06)
NACK = encode(0x15)

Responder = Callable[[int, bytes], List[bytes]]


class ScriptedTerminal(Transport):
    """
    In-memory terminal: every decoded outbound frame is passed to `responder`,
    whose returned raw frames are queued for the session to read.
    """

    def __init__(self, responder: Optional[Responder] = None):
        self.responder = responder or (lambda cmd, payload: [])
        self.received: List[tuple] = []
        self._inbound: "queue.Queue[bytes]" = queue.Queue()
        self._open = False
        self._lock = threading.Lock()

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False

    def is_open(self) -> bool:
        return self._open

    def read(self, n: int) -> bytes:
        try:
            return self._inbound.get(timeout=0.01)
        except queue.Empty:
            return b""

    def write(self, data: bytes) -> int:
        cmd, payload = decode(data)
        with self._lock:
            self.received.append((cmd, payload))
            replies = self.responder(cmd, payload)
        for raw in replies:
            self._inbound.put(raw)
        return len(data)

    def flush(self) -> None:
        return None

    def inject(self, raw: bytes) -> None:
        self._inbound.put(raw)


def _session(terminal: ScriptedTerminal, **kwargs) -> TerminalSession:
    kwargs.setdefault("response_timeout_s", 2.0)
    kwargs.setdefault("ack_timeout_s", 1.0)
    return TerminalSession(load_protocol(), terminal, logger=logging.getLogger("test"), **kwargs)


def _extended_terminal(on_command: Responder) -> ScriptedTerminal:
    def responder(cmd: int, payload: bytes) -> List[bytes]:
        if cmd == 0x95:
            return [encode(0x95, b"0")]
        return on_command(cmd, payload)

    return ScriptedTerminal(responder)


def test_connect_negotiates_extended_mode():
    terminal = _extended_terminal(lambda cmd, payload: [])

    with _session(terminal).connect(extended_mode=True) as session:
        assert session.extended_mode is True
        assert terminal.received[0] == (0x95, b"")


def test_failed_negotiation_leaves_session_connected_unextended():
    terminal = ScriptedTerminal()  # never answers
    session = _session(terminal)

    with pytest.raises(ExtendedModeError):
        session.connect(extended_mode=True, timeout=0.05)

    try:
        assert session.is_connected is True
        assert session.extended_mode is False
    finally:
        session.close()


def test_transaction_with_ack_then_response():
    terminal = _extended_terminal(lambda cmd, payload: [ACK, encode(cmd, b"00|APPROVED|000000001234")])

    with _session(terminal).connect(extended_mode=True) as session:
        fields = TerminalClient(session).request("START_TRANSACTION", "000000001234", "AAA-123", "MRCHT45", 0)

    assert fields == ["00", "APPROVED", "000000001234"]
    assert terminal.received[-1] == (0x01, b"000000001234|AAA-123|MRCHT45|0")


def test_single_nack_is_retried_transparently():
    attempts = []

    def on_command(cmd, payload):
        attempts.append(cmd)
        if len(attempts) == 1:
            return [NACK]
        return [ACK, encode(cmd, b"OK")]

    terminal = _extended_terminal(on_command)

    with _session(terminal, max_nack_retries=3).connect(extended_mode=True) as session:
        resp = session.send("CHECK_TRANSACTION_STATUS", b"AAA-123")

    assert resp.payload == b"OK"
    assert attempts == [0x03, 0x03]


def test_persistent_nack_surfaces_negative_acknowledged():
    terminal = _extended_terminal(lambda cmd, payload: [NACK])

    with _session(terminal, max_nack_retries=2).connect(extended_mode=True) as session:
        with pytest.raises(NegativeAcknowledged):
            session.send("CHECK_TRANSACTION_STATUS", b"AAA-123")

    assert [c for c, _ in terminal.received].count(0x03) == 3


def test_concurrent_commands_resolve_to_their_own_callers():
    release = threading.Event()

    def responder(cmd, payload):
        return []

    terminal = ScriptedTerminal(responder)
    results = {}

    with _session(terminal).connect() as session:
        def call(name, payload):
            results[name] = session.send(name, payload).payload

        threads = [
            threading.Thread(target=call, args=("CHECK_TRANSACTION_STATUS", b"REF")),
            threading.Thread(target=call, args=("ENQUIRY", b"")),
        ]
        for t in threads:
            t.start()

        # wait until both are in flight, then answer out of order
        for _ in range(200):
            if len(session.pending_commands()) == 2:
                break
            release.wait(0.005)
        terminal.inject(encode(0x05, b"READY") + encode(0x03, b"00|DONE"))

        for t in threads:
            t.join(timeout=2.0)

    assert results == {"CHECK_TRANSACTION_STATUS": b"00|DONE", "ENQUIRY": b"READY"}


def test_close_rejects_callers_blocked_in_send():
    terminal = ScriptedTerminal()
    session = _session(terminal, response_timeout_s=10.0).connect()
    errors = []

    def call(name):
        try:
            session.send(name)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=call, args=(n,)) for n in ("ENQUIRY", "CHECK_TRANSACTION_STATUS")]
    for t in threads:
        t.start()
    for _ in range(200):
        if len(session.pending_commands()) == 2:
            break
        threading.Event().wait(0.005)

    session.close()
    for t in threads:
        t.join(timeout=2.0)

    assert len(errors) == 2
    assert all(isinstance(e, SessionClosed) for e in errors)
    assert session.pending_commands() == []


def test_enquiry_reports_false_on_timeout():
    terminal = ScriptedTerminal()

    with _session(terminal).connect() as session:
        assert TerminalClient(session).enquiry(timeout=0.05) is False


def test_enquiry_reports_true_when_answered():
    terminal = ScriptedTerminal(lambda cmd, payload: [encode(cmd, b"")])

    with _session(terminal).connect() as session:
        assert TerminalClient(session).enquiry(timeout=1.0) is True


class SlowSink:
    def __init__(self, delay_s: float):
        self.delay_s = delay_s
        self.threads: List[str] = []

    def on_command(self, event) -> None:
        self.threads.append(threading.current_thread().name)
        time.sleep(self.delay_s)

    def close(self) -> None:
        pass


def test_slow_command_sink_does_not_delay_next_response():
    sink = SlowSink(delay_s=0.5)
    terminal = ScriptedTerminal()

    with _session(terminal, cmd_sink=sink).connect() as session:
        first = session.send_async("CHECK_TRANSACTION_STATUS", b"REF")
        second = session.send_async("ENQUIRY")

        t0 = time.perf_counter()
        terminal.inject(encode(0x03, b"00|DONE") + encode(0x05, b"READY"))
        assert first.wait(2.0).payload == b"00|DONE"
        assert second.wait(2.0).payload == b"READY"
        elapsed = time.perf_counter() - t0

    assert elapsed < 0.4
    assert sink.threads == ["sepay-events", "sepay-events"]


def test_slow_anomaly_handler_does_not_delay_responses():
    def slow_handler(anomaly):
        time.sleep(0.5)

    terminal = ScriptedTerminal()

    with _session(terminal, on_anomaly=slow_handler).connect() as session:
        pending = session.send_async("ENQUIRY")

        t0 = time.perf_counter()
        terminal.inject(encode(0x42, b"stray") + encode(0x05, b"READY"))
        assert pending.wait(2.0).payload == b"READY"
        elapsed = time.perf_counter() - t0

    assert elapsed < 0.4
