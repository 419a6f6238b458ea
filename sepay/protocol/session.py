# sepay/protocol/session.py
from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Callable, Dict, List, Optional

from sepay.interfaces.command_sink import CommandEvent, CommandSink
from sepay.transport.base import Transport
from sepay.transport.errors import TransportError

from .core import FrameParser, Protocol
from .core.defs import CommandRef
from .core.frame import Frame, encode
from .errors import (
    ChecksumMismatch,
    DuplicateInFlightCommand,
    ExtendedModeError,
    FrameError,
    FrameTooLarge,
    LengthMismatch,
    NegativeAcknowledged,
    NotConnected,
    ProtocolError,
    ResponseTimeout,
    SessionClosed,
    TransportWriteError,
)
from .events import DECODE_ERROR, UNSOLICITED, Anomaly
from ._internal.event_dispatcher import EventDispatcher
from ._internal.pending_request import PendingRequest, RequestState
from ._internal.rx_worker import RxWorker

EXTENDED_MODE_COMMAND = "ENABLE_EXTENDED_MODE"


class TerminalSession:
    """
    One logical connection to a payment terminal.

    Correlates outbound commands with inbound responses by command byte,
    runs the extended-mode ACK/NACK handshake and enforces per-request
    deadlines. Inbound bytes are pumped by an RxWorker thread; every
    mutation of the pending map happens under a single lock.
    """

    def __init__(
        self,
        proto: Protocol,
        transport: Transport,
        *,
        response_timeout_s: float = 30.0,
        ack_timeout_s: float = 2.0,
        max_nack_retries: int = 3,
        read_size: int = 256,
        frame_stall_s: Optional[float] = 0.5,
        cmd_sink: Optional[CommandSink] = None,
        on_anomaly: Optional[Callable[[Anomaly], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if response_timeout_s <= 0 or ack_timeout_s <= 0:
            raise ValueError("timeouts must be > 0")
        if max_nack_retries < 0:
            raise ValueError("max_nack_retries must be >= 0")

        self.proto = proto
        self.transport = transport

        self._log = logger or logging.getLogger(__name__)
        self._cmd_sink = cmd_sink
        self.on_anomaly = on_anomaly

        self.response_timeout_s = float(response_timeout_s)
        self.ack_timeout_s = float(ack_timeout_s)
        self.max_nack_retries = int(max_nack_retries)
        self.read_size = int(read_size)
        # Slack a blocking send() grants the RX worker before expiring the request itself.
        self.expiry_grace_s = 0.05

        # A partial frame idle this long is dropped so later frames are not held back.
        self._parser = FrameParser(proto.max_payload, logger=self._log, stall_timeout_s=frame_stall_s)
        self._rx_thread: Optional[RxWorker] = None

        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._pending: Dict[int, PendingRequest] = {}
        self._connected = False
        self._extended_mode = False
        self._anomalies: "queue.Queue[Anomaly]" = queue.Queue(maxsize=200)
        self._events = EventDispatcher(logger=self._log)

    # ---------------- State ----------------
    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def extended_mode(self) -> bool:
        return self._extended_mode

    def pending_commands(self) -> List[int]:
        with self._lock:
            return list(self._pending)

    # ---------------- Lifecycle ----------------
    def connect(self, *, extended_mode: bool = False, timeout: Optional[float] = None) -> "TerminalSession":
        """
        Open the transport, start the RX worker and optionally switch to extended mode.

        A failed negotiation raises ExtendedModeError but leaves the session
        connected (unextended); the caller decides whether to continue or close().
        """
        if not self._connected:
            if not self.transport.is_open():
                self.transport.open()
            self._parser.clear()
            with self._lock:
                self._connected = True
                self._extended_mode = False
            self.start_rx_thread()
            self._log.info("SESSION_CONNECTED transport=%s", type(self.transport).__name__)

        if extended_mode and not self._extended_mode:
            self.negotiate_extended_mode(timeout=timeout)
        return self

    def negotiate_extended_mode(self, timeout: Optional[float] = None) -> Frame:
        try:
            code = self.proto.resolve_command(EXTENDED_MODE_COMMAND)
        except ValueError as e:
            raise ExtendedModeError(str(e)) from None

        try:
            resp = self.send(code, timeout=timeout)
        except (FrameError, ResponseTimeout, NegativeAcknowledged, TransportWriteError) as e:
            self._log.warning("EXTENDED_MODE_FAILED err=%s", e)
            raise ExtendedModeError(f"Terminal did not confirm extended mode: {e}") from e

        with self._lock:
            self._extended_mode = True
        self._log.info("EXTENDED_MODE_ENABLED payload=%r", resp.payload)
        return resp

    def close(self) -> None:
        """Release the transport and reject every pending request with SessionClosed."""
        self._teardown("closed")

    def _teardown(self, reason: str, cause: Optional[BaseException] = None) -> None:
        with self._lock:
            was_connected = self._connected
            self._connected = False
            self._extended_mode = False
            orphans = list(self._pending.values())
            self._pending.clear()

        if not was_connected and not orphans:
            return

        self.stop_rx_thread()
        try:
            self.transport.close()
        except Exception:
            self._log.exception("TRANSPORT_CLOSE_FAILED")
        self._parser.clear()

        for pending in orphans:
            err = SessionClosed(pending.command, pending.name, reason=reason)
            err.__cause__ = cause
            pending.fail(err)

        # Runs the sink callbacks for the orphans too.
        self._events.close()
        self._log.info("SESSION_CLOSED reason=%s rejected=%d", reason, len(orphans))

    def __enter__(self) -> "TerminalSession":
        return self.connect()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------------- Command API ----------------
    def send_async(self, command: CommandRef, payload: bytes = b"", *, timeout: Optional[float] = None) -> PendingRequest:
        """Encode, register and write a command; returns the pending handle."""
        if not self._connected:
            raise NotConnected()

        code = self.proto.resolve_command(command)
        if self.proto.is_control(code):
            raise ValueError(f"0x{code:02X} is a reserved control code, not a command")
        name = self.proto.command_name(code)

        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError(f"payload must be bytes-like, got {type(payload).__name__}")
        payload = bytes(payload)
        if len(payload) > self.proto.max_payload:
            raise FrameTooLarge(
                f"Payload too long: {len(payload)} > max_payload {self.proto.max_payload}",
                command=code,
            )
        raw = encode(code, payload)
        timeout_s = self.response_timeout_s if timeout is None else float(timeout)

        with self._lock:
            if not self._connected:
                raise NotConnected()
            if code in self._pending:
                raise DuplicateInFlightCommand(code, name)
            needs_ack = self._extended_mode and not self.proto.is_simple(code)
            pending = PendingRequest(
                code,
                name,
                raw,
                timeout_s=timeout_s,
                ack_timeout_s=self.ack_timeout_s if needs_ack else None,
            )
            self._pending[code] = pending

        if self._cmd_sink:
            self._attach_sink(pending)

        self._log.debug(
            "SENDING_FRAME cmd=%s state=%s len=%d raw=%s",
            name,
            pending.state.value,
            len(raw),
            raw.hex(),
        )

        try:
            self._write(raw)
        except Exception as e:
            self._log.exception("CMD_SEND_FAILED cmd=%s", name)
            if self._take(pending):
                pending.fail(TransportWriteError(code, name, reason=str(e)))

        return pending

    def send(self, command: CommandRef, payload: bytes = b"", *, timeout: Optional[float] = None) -> Frame:
        """Send a command and block until its response frame (or failure) arrives."""
        pending = self.send_async(command, payload, timeout=timeout)
        while True:
            try:
                return pending.wait(timeout=pending.remaining() + self.expiry_grace_s)
            except FutureTimeout:
                # Deadline passed without the RX worker expiring it.
                self._expire_overdue()

    def _write(self, raw: bytes) -> None:
        with self._write_lock:
            self.transport.write(raw)
            self.transport.flush()

    def _take(self, pending: PendingRequest) -> bool:
        """Remove `pending` from the map if it is still registered."""
        with self._lock:
            if self._pending.get(pending.command) is pending:
                del self._pending[pending.command]
                return True
        return False

    # ---------------- RX Thread ----------------
    def start_rx_thread(self) -> None:
        if self._rx_thread is None or not self._rx_thread.is_alive():
            self._rx_thread = RxWorker(self)
            self._rx_thread.start()
            self._log.info("RX_THREAD_STARTED")

    def stop_rx_thread(self) -> None:
        worker = self._rx_thread
        if worker is None:
            return
        worker.stop()
        if worker is not threading.current_thread():
            worker.join()
        self._rx_thread = None
        self._log.info("RX_THREAD_STOPPED")

    # ---------------- RX Pump ----------------
    def _pump_rx(self) -> None:
        try:
            data = self.transport.read(self.read_size)
        except TransportError as e:
            self._log.error("TRANSPORT_READ_FAILED err=%s", e)
            self._teardown("transport_error", cause=e)
            return

        if data:
            self._parser.feed(data)
        # An idle pump still visits a partial frame so a stalled one can be dropped.
        if self._parser.buffer:
            while True:
                try:
                    frame = self._parser.get_frame()
                except FrameError as e:
                    self._on_decode_error(e)
                    continue
                if frame is None:
                    break
                self._dispatch(frame)

        self._expire_overdue()

    def _dispatch(self, frame: Frame) -> None:
        code = frame.command
        if code == self.proto.ack_code:
            self._on_ack(frame)
            return
        if code == self.proto.nack_code:
            self._on_nack(frame)
            return

        with self._lock:
            pending = self._pending.get(code)
            if pending is not None and pending.state == RequestState.AWAITING_RESPONSE:
                del self._pending[code]
            else:
                pending = None

        if pending is None:
            self._report(Anomaly(UNSOLICITED, command=code, payload=frame.payload))
            return

        self._log.debug("CMD_RESPONSE cmd=%s payload_len=%d", pending.name, len(frame.payload))
        pending.resolve(frame)

    def _oldest_awaiting_ack(self) -> Optional[PendingRequest]:
        # dict preserves registration order
        for pending in self._pending.values():
            if pending.state == RequestState.AWAITING_ACK:
                return pending
        return None

    def _on_ack(self, frame: Frame) -> None:
        with self._lock:
            pending = self._oldest_awaiting_ack()
            if pending is not None:
                pending.acknowledged()

        if pending is None:
            self._report(Anomaly(UNSOLICITED, command=frame.command, payload=frame.payload))
            return
        self._log.debug("CMD_ACKED cmd=%s attempts=%d", pending.name, pending.attempts)

    def _on_nack(self, frame: Frame) -> None:
        with self._lock:
            pending = self._oldest_awaiting_ack()
            exhausted = pending is not None and pending.attempts > self.max_nack_retries
            if pending is None:
                pass
            elif exhausted:
                del self._pending[pending.command]
            else:
                pending.resent()

        if pending is None:
            self._report(Anomaly(UNSOLICITED, command=frame.command, payload=frame.payload))
            return

        if exhausted:
            self._log.warning("CMD_NACKED cmd=%s attempts=%d", pending.name, pending.attempts)
            pending.fail(NegativeAcknowledged(pending.command, pending.attempts, pending.name))
            return

        self._log.warning(
            "NACK_RESEND cmd=%s attempt=%d/%d",
            pending.name,
            pending.attempts,
            self.max_nack_retries + 1,
        )
        try:
            self._write(pending.raw)
        except Exception as e:
            self._log.exception("CMD_RESEND_FAILED cmd=%s", pending.name)
            if self._take(pending):
                pending.fail(TransportWriteError(pending.command, pending.name, reason=str(e)))

    def _on_decode_error(self, err: FrameError) -> None:
        attributed: Optional[PendingRequest] = None
        if isinstance(err, (ChecksumMismatch, LengthMismatch)) and err.command is not None:
            with self._lock:
                candidate = self._pending.get(err.command)
                if candidate is not None and candidate.state == RequestState.AWAITING_RESPONSE:
                    del self._pending[err.command]
                    attributed = candidate

        self._report(Anomaly(DECODE_ERROR, command=err.command, error=err, raw=err.raw))
        if attributed is not None:
            attributed.fail(err)

    def _expire_overdue(self) -> None:
        now = time.perf_counter()
        with self._lock:
            expired = [p for p in self._pending.values() if p.expired(now)]
            for pending in expired:
                del self._pending[pending.command]

        for pending in expired:
            timeout_s = pending.stage_timeout_s
            self._log.warning(
                "CMD_TIMEOUT cmd=%s state=%s timeout_s=%.3f",
                pending.name,
                pending.state.value,
                timeout_s,
            )
            pending.fail(ResponseTimeout(pending.command, timeout_s, pending.name), RequestState.TIMED_OUT)

    # ---------------- Anomalies ----------------
    def _report(self, anomaly: Anomaly) -> None:
        if anomaly.kind == DECODE_ERROR:
            self._log.warning("FRAME_DECODE_FAILED %s raw=%s", anomaly, anomaly.raw.hex())
        else:
            self._log.warning("UNSOLICITED_FRAME %s", anomaly)

        try:
            self._anomalies.put_nowait(anomaly)
        except queue.Full:
            self._log.warning("ANOMALY_QUEUE_FULL dropped=%s", anomaly.kind)

        if self.on_anomaly:
            self._events.submit(self._notify_anomaly, self.on_anomaly, anomaly)

    def _notify_anomaly(self, callback: Callable[[Anomaly], None], anomaly: Anomaly) -> None:
        try:
            callback(anomaly)
        except Exception:
            self._log.exception("ON_ANOMALY_CALLBACK_ERROR")

    def try_get_anomaly(self, timeout: float = 0.1) -> Optional[Anomaly]:
        try:
            return self._anomalies.get(timeout=timeout)
        except queue.Empty:
            return None

    # ---------------- Telemetry ----------------
    def _attach_sink(self, pending: PendingRequest) -> None:
        sink = self._cmd_sink
        start_ts = pending.created_at  # perf_counter base

        def _on_done(fut: Future) -> None:
            # Runs on the completing thread (usually RX): build the event, hand it off.
            rtt_ms = (time.perf_counter() - start_ts) * 1000.0
            err = fut.exception()
            if err is None:
                kind = "ok"
                payload = {"response": fut.result().payload}
            else:
                kind = _event_kind(err)
                payload = {"error": str(err)}

            event = CommandEvent(
                name=pending.name,
                kind=kind,
                command=pending.command,
                rtt_ms=rtt_ms,
                attempts=pending.attempts,
                payload=payload,
            )
            self._events.submit(self._emit_command, sink, event)

        pending.add_done_callback(_on_done)

    def _emit_command(self, sink: CommandSink, event: CommandEvent) -> None:
        try:
            sink.on_command(event)
        except Exception:
            self._log.exception("CMD_SINK_ERROR cmd=%s", event.name)


def _event_kind(err: BaseException) -> str:
    if isinstance(err, ResponseTimeout):
        return "timeout"
    if isinstance(err, NegativeAcknowledged):
        return "nack"
    if isinstance(err, TransportWriteError):
        return "send_failed"
    if isinstance(err, SessionClosed):
        return "closed"
    if isinstance(err, ProtocolError):
        return "error"
    return "exception"
