from __future__ import annotations

import enum
import time
from concurrent.futures import Future
from typing import Any, Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from sepay.protocol.core.frame import Frame


class RequestState(str, enum.Enum):
    AWAITING_ACK = "awaiting_ack"
    AWAITING_RESPONSE = "awaiting_response"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class PendingRequest:
    """
    Bookkeeping for one command awaiting its correlated response.

    The Future resolves with the response Frame or fails with a ProtocolError.
    State transitions are driven by the session while it holds its lock.
    """

    def __init__(
        self,
        command: int,
        name: str,
        raw: bytes,
        *,
        timeout_s: float,
        ack_timeout_s: Optional[float] = None,
    ):
        self.command = int(command)
        self.name = str(name)
        self.raw = bytes(raw)
        self.timeout_s = float(timeout_s)
        self.ack_timeout_s = float(ack_timeout_s) if ack_timeout_s is not None else None
        self.created_at = time.perf_counter()
        self.attempts = 1
        self.future: Future = Future()

        if self.ack_timeout_s is not None:
            self.state = RequestState.AWAITING_ACK
            self.deadline = self.created_at + self.ack_timeout_s
        else:
            self.state = RequestState.AWAITING_RESPONSE
            self.deadline = self.created_at + self.timeout_s

    @property
    def stage_timeout_s(self) -> float:
        if self.state == RequestState.AWAITING_ACK and self.ack_timeout_s is not None:
            return self.ack_timeout_s
        return self.timeout_s

    def add_done_callback(self, cb: Callable[[Future], Any]) -> Any:
        """Forward callback registration to the underlying Future."""
        return self.future.add_done_callback(cb)

    def result(self, *args: Any, **kwargs: Any) -> Any:
        """Forward result() to underlying Future."""
        return self.future.result(*args, **kwargs)

    def done(self) -> bool:
        return self.future.done()

    # ---------------- Transitions ----------------
    def acknowledged(self, now: Optional[float] = None) -> None:
        now = time.perf_counter() if now is None else now
        self.state = RequestState.AWAITING_RESPONSE
        self.deadline = now + self.timeout_s

    def resent(self, now: Optional[float] = None) -> None:
        now = time.perf_counter() if now is None else now
        self.attempts += 1
        self.state = RequestState.AWAITING_ACK
        self.deadline = now + (self.ack_timeout_s if self.ack_timeout_s is not None else self.timeout_s)

    def expired(self, now: Optional[float] = None) -> bool:
        now = time.perf_counter() if now is None else now
        return now >= self.deadline

    def remaining(self, now: Optional[float] = None) -> float:
        now = time.perf_counter() if now is None else now
        return max(0.0, self.deadline - now)

    # ---------------- Completion ----------------
    def resolve(self, frame: "Frame") -> None:
        if self.future.done():
            return
        self.state = RequestState.RESOLVED
        self.future.set_result(frame)

    def fail(self, error: BaseException, state: RequestState = RequestState.FAILED) -> None:
        if self.future.done():
            return
        self.state = state
        self.future.set_exception(error)

    def wait(self, timeout: Optional[float] = None) -> "Frame":
        """Blocking wait for the response; raises the failure if the request failed."""
        return self.future.result(timeout=timeout)

    def __repr__(self) -> str:
        return (
            f"PendingRequest(command=0x{self.command:02X}, name={self.name!r}, "
            f"state={self.state.value}, attempts={self.attempts})"
        )
