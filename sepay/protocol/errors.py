# sepay/protocol/errors.py
from __future__ import annotations

from typing import Optional


class ProtocolError(Exception):
    """Base for protocol-level failures (framing/parse/command semantics)."""


# ---------------------------------------------------------------------------
# Codec errors (always locally detectable, never retried)
# ---------------------------------------------------------------------------

class FrameError(ProtocolError):
    """
    A frame could not be built or decoded.

    raw:     offending bytes (if any)
    command: nominal command byte, when it could be located in the frame
    """

    def __init__(self, message: str, *, raw: bytes = b"", command: Optional[int] = None):
        super().__init__(message)
        self.raw = bytes(raw)
        self.command = command


class FrameTooLarge(FrameError):
    pass


class MalformedFrame(FrameError):
    pass


class LengthMismatch(FrameError):
    def __init__(self, declared: int, actual: int, *, raw: bytes = b"", command: Optional[int] = None):
        super().__init__(
            f"declared length {declared} != actual length {actual}",
            raw=raw,
            command=command,
        )
        self.declared = declared
        self.actual = actual


class ChecksumMismatch(FrameError):
    def __init__(self, expected: int, received: int, *, raw: bytes = b"", command: Optional[int] = None):
        super().__init__(
            f"LRC mismatch: calc={expected:02X} rx={received:02X}",
            raw=raw,
            command=command,
        )
        self.expected = expected
        self.received = received


# ---------------------------------------------------------------------------
# Caller usage errors (surfaced immediately)
# ---------------------------------------------------------------------------

class SessionUsageError(ProtocolError):
    pass


class NotConnected(SessionUsageError):
    def __init__(self, message: str = "session is not connected"):
        super().__init__(message)


class DuplicateInFlightCommand(SessionUsageError):
    def __init__(self, command: int, name: str = ""):
        super().__init__(f"{name or hex(command)} already awaiting a response")
        self.command = command
        self.name = name


# ---------------------------------------------------------------------------
# Operational errors (delivered through the pending request)
# ---------------------------------------------------------------------------

class CommandError(ProtocolError):
    def __init__(self, message: str, *, command: int, name: str = ""):
        super().__init__(message)
        self.command = command
        self.name = name


class TransportWriteError(CommandError):
    def __init__(self, command: int, name: str = "", reason: str = "write_failed"):
        super().__init__(f"{name or hex(command)} send failed ({reason})", command=command, name=name)
        self.reason = reason


class ResponseTimeout(CommandError):
    def __init__(self, command: int, timeout_s: float, name: str = ""):
        super().__init__(f"{name or hex(command)} timed out after {timeout_s}s", command=command, name=name)
        self.timeout_s = timeout_s


class NegativeAcknowledged(CommandError):
    def __init__(self, command: int, attempts: int, name: str = ""):
        super().__init__(
            f"{name or hex(command)} rejected by terminal (NACK after {attempts} attempts)",
            command=command,
            name=name,
        )
        self.attempts = attempts


class SessionClosed(CommandError):
    def __init__(self, command: int, name: str = "", reason: str = "closed"):
        super().__init__(f"{name or hex(command)} aborted: session {reason}", command=command, name=name)
        self.reason = reason


class ExtendedModeError(ProtocolError):
    """The terminal did not confirm the switch to extended mode."""
