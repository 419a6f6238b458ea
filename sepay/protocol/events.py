# sepay/protocol/events.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

UNSOLICITED = "unsolicited"
DECODE_ERROR = "decode_error"


@dataclass(frozen=True)
class Anomaly:
    """
    Inbound traffic that could not be delivered to a waiter.

    kind:    "unsolicited" (decoded, but no matching pending request)
             "decode_error" (rejected by the codec)
    """
    kind: str
    command: Optional[int] = None
    payload: bytes = b""
    error: Optional[Exception] = None
    raw: bytes = b""
    ts: float = field(default_factory=time.time)

    def __str__(self) -> str:
        cmd = f"0x{self.command:02X}" if self.command is not None else "?"
        if self.error is not None:
            return f"{self.kind} cmd={cmd} error={self.error}"
        return f"{self.kind} cmd={cmd} payload={self.payload!r}"
