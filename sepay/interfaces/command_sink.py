# sepay/interfaces/command_sink.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol


@dataclass(frozen=True)
class CommandEvent:
    """
    Runtime command telemetry event (for tracing/auditing).
    Keep this small + stable; put details into payload.
    """
    name: str                   # e.g. "START_TRANSACTION"
    kind: str                   # "ok" | "timeout" | "nack" | "send_failed" | "closed" | "error"
    command: int
    rtt_ms: float = 0.0
    attempts: int = 1
    payload: Optional[Mapping[str, Any]] = None


class CommandSink(Protocol):
    def on_command(self, event: CommandEvent) -> None: ...
    def close(self) -> None: ...
