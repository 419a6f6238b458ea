# sepay/core/recording/command.py
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from sepay.core.recording.async_writer import AsyncWriter
from sepay.interfaces.command_sink import CommandEvent, CommandSink
from sepay.protocol.events import Anomaly


def _json_default(v: Any) -> Any:
    if isinstance(v, (bytes, bytearray)):
        return bytes(v).hex()
    return str(v)


@dataclass
class CommandTraceLogger(CommandSink):
    """
    Audit trail for command outcomes and inbound anomalies.

    Every record goes to `logger`; with `file_path` set it is also appended
    as one JSON line by a background AsyncWriter. close() flushes the file;
    the next record after close() reopens it, so one logger can span
    several connect/close cycles.
    """

    logger: logging.Logger
    file_path: Optional[Path] = None
    flush_interval_s: float = 0.5

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._writer: Optional[AsyncWriter] = None
        if self.file_path is not None:
            self.file_path = Path(self.file_path)
            self.file_path.parent.mkdir(parents=True, exist_ok=True)

    def close(self) -> None:
        with self._lock:
            writer, self._writer = self._writer, None
        if writer is not None:
            writer.close()

    def on_command(self, event: CommandEvent) -> None:
        self.logger.info(
            "CMD_DONE cmd=%s kind=%s rtt_ms=%.1f attempts=%d",
            event.name,
            event.kind,
            event.rtt_ms,
            event.attempts,
        )
        self._write(
            {
                "type": "command",
                "name": event.name,
                "command": event.command,
                "kind": event.kind,
                "rtt_ms": round(event.rtt_ms, 3),
                "attempts": event.attempts,
                "payload": dict(event.payload) if event.payload else None,
            }
        )

    def on_anomaly(self, anomaly: Anomaly) -> None:
        self.logger.info("ANOMALY %s", anomaly)
        self._write(
            {
                "type": "anomaly",
                "kind": anomaly.kind,
                "command": anomaly.command,
                "payload": anomaly.payload,
                "error": str(anomaly.error) if anomaly.error is not None else None,
                "raw": anomaly.raw,
            }
        )

    def _write(self, record: dict) -> None:
        if self.file_path is None:
            return
        record["ts_utc"] = datetime.now(timezone.utc).isoformat()
        out = {k: v for k, v in record.items() if v is not None}
        line = json.dumps(out, ensure_ascii=False, default=_json_default)
        with self._lock:
            if self._writer is None:
                self._writer = AsyncWriter(
                    path=self.file_path,
                    flush_interval=self.flush_interval_s,
                    logger=self.logger,
                )
            self._writer.write(line)
