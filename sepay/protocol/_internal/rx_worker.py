# sepay/protocol/_internal/rx_worker.py
from __future__ import annotations

import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sepay.protocol.session import TerminalSession


class RxWorker(threading.Thread):
    """Thread that continuously reads from the transport and pumps a TerminalSession."""

    def __init__(self, session: "TerminalSession", *, idle_s: float = 0.001, error_backoff_s: float = 0.01):
        super().__init__(name="sepay-rx", daemon=True)
        self.session = session
        self.idle_s = idle_s
        self.error_backoff_s = error_backoff_s
        self._stop_event = threading.Event()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.session._pump_rx()
            except Exception:
                self.session._log.exception(
                    "RX_WORKER_EXCEPTION pending=%s",
                    [hex(c) for c in list(getattr(self.session, "_pending", {}))],
                )
                self._stop_event.wait(self.error_backoff_s)
            else:
                self._stop_event.wait(self.idle_s)

    def stop(self) -> None:
        self._stop_event.set()
