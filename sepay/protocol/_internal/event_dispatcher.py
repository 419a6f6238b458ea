from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Optional

_STOP = object()


class EventDispatcher:
    """
    Runs telemetry callbacks (command sink, anomaly handler) on a dedicated
    thread, so the RX worker only enqueues and never waits on them.

    The thread starts on the first submit() and stops on close(), which runs
    everything already queued first. A submit() after close() starts a new thread.
    """

    def __init__(self, *, maxsize: int = 1000, logger: Optional[logging.Logger] = None):
        self._log = logger or logging.getLogger(__name__)
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def submit(self, fn: Callable[..., None], *args: Any) -> None:
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name="sepay-events", daemon=True)
                self._thread.start()
            try:
                self._queue.put_nowait((fn, args))
            except queue.Full:
                self._log.warning("EVENT_QUEUE_FULL dropped=%s", getattr(fn, "__qualname__", fn))

    def close(self) -> None:
        """Drain queued callbacks and stop the thread."""
        with self._lock:
            thread, self._thread = self._thread, None
            if thread is None:
                return
            self._queue.put(_STOP)
        if thread is not threading.current_thread():
            thread.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            fn, args = item
            try:
                fn(*args)
            except Exception:
                self._log.exception("EVENT_CALLBACK_ERROR fn=%s", getattr(fn, "__qualname__", fn))
