from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .frame import ETX, HEADER_SIZE, MAX_PAYLOAD, OVERHEAD, STX, Frame, declared_length
from ..errors import FrameError, MalformedFrame


class FrameParser:
    """
    Reassembles frames from an inbound byte stream.

    get_frame() returns the next decoded Frame, None when more bytes are needed,
    or raises the codec error for a rejected frame after discarding its bytes.

    A frame is delimited by its declared length, so a corrupted length field
    holds back every later frame until that many bytes have arrived. With
    `stall_timeout_s` set, a partial frame that received no new bytes for that
    long is abandoned instead: its STX is dropped, MalformedFrame is raised and
    the next get_frame() resyncs on whatever follows.
    """

    def __init__(
        self,
        max_payload: int = MAX_PAYLOAD,
        logger: Optional[logging.Logger] = None,
        *,
        stall_timeout_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.buffer = bytearray()
        self.max_payload = min(int(max_payload), MAX_PAYLOAD)
        self.stall_timeout_s = stall_timeout_s
        self._clock = clock
        self._last_feed = clock()
        self._log = logger or logging.getLogger(__name__)

    # ---------------- Public API ----------------
    def feed(self, data: bytes) -> None:
        """Feed raw bytes into the parser buffer."""
        self.buffer.extend(data)
        self._last_feed = self._clock()
        self._log.debug(
            "Parser fed %d bytes, buffer_len=%d",
            len(data),
            len(self.buffer),
        )

    def get_frame(self) -> Optional[Frame]:
        """Parse and return the next complete frame, if available."""
        if self._sync_stx() < 0:
            return None

        if len(self.buffer) < HEADER_SIZE:
            self._check_stall(HEADER_SIZE)
            return None  # Wait for length bytes

        length = declared_length(self.buffer)
        if length < 2 or length > self.max_payload + 2:
            raw = bytes(self.buffer[:HEADER_SIZE])
            del self.buffer[:1]
            raise MalformedFrame(
                f"Declared length {length} outside [2, {self.max_payload + 2}]",
                raw=raw,
            )

        total_len = length + OVERHEAD
        if len(self.buffer) < total_len:
            self._check_stall(total_len)
            return None  # Wait for more bytes

        raw = bytes(self.buffer[:total_len])
        if raw[-2] != ETX:
            # No end marker where the length says it should be: drop STX, resync.
            del self.buffer[:1]
        else:
            del self.buffer[:total_len]

        try:
            frame = Frame.decode(raw)
        except FrameError:
            self._log.debug("Frame rejected total_len=%d raw=%s", total_len, raw.hex())
            raise

        self._log.debug(
            "Parsed frame cmd=0x%02X payload_len=%d total_len=%d",
            frame.command,
            len(frame.payload),
            total_len,
        )
        return frame

    def clear(self) -> None:
        self.buffer.clear()

    # ---------------- Helpers ----------------
    def _sync_stx(self) -> int:
        """Locate the first STX in the buffer and discard preceding bytes."""
        idx = self.buffer.find(bytes([STX]))
        if idx < 0:
            if self.buffer:
                self._log.debug("Discarding %d bytes without STX", len(self.buffer))
            self.buffer.clear()
        elif idx > 0:
            self._log.debug("Discarding %d bytes before STX", idx)
            del self.buffer[:idx]
        return idx

    def _check_stall(self, expected: int) -> None:
        """Abandon the partial frame at the buffer head if input went quiet."""
        if self.stall_timeout_s is None:
            return
        idle = self._clock() - self._last_feed
        if idle < self.stall_timeout_s:
            return

        raw = bytes(self.buffer[:expected])
        del self.buffer[:1]
        raise MalformedFrame(
            f"Incomplete frame stalled for {idle:.3f}s: have {len(raw)} of {expected} bytes",
            raw=raw,
        )
