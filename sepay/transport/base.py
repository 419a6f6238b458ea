from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Transport(ABC):
    """
    Ordered, reliable, bidirectional byte channel to the terminal (TCP, UART, ...).

    Contract:
      - open()/close() manage the underlying connection; close() is idempotent.
      - read(n) returns 0..n bytes and must not block longer than the transport's
        read timeout. It returns b"" when no data arrived in time and raises
        TransportIOError when the channel is gone.
      - write(data) sends all of data and returns the number of bytes written.
      - flush() forces pending output to be transmitted.
    """

    @abstractmethod
    def open(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    def read(self, n: int) -> bytes: ...

    @abstractmethod
    def write(self, data: bytes) -> int: ...

    @abstractmethod
    def flush(self) -> None: ...

    def __enter__(self) -> "Transport":
        self.open()
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()
