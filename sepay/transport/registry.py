from __future__ import annotations

from typing import Dict, Type

from .base import Transport
from .errors import TransportError
from .tcp import TCPTransport
from .uart import UARTTransport


class TransportDriverRegistry:
    """
    Maps driver keys -> concrete transport classes.

    Constructs transports only; opening them is the session's job.
    """

    def __init__(self, drivers: Dict[str, Type[Transport]]):
        # normalize keys to be case-insensitive
        self._drivers: Dict[str, Type[Transport]] = {k.lower(): v for k, v in drivers.items()}

    @classmethod
    def default(cls) -> "TransportDriverRegistry":
        return cls(
            drivers={
                "tcp": TCPTransport,
                "uart": UARTTransport,
            }
        )

    def drivers(self) -> list[str]:
        return sorted(self._drivers)

    def has(self, driver: str) -> bool:
        return driver.lower() in self._drivers

    def get_class(self, driver: str) -> Type[Transport]:
        key = driver.lower()
        if key not in self._drivers:
            raise TransportError(f"Transport driver '{driver}' not registered")
        return self._drivers[key]

    def create(self, driver: str, **params) -> Transport:
        """Instantiate a transport by driver key (not opened)."""
        transport_cls = self.get_class(driver)
        return transport_cls(**params)
