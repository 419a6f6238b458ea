# sepay/runtime/terminal_link.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from sepay.app.config import SepayConfig
from sepay.core.errors import (
    ConfigError,
    ProtocolCommunicationError,
    TerminalConnectError,
    TransportConfigError,
)
from sepay.core.recording.command import CommandTraceLogger
from sepay.interfaces.command_sink import CommandSink
from sepay.protocol.core.defs import Protocol, load_protocol
from sepay.protocol.errors import ExtendedModeError
from sepay.protocol.events import Anomaly
from sepay.protocol.session import TerminalSession
from sepay.protocol.terminal_client import TerminalClient
from sepay.transport.base import Transport
from sepay.transport.errors import TransportError, TransportOpenError
from sepay.transport.registry import TransportDriverRegistry


@dataclass
class TerminalLink:
    """
    High-level link to one terminal: transport + session + client.

    Responsibilities:
      - connect/close the session (which owns the transport)
      - negotiate extended mode according to policy
      - expose a TerminalClient handle once started
      - translate low-level failures into operator-safe errors
    """

    proto: Protocol
    transport: Transport
    response_timeout_s: float = 30.0
    ack_timeout_s: float = 2.0
    max_nack_retries: int = 3
    extended_mode: bool = False
    require_extended_mode: bool = False
    cmd_sink: Optional[CommandSink] = None
    on_anomaly: Optional[Callable[[Anomaly], None]] = None
    logger: Optional[logging.Logger] = None

    def __post_init__(self) -> None:
        self._log = self.logger or logging.getLogger(__name__)
        self._session: Optional[TerminalSession] = None
        self._client: Optional[TerminalClient] = None

    # ---------------- Factory ----------------
    @classmethod
    def from_config(
        cls,
        cfg: SepayConfig,
        *,
        drivers: Optional[TransportDriverRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "TerminalLink":
        try:
            proto = load_protocol(cfg.protocol_dir)
        except (OSError, ValueError) as e:
            raise ConfigError(
                "Could not load the protocol catalog.",
                hint=str(e),
                details={"protocol_dir": cfg.protocol_dir},
            ) from None

        drivers = drivers or TransportDriverRegistry.default()
        try:
            transport = drivers.create(cfg.transport_driver, **cfg.transport_params)
        except (TransportError, TypeError) as e:
            # unknown driver key or constructor mismatch
            raise TransportConfigError(
                f"Failed to construct transport (driver='{cfg.transport_driver}').",
                hint=str(e),
                details={"driver": cfg.transport_driver, "params": dict(cfg.transport_params)},
            ) from None

        sink = None
        if cfg.trace_file:
            sink = CommandTraceLogger(logger=logging.getLogger("sepay.commands"), file_path=Path(cfg.trace_file))

        return cls(
            proto=proto,
            transport=transport,
            response_timeout_s=cfg.response_timeout_s,
            ack_timeout_s=cfg.ack_timeout_s,
            max_nack_retries=cfg.max_nack_retries,
            extended_mode=cfg.extended_mode,
            require_extended_mode=cfg.require_extended_mode,
            cmd_sink=sink,
            on_anomaly=sink.on_anomaly if sink else None,
            logger=logger,
        )

    # ---------------- State ----------------
    @property
    def is_started(self) -> bool:
        return self._session is not None and self._session.is_connected

    @property
    def session(self) -> TerminalSession:
        if self._session is None:
            raise RuntimeError("TerminalLink not started (session is None)")
        return self._session

    @property
    def client(self) -> TerminalClient:
        if self._client is None:
            raise RuntimeError("TerminalLink not started (client is None)")
        return self._client

    # ---------------- Lifecycle ----------------
    def start(self) -> None:
        if self.is_started:
            return

        session = TerminalSession(
            self.proto,
            self.transport,
            response_timeout_s=self.response_timeout_s,
            ack_timeout_s=self.ack_timeout_s,
            max_nack_retries=self.max_nack_retries,
            cmd_sink=self.cmd_sink,
            on_anomaly=self.on_anomaly,
            logger=self._log,
        )

        try:
            session.connect()
        except TransportOpenError as e:
            self._log.exception("TRANSPORT_OPEN_FAILED")
            raise TerminalConnectError(
                "Could not open terminal transport.",
                hint=str(e),
                details={"driver": type(self.transport).__name__},
            ) from None
        except TransportError as e:
            self._log.exception("TRANSPORT_OPEN_ERROR")
            raise TerminalConnectError(
                "Transport error while opening terminal connection.",
                hint=str(e),
                details={"driver": type(self.transport).__name__},
            ) from None

        if self.extended_mode:
            try:
                session.negotiate_extended_mode()
            except ExtendedModeError as e:
                if self.require_extended_mode:
                    session.close()
                    raise TerminalConnectError(
                        "Terminal did not enable extended mode.",
                        hint=str(e),
                        details={"driver": type(self.transport).__name__},
                    ) from None
                self._log.warning("EXTENDED_MODE_UNAVAILABLE continuing_unextended err=%s", e)
            except Exception as e:
                self._log.exception("EXTENDED_MODE_NEGOTIATION_ERROR")
                session.close()
                raise ProtocolCommunicationError(
                    "Session failed during extended mode negotiation.",
                    hint=str(e),
                ) from None

        self._session = session
        self._client = TerminalClient(session)

    def stop(self) -> None:
        if self._session is not None:
            try:
                self._session.close()
            except Exception:
                self._log.exception("Failed to close session")
            self._session = None

        self._client = None

        if self.cmd_sink is not None:
            try:
                self.cmd_sink.close()
            except Exception:
                self._log.exception("Failed to close command sink")

    def __enter__(self) -> "TerminalLink":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
