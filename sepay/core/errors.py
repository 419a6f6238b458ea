# sepay/core/errors.py
from __future__ import annotations


class SepayError(Exception):
    """
    Base class for all expected operational errors surfaced to operators.
    """

    #: Stable machine-readable identifier (for exit-code mapping, service APIs, etc.)
    code: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Configuration / setup errors (no terminal access yet)
# ---------------------------------------------------------------------------

class ConfigError(SepayError):
    """
    Configuration document is missing or invalid.

    Examples:
      - config file not found / not a mapping
      - negative timeouts or retry counts
      - unreadable protocol catalog
    """
    code = "config_error"


class TransportConfigError(SepayError):
    """
    Transport configuration is invalid.

    Examples:
      - unknown driver key
      - parameters that do not match the transport constructor
    """
    code = "transport_config_error"


# ---------------------------------------------------------------------------
# Connection lifecycle errors
# ---------------------------------------------------------------------------

class TerminalConnectError(SepayError):
    """
    The terminal could not be reached or refused the session setup.

    Examples:
      - TCP connect refused / serial port missing
      - extended mode required but not confirmed
    """
    code = "terminal_connect_error"


# ---------------------------------------------------------------------------
# Protocol / communication errors
# ---------------------------------------------------------------------------

class ProtocolCommunicationError(SepayError):
    """
    Protocol-level communication failure after the session was set up.

    Examples:
      - command timeout
      - repeated NACKs
      - session closed while a command was pending
    """
    code = "protocol_communication_error"
