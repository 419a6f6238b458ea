# sepay/protocol/terminal_client.py
from __future__ import annotations

from typing import List, Optional

from .core.defs import CommandRef
from .core.fields import FieldValue, join_fields, split_fields
from .core.frame import Frame
from .errors import ResponseTimeout
from .session import TerminalSession


class TerminalClient:
    """
    User-facing API over TerminalSession.

    Commands are addressed by catalog name (or raw code); payloads are
    "|"-delimited text fields.
    """

    def __init__(self, session: TerminalSession):
        self._session = session

    @property
    def session(self) -> TerminalSession:
        return self._session

    def enquiry(self, timeout: Optional[float] = None) -> bool:
        """True if the terminal answered the status enquiry in time."""
        try:
            self._session.send("ENQUIRY", timeout=timeout)
        except ResponseTimeout:
            return False
        return True

    def enable_extended_mode(self, timeout: Optional[float] = None) -> None:
        if not self._session.extended_mode:
            self._session.negotiate_extended_mode(timeout=timeout)

    def request(self, command: CommandRef, *fields: FieldValue, timeout: Optional[float] = None) -> List[str]:
        encoding = self._session.proto.encoding
        resp = self._session.send(command, join_fields(*fields, encoding=encoding), timeout=timeout)
        return split_fields(resp.payload, encoding=encoding)

    def request_raw(self, command: CommandRef, payload: bytes = b"", *, timeout: Optional[float] = None) -> Frame:
        return self._session.send(command, payload, timeout=timeout)
