from __future__ import annotations

import pytest

from sepay.protocol.core.defs import load_protocol
from sepay.protocol.core.frame import Frame
from sepay.protocol.errors import NegativeAcknowledged, ResponseTimeout
from sepay.protocol.terminal_client import TerminalClient


class StubSession:
    def __init__(self, reply: Frame | None = None, error: Exception | None = None):
        self.proto = load_protocol()
        self.extended_mode = False
        self.reply = reply
        self.error = error
        self.sent = []
        self.negotiations = 0

    def send(self, command, payload=b"", *, timeout=None):
        self.sent.append((command, payload, timeout))
        if self.error is not None:
            raise self.error
        return self.reply

    def negotiate_extended_mode(self, timeout=None):
        self.negotiations += 1
        self.extended_mode = True


def test_request_joins_and_splits_fields():
    session = StubSession(reply=Frame(0x01, b"00|APPROVED|"))
    client = TerminalClient(session)

    fields = client.request("START_TRANSACTION", "000000001234", "AAA-123", "MRCHT45", 0, timeout=5)

    assert fields == ["00", "APPROVED", ""]
    assert session.sent == [("START_TRANSACTION", b"000000001234|AAA-123|MRCHT45|0", 5)]


def test_request_raw_returns_frame():
    reply = Frame(0x03, b"\x00\x01")
    session = StubSession(reply=reply)

    assert TerminalClient(session).request_raw(0x03, b"ref") is reply
    assert session.sent == [(0x03, b"ref", None)]


def test_enquiry_timeout_is_false():
    session = StubSession(error=ResponseTimeout(0x05, 1.0, "ENQUIRY"))
    assert TerminalClient(session).enquiry(timeout=1.0) is False


def test_enquiry_propagates_other_failures():
    session = StubSession(error=NegativeAcknowledged(0x05, 4, "ENQUIRY"))
    with pytest.raises(NegativeAcknowledged):
        TerminalClient(session).enquiry()


def test_enable_extended_mode_once():
    session = StubSession()
    client = TerminalClient(session)

    client.enable_extended_mode()
    client.enable_extended_mode()

    assert session.negotiations == 1
    assert client.session is session
