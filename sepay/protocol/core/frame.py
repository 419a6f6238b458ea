"""
Wire codec for terminal frames.

Frame layout (multi-byte fields big-endian)::

    [STX][LEN_HI][LEN_LO][CMD][SEP][PAYLOAD...][ETX][LRC]

- LEN covers CMD + SEP + PAYLOAD, i.e. ``2 + len(payload)``
- LRC is the XOR of every byte from LEN_HI through ETX inclusive
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .lrc import lrc
from ..errors import ChecksumMismatch, FrameTooLarge, LengthMismatch, MalformedFrame

STX = 0x02
ETX = 0x03
SEPARATOR = 0x7C  # "|"

HEADER_SIZE = 3            # STX + 2 length bytes
TRAILER_SIZE = 2           # ETX + LRC
OVERHEAD = HEADER_SIZE + TRAILER_SIZE
MIN_FRAME_SIZE = 6
MAX_LENGTH = 0xFFFF
MAX_PAYLOAD = MAX_LENGTH - 2


def encode(command: int, payload: bytes = b"") -> bytes:
    """Build a complete frame for ``command`` carrying ``payload``."""
    command = int(command)
    if not 0 <= command <= 0xFF:
        raise ValueError(f"Command {command} does not fit in one byte")

    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise TypeError(f"payload must be bytes-like, got {type(payload).__name__}")
    payload = bytes(payload)
    length = 2 + len(payload)
    if length > MAX_LENGTH:
        raise FrameTooLarge(f"Payload too long: {len(payload)} > {MAX_PAYLOAD}", command=command)

    body = length.to_bytes(2, "big") + bytes([command, SEPARATOR]) + payload + bytes([ETX])
    return bytes([STX]) + body + bytes([lrc(body)])


def declared_length(raw: bytes) -> int:
    return int.from_bytes(raw[1:HEADER_SIZE], "big")


def decode(raw: bytes) -> Tuple[int, bytes]:
    """
    Validate one complete frame and return ``(command, payload)``.

    Checks run in order: size, markers, declared length, checksum, separator.
    """
    raw = bytes(raw)
    if len(raw) < MIN_FRAME_SIZE:
        raise MalformedFrame(f"Frame too short: {len(raw)} bytes", raw=raw)

    if raw[0] != STX or raw[-2] != ETX:
        raise MalformedFrame(
            f"Bad frame markers: start={raw[0]:02X} end={raw[-2]:02X}",
            raw=raw,
            command=raw[HEADER_SIZE],
        )

    command = raw[HEADER_SIZE]
    length = declared_length(raw)
    actual = len(raw) - OVERHEAD
    if length != actual:
        raise LengthMismatch(length, actual, raw=raw, command=command)

    calc = lrc(raw[1:-1])
    if calc != raw[-1]:
        raise ChecksumMismatch(calc, raw[-1], raw=raw, command=command)

    if raw[HEADER_SIZE + 1] != SEPARATOR:
        raise MalformedFrame(
            f"Missing separator after command: got {raw[HEADER_SIZE + 1]:02X}",
            raw=raw,
            command=command,
        )

    return command, raw[HEADER_SIZE + 2:-TRAILER_SIZE]


@dataclass(frozen=True)
class Frame:
    """A decoded protocol frame."""

    command: int
    payload: bytes = b""

    def encode(self) -> bytes:
        return encode(self.command, self.payload)

    @classmethod
    def decode(cls, raw: bytes) -> "Frame":
        command, payload = decode(raw)
        return cls(command=command, payload=payload)

    @property
    def length(self) -> int:
        return 2 + len(self.payload)

    def text(self, encoding: str = "utf-8") -> str:
        return self.payload.decode(encoding, errors="replace")

    def __repr__(self) -> str:
        return (
            f"Frame(command=0x{self.command:02X}, "
            f"payload={self.payload!r})"
        )
