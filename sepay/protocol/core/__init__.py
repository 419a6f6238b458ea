# protocol/core/__init__.py

from .defs import Protocol, load_protocol
from .frame import Frame, encode, decode
from .lrc import lrc
from .parser import FrameParser

__all__ = [
    "Protocol", "load_protocol",
    "Frame", "encode", "decode", "lrc",
    "FrameParser",
]
