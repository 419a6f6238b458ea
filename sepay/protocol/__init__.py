# protocol/__init__.py

# Core classes
from .core import Protocol, Frame, FrameParser, load_protocol

__all__ = [
    "Protocol", "load_protocol",
    "Frame", "FrameParser"]
