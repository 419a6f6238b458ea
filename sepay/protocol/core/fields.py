from __future__ import annotations

from typing import List, Union

FIELD_SEPARATOR = "|"

FieldValue = Union[str, int, bytes]


def join_fields(*fields: FieldValue, encoding: str = "utf-8") -> bytes:
    """Build a ``|``-delimited payload from text, integer or raw byte fields."""
    parts: List[bytes] = []
    for f in fields:
        if isinstance(f, (bytes, bytearray)):
            part = bytes(f)
        elif isinstance(f, bool):
            part = b"1" if f else b"0"
        elif isinstance(f, int):
            part = str(f).encode(encoding)
        elif isinstance(f, str):
            part = f.encode(encoding)
        else:
            raise TypeError(f"Unsupported field type {type(f).__name__}")

        if FIELD_SEPARATOR.encode(encoding) in part:
            raise ValueError(f"Field {f!r} contains the field separator")
        parts.append(part)
    return FIELD_SEPARATOR.encode(encoding).join(parts)


def split_fields(payload: bytes, encoding: str = "utf-8") -> List[str]:
    if not payload:
        return []
    return bytes(payload).decode(encoding, errors="replace").split(FIELD_SEPARATOR)
