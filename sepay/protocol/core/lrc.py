from typing import Iterable


def lrc(buf: Iterable[int]) -> int:
    """Longitudinal redundancy check: XOR of every byte in ``buf``."""
    value = 0
    for b in buf:
        value ^= b & 0xFF
    return value
