"""Stable 64-bit FNV-1a hashing used to route queries to shards."""

_FNV_OFFSET_BASIS = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF


def string64(value: str) -> int:
    """Return the 64-bit FNV-1a hash of the UTF-8 encoding of ``value``."""
    result = _FNV_OFFSET_BASIS
    for byte in value.encode("utf-8"):
        result ^= byte
        result = (result * _FNV_PRIME) & _MASK_64
    return result


def index(value: str, size: int) -> int:
    """Map ``value`` onto ``range(size)``; a non-positive size maps to 0."""
    if size <= 0:
        return 0
    return string64(value) % size