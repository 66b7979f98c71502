"""
RPU Emulator — ALU Operations

Unsigned 16-bit arithmetic with no wrap-around: a result outside
0..65535 is reported to the caller instead of being truncated. The core
turns that report into Overflow(x, y) / Underflow(x, y).

Each function returns the result, or None when it does not fit.
"""

from typing import Optional, Tuple

from ..config import WORD_MASK


def checked_add(x: int, y: int) -> Optional[int]:
    result = x + y
    return result if result <= WORD_MASK else None


def checked_sub(x: int, y: int) -> Optional[int]:
    result = x - y
    return result if result >= 0 else None


def checked_mul(x: int, y: int) -> Optional[int]:
    result = x * y
    return result if result <= WORD_MASK else None


# ══════════════════════════════════════════════
# Word packing: little-endian, low byte first
# ══════════════════════════════════════════════

def split16(value: int) -> Tuple[int, int]:
    """value → (low byte, high byte)"""
    return value & 0xFF, (value >> 8) & 0xFF


def join16(lo: int, hi: int) -> int:
    return (hi << 8) | lo
