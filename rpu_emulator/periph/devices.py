"""
RPU Emulator — Device Capability

A device is a host-owned sink (and optionally source) of 16-bit values.
The core never owns one: the host passes its devices into every step()
call and `copy x out` hands the value to the slot selected by dvc:

  dvc == 0  → devices[0].write(value)
  dvc == 1  → devices[1].write(value)
  otherwise → the core's own text console (see console.py)

Anything with write()/read() matching Device works; subclassing is only
a convenience. Implementations report failures as DeviceError.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..config import WORD_MASK


class DeviceError(Exception):
    """A device could not accept or produce a value."""
    pass


class Device(ABC):
    """Write a value, optionally read one back."""

    @abstractmethod
    def write(self, value: int):
        ...

    def read(self) -> Optional[int]:
        """Return the next value, or None if the device has nothing."""
        return None

    def reset(self):
        pass


class Buffer(Device):
    """In-memory stand-in: write pushes, read pops (LIFO)."""

    def __init__(self, values: Optional[List[int]] = None):
        self.values: List[int] = list(values or [])

    def write(self, value: int):
        self.values.append(value & WORD_MASK)

    def read(self) -> Optional[int]:
        return self.values.pop() if self.values else None

    def reset(self):
        self.values.clear()

    def __len__(self) -> int:
        return len(self.values)


class Latch(Device):
    """Numeric display panel: holds the last value written.

    Reads do not consume the value. render() gives the 5-digit,
    zero-padded text the panel shows.
    """

    def __init__(self, label: str = "LCD"):
        self.label = label
        self.value = 0
        self.writes = 0

    def write(self, value: int):
        self.value = value & WORD_MASK
        self.writes += 1

    def read(self) -> Optional[int]:
        return self.value

    def render(self) -> str:
        return f"{self.value:05d}"

    def reset(self):
        self.value = 0
        self.writes = 0
