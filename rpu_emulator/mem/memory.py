"""
RPU Emulator — 64K Flat Memory

One zero-initialised 65536-byte array, no regions, no I/O mapping.
Programs load at $0000 and the stack grows down from $FFFE.

16-bit values are stored little-endian (low byte at the lower address).

Boundary policy: a 16-bit access at $FFFF would need byte $10000, which
does not exist. Such accesses are rejected with AddressOutOfRange before
anything is written; addresses never wrap.
"""

from ..config import MEMORY_SIZE, WORD_MASK
from ..cpu.alu import join16, split16


class AddressOutOfRange(Exception):
    """A 16-bit access would run past the last byte of memory."""

    def __init__(self, addr: int):
        self.addr = addr
        super().__init__(f"16-bit access at ${addr:04X} runs past end of memory")


class Memory:
    """Flat 64K byte-addressable memory."""

    def __init__(self):
        self._mem = bytearray(MEMORY_SIZE)

    def __len__(self) -> int:
        return len(self._mem)

    # --- Core read/write ---

    def read8(self, addr: int) -> int:
        return self._mem[addr]

    def write8(self, addr: int, value: int):
        self._mem[addr] = value & 0xFF

    def read16(self, addr: int) -> int:
        """Read a little-endian 16-bit value at addr, addr+1."""
        self._check16(addr)
        return join16(self._mem[addr], self._mem[addr + 1])

    def write16(self, addr: int, value: int):
        """Write a little-endian 16-bit value at addr, addr+1."""
        self._check16(addr)
        lo, hi = split16(value & WORD_MASK)
        self._mem[addr] = lo
        self._mem[addr + 1] = hi

    def fetch(self, addr: int, length: int) -> bytes:
        return bytes(self._mem[addr:addr + length])

    def _check16(self, addr: int):
        if not 0 <= addr < MEMORY_SIZE - 1:
            raise AddressOutOfRange(addr)

    # --- Bulk load ---

    def load_binary(self, data: bytes, base_addr: int = 0):
        """Copy data into memory at base_addr. Caller checks the size."""
        end = base_addr + len(data)
        if end > MEMORY_SIZE:
            raise ValueError(f"{len(data)} bytes at ${base_addr:04X} do not fit in memory")
        self._mem[base_addr:end] = data

    def clear(self):
        self._mem[:] = bytes(MEMORY_SIZE)

    def view(self) -> memoryview:
        """Read-only view for host rendering."""
        return memoryview(self._mem).toreadonly()

    # --- Hex dump ---

    def hexdump(self, start: int, length: int = 64, width: int = 8) -> str:
        """Decimal-address dump, `width` bytes per row."""
        lines = []
        end = min(start + length, MEMORY_SIZE)
        for addr in range(start, end, width):
            row = self._mem[addr:min(addr + width, end)]
            lines.append(f"{addr:5d}  " + ' '.join(f'{b:3d}' for b in row))
        return '\n'.join(lines)
