"""
RPU Emulator — CPU Register Set + Access Control

Register model:
  gp0..gp7 — 16-bit general purpose (read/write)
  ans      — 16-bit result of add/sub/mul (only the core writes it)
  dvc      — 16-bit device select for `copy x out`
  out      — pseudo-register, NO storage; only `copy x out` reaches it
  pc       — 16-bit program counter (always a multiple of 4)
  sp       — 16-bit stack pointer, 65534 at reset, descends by 2

The ids below are part of the binary format (byte 1..3 of an encoded
instruction) and must never be renumbered.

Access rules at this layer are register-specific only: `out` cannot be
read or written through read()/write(). Instruction-specific rules
("ans may not be a put target") live in the execution core.
"""

from enum import IntEnum

from ..config import STACK_TOP, WORD_MASK


class RegisterName(IntEnum):
    gp0 = 0
    gp1 = 1
    gp2 = 2
    gp3 = 3
    gp4 = 4
    gp5 = 5
    gp6 = 6
    gp7 = 7
    ans = 8
    dvc = 9
    out = 10
    pc = 11
    sp = 12

    @classmethod
    def from_text(cls, text: str) -> 'RegisterName':
        """Look up a register by its assembly name. Raises KeyError."""
        return cls[text]

    def __str__(self) -> str:
        return self.name


GENERAL_PURPOSE = tuple(RegisterName(i) for i in range(8))
SPECIAL_PURPOSE = (RegisterName.ans, RegisterName.dvc,
                   RegisterName.pc, RegisterName.sp)
PSEUDO = (RegisterName.out,)


class AccessError(Exception):
    """Base for register-file access failures."""
    pass


class PseudoRegister(AccessError):
    """Direct read/write of a register with no backing storage."""

    def __init__(self, name: RegisterName):
        self.name = name
        super().__init__(f"'{name.name}' is a pseudo-register and has no storage")


class Registers:
    """Fixed register file, one slot per addressable register."""

    __slots__ = ('gp0', 'gp1', 'gp2', 'gp3', 'gp4', 'gp5', 'gp6', 'gp7',
                 'ans', 'dvc', 'pc', 'sp')

    def __init__(self):
        self.reset()

    def read(self, name: RegisterName) -> int:
        if name in PSEUDO:
            raise PseudoRegister(name)
        return getattr(self, name.name)

    def write(self, name: RegisterName, value: int):
        if name in PSEUDO:
            raise PseudoRegister(name)
        setattr(self, name.name, value & WORD_MASK)

    def snapshot(self) -> dict:
        """Name → value for every addressable register (host display)."""
        return {slot: getattr(self, slot) for slot in self.__slots__}

    # --- Display ---

    def display(self) -> str:
        gp = ' '.join(f"{r.name}={getattr(self, r.name):5d}" for r in GENERAL_PURPOSE)
        return (f"pc={self.pc:5d} sp={self.sp:5d} ans={self.ans:5d} "
                f"dvc={self.dvc:5d} {gp}")

    def reset(self):
        """Power-on state: everything zero except sp at the stack top."""
        self.gp0 = 0
        self.gp1 = 0
        self.gp2 = 0
        self.gp3 = 0
        self.gp4 = 0
        self.gp5 = 0
        self.gp6 = 0
        self.gp7 = 0
        self.ans = 0
        self.dvc = 0
        self.pc = 0
        self.sp = STACK_TOP
