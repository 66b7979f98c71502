"""
RPU Emulator — Instruction Codec (text <-> 4-byte word)

Every instruction is one 4-byte word:

  byte 0     opcode id
  byte 1..3  operands, packed in declaration order:
               REG    → 1 byte (register id, see regs.py)
               IMM16  → 2 bytes, little-endian
             unused bytes are zero

  | Instruction        | byte1       | byte2        | byte3  |
  |--------------------|-------------|--------------|--------|
  | halt, noop         | 0           | 0            | 0      |
  | add/sub/mul x y    | x id        | y id         | 0      |
  | copy src dst       | src id      | dst id       | 0      |
  | jump addr cond     | addr id     | cond id      | 0      |
  | push src           | src id      | 0            | 0      |
  | pop dst            | dst id      | 0            | 0      |
  | write src addr     | src id      | addr id      | 0      |
  | read addr dst      | addr id     | dst id       | 0      |
  | put value dst      | value lo    | value hi     | dst id |

Opcode 0 is halt so that zero-filled (never loaded) memory stops the
machine instead of running garbage. A word whose first byte is 0 decodes
to halt whatever the other three bytes hold.

Text form: whitespace separated, first token is the mnemonic, the rest
are register names or (put only) a decimal literal. Surplus tokens are
ignored; the assembler relies on that for trailing label tokens.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Tuple, Union

from ..config import INSTRUCTION_WIDTH, WORD_MASK
from .regs import RegisterName


# ──────────────────────────────────────────────
# Operand kinds
# ──────────────────────────────────────────────

REG = 'REG'
IMM16 = 'IMM16'

_KIND_WIDTH = {REG: 1, IMM16: 2}


class Opcode(IntEnum):
    halt = 0
    noop = 1
    add = 2
    sub = 3
    mul = 4
    copy = 5
    jump = 6
    put = 7
    push = 8
    pop = 9
    write = 10
    read = 11


# ──────────────────────────────────────────────
# Operand signatures
# ──────────────────────────────────────────────
# Format: opcode -> (operand kinds, operand names)
# Names are only used for error messages and docs.

SIGNATURES: Dict[Opcode, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    Opcode.halt:  ((),            ()),
    Opcode.noop:  ((),            ()),
    Opcode.add:   ((REG, REG),    ('x', 'y')),
    Opcode.sub:   ((REG, REG),    ('x', 'y')),
    Opcode.mul:   ((REG, REG),    ('x', 'y')),
    Opcode.copy:  ((REG, REG),    ('src', 'dst')),
    Opcode.jump:  ((REG, REG),    ('addr', 'cond')),
    Opcode.put:   ((IMM16, REG),  ('value', 'dst')),
    Opcode.push:  ((REG,),        ('src',)),
    Opcode.pop:   ((REG,),        ('dst',)),
    Opcode.write: ((REG, REG),    ('src', 'addr')),
    Opcode.read:  ((REG, REG),    ('addr', 'dst')),
}

Operand = Union[RegisterName, int]


class CodecError(Exception):
    """Base for instruction text/binary conversion failures."""
    pass


class ParseError(CodecError):
    """Unknown mnemonic, register name or malformed literal in text form."""

    def __init__(self, token: str, reason: str = "unrecognised token"):
        self.token = token
        self.reason = reason
        super().__init__(f"{reason}: '{token}'")


class DecodeError(CodecError):
    """A byte in an encoded word does not name an opcode or register."""

    def __init__(self, value: int, kind: str = 'opcode'):
        self.value = value
        self.kind = kind
        super().__init__(f"no {kind} with numerical id {value}")


@dataclass(frozen=True)
class Instruction:
    """One decoded instruction. Immutable once built."""

    op: Opcode
    operands: Tuple[Operand, ...] = ()

    def __post_init__(self):
        kinds, _ = SIGNATURES[self.op]
        if len(self.operands) != len(kinds):
            raise ValueError(
                f"{self.op.name} takes {len(kinds)} operands, got {len(self.operands)}")
        for kind, operand in zip(kinds, self.operands):
            if kind == REG and not isinstance(operand, RegisterName):
                raise TypeError(f"{self.op.name}: expected register, got {operand!r}")
            if kind == IMM16 and not (isinstance(operand, int) and 0 <= operand <= WORD_MASK):
                raise ValueError(f"{self.op.name}: immediate out of range: {operand!r}")

    @classmethod
    def make(cls, mnemonic: str, *operands: Operand) -> 'Instruction':
        """Instruction.make('put', 7, RegisterName.gp0)"""
        return cls(Opcode[mnemonic], tuple(operands))

    @property
    def mnemonic(self) -> str:
        return self.op.name

    def __str__(self) -> str:
        return ' '.join([self.mnemonic] + [str(o) for o in self.operands])


# ──────────────────────────────────────────────
# Binary form
# ──────────────────────────────────────────────

def encode(instr: Instruction) -> bytes:
    """Pack an instruction into its 4-byte word."""
    word = bytearray(INSTRUCTION_WIDTH)
    word[0] = int(instr.op)
    pos = 1
    kinds, _ = SIGNATURES[instr.op]
    for kind, operand in zip(kinds, instr.operands):
        if kind == REG:
            word[pos] = int(operand)
        else:
            word[pos] = operand & 0xFF
            word[pos + 1] = (operand >> 8) & 0xFF
        pos += _KIND_WIDTH[kind]
    return bytes(word)


def decode(data, offset: int = 0) -> Instruction:
    """Unpack the 4-byte word at data[offset:offset+4]."""
    word = data[offset:offset + INSTRUCTION_WIDTH]
    if len(word) != INSTRUCTION_WIDTH:
        raise ValueError(f"need {INSTRUCTION_WIDTH} bytes, got {len(word)}")

    try:
        op = Opcode(word[0])
    except ValueError:
        raise DecodeError(word[0], 'opcode') from None

    kinds, _ = SIGNATURES[op]
    operands = []
    pos = 1
    for kind in kinds:
        if kind == REG:
            try:
                operands.append(RegisterName(word[pos]))
            except ValueError:
                raise DecodeError(word[pos], 'register') from None
        else:
            operands.append(word[pos] | (word[pos + 1] << 8))
        pos += _KIND_WIDTH[kind]
    return Instruction(op, tuple(operands))


# ──────────────────────────────────────────────
# Text form
# ──────────────────────────────────────────────

def _parse_register(token: str) -> RegisterName:
    try:
        return RegisterName.from_text(token)
    except KeyError:
        raise ParseError(token, "no such register") from None


def _parse_imm16(token: str) -> int:
    if not (token.isascii() and token.isdigit()):
        raise ParseError(token, "expected a decimal literal")
    value = int(token)
    if value > WORD_MASK:
        raise ParseError(token, "literal does not fit in 16 bits")
    return value


def parse(line: str) -> Instruction:
    """Parse one line of text (no comments, no labels) into an Instruction."""
    tokens = line.split()
    if not tokens:
        raise ParseError(line, "empty instruction")

    mnem = tokens[0]
    try:
        op = Opcode[mnem]
    except KeyError:
        raise ParseError(mnem, "not a valid instruction") from None

    kinds, names = SIGNATURES[op]
    args = tokens[1:]
    if len(args) < len(kinds):
        missing = names[len(args)]
        raise ParseError(mnem, f"missing operand '{missing}' for")

    operands = []
    for kind, token in zip(kinds, args):
        if kind == REG:
            operands.append(_parse_register(token))
        else:
            operands.append(_parse_imm16(token))
    return Instruction(op, tuple(operands))


def format_instruction(instr: Instruction) -> str:
    """Canonical text for an instruction; parse() accepts it back."""
    return str(instr)
