"""
RPU Two-Pass Assembler.

Turns RPU assembly text into a Program: the ordered instruction list plus
the line bookkeeping a host needs to highlight the current source line.

Input:  Assembly text, one instruction per line
Output: Program (instructions, source lines, address → line map, bytes)

Source format:
  # comment          lines starting with '#' or ';' are comments
                     blank lines are ignored (but kept for display)
  put 7 gp0 .start   a trailing token starting with '.' defines a label
                     bound to THIS line's byte address
  put .start gp1     any other '.' token is replaced by the label's
                     decimal address before the line is parsed

How the two-pass algorithm works:
  Pass 1: Walk every non-skipped line, address += 4 each time. If the
          last token starts with '.', bind it to the line's address
          (first definition wins).
  Pass 2: Walk again. Every line goes into source_lines. For each
          non-skipped line substitute label tokens, parse through the
          codec, record address → line index.

Labels can be used before the line that defines them. Any error stops
the whole compilation; nothing partial is returned.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Tuple

from rpu_emulator.config import INSTRUCTION_WIDTH
from rpu_emulator.cpu.decoder import (
    Instruction, ParseError, decode, encode, parse,
)

__all__ = ['Assembler', 'AssemblerError', 'AsmParseError', 'UndefinedLabel',
           'Program', 'compile_program', 'assemble', 'disassemble']

log = logging.getLogger('rpu.asm')

COMMENT_PREFIXES = ('#', ';')
LABEL_PREFIX = '.'


class AssemblerError(Exception):
    """Raised on assembly errors."""
    def __init__(self, message: str, line_num: int = 0, line_text: str = ""):
        self.line_num = line_num
        self.line_text = line_text
        super().__init__(f"Line {line_num}: {message}" if line_num else message)


class AsmParseError(AssemblerError):
    """A line did not parse: bad mnemonic, register or literal."""
    def __init__(self, token: str, message: str, line_num: int = 0, line_text: str = ""):
        self.token = token
        super().__init__(message, line_num, line_text)


class UndefinedLabel(AssemblerError):
    """A '.label' operand names a label no line defines."""
    def __init__(self, label: str, line_num: int = 0, line_text: str = ""):
        self.label = label
        super().__init__(f"Undefined label: '{label}'", line_num, line_text)


def _is_skipped(line: str) -> bool:
    text = line.lstrip()
    return not text or text.startswith(COMMENT_PREFIXES)


class Program:
    """Compiled program. Immutable after the assembler builds it."""

    def __init__(self, instructions: List[Instruction], source_lines: List[str],
                 source_addrs: Dict[int, int], labels: Dict[str, int]):
        self._instructions = tuple(instructions)
        self._source_lines = tuple(source_lines)
        self._source_addrs = dict(source_addrs)
        self._labels = dict(labels)

    @property
    def instructions(self) -> Tuple[Instruction, ...]:
        return self._instructions

    @property
    def source_lines(self) -> Tuple[str, ...]:
        return self._source_lines

    @property
    def source_addrs(self) -> Dict[int, int]:
        """Byte address → index into source_lines."""
        return dict(self._source_addrs)

    @property
    def labels(self) -> Dict[str, int]:
        return dict(self._labels)

    def line_for(self, addr: int) -> Optional[int]:
        return self._source_addrs.get(addr)

    def size(self) -> int:
        """Encoded size in bytes."""
        return len(self._instructions) * INSTRUCTION_WIDTH

    def __len__(self) -> int:
        return len(self._instructions)

    def __iter__(self) -> Iterator[bytes]:
        """Yield one encoded 4-byte word per instruction."""
        for instr in self._instructions:
            yield encode(instr)

    def to_bytes(self) -> bytes:
        return b''.join(self)

    def listing(self) -> str:
        """Return a human-readable listing showing address, bytes, and source."""
        line_addrs = {idx: addr for addr, idx in self._source_addrs.items()}
        lines = [f"{'ADDR':>6}  {'BYTES':<12}  SOURCE", "-" * 60]
        for idx, raw in enumerate(self._source_lines):
            addr = line_addrs.get(idx)
            if addr is None:
                lines.append(f"{'':6}  {'':12}  {raw}")
                continue
            word = encode(self._instructions[addr // INSTRUCTION_WIDTH])
            hex_str = ' '.join(f'{b:02X}' for b in word)
            lines.append(f"{addr:6d}  {hex_str:<12}  {raw}")
        return '\n'.join(lines)


class Assembler:
    """Two-pass RPU assembler.

    Usage:
        asm = Assembler()
        program = asm.assemble(source_text)
        data = program.to_bytes()
    """

    def __init__(self):
        self.labels: Dict[str, int] = {}    # Label table: name -> byte address
        self._lines: List[str] = []

    def assemble(self, source: str) -> Program:
        self.labels = {}
        self._lines = source.splitlines()

        self._pass1()
        log.debug("Pass 1: %d labels %s", len(self.labels), self.labels)

        program = self._pass2()
        log.debug("Pass 2: %d instructions, %d bytes", len(program), program.size())
        return program

    def _pass1(self):
        """Bind trailing '.label' tokens to their line's address."""
        addr = 0
        for line in self._lines:
            if _is_skipped(line):
                continue
            last = line.split()[-1]
            if last.startswith(LABEL_PREFIX) and last not in self.labels:
                self.labels[last] = addr
            addr += INSTRUCTION_WIDTH

    def _pass2(self) -> Program:
        instructions: List[Instruction] = []
        source_lines: List[str] = []
        source_addrs: Dict[int, int] = {}

        for idx, line in enumerate(self._lines):
            source_lines.append(line)
            if _is_skipped(line):
                continue
            addr = len(instructions) * INSTRUCTION_WIDTH
            tokens = line.split()
            resolved = [self._resolve(tok, idx + 1, line) for tok in tokens]
            try:
                instr = parse(' '.join(resolved))
            except ParseError as e:
                # Report what the user wrote, not the substituted address
                token = tokens[resolved.index(e.token)] if e.token in resolved else e.token
                raise AsmParseError(token, f"{e.reason}: '{token}'", idx + 1, line) from e
            instructions.append(instr)
            source_addrs[addr] = idx

        return Program(instructions, source_lines, source_addrs, self.labels)

    def _resolve(self, token: str, line_num: int, line: str) -> str:
        if not token.startswith(LABEL_PREFIX):
            return token
        if token not in self.labels:
            raise UndefinedLabel(token, line_num, line)
        return str(self.labels[token])


# ──────────────────────────────────────────────
# Convenience functions
# ──────────────────────────────────────────────

def compile_program(source: str) -> Program:
    """Assemble source text into a Program."""
    return Assembler().assemble(source)


def assemble(source: str) -> bytes:
    """Assemble source text, return the binary image."""
    return compile_program(source).to_bytes()


def disassemble(data: bytes) -> List[str]:
    """Decode a binary image back to one canonical text line per word."""
    if len(data) % INSTRUCTION_WIDTH:
        raise ValueError(
            f"image size {len(data)} is not a multiple of {INSTRUCTION_WIDTH}")
    return [str(decode(data, offset))
            for offset in range(0, len(data), INSTRUCTION_WIDTH)]
