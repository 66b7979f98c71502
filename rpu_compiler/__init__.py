"""
RPU Assembler
=============
Assembles RPU register-machine assembly into fixed-width binary programs
for the emulator in rpu_emulator/.

Pipeline:
    ┌─────────────┐    ┌──────────────┐    ┌──────────────┐    ┌───────────┐
    │ Source text │───>│ Pass 1       │───>│ Pass 2       │───>│ Program   │
    │ (.rpu)      │    │ (labels)     │    │ (codec parse)│    │ (4B words)│
    └─────────────┘    └──────────────┘    └──────────────┘    └───────────┘

    - assembler.py: two-pass label resolver + Program container
    - the text/binary codec itself lives in rpu_emulator/cpu/decoder.py so
      the assembler and the execution core share one opcode table
"""

__version__ = "0.4.0"

from .assembler import (
    Assembler, AssemblerError, AsmParseError, UndefinedLabel,
    Program, compile_program, assemble, disassemble,
)
