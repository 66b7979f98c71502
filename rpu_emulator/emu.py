"""
RPU Emulator — Main Emulator Class

Integrates:
  - CPU registers (cpu/regs.py)
  - Instruction codec (cpu/decoder.py)
  - Checked arithmetic (cpu/alu.py)
  - Flat 64K memory (mem/memory.py)
  - Text console (periph/console.py); slot devices are host-owned

Execution model (one call to step()):
  1. Halted? return True, nothing else happens
  2. Fetch 4 bytes at pc, decode
  3. Execute handler → registers, memory, console, devices
  4. pc += 4 (after the handler, so jump targets are pre-compensated)

Errors are raised as ExecutionError subclasses and leave the machine
as the failing handler found it; nothing is retried or rolled back. Only
the halt instruction halts the machine.

Termination reasons for run():
  - HALT:     halt instruction executed
  - BREAK:    breakpoint address reached
  - TIMEOUT:  max_steps executed without halting
"""

import logging
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Set, Union

from rpu_compiler.assembler import AssemblerError, Program, compile_program

from .config import (
    DEFAULT_MAX_STEPS, DEVICE_SLOTS, INSTRUCTION_WIDTH, MEMORY_SIZE,
    LOAD_ADDRESS, STACK_BOTTOM, STACK_SLOT, STACK_TOP, WORD_MASK,
)
from .cpu import alu
from .cpu.decoder import DecodeError, Instruction, Opcode, decode
from .cpu.regs import AccessError, RegisterName, Registers
from .mem.memory import AddressOutOfRange, Memory
from .periph.console import Console
from .periph.devices import Device, DeviceError

log = logging.getLogger('rpu.emu')

R = RegisterName


# ══════════════════════════════════════════════
# Boot errors: nothing is loaded when these are raised
# ══════════════════════════════════════════════

class BootError(Exception):
    pass


class ProgramTooBig(BootError):
    def __init__(self, size: int):
        self.size = size
        super().__init__(f"program is {size} bytes; must be under {MEMORY_SIZE}")


class CompilationFailed(BootError):
    def __init__(self, cause: AssemblerError):
        self.cause = cause
        super().__init__(f"compilation failed: {cause}")


# ══════════════════════════════════════════════
# Execution errors, raised from step()
# ══════════════════════════════════════════════

class ExecutionError(Exception):
    pass


class ForbiddenOperand(ExecutionError):
    """An instruction was given a register it may not use in that position."""
    verb = "use"

    def __init__(self, register: RegisterName):
        self.register = register
        super().__init__(f"cannot {self.verb} '{register.name}'")


class CannotPut(ForbiddenOperand):
    verb = "put into"


class CannotAdd(ForbiddenOperand):
    verb = "add"


class CannotSub(ForbiddenOperand):
    verb = "subtract"


class CannotMul(ForbiddenOperand):
    verb = "multiply"


class CannotCpFrom(ForbiddenOperand):
    verb = "copy from"


class CannotCpTo(ForbiddenOperand):
    verb = "copy to"


class Overflow(ExecutionError):
    def __init__(self, x: int, y: int):
        self.x = x
        self.y = y
        super().__init__(f"overflow on operands {x}, {y}")


class Underflow(ExecutionError):
    def __init__(self, x: int, y: int):
        self.x = x
        self.y = y
        super().__init__(f"underflow on operands {x}, {y}")


class StackOverflow(ExecutionError):
    def __init__(self):
        super().__init__("stack overflow (sp == 0)")


class StackUnderflow(ExecutionError):
    def __init__(self):
        super().__init__("stack underflow (stack is empty)")


class DecodeFault(ExecutionError):
    def __init__(self, pc: int, cause: DecodeError):
        self.pc = pc
        self.cause = cause
        super().__init__(f"at {pc}: {cause}")


class AccessFault(ExecutionError):
    def __init__(self, cause: AccessError):
        self.cause = cause
        super().__init__(str(cause))


class MemoryFault(ExecutionError):
    def __init__(self, addr: int):
        self.addr = addr
        super().__init__(f"16-bit access at {addr} runs past the end of memory")


class NoSuchDevice(ExecutionError):
    def __init__(self, slot: int):
        self.slot = slot
        super().__init__(f"no device attached in slot {slot}")


class DeviceFault(ExecutionError):
    def __init__(self, slot: int, cause: DeviceError):
        self.slot = slot
        self.cause = cause
        super().__init__(f"device {slot}: {cause}")


class StopReason(Enum):
    HALT = 'HALT'
    BREAK = 'BREAK'
    TIMEOUT = 'TIMEOUT'


# put/pop/read may not target these
_UNWRITABLE = (R.pc, R.ans, R.out)


class RPUEmulator:
    """RPU register-machine emulator.

    Usage:
        emu = RPUEmulator()
        emu.load_source(text)
        lcd0, lcd1 = Latch(), Latch()
        while not emu.step([lcd0, lcd1]):
            pass
        print(emu.console)
    """

    DEFAULT_MAX_STEPS = DEFAULT_MAX_STEPS

    def __init__(self):
        self.regs = Registers()
        self.mem = Memory()
        self.tty = Console()
        self.program: Optional[Program] = None
        self._halted = False
        self.steps = 0

        self._breakpoints: Set[int] = set()

        self._trace = False
        self._trace_output = []

        self._dispatch = self._build_dispatch()

    # ══════════════════════════════════════════════
    # Loading
    # ══════════════════════════════════════════════

    def load(self, program: Union[Program, bytes, bytearray]):
        """Copy a compiled program (or raw image) into memory at address 0.

        The core is left runnable: pc goes back to the load address and a
        previous halt is cleared. Other registers keep their values.
        """
        data = program.to_bytes() if isinstance(program, Program) else bytes(program)
        if len(data) >= MEMORY_SIZE:
            raise ProgramTooBig(len(data))
        self.mem.load_binary(data, LOAD_ADDRESS)
        self.regs.pc = LOAD_ADDRESS
        self._halted = False
        self.program = program if isinstance(program, Program) else None
        log.debug("Loaded %d bytes (%d instructions)", len(data),
                  len(data) // INSTRUCTION_WIDTH)

    def load_source(self, source: str):
        """Compile, then load. Nothing is loaded if either step fails."""
        try:
            program = compile_program(source)
        except AssemblerError as e:
            raise CompilationFailed(e) from e
        self.load(program)

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    def step(self, devices: Sequence[Optional[Device]] = ()) -> bool:
        """Execute one instruction. Returns True once the machine is halted."""
        if self._halted:
            return True

        pc = self.regs.pc
        try:
            instr = decode(self.mem.fetch(pc, INSTRUCTION_WIDTH))
        except DecodeError as e:
            raise DecodeFault(pc, e) from e

        if self._trace:
            self._trace_output.append(f"{pc:5d}: {str(instr):<18} {self.regs.display()}")

        if instr.op == Opcode.halt:
            self._halted = True
            log.debug("Halted at %d after %d steps", pc, self.steps)
            return True

        try:
            self._dispatch[instr.op](instr, devices)
        except AccessError as e:
            raise AccessFault(e) from e

        self.regs.pc = (self.regs.pc + INSTRUCTION_WIDTH) & WORD_MASK
        self.steps += 1
        return False

    def run(self, devices: Sequence[Optional[Device]] = (),
            max_steps: int = None) -> StopReason:
        """Step until halt, a breakpoint or max_steps.

        A breakpoint on the instruction run() starts at is ignored so a
        stopped run can be resumed. ExecutionError propagates unchanged.
        """
        if max_steps is None:
            max_steps = self.DEFAULT_MAX_STEPS

        for n in range(max_steps):
            if n and self.regs.pc in self._breakpoints and not self._halted:
                log.debug("Breakpoint at %d", self.regs.pc)
                return StopReason.BREAK
            if self.step(devices):
                return StopReason.HALT

        return StopReason.HALT if self._halted else StopReason.TIMEOUT

    # ══════════════════════════════════════════════
    # Operand helpers
    # ══════════════════════════════════════════════

    def _source(self, reg: RegisterName, error: Callable) -> int:
        """Read a value-producing operand; `out` raises `error`."""
        if reg == R.out:
            raise error(reg)
        return self.regs.read(reg)

    def _put(self, value: int, dst: RegisterName):
        if dst in _UNWRITABLE:
            raise CannotPut(dst)
        self.regs.write(dst, value)

    def _load16(self, addr: int) -> int:
        try:
            return self.mem.read16(addr)
        except AddressOutOfRange as e:
            raise MemoryFault(addr) from e

    def _store16(self, addr: int, value: int):
        try:
            self.mem.write16(addr, value)
        except AddressOutOfRange as e:
            raise MemoryFault(addr) from e

    def _out(self, value: int, devices: Sequence[Optional[Device]]):
        slot = self.regs.dvc
        if slot >= DEVICE_SLOTS:
            self.tty.put(value)
            return
        device = devices[slot] if slot < len(devices) else None
        if device is None:
            raise NoSuchDevice(slot)
        try:
            device.write(value)
        except DeviceError as e:
            raise DeviceFault(slot, e) from e

    # ══════════════════════════════════════════════
    # Instruction handlers
    # ══════════════════════════════════════════════
    # Handler signature: handler(instr, devices)

    def _build_dispatch(self) -> Dict[Opcode, Callable]:
        return {
            Opcode.noop:  self._op_noop,
            Opcode.add:   self._op_add,
            Opcode.sub:   self._op_sub,
            Opcode.mul:   self._op_mul,
            Opcode.copy:  self._op_copy,
            Opcode.jump:  self._op_jump,
            Opcode.put:   self._op_put,
            Opcode.push:  self._op_push,
            Opcode.pop:   self._op_pop,
            Opcode.write: self._op_write,
            Opcode.read:  self._op_read,
        }

    def _op_noop(self, instr, devices):
        pass

    def _arith(self, instr, error, fn, fail):
        x_reg, y_reg = instr.operands
        x = self._source(x_reg, error)
        y = self._source(y_reg, error)
        result = fn(x, y)
        if result is None:
            raise fail(x, y)
        self.regs.write(R.ans, result)

    def _op_add(self, instr, devices):
        self._arith(instr, CannotAdd, alu.checked_add, Overflow)

    def _op_sub(self, instr, devices):
        self._arith(instr, CannotSub, alu.checked_sub, Underflow)

    def _op_mul(self, instr, devices):
        self._arith(instr, CannotMul, alu.checked_mul, Overflow)

    def _op_copy(self, instr, devices):
        src, dst = instr.operands
        value = self._source(src, CannotCpFrom)
        if dst in (R.pc, R.ans):
            raise CannotCpTo(dst)
        if dst == R.out:
            self._out(value, devices)
        else:
            self.regs.write(dst, value)

    def _op_jump(self, instr, devices):
        """Conditional jump, taken when cond == 0.

        The target is aligned down to a multiple of 4 and then backed up
        one instruction (never below 0), because step() adds 4 after
        every instruction, jumps included. `jump` to 0 and to 4 both
        land on 4 as a result.
        """
        addr_reg, cond_reg = instr.operands
        target = self.regs.read(addr_reg)
        target -= target % INSTRUCTION_WIDTH
        if target > 0:
            target -= INSTRUCTION_WIDTH
        if self.regs.read(cond_reg) == 0:
            self.regs.write(R.pc, target)

    def _op_put(self, instr, devices):
        value, dst = instr.operands
        self._put(value, dst)

    def _op_push(self, instr, devices):
        (src,) = instr.operands
        if self.regs.sp == STACK_BOTTOM:
            raise StackOverflow()
        value = self._source(src, CannotCpFrom)
        self._store16(self.regs.sp, value)
        self.regs.sp = (self.regs.sp - STACK_SLOT) & WORD_MASK

    def _op_pop(self, instr, devices):
        (dst,) = instr.operands
        if self.regs.sp >= STACK_TOP:
            raise StackUnderflow()
        self.regs.sp += STACK_SLOT
        self._put(self._load16(self.regs.sp), dst)

    def _op_write(self, instr, devices):
        src, addr_reg = instr.operands
        value = self._source(src, CannotCpFrom)
        addr = self._source(addr_reg, CannotCpFrom)
        self._store16(addr, value)

    def _op_read(self, instr, devices):
        addr_reg, dst = instr.operands
        addr = self._source(addr_reg, CannotCpFrom)
        self._put(self._load16(addr), dst)

    # ══════════════════════════════════════════════
    # Read-only accessors (host rendering)
    # ══════════════════════════════════════════════

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def registers(self) -> Dict[str, int]:
        return self.regs.snapshot()

    @property
    def memory(self) -> memoryview:
        return self.mem.view()

    @property
    def console(self) -> str:
        return self.tty.text

    def current_instruction(self) -> Optional[Instruction]:
        """Decode the word at pc without executing it (None if undecodable)."""
        try:
            return decode(self.mem.fetch(self.regs.pc, INSTRUCTION_WIDTH))
        except DecodeError:
            return None

    def current_line(self) -> Optional[int]:
        """Source-line index of the instruction at pc, if a Program is loaded."""
        if self.program is None:
            return None
        return self.program.line_for(self.regs.pc)

    # ══════════════════════════════════════════════
    # Breakpoint API
    # ══════════════════════════════════════════════

    def add_breakpoint(self, addr: int):
        """run() stops before executing the instruction at addr."""
        self._breakpoints.add(addr & WORD_MASK)

    def remove_breakpoint(self, addr: int):
        self._breakpoints.discard(addr & WORD_MASK)

    def clear_breakpoints(self):
        self._breakpoints.clear()

    # ══════════════════════════════════════════════
    # Trace / Debug
    # ══════════════════════════════════════════════

    def enable_trace(self, enable: bool = True):
        """Record one line per executed instruction."""
        self._trace = enable

    def get_trace(self) -> str:
        return '\n'.join(self._trace_output)

    def clear_trace(self):
        self._trace_output.clear()

    def reset(self, clear_memory: bool = False):
        """Back to powered, pc = 0. Memory survives unless clear_memory."""
        self.regs.reset()
        self.tty.reset()
        self._halted = False
        self.steps = 0
        self._breakpoints.clear()
        self._trace_output.clear()
        if clear_memory:
            self.mem.clear()
            self.program = None
