"""
RPU Emulator — Core Integration Tests

Each test assembles a short program with the real assembler, loads it
and steps the core, then checks registers / memory / console / devices.
"""
import pytest

from rpu_compiler import UndefinedLabel
from rpu_emulator.emu import (
    RPUEmulator, StopReason,
    BootError, ProgramTooBig, CompilationFailed,
    ExecutionError, ForbiddenOperand,
    CannotPut, CannotAdd, CannotSub, CannotMul, CannotCpFrom, CannotCpTo,
    Overflow, Underflow, StackOverflow, StackUnderflow,
    DecodeFault, AccessFault, MemoryFault, NoSuchDevice, DeviceFault,
)
from rpu_emulator.cpu.regs import RegisterName
from rpu_emulator.periph.devices import Buffer, Device, DeviceError, Latch

from conftest import run_source

R = RegisterName


def src(*lines: str) -> str:
    return "\n".join(lines)


# ═══════════════════════════════════════════════
# Test Group 1: Loading
# ═══════════════════════════════════════════════

class TestLoading:

    def test_program_lands_at_zero(self, emu):
        emu.load_source(src("put 7 gp0", "copy ans out"))
        assert bytes(emu.memory[0:8]) == bytes([7, 7, 0, 0,  5, 8, 10, 0])
        assert emu.memory[8] == 0

    def test_raw_image(self, emu):
        emu.load(bytes([7, 9, 0, 1]))
        emu.step()
        assert emu.regs.gp1 == 9
        assert emu.program is None

    def test_too_big(self, emu):
        with pytest.raises(ProgramTooBig) as exc:
            emu.load(bytes(65536))
        assert exc.value.size == 65536
        assert isinstance(exc.value, BootError)

    def test_largest_image_fits(self, emu):
        emu.load(bytes(65532))

    def test_compile_error_loads_nothing(self, emu):
        with pytest.raises(CompilationFailed) as exc:
            emu.load_source(src("put 7 gp0", "put .missing gp1"))
        assert isinstance(exc.value.cause, UndefinedLabel)
        assert bytes(emu.memory[0:8]) == bytes(8)

    def test_current_line(self, emu):
        emu.load_source(src("# comment", "put 1 gp0", "", "halt"))
        assert emu.current_line() == 1
        emu.step()
        assert emu.current_line() == 3

    def test_reload_after_halt_runs_new_program(self, emu):
        emu.load_source("halt")
        assert emu.step() is True
        emu.load_source("put 3 gp0")
        assert emu.step() is False
        assert emu.regs.gp0 == 3
        assert not emu.halted

    def test_load_rewinds_pc(self, emu):
        run_source(emu, src("noop", "noop"), steps=2)
        emu.load(bytes([7, 9, 0, 1]))
        assert emu.regs.pc == 0
        emu.step()
        assert emu.regs.gp1 == 9

    def test_current_instruction(self, emu):
        emu.load_source(src("put 258 gp0", "copy ans out"))
        assert str(emu.current_instruction()) == "put 258 gp0"
        emu.step()
        assert emu.current_instruction().mnemonic == 'copy'

    def test_current_instruction_undecodable(self, emu):
        emu.load(bytes([99, 0, 0, 0]))
        assert emu.current_instruction() is None


# ═══════════════════════════════════════════════
# Test Group 2: Individual instructions
# ═══════════════════════════════════════════════

class TestPutAndCopy:

    def test_put(self, emu):
        run_source(emu, src("put 258 gp0", "put 9 sp", "put 3 dvc"), steps=3)
        assert emu.regs.gp0 == 258
        assert emu.regs.sp == 9
        assert emu.regs.dvc == 3
        assert emu.regs.pc == 12

    @pytest.mark.parametrize("dst", ["pc", "ans", "out"])
    def test_put_forbidden_targets(self, emu, dst):
        emu.load_source(f"put 5 {dst}")
        with pytest.raises(CannotPut) as exc:
            emu.step()
        assert exc.value.register is R[dst]
        assert emu.regs.pc == 0
        assert emu.regs.ans == 0

    def test_copy_between_registers(self, emu):
        run_source(emu, src("put 42 gp0", "copy gp0 gp5", "copy gp5 sp"), steps=3)
        assert emu.regs.gp5 == 42
        assert emu.regs.sp == 42

    def test_copy_from_out(self, emu):
        emu.load_source("copy out gp0")
        with pytest.raises(CannotCpFrom) as exc:
            emu.step()
        assert exc.value.register is R.out

    @pytest.mark.parametrize("dst", ["pc", "ans"])
    def test_copy_forbidden_targets(self, emu, dst):
        emu.load_source(f"copy gp0 {dst}")
        with pytest.raises(CannotCpTo):
            emu.step()

    def test_noop(self, emu):
        run_source(emu, "noop", steps=1)
        assert emu.regs.pc == 4
        assert emu.registers['gp0'] == 0


class TestArithmetic:

    def test_add(self, emu):
        run_source(emu, src("put 7 gp0", "put 5 gp1", "add gp1 gp0"), steps=3)
        assert emu.regs.ans == 12

    def test_add_at_limit(self, emu):
        run_source(emu, src("put 65000 gp0", "put 535 gp1", "add gp0 gp1"), steps=3)
        assert emu.regs.ans == 65535

    def test_add_overflow(self, emu):
        run_source(emu, src("put 65535 gp0", "put 1 gp1", "add gp0 gp1"), steps=2)
        with pytest.raises(Overflow) as exc:
            emu.step()
        assert (exc.value.x, exc.value.y) == (65535, 1)
        assert emu.regs.ans == 0

    def test_sub(self, emu):
        run_source(emu, src("put 9 gp0", "put 4 gp1", "sub gp0 gp1"), steps=3)
        assert emu.regs.ans == 5

    def test_sub_to_zero(self, emu):
        run_source(emu, src("put 4 gp0", "sub gp0 gp0"), steps=2)
        assert emu.regs.ans == 0

    def test_sub_underflow(self, emu):
        run_source(emu, src("put 3 gp0", "put 5 gp1", "sub gp0 gp1"), steps=2)
        with pytest.raises(Underflow) as exc:
            emu.step()
        assert (exc.value.x, exc.value.y) == (3, 5)

    def test_mul(self, emu):
        run_source(emu, src("put 300 gp0", "put 200 gp1", "mul gp0 gp1"), steps=3)
        assert emu.regs.ans == 60000

    def test_mul_overflow(self, emu):
        run_source(emu, src("put 256 gp0", "mul gp0 gp0"), steps=1)
        with pytest.raises(Overflow) as exc:
            emu.step()
        assert (exc.value.x, exc.value.y) == (256, 256)

    def test_ans_feeds_next_operation(self, emu):
        run_source(emu, src("put 2 gp0", "add gp0 gp0", "mul ans ans"), steps=3)
        assert emu.regs.ans == 16

    @pytest.mark.parametrize("op, error", [
        ("add", CannotAdd), ("sub", CannotSub), ("mul", CannotMul),
    ])
    def test_out_operand_forbidden(self, emu, op, error):
        for line in (f"{op} out gp0", f"{op} gp0 out"):
            emu = RPUEmulator()
            emu.load_source(line)
            with pytest.raises(error) as exc:
                emu.step()
            assert isinstance(exc.value, ForbiddenOperand)
            assert exc.value.register is R.out


class TestJump:
    PROGRAM = [
        "put {target} gp0",   # 0
        "put {cond} gp1",     # 4
        "jump gp0 gp1",       # 8
        "put 99 gp2",         # 12
        "put 98 gp3",         # 16
        "halt",               # 20
    ]

    def _after_jump(self, emu, target, cond):
        run_source(emu, src(*self.PROGRAM).format(target=target, cond=cond), steps=3)
        return emu.regs.pc

    def test_taken_lands_on_target(self, emu):
        assert self._after_jump(emu, 16, 0) == 16
        emu.step()
        assert emu.regs.gp3 == 98
        assert emu.regs.gp2 == 0

    def test_target_rounded_down(self, emu):
        assert self._after_jump(emu, 19, 0) == 16

    def test_not_taken_falls_through(self, emu):
        assert self._after_jump(emu, 16, 1) == 12

    def test_jump_to_four(self, emu):
        assert self._after_jump(emu, 4, 0) == 4

    def test_jump_to_zero_lands_on_four(self, emu):
        """Target 0 cannot be backed up below zero; the epilogue then adds 4."""
        assert self._after_jump(emu, 0, 0) == 4
        assert self._after_jump(RPUEmulator(), 3, 0) == 4

    def test_label_loop(self, emu, devices):
        """Count down 3, 2, 1 into device 0 using labels."""
        run_source(emu, src(
            "put 0 dvc",
            "put 3 gp0",
            "put 1 gp1",
            "copy gp0 out .loop",
            "sub gp0 gp1",
            "copy ans gp0",
            "put .done gp2",
            "jump gp2 gp0",
            "put .loop gp3",
            "put 0 gp4",
            "jump gp3 gp4",
            "halt .done",
        ), devices)
        assert devices[0].values == [3, 2, 1]
        assert emu.regs.pc == 44
        assert emu.halted


class TestStack:

    def test_lifo(self, emu):
        run_source(emu, src(
            "put 7 gp0", "push gp0",
            "put 14 gp0", "push gp0",
            "put 21 gp0", "push gp0",
            "pop gp1", "pop gp2", "pop gp3",
        ), steps=9)
        assert (emu.regs.gp1, emu.regs.gp2, emu.regs.gp3) == (21, 14, 7)
        assert emu.regs.sp == 65534

    def test_push_layout(self, emu):
        run_source(emu, src("put 258 gp0", "push gp0"), steps=2)
        assert emu.memory[65534] == 2
        assert emu.memory[65535] == 1
        assert emu.regs.sp == 65532

    def test_pop_empty(self, emu):
        emu.load_source("pop gp0")
        with pytest.raises(StackUnderflow):
            emu.step()
        assert emu.regs.sp == 65534

    def test_push_full(self, emu):
        emu.load_source("push gp0")
        emu.regs.sp = 0
        with pytest.raises(StackOverflow):
            emu.step()
        assert emu.regs.sp == 0

    def test_push_out(self, emu):
        emu.load_source("push out")
        with pytest.raises(CannotCpFrom):
            emu.step()
        assert emu.regs.sp == 65534

    def test_pop_into_forbidden(self, emu):
        run_source(emu, src("push gp0", "pop ans"), steps=1)
        with pytest.raises(CannotPut):
            emu.step()

    def test_push_odd_sp_at_top_of_memory(self, emu):
        emu.load_source("push gp0")
        emu.regs.sp = 65535
        with pytest.raises(MemoryFault) as exc:
            emu.step()
        assert exc.value.addr == 65535

    def test_pop_above_stack_top_is_empty(self, emu):
        emu.load_source("pop gp0")
        emu.regs.sp = 65535
        with pytest.raises(StackUnderflow):
            emu.step()
        assert emu.regs.sp == 65535

    def test_pop_odd_sp_faults_after_moving_sp(self, emu):
        emu.load_source("pop gp0")
        emu.regs.sp = 65533
        with pytest.raises(MemoryFault) as exc:
            emu.step()
        assert exc.value.addr == 65535
        assert emu.regs.sp == 65535
        assert emu.regs.gp0 == 0


class TestMemory:

    def test_write_then_read(self, emu):
        run_source(emu, src(
            "put 258 gp0",
            "put 100 gp1",
            "write gp0 gp1",
            "read gp1 gp2",
        ), steps=4)
        assert emu.memory[100] == 2
        assert emu.memory[101] == 1
        assert emu.regs.gp2 == 258

    @pytest.mark.parametrize("line", ["write out gp0", "write gp0 out", "read out gp0"])
    def test_out_operand_forbidden(self, emu, line):
        emu.load_source(line)
        with pytest.raises(CannotCpFrom):
            emu.step()

    def test_read_into_forbidden(self, emu):
        emu.load_source("read gp0 pc")
        with pytest.raises(CannotPut):
            emu.step()

    def test_last_byte_rejected(self, emu):
        run_source(emu, src("put 65535 gp1", "put 7 gp0", "write gp0 gp1"), steps=2)
        with pytest.raises(MemoryFault) as exc:
            emu.step()
        assert exc.value.addr == 65535
        assert emu.memory[65535] == 0

    def test_read_last_full_word(self, emu):
        run_source(emu, src("put 65534 gp1", "read gp1 gp0"), steps=2)
        assert emu.regs.gp0 == 0


# ═══════════════════════════════════════════════
# Test Group 3: Devices and console
# ═══════════════════════════════════════════════

class _Broken(Device):
    def write(self, value):
        raise DeviceError("jammed")


class TestOutput:

    def test_sum_to_console(self, emu):
        """dvc = 2: the value goes to the console as one UTF-16 code unit."""
        emu.load_source(src("put 7 gp0", "put 5 gp1", "add gp1 gp0", "copy ans out"))
        emu.regs.dvc = 2
        for _ in range(4):
            emu.step()
        assert emu.console == "\x0c"

    def test_console_text(self, emu):
        run_source(emu, src(
            "put 2 dvc",
            "put 49 gp0", "copy gp0 out",
            "put 50 gp0", "copy gp0 out",
            "halt",
        ))
        assert emu.console == "12"

    def test_device_slots(self, emu, devices):
        run_source(emu, src(
            "put 0 dvc", "put 11 gp0", "copy gp0 out",
            "put 1 dvc", "put 22 gp0", "copy gp0 out",
            "put 9 dvc", "put 65 gp0", "copy gp0 out",
            "halt",
        ), devices)
        assert devices[0].values == [11]
        assert devices[1].values == [22]
        assert emu.console == "A"

    def test_latch_devices(self, emu):
        lcd0, lcd1 = Latch(), Latch()
        run_source(emu, src("put 1 dvc", "put 42 gp0", "copy gp0 out", "halt"), [lcd0, lcd1])
        assert lcd1.render() == "00042"
        assert lcd0.writes == 0

    def test_missing_device(self, emu):
        emu.load_source(src("put 1 dvc", "copy gp0 out"))
        emu.step([Buffer()])
        with pytest.raises(NoSuchDevice) as exc:
            emu.step([Buffer()])
        assert exc.value.slot == 1

    def test_device_failure(self, emu):
        emu.load_source("copy gp0 out")
        with pytest.raises(DeviceFault) as exc:
            emu.step([_Broken()])
        assert isinstance(exc.value.cause, DeviceError)
        assert emu.regs.pc == 0


# ═══════════════════════════════════════════════
# Test Group 4: Halt, decode failures, run loop
# ═══════════════════════════════════════════════

class TestHalt:

    def test_halt(self, emu):
        emu.load_source(src("put 1 gp0", "halt", "put 2 gp0"))
        assert emu.step() is False
        assert emu.step() is True
        assert emu.halted
        assert emu.regs.pc == 4

    def test_halted_steps_are_no_ops(self, emu):
        emu.load_source("halt")
        emu.step()
        before = emu.registers
        for _ in range(3):
            assert emu.step() is True
        assert emu.registers == before

    def test_empty_memory_halts(self, emu):
        assert emu.step() is True

    def test_decode_failure(self, emu):
        emu.load(bytes([99, 0, 0, 0]))
        with pytest.raises(DecodeFault) as exc:
            emu.step()
        assert exc.value.cause.value == 99
        assert exc.value.pc == 0
        assert not emu.halted

    def test_jump_through_out_is_access_fault(self, emu):
        emu.load_source("jump out gp0")
        with pytest.raises(AccessFault):
            emu.step()

    def test_all_errors_share_base(self):
        for cls in (CannotPut, Overflow, StackOverflow, DecodeFault, MemoryFault):
            assert issubclass(cls, ExecutionError)


class TestRun:

    def test_run_to_halt(self, emu):
        emu.load_source(src("put 1 gp0", "put 2 gp1", "halt"))
        assert emu.run() is StopReason.HALT
        assert emu.steps == 2

    def test_timeout(self, emu):
        emu.load_source(src("noop .top", "put .top gp0", "put 0 gp1", "jump gp0 gp1"))
        assert emu.run(max_steps=10) is StopReason.TIMEOUT
        assert not emu.halted

    def test_breakpoint_and_resume(self, emu):
        emu.load_source(src("put 1 gp0", "put 2 gp0", "put 3 gp0", "halt"))
        emu.add_breakpoint(8)
        assert emu.run() is StopReason.BREAK
        assert emu.regs.pc == 8
        assert emu.regs.gp0 == 2
        assert emu.run() is StopReason.HALT
        assert emu.regs.gp0 == 3

    def test_remove_breakpoint(self, emu):
        emu.load_source(src("put 1 gp0", "put 2 gp0", "put 3 gp0", "halt"))
        emu.add_breakpoint(4)
        emu.add_breakpoint(8)
        assert emu.run() is StopReason.BREAK
        assert emu.regs.pc == 4
        emu.remove_breakpoint(8)
        assert emu.run() is StopReason.HALT
        assert emu.regs.gp0 == 3

    def test_clear_breakpoints(self, emu):
        emu.load_source(src("put 1 gp0", "put 2 gp0", "halt"))
        emu.add_breakpoint(4)
        emu.clear_breakpoints()
        assert emu.run() is StopReason.HALT
        emu.remove_breakpoint(4)

    def test_errors_propagate(self, emu):
        emu.load_source(src("put 1 gp0", "pop gp0"))
        with pytest.raises(StackUnderflow):
            emu.run()

    def test_trace(self, emu):
        emu.enable_trace()
        emu.load_source(src("put 5 gp0", "halt"))
        emu.run()
        trace = emu.get_trace().splitlines()
        assert len(trace) == 2
        assert trace[0].lstrip().startswith("0: put 5 gp0")
        assert "halt" in trace[1]
        emu.clear_trace()
        assert emu.get_trace() == ""

    def test_reset(self, emu):
        run_source(emu, src("put 2 dvc", "put 65 gp0", "copy gp0 out", "halt"))
        emu.reset()
        assert not emu.halted
        assert emu.regs.pc == 0
        assert emu.regs.sp == 65534
        assert emu.console == ""
        assert emu.memory[0] == 7
        emu.reset(clear_memory=True)
        assert emu.memory[0] == 0
