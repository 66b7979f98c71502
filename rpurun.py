#!/usr/bin/env python3
"""
rpurun — RPU assembler + batch runner CLI

Usage:
    python rpurun.py <program.rpu> [--max-steps N] [--break ADDR ...]
                                   [--trace] [--listing] [-o out.bin]
                                   [--serial URL] [--baud N] [-v]

Without -o/--listing the program is assembled, loaded and run until it
halts (or hits a breakpoint / the step limit); then the registers, the
two LCD panels (dvc 0/1) and the printer console (dvc 2+) are printed.

Examples:
    python rpurun.py count.rpu
    python rpurun.py count.rpu --listing
    python rpurun.py count.rpu -o count.bin
    python rpurun.py count.rpu --serial loop:// --trace -v
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from rpu_compiler import __version__
from rpu_compiler.assembler import AssemblerError, compile_program
from rpu_emulator.config import DEFAULT_MAX_STEPS, DEFAULT_SERIAL_BAUD
from rpu_emulator.cpu.decoder import Instruction
from rpu_emulator.cpu.regs import GENERAL_PURPOSE, SPECIAL_PURPOSE
from rpu_emulator.emu import BootError, ExecutionError, RPUEmulator, StopReason
from rpu_emulator.periph.devices import Device, DeviceError, Latch
from rpu_emulator.periph.serial_link import SerialDevice

log = logging.getLogger('rpu')


def setup_logging(verbose: int = 0, log_file: Optional[str] = None) -> logging.Logger:
    """Rich console handler (WARNING, -v → DEBUG) plus optional file log."""
    logger = logging.getLogger('rpu')
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)

    console_level = logging.DEBUG if verbose else logging.WARNING
    ch = RichHandler(level=console_level, show_time=False, show_path=False,
                     markup=False, rich_tracebacks=True)
    logger.addHandler(ch)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(fh)

    return logger


def parse_int_arg(value: str) -> int:
    """Parse an integer argument that may be hex (0x...) or decimal."""
    value = value.strip()
    if value.startswith("0x") or value.startswith("0X"):
        return int(value, 16)
    return int(value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rpurun",
        description="RPU register-machine assembler and batch runner",
    )
    parser.add_argument("input", help="Assembly source file")
    parser.add_argument("-o", "--output",
                        help="Write the assembled binary here and exit")
    parser.add_argument("--listing", action="store_true",
                        help="Print the assembly listing and exit")
    parser.add_argument("--max-steps", type=int, default=DEFAULT_MAX_STEPS,
                        help=f"Step limit (default: {DEFAULT_MAX_STEPS})")
    parser.add_argument("--break", dest="breakpoints", action="append",
                        default=[], type=parse_int_arg, metavar="ADDR",
                        help="Stop before the instruction at ADDR (repeatable)")
    parser.add_argument("--trace", action="store_true",
                        help="Print an instruction trace after the run")
    parser.add_argument("--serial", metavar="URL",
                        help="Attach a pyserial port (e.g. loop://, /dev/ttyUSB0) as device 1")
    parser.add_argument("--baud", type=int, default=DEFAULT_SERIAL_BAUD,
                        help=f"Serial baud rate (default: {DEFAULT_SERIAL_BAUD})")
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="Show debug logging")
    parser.add_argument("--log-file", help="Also write the debug log to this file")
    parser.add_argument("--version", action="version",
                        version=f"rpurun {__version__}")
    return parser


def render(emu: RPUEmulator, devices: List[Device], console: Console):
    """Print registers, device panels and the printer console."""
    regs = emu.registers
    for title, names in (("General Purpose Registers", GENERAL_PURPOSE),
                         ("Special Purpose Registers", SPECIAL_PURPOSE)):
        table = Table(title=title, title_justify="left")
        for name in names:
            table.add_column(name.name, justify="right")
        table.add_row(*(f"{regs[name.name]:5d}" for name in names))
        console.print(table)

    for slot, device in enumerate(devices):
        if isinstance(device, Latch):
            body = device.render()
        else:
            body = type(device).__name__
        console.print(Panel(body, title=f"{device_label(device, slot)} (dvc {slot})",
                            expand=False))

    console.print(Panel(Text(emu.console), title="Printer (dvc 2)"))


def device_label(device: Device, slot: int) -> str:
    return getattr(device, 'label', f"DEV{slot}")


def describe(instr: Optional[Instruction]) -> str:
    return str(instr) if instr is not None else "<undecodable>"


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)
    console = Console()

    try:
        source = Path(args.input).read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]error:[/red] cannot read {escape(args.input)}: {escape(str(e))}")
        return 1

    try:
        program = compile_program(source)
    except AssemblerError as e:
        console.print(f"[red]assembly error:[/red] {escape(str(e))}", highlight=False)
        return 1

    if args.listing:
        console.print(program.listing(), markup=False, highlight=False)
        return 0

    if args.output:
        Path(args.output).write_bytes(program.to_bytes())
        log.info("Wrote %d bytes to %s", program.size(), args.output)
        return 0

    emu = RPUEmulator()
    try:
        emu.load(program)
    except BootError as e:
        console.print(f"[red]boot error:[/red] {escape(str(e))}")
        return 1

    devices: List[Device] = [Latch("LCD0")]
    try:
        devices.append(SerialDevice.open(args.serial, baudrate=args.baud)
                       if args.serial else Latch("LCD1"))
    except DeviceError as e:
        console.print(f"[red]device error:[/red] {escape(str(e))}")
        return 1

    for addr in args.breakpoints:
        emu.add_breakpoint(addr)
    emu.enable_trace(args.trace)

    status = 0
    try:
        reason = emu.run(devices, max_steps=args.max_steps)
        log.info("Stopped: %s after %d steps", reason.value, emu.steps)
        if reason is StopReason.TIMEOUT:
            console.print(f"[yellow]step limit reached[/yellow] ({args.max_steps})")
            status = 2
        elif reason is StopReason.BREAK:
            console.print(f"[yellow]breakpoint[/yellow] at {emu.regs.pc}: "
                          f"{escape(describe(emu.current_instruction()))}", highlight=False)
    except ExecutionError as e:
        emu.tty.append_text(f"{type(e).__name__}: {e}\n")
        line = emu.current_line()
        where = f" (line {line + 1}: {program.source_lines[line].strip()})" if line is not None else ""
        console.print(f"[red]execution error at {emu.regs.pc}{escape(where)}:[/red] {escape(str(e))}",
                      highlight=False)
        status = 1
    finally:
        for device in devices:
            if isinstance(device, SerialDevice):
                device.close()

    if args.trace:
        console.print(emu.get_trace(), markup=False, highlight=False)
    render(emu, devices, console)
    return status


if __name__ == "__main__":
    sys.exit(main())
