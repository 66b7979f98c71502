"""
RPU Emulator — Serial Device

Bridges a device slot to a real (or virtual) serial port so a program's
`copy x out` reaches another process or piece of hardware.

Wire format: each 16-bit value is 2 bytes, low byte first. No framing,
no checksum.

Any pyserial URL works, which keeps this testable without hardware:
    SerialDevice.open('loop://')          # loopback, reads what you wrote
    SerialDevice.open('/dev/ttyUSB0', baudrate=9600)
    SerialDevice.open('socket://localhost:7777')
"""

import logging
from typing import Optional

import serial

from ..config import DEFAULT_SERIAL_BAUD, DEFAULT_SERIAL_TIMEOUT
from ..cpu.alu import join16, split16
from .devices import Device, DeviceError

log = logging.getLogger('rpu.serial')


class SerialDevice(Device):
    """Device backed by a pyserial port."""

    def __init__(self, port: serial.SerialBase):
        self.port = port

    @classmethod
    def open(cls, url: str, baudrate: int = DEFAULT_SERIAL_BAUD,
             timeout: float = DEFAULT_SERIAL_TIMEOUT) -> 'SerialDevice':
        try:
            port = serial.serial_for_url(url, baudrate=baudrate, timeout=timeout)
        except (serial.SerialException, ValueError) as e:
            raise DeviceError(f"cannot open {url}: {e}") from e
        log.debug("Opened %s at %d baud", url, baudrate)
        return cls(port)

    def write(self, value: int):
        lo, hi = split16(value)
        try:
            self.port.write(bytes([lo, hi]))
        except serial.SerialException as e:
            raise DeviceError(f"serial write failed: {e}") from e
        log.debug("TX %d", value & 0xFFFF)

    def read(self) -> Optional[int]:
        try:
            data = self.port.read(2)
        except serial.SerialException as e:
            raise DeviceError(f"serial read failed: {e}") from e
        if not data:
            return None
        if len(data) == 1:
            raise DeviceError("serial read timed out mid-word (got 1 of 2 bytes)")
        value = join16(data[0], data[1])
        log.debug("RX %d", value)
        return value

    def reset(self):
        self.port.reset_input_buffer()
        self.port.reset_output_buffer()

    def close(self):
        self.port.close()
