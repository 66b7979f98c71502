"""
Shared fixtures for the RPU test suite.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from rpu_emulator.emu import RPUEmulator
from rpu_emulator.periph.devices import Buffer


@pytest.fixture
def emu():
    return RPUEmulator()


@pytest.fixture
def devices():
    """Two in-memory stand-ins for device slots 0 and 1."""
    return [Buffer(), Buffer()]


def run_source(emu, source, devices=(), steps=None):
    """Load source and execute `steps` instructions (or until halt)."""
    emu.load_source(source)
    if steps is None:
        while not emu.step(devices):
            pass
    else:
        for _ in range(steps):
            emu.step(devices)
    return emu
