"""
RPU Emulator — Machine Configuration
====================================

Fixed machine parameters shared by the core, the assembler and the host
script. Changing any of these changes the binary program format, so they
are constants rather than runtime options.
"""

# =============================================================================
#  WORD / ADDRESS SPACE
# =============================================================================
WORD_MASK = 0xFFFF            # Registers and memory words are 16-bit
MEMORY_SIZE = 0x10000         # 64K flat address space, zero-initialised
INSTRUCTION_WIDTH = 4         # Every encoded instruction is one 4-byte word
LOAD_ADDRESS = 0x0000         # Programs always load at address 0


# =============================================================================
#  STACK
# =============================================================================
STACK_TOP = 65_534            # sp at reset; also the "empty stack" marker
STACK_BOTTOM = 0              # push refuses when sp reaches this
STACK_SLOT = 2                # bytes per pushed value


# =============================================================================
#  DEVICES
#  dvc == 0 → slot 0, dvc == 1 → slot 1, anything else → text console
# =============================================================================
DEVICE_SLOTS = 2


# =============================================================================
#  HOST DEFAULTS (rpurun.py)
# =============================================================================
DEFAULT_MAX_STEPS = 1_000_000
DEFAULT_SERIAL_BAUD = 9600
DEFAULT_SERIAL_TIMEOUT = 0.1  # seconds
