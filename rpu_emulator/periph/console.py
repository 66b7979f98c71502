"""
RPU Emulator — Text Console (dvc >= 2)

The core owns this sink. Every `copy x out` with dvc outside the device
slots appends one character: the 16-bit value taken as a single UTF-16
code unit. Lone surrogates ($D800–$DFFF) cannot stand alone as text and
become U+FFFD, the same lossy rule UTF-16 decoders apply.
"""

REPLACEMENT_CHAR = '\ufffd'


def code_unit_to_text(value: int) -> str:
    """One UTF-16 code unit → text, lossily."""
    return bytes([value & 0xFF, (value >> 8) & 0xFF]).decode('utf-16-le', errors='replace')


class Console:
    """Append-only text buffer the host can read for display."""

    def __init__(self):
        self._chunks = []

    def put(self, value: int):
        self._chunks.append(code_unit_to_text(value))

    def append_text(self, text: str):
        """Host-side annotations (e.g. error diagnostics)."""
        self._chunks.append(text)

    @property
    def text(self) -> str:
        return ''.join(self._chunks)

    def reset(self):
        self._chunks.clear()

    def __str__(self) -> str:
        return self.text
