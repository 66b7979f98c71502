# RPU Emulator: register-machine emulator core
# Part of the RPU toolchain (assembler in rpu_compiler/)
#
# Layout:
#   cpu/regs.py       register set + access control
#   cpu/decoder.py    4-byte instruction codec (text <-> word)
#   cpu/alu.py        checked 16-bit arithmetic
#   mem/memory.py     flat 64K memory
#   periph/           device capability, console, serial link
#   emu.py            fetch/decode/execute core
#
# Nothing is imported here on purpose: rpu_compiler imports the codec
# from cpu/ and emu.py imports rpu_compiler, so this package must stay
# import-free.
