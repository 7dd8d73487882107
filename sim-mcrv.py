# Runs a program on the multi-cycle core in simulation and reports the final
# machine state.
#
# With no image, a small built-in program sums 1..10 into x10 and stores the
# result to memory before halting on ECALL.

import argparse
from pathlib import Path

from amaranth.back import verilog

from mcrv.cpu import Cpu
from mcrv.isa import *
from mcrv.mem import ByteMemory
from mcrv.sim import Machine, SimulationTimeout

demo = [
    addi(1, 0, 10),         # x1 = 10 (counter)
    addi(10, 0, 0),         # x10 = 0 (sum)
    add(10, 10, 1),         # loop: x10 += x1
    addi(1, 1, -1),         #   x1 -= 1
    bne(1, 0, -8),          #   until x1 == 0
    lui(2, 0x1),            # x2 = 0x1000
    sw(10, 2, 0),           # M[0x1000] = x10
    lw(11, 2, 0),           # x11 = M[0x1000]
    ecall(),
]

parser = argparse.ArgumentParser(
    prog = "sim-mcrv",
    description = "Cycle-accurate simulation of the mcrv RV32I core",
)
parser.add_argument("image", nargs = "?", type = Path,
                    help = "raw little-endian program image, loaded at 0")
parser.add_argument("--cycles", type = int, default = 100_000,
                    help = "give up after this many cycles")
parser.add_argument("--memory-size", type = int, default = 1 << 16,
                    help = "memory size in bytes (power of two)")
parser.add_argument("--vcd", type = Path,
                    help = "write a waveform of the run to this file")
parser.add_argument("--verilog", type = Path,
                    help = "write the core as Verilog to this file and exit")
args = parser.parse_args()

if args.verilog is not None:
    cpu = Cpu()
    args.verilog.write_text(verilog.convert(cpu, name = "mcrv_cpu"))
    print(f"wrote {args.verilog}")
    raise SystemExit(0)

if args.image is not None:
    image = args.image.read_bytes()
else:
    image = assemble(demo)

for i in range(0, len(image) - len(image) % 4, 4):
    print(f"{i:08x}  {int.from_bytes(image[i:i + 4], 'little'):08x}")

memory = ByteMemory(size = args.memory_size, contents = image)
machine = Machine(memory)

try:
    snapshot = machine.run_program(
        args.cycles,
        vcd_file = str(args.vcd) if args.vcd is not None else None,
    )
except SimulationTimeout as e:
    print(f"FAIL: {e}")
    raise SystemExit(1)

print(f"halted after {snapshot.cycles} cycles at pc 0x{snapshot.pc:08x}")
for r in range(0, 32, 4):
    print("  ".join(
        f"x{n:<2} = 0x{snapshot.regs[n]:08x}" for n in range(r, r + 4)
    ))
