# 32-bit x 32 register file for the multi-cycle core.

from amaranth import *
from amaranth.lib.wiring import *

from mcrv import AlwaysReady

def RegWrite():
    return Signature({
        'reg': Out(5),
        'value': Out(32),
    })

# Combinational read port, directional from the perspective of the reader.
ReadPort = Signature({
    'addr': Out(5),
    'data': In(32),
})

class RegFile(Component):
    """Integer register file with x0 wired to zero.

    Storage is plain registers rather than a memory so that a reset clears
    every entry in one cycle, and so that reads are combinational.

    Attributes
    ----------
    read1, read2 (port): operand read ports. data follows addr in the same
        cycle; index 0 reads as 0.
    debug (port): a third read port for inspection, same behavior.
    write_cmd (input): synchronous write port. Writes to x0 are dropped.
    """
    read1: In(ReadPort)
    read2: In(ReadPort)
    debug: In(ReadPort)

    write_cmd: In(AlwaysReady(RegWrite()))

    def __init__(self):
        super().__init__()

        # x0 has no storage at all.
        self.regs = [C(0, 32)] + [
            Signal(32, name = f"x{i}") for i in range(1, 32)
        ]

    def elaborate(self, platform):
        m = Module()

        regs = Array(self.regs)

        for port in (self.read1, self.read2, self.debug):
            m.d.comb += port.data.eq(regs[port.addr])

        for i in range(1, 32):
            with m.If(self.write_cmd.valid & (self.write_cmd.payload.reg == i)):
                m.d.sync += self.regs[i].eq(self.write_cmd.payload.value)

        return m
