# Combinational decode logic.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.data import Struct

from mcrv.isa import Opcode

class DecodeSignals(Struct):
    opcode: unsigned(7)
    rd: unsigned(5)
    rs1: unsigned(5)
    rs2: unsigned(5)
    funct3: unsigned(3)
    funct7: unsigned(7)

    # immediates, all sign-extended to 32 bits
    imm_i: unsigned(32)
    imm_s: unsigned(32)
    imm_b: unsigned(32)
    imm_u: unsigned(32)
    imm_j: unsigned(32)

    # instruction categories, one-hot for legal non-FENCE instructions
    is_load: unsigned(1)
    is_store: unsigned(1)
    is_branch: unsigned(1)
    is_jal: unsigned(1)
    is_jalr: unsigned(1)
    is_lui: unsigned(1)
    is_auipc: unsigned(1)
    is_op: unsigned(1)
    is_op_imm: unsigned(1)
    is_system: unsigned(1)

    # opcode is none of the eleven RV32I major opcodes
    illegal: unsigned(1)

class Decoder(Component):
    """The Decoder breaks an instruction word into its fields, immediates, and
    category flags. It's purely combinational.

    Attributes
    ----------
    inst (input): instruction word.
    out (output): group of decode signals, see DecodeSignals struct.
    """
    inst: In(32)

    out: Out(DecodeSignals)

    def elaborate(self, platform):
        m = Module()

        m.submodules.imm = imm = ImmediateDecoder()

        opcode = Signal(7)
        m.d.comb += [
            opcode.eq(self.inst[0:7]),
            imm.inst.eq(self.inst),

            self.out.opcode.eq(opcode),
            self.out.rd.eq(self.inst[7:12]),
            self.out.funct3.eq(self.inst[12:15]),
            self.out.rs1.eq(self.inst[15:20]),
            self.out.rs2.eq(self.inst[20:25]),
            self.out.funct7.eq(self.inst[25:32]),

            self.out.imm_i.eq(imm.i),
            self.out.imm_s.eq(imm.s),
            self.out.imm_b.eq(imm.b),
            self.out.imm_u.eq(imm.u),
            self.out.imm_j.eq(imm.j),

            self.out.is_load.eq(opcode == Opcode.LOAD),
            self.out.is_store.eq(opcode == Opcode.STORE),
            self.out.is_branch.eq(opcode == Opcode.BRANCH),
            self.out.is_jal.eq(opcode == Opcode.JAL),
            self.out.is_jalr.eq(opcode == Opcode.JALR),
            self.out.is_lui.eq(opcode == Opcode.LUI),
            self.out.is_auipc.eq(opcode == Opcode.AUIPC),
            self.out.is_op.eq(opcode == Opcode.OP),
            self.out.is_op_imm.eq(opcode == Opcode.OP_IMM),
            self.out.is_system.eq(opcode == Opcode.SYSTEM),
        ]

        # FENCE is legal but has no category of its own; it falls through the
        # state machine like SYSTEM does.
        legal = Signal(1)
        with m.Switch(opcode):
            for op in Opcode:
                with m.Case(op):
                    m.d.comb += legal.eq(1)
        m.d.comb += self.out.illegal.eq(~legal)

        return m

class ImmediateDecoder(Component):
    """The ImmediateDecoder decodes an instruction word into its various
    immediate formats.

    Attributes
    ----------
    inst (input): instruction word.
    i (output): I-format immediate.
    s (output): S-format immediate.
    b (output): B-format immediate.
    u (output): U-format immediate.
    j (output): J-format immediate.
    """
    inst: In(32)

    i: Out(32)
    s: Out(32)
    b: Out(32)
    u: Out(32)
    j: Out(32)

    def elaborate(self, platform):
        m = Module()

        m.d.comb += [
            self.i.eq(Cat(self.inst[20:31], self.inst[31].replicate(21))),
            self.s.eq(Cat(self.inst[7:12], self.inst[25:31],
                     self.inst[31].replicate(21))),
            self.b.eq(Cat(C(0, 1), self.inst[8:12], self.inst[25:31],
                          self.inst[7], self.inst[31].replicate(20))),
            self.u.eq(self.inst & 0xFFFFF000),
            self.j.eq(Cat(C(0, 1), self.inst[21:31], self.inst[20],
                          self.inst[12:20], self.inst[31].replicate(12))),
        ]

        return m
