# A multi-cycle RV32I core: one instruction at a time, sequenced through up to
# five states by the control unit.

from amaranth import *
from amaranth.lib.wiring import *

from mcrv import mux, oneof
from mcrv.alu import Alu
from mcrv.control import ControlUnit, State, ASrc, BSrc, ImmSel, PcSrc, WbSrc
from mcrv.decoder import Decoder
from mcrv.isa import NOP
from mcrv.mem import MemWidth
from mcrv.regfile import RegFile

# Memory port. Directions are from the perspective of the CPU.
MemPort = Signature({
    # Byte address. During FETCH this is the PC, otherwise the ALU result.
    'addr': Out(32),
    # Access width, MemWidth encoding.
    'width': Out(2),
    'read_en': Out(1),
    'write_en': Out(1),
    # Store data, replicated across all lanes of the access width.
    'write_data': Out(32),
    # Byte lanes being written, for memories that want a strobe.
    'lanes': Out(4),
    # Aligned word containing addr, valid in the same cycle as read_en.
    'read_data': In(32),
})

# Note: all debug port signals are directional from the perspective of the DEBUG
# PROBE, not the CPU.
DebugPort = Signature({
    # Register read port. Place a register number on reg_addr; its contents
    # appear on reg_value in the same cycle. Available at any time.
    'reg_addr': Out(5),
    'reg_value': In(32),
    # PC output from CPU. This is always valid.
    'pc': In(32),
    # Current control state, mostly intended for testbenches.
    'state': In(State),
    # Contents of the instruction register.
    'inst': In(32),
    # Decoder's illegal-instruction flag for the instruction register. The
    # CPU doesn't act on this.
    'illegal': In(1),
})

class Cpu(Component):
    """A basic multi-cycle RV32I core.

    Each instruction is fetched, decoded, and executed to completion before
    the next one is fetched. Memory is expected to answer reads in the same
    cycle they're requested.

    Parameters
    ----------
    reset_vector (int): address of the first instruction fetched after reset.

    Attributes
    ----------
    mem (out): memory port.
    rst (in): synchronous reset. Returns to FETCH at reset_vector, clears the
        instruction register to a NOP, and zeroes the register file.
    debug (both): debug port for testing or development.
    """
    mem: Out(MemPort)
    rst: In(1)

    debug: In(DebugPort)

    def __init__(self, *,
                 reset_vector = 0):
        super().__init__()

        self.reset_vector = reset_vector

        # Define registers.
        # Address of the next instruction, or of the instruction in flight if
        # it hasn't updated the PC yet.
        self.pc = Signal(32, init = reset_vector)
        # Copy of instruction currently being executed.
        self.inst = Signal(32, init = NOP)
        # Address the instruction in self.inst was fetched from. Jumps move the
        # PC before WRITEBACK, so the link value is computed from this.
        self.inst_pc = Signal(32, init = reset_vector)

        self.decoder = Decoder()
        self.rf = RegFile()
        self.alu = Alu()
        self.control = ControlUnit()

    def elaborate(self, platform):
        m = Module()

        # Make the elaborator aware of all our submodules, and wire them up.
        m.submodules.decoder = dec = self.decoder
        m.submodules.regfile = rf = self.rf
        m.submodules.alu = alu = self.alu
        m.submodules.control = cu = self.control

        d = dec.out
        ctrl = cu.ctrl

        m.d.comb += [
            dec.inst.eq(self.inst),

            cu.decoded.eq(d),
            cu.alu_zero.eq(alu.zero),
            cu.alu_lt.eq(alu.lt),
            cu.alu_ltu.eq(alu.ltu),

            rf.read1.addr.eq(d.rs1),
            rf.read2.addr.eq(d.rs2),
        ]
        rs1 = rf.read1.data
        rs2 = rf.read2.data

        # Immediate format selection
        imm = Signal(32)
        with m.Switch(ctrl.imm_sel):
            with m.Case(ImmSel.I):
                m.d.comb += imm.eq(d.imm_i)
            with m.Case(ImmSel.S):
                m.d.comb += imm.eq(d.imm_s)
            with m.Case(ImmSel.B):
                m.d.comb += imm.eq(d.imm_b)
            with m.Case(ImmSel.U):
                m.d.comb += imm.eq(d.imm_u)
            with m.Case(ImmSel.J):
                m.d.comb += imm.eq(d.imm_j)

        # ALU operands
        with m.Switch(ctrl.alu_a):
            with m.Case(ASrc.RS1):
                m.d.comb += alu.a.eq(rs1)
            with m.Case(ASrc.PC):
                m.d.comb += alu.a.eq(self.pc)
            with m.Case(ASrc.ZERO):
                m.d.comb += alu.a.eq(0)
        m.d.comb += [
            alu.b.eq(mux(ctrl.alu_b == BSrc.IMM, imm, rs2)),
            alu.op.eq(ctrl.alu_op),
        ]

        # Next-PC computation. pc_plus_4 is relative to the instruction in
        # flight, which is also the current PC until something changes it.
        pc_plus_4 = Signal(32)
        target = Signal(32)
        m.d.comb += pc_plus_4.eq(self.inst_pc + 4)
        with m.If(d.is_jalr):
            m.d.comb += target.eq((rs1 + d.imm_i) & 0xFFFF_FFFE)
        with m.Elif(d.is_jal):
            m.d.comb += target.eq(self.pc + d.imm_j)
        with m.Elif(d.is_branch):
            m.d.comb += target.eq(self.pc + d.imm_b)
        with m.Else():
            m.d.comb += target.eq(self.pc + 4)

        with m.If(ctrl.pc_write):
            m.d.sync += self.pc.eq(mux(
                ctrl.pc_src == PcSrc.TARGET,
                target,
                pc_plus_4,
            ))

        with m.If(ctrl.ir_write):
            m.d.sync += [
                self.inst.eq(self.mem.read_data),
                self.inst_pc.eq(self.pc),
            ]

        # Memory port. Instruction fetch is always a word at PC; data accesses
        # go to the ALU result.
        addr = Signal(32)
        size = Signal(2)
        m.d.comb += [
            addr.eq(mux(ctrl.ir_write, self.pc, alu.result)),
            # A size of 0b11 isn't meaningful on RV32I; access a word.
            size.eq(mux(ctrl.ir_write | ctrl.mem_size[1], MemWidth.WORD,
                        ctrl.mem_size)),

            self.mem.addr.eq(addr),
            self.mem.width.eq(size),
            self.mem.read_en.eq(ctrl.mem_read),
            self.mem.write_en.eq(ctrl.mem_write),
        ]

        with m.Switch(size):
            with m.Case(MemWidth.BYTE):
                m.d.comb += [
                    self.mem.write_data.eq(rs2[:8].replicate(4)),
                    self.mem.lanes.eq(Const(0b0001, 4) << addr[:2]),
                ]
            with m.Case(MemWidth.HALF):
                m.d.comb += [
                    self.mem.write_data.eq(rs2[:16].replicate(2)),
                    self.mem.lanes.eq(Const(0b0011, 4) << Cat(C(0, 1), addr[1])),
                ]
            with m.Default():
                m.d.comb += [
                    self.mem.write_data.eq(rs2),
                    self.mem.lanes.eq(0b1111),
                ]

        # Load data lane selection and extension
        zext = ctrl.mem_unsigned
        shifted = Signal(32)
        load_result = Signal(32)
        with m.Switch(size):
            with m.Case(MemWidth.BYTE):
                m.d.comb += [
                    shifted.eq(self.mem.read_data >> Cat(C(0, 3), addr[:2])),
                    load_result.eq(Cat(
                        shifted[:8],
                        (~zext & shifted[7]).replicate(24),
                    )),
                ]
            with m.Case(MemWidth.HALF):
                m.d.comb += [
                    shifted.eq(self.mem.read_data >> Cat(C(0, 4), addr[1])),
                    load_result.eq(Cat(
                        shifted[:16],
                        (~zext & shifted[15]).replicate(16),
                    )),
                ]
            with m.Default():
                m.d.comb += [
                    shifted.eq(self.mem.read_data),
                    load_result.eq(shifted),
                ]

        # Register writeback
        m.d.comb += [
            rf.write_cmd.valid.eq(ctrl.reg_write),
            rf.write_cmd.payload.reg.eq(d.rd),
            rf.write_cmd.payload.value.eq(oneof([
                (ctrl.wb_src == WbSrc.ALU, alu.result),
                (ctrl.wb_src == WbSrc.MEM, load_result),
                (ctrl.wb_src == WbSrc.PC_PLUS_4, pc_plus_4),
            ])),
        ]

        # Debug and status port wiring
        m.d.comb += [
            rf.debug.addr.eq(self.debug.reg_addr),
            self.debug.reg_value.eq(rf.debug.data),
            self.debug.pc.eq(self.pc),
            self.debug.state.eq(cu.state),
            self.debug.inst.eq(self.inst),
            self.debug.illegal.eq(d.illegal),
        ]

        # Reset applies to every register in the core, including the register
        # file, and wins over anything the current state would have written.
        return ResetInserter(self.rst)(m)
