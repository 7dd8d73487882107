# The control unit: a five-state sequencer that generates every datapath
# control signal from the decoded instruction, its own state, and the ALU
# flags.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.enum import Enum
from amaranth.lib.data import Struct

from mcrv.alu import AluOp
from mcrv.decoder import DecodeSignals
from mcrv.isa import (
    F_BEQ, F_BNE, F_BLT, F_BGE, F_BLTU, F_BGEU,
    F_ADD, F_SLL, F_SLT, F_SLTU, F_XOR, F_SRL, F_OR, F_AND,
)

class State(Enum, shape = 3):
    # Reading the instruction at PC into the instruction register. This is the
    # state after reset.
    FETCH     = 0
    # Decode of the freshly latched instruction settles. Nothing is driven.
    DECODE    = 1
    # ALU operation; branches and jumps update the PC here. Branches, and
    # anything else that neither touches memory nor writes a register, finish
    # here.
    EXECUTE   = 2
    # Data memory access for loads and stores. Stores finish here.
    MEMORY    = 3
    # Register file write and sequential PC update.
    WRITEBACK = 4

class ASrc(Enum, shape = 2):
    RS1  = 0
    PC   = 1
    ZERO = 2

class BSrc(Enum, shape = 1):
    RS2 = 0
    IMM = 1

class ImmSel(Enum, shape = 3):
    I = 0
    S = 1
    B = 2
    U = 3
    J = 4

class PcSrc(Enum, shape = 1):
    PC_PLUS_4 = 0
    TARGET    = 1

class WbSrc(Enum, shape = 2):
    ALU       = 0
    MEM       = 1
    PC_PLUS_4 = 2

class ControlSignals(Struct):
    # PC update
    pc_write: unsigned(1)
    pc_src: PcSrc
    # instruction register latch
    ir_write: unsigned(1)
    # memory port; size is funct3[1:0] encoding (see MemWidth)
    mem_read: unsigned(1)
    mem_write: unsigned(1)
    mem_size: unsigned(2)
    mem_unsigned: unsigned(1)
    # register file write port
    reg_write: unsigned(1)
    wb_src: WbSrc
    # ALU input muxes
    alu_a: ASrc
    alu_b: BSrc
    imm_sel: ImmSel
    alu_op: AluOp
    # branch resolution, informational outside EXECUTE
    branch_taken: unsigned(1)

def select_alu_inputs(m, d, ctrl):
    """Drives the ALU operand and operation selectors for the decoded
    instruction `d` onto `ctrl`.

    The ALU result isn't latched between states, so every state that needs it
    calls this and gets the identical selection.
    """
    # Operand A
    with m.If(d.is_auipc | d.is_jal):
        m.d.comb += ctrl.alu_a.eq(ASrc.PC)
    with m.Elif(d.is_lui):
        m.d.comb += ctrl.alu_a.eq(ASrc.ZERO)
    with m.Else():
        m.d.comb += ctrl.alu_a.eq(ASrc.RS1)

    # Operand B
    with m.If(d.is_op_imm | d.is_load | d.is_store | d.is_jalr | d.is_auipc
              | d.is_jal | d.is_lui):
        m.d.comb += ctrl.alu_b.eq(BSrc.IMM)
    with m.Else():
        m.d.comb += ctrl.alu_b.eq(BSrc.RS2)

    # Immediate format
    with m.If(d.is_store):
        m.d.comb += ctrl.imm_sel.eq(ImmSel.S)
    with m.Elif(d.is_lui | d.is_auipc):
        m.d.comb += ctrl.imm_sel.eq(ImmSel.U)
    with m.Elif(d.is_jal):
        m.d.comb += ctrl.imm_sel.eq(ImmSel.J)
    with m.Elif(d.is_branch):
        m.d.comb += ctrl.imm_sel.eq(ImmSel.B)
    with m.Else():
        m.d.comb += ctrl.imm_sel.eq(ImmSel.I)

    # Operation
    with m.If(d.is_load | d.is_store | d.is_auipc | d.is_jal | d.is_jalr):
        m.d.comb += ctrl.alu_op.eq(AluOp.ADD)
    with m.Elif(d.is_lui):
        m.d.comb += ctrl.alu_op.eq(AluOp.PASS_B)
    with m.Elif(d.is_op | d.is_op_imm):
        with m.Switch(d.funct3):
            with m.Case(F_ADD):
                # funct7 is part of the immediate for ADDI, so only the
                # register form can subtract.
                with m.If(d.is_op & d.funct7[5]):
                    m.d.comb += ctrl.alu_op.eq(AluOp.SUB)
                with m.Else():
                    m.d.comb += ctrl.alu_op.eq(AluOp.ADD)
            with m.Case(F_SLL):
                m.d.comb += ctrl.alu_op.eq(AluOp.SLL)
            with m.Case(F_SLT):
                m.d.comb += ctrl.alu_op.eq(AluOp.SLT)
            with m.Case(F_SLTU):
                m.d.comb += ctrl.alu_op.eq(AluOp.SLTU)
            with m.Case(F_XOR):
                m.d.comb += ctrl.alu_op.eq(AluOp.XOR)
            with m.Case(F_SRL):
                with m.If(d.funct7[5]):
                    m.d.comb += ctrl.alu_op.eq(AluOp.SRA)
                with m.Else():
                    m.d.comb += ctrl.alu_op.eq(AluOp.SRL)
            with m.Case(F_OR):
                m.d.comb += ctrl.alu_op.eq(AluOp.OR)
            with m.Case(F_AND):
                m.d.comb += ctrl.alu_op.eq(AluOp.AND)
    with m.Elif(d.is_branch):
        with m.Switch(d.funct3):
            with m.Case("00-"): # EQ/NE
                m.d.comb += ctrl.alu_op.eq(AluOp.SUB)
            with m.Case("10-"): # LT/GE
                m.d.comb += ctrl.alu_op.eq(AluOp.SLT)
            with m.Case("11-"): # LTU/GEU
                m.d.comb += ctrl.alu_op.eq(AluOp.SLTU)

def drive_memory_access(m, d, ctrl):
    """Drives the data memory signals for a load or store."""
    with m.If(d.is_load):
        m.d.comb += [
            ctrl.mem_read.eq(1),
            ctrl.mem_size.eq(d.funct3[:2]),
            ctrl.mem_unsigned.eq(d.funct3[2]),
        ]
    with m.Elif(d.is_store):
        m.d.comb += [
            ctrl.mem_write.eq(1),
            ctrl.mem_size.eq(d.funct3[:2]),
        ]

class ControlUnit(Component):
    """The control unit sequences each instruction through FETCH, DECODE,
    EXECUTE, and then MEMORY and/or WRITEBACK as the instruction requires.

    Everything but the state register is combinational: ctrl and next_state
    are recomputed every cycle from the current state, the decode signals, and
    the ALU flags. The illegal flag from the decoder is deliberately not an
    input; an illegal instruction flows through like one with no category.

    Attributes
    ----------
    decoded (input): decode signals for the instruction register.
    alu_zero, alu_lt, alu_ltu (input): ALU flags, for branch resolution.
    state (output): current state.
    next_state (output): state that will be entered on the next clock.
    ctrl (output): datapath control signals, see ControlSignals.
    """
    decoded: In(DecodeSignals)
    alu_zero: In(1)
    alu_lt: In(1)
    alu_ltu: In(1)

    state: Out(State)
    next_state: Out(State)
    ctrl: Out(ControlSignals)

    def elaborate(self, platform):
        m = Module()

        with m.Switch(self.state):
            with m.Case(State.FETCH):
                self.fetch(m)
            with m.Case(State.DECODE):
                self.decode(m)
            with m.Case(State.EXECUTE):
                self.execute(m)
            with m.Case(State.MEMORY):
                self.memory(m)
            with m.Case(State.WRITEBACK):
                self.writeback(m)

        m.d.sync += self.state.eq(self.next_state)

        return m

    def fetch(self, m):
        m.d.comb += [
            self.ctrl.mem_read.eq(1),
            self.ctrl.ir_write.eq(1),
            self.next_state.eq(State.DECODE),
        ]

    def decode(self, m):
        m.d.comb += self.next_state.eq(State.EXECUTE)

    def execute(self, m):
        d = self.decoded
        select_alu_inputs(m, d, self.ctrl)

        taken = Signal(1)
        with m.Switch(d.funct3):
            with m.Case(F_BEQ):
                m.d.comb += taken.eq(self.alu_zero)
            with m.Case(F_BNE):
                m.d.comb += taken.eq(~self.alu_zero)
            with m.Case(F_BLT):
                m.d.comb += taken.eq(self.alu_lt)
            with m.Case(F_BGE):
                m.d.comb += taken.eq(~self.alu_lt)
            with m.Case(F_BLTU):
                m.d.comb += taken.eq(self.alu_ltu)
            with m.Case(F_BGEU):
                m.d.comb += taken.eq(~self.alu_ltu)
            with m.Default(): # undefined comparisons
                # never taken
                pass

        with m.If(d.is_branch):
            m.d.comb += [
                self.ctrl.branch_taken.eq(taken),
                self.ctrl.pc_write.eq(1),
            ]
            with m.If(taken):
                m.d.comb += self.ctrl.pc_src.eq(PcSrc.TARGET)
            with m.Else():
                m.d.comb += self.ctrl.pc_src.eq(PcSrc.PC_PLUS_4)
        with m.Elif(d.is_jal | d.is_jalr):
            m.d.comb += [
                self.ctrl.pc_write.eq(1),
                self.ctrl.pc_src.eq(PcSrc.TARGET),
            ]

        with m.If(d.is_load | d.is_store):
            m.d.comb += self.next_state.eq(State.MEMORY)
        with m.Elif(d.is_op | d.is_op_imm | d.is_lui | d.is_auipc | d.is_jal
                    | d.is_jalr):
            m.d.comb += self.next_state.eq(State.WRITEBACK)
        with m.Else():
            m.d.comb += self.next_state.eq(State.FETCH)

    def memory(self, m):
        d = self.decoded
        # The address is the ALU result, so keep it computing base + offset.
        select_alu_inputs(m, d, self.ctrl)
        drive_memory_access(m, d, self.ctrl)

        with m.If(d.is_load):
            m.d.comb += self.next_state.eq(State.WRITEBACK)
        with m.Else():
            # Stores retire here and never see WRITEBACK, so step the PC now.
            m.d.comb += [
                self.ctrl.pc_write.eq(1),
                self.ctrl.pc_src.eq(PcSrc.PC_PLUS_4),
                self.next_state.eq(State.FETCH),
            ]

    def writeback(self, m):
        d = self.decoded
        select_alu_inputs(m, d, self.ctrl)

        m.d.comb += self.ctrl.reg_write.eq(1)

        with m.If(d.is_load):
            # Nothing holds the loaded value across the state boundary, so the
            # same read is presented to memory again.
            drive_memory_access(m, d, self.ctrl)
            m.d.comb += self.ctrl.wb_src.eq(WbSrc.MEM)
        with m.Elif(d.is_jal | d.is_jalr):
            m.d.comb += self.ctrl.wb_src.eq(WbSrc.PC_PLUS_4)
        with m.Else():
            m.d.comb += self.ctrl.wb_src.eq(WbSrc.ALU)

        with m.If(~(d.is_branch | d.is_jal | d.is_jalr)):
            m.d.comb += [
                self.ctrl.pc_write.eq(1),
                self.ctrl.pc_src.eq(PcSrc.PC_PLUS_4),
            ]

        m.d.comb += self.next_state.eq(State.FETCH)
