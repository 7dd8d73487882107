# RV32I encoding definitions and instruction encoders.
#
# The Opcode enum is shared between the hardware (the decoder matches on it)
# and the encoders below, which are used to build program images for the core.

import struct

from amaranth.lib.enum import Enum

class Opcode(Enum, shape = 7):
    LOAD   = 0b00000_11
    FENCE  = 0b00011_11
    OP_IMM = 0b00100_11
    AUIPC  = 0b00101_11
    STORE  = 0b01000_11
    OP     = 0b01100_11
    LUI    = 0b01101_11
    BRANCH = 0b11000_11
    JALR   = 0b11001_11
    JAL    = 0b11011_11
    SYSTEM = 0b11100_11

# funct3 for conditional branches.
F_BEQ  = 0b000
F_BNE  = 0b001
F_BLT  = 0b100
F_BGE  = 0b101
F_BLTU = 0b110
F_BGEU = 0b111
# funct3 for loads and stores. Bits [1:0] are the access size, bit 2 selects
# zero extension on loads.
F_LB  = 0b000
F_LH  = 0b001
F_LW  = 0b010
F_LBU = 0b100
F_LHU = 0b101
F_SB  = 0b000
F_SH  = 0b001
F_SW  = 0b010
# funct3 for OP and OP-IMM.
F_ADD  = 0b000
F_SLL  = 0b001
F_SLT  = 0b010
F_SLTU = 0b011
F_XOR  = 0b100
F_SRL  = 0b101
F_OR   = 0b110
F_AND  = 0b111
# funct7 values. Only bit 5 is significant to this core.
FF_BASE = 0b0000000
FF_ALT  = 0b0100000

# ADDI x0, x0, 0
NOP = 0x0000_0013

def _check_reg(*regs):
    for r in regs:
        assert 0 <= r < 32, f"register index out of range: {r}"

def encode_r(opcode, rd, funct3, rs1, rs2, funct7):
    _check_reg(rd, rs1, rs2)
    return ((funct7 & 0x7F) << 25) | (rs2 << 20) | (rs1 << 15) \
        | ((funct3 & 0b111) << 12) | (rd << 7) | opcode.value

def encode_i(opcode, rd, funct3, rs1, imm):
    _check_reg(rd, rs1)
    return ((imm & 0xFFF) << 20) | (rs1 << 15) | ((funct3 & 0b111) << 12) \
        | (rd << 7) | opcode.value

def encode_s(opcode, funct3, rs1, rs2, imm):
    _check_reg(rs1, rs2)
    return (((imm >> 5) & 0x7F) << 25) | (rs2 << 20) | (rs1 << 15) \
        | ((funct3 & 0b111) << 12) | ((imm & 0x1F) << 7) | opcode.value

def encode_b(opcode, funct3, rs1, rs2, imm):
    _check_reg(rs1, rs2)
    assert imm % 2 == 0, "branch offsets must be even"
    return (((imm >> 12) & 1) << 31) | (((imm >> 5) & 0x3F) << 25) \
        | (rs2 << 20) | (rs1 << 15) | ((funct3 & 0b111) << 12) \
        | (((imm >> 1) & 0xF) << 8) | (((imm >> 11) & 1) << 7) | opcode.value

def encode_u(opcode, rd, imm):
    _check_reg(rd)
    return ((imm & 0xFFFFF) << 12) | (rd << 7) | opcode.value

def encode_j(opcode, rd, imm):
    _check_reg(rd)
    assert imm % 2 == 0, "jump offsets must be even"
    return (((imm >> 20) & 1) << 31) | (((imm >> 1) & 0x3FF) << 21) \
        | (((imm >> 11) & 1) << 20) | (((imm >> 12) & 0xFF) << 12) \
        | (rd << 7) | opcode.value

# U-format: imm is the 20-bit upper immediate, as written in assembly.
def lui(rd, imm):
    return encode_u(Opcode.LUI, rd, imm)

def auipc(rd, imm):
    return encode_u(Opcode.AUIPC, rd, imm)

# Jumps and branches take byte offsets relative to the instruction.
def jal(rd, offset):
    return encode_j(Opcode.JAL, rd, offset)

def jalr(rd, rs1, imm):
    return encode_i(Opcode.JALR, rd, 0b000, rs1, imm)

def _branch(funct3):
    def encoder(rs1, rs2, offset):
        return encode_b(Opcode.BRANCH, funct3, rs1, rs2, offset)
    return encoder

beq = _branch(F_BEQ)
bne = _branch(F_BNE)
blt = _branch(F_BLT)
bge = _branch(F_BGE)
bltu = _branch(F_BLTU)
bgeu = _branch(F_BGEU)

# Loads: rd, base register, offset. Stores: source register, base register,
# offset.
def _load(funct3):
    def encoder(rd, rs1, imm):
        return encode_i(Opcode.LOAD, rd, funct3, rs1, imm)
    return encoder

def _store(funct3):
    def encoder(rs2, rs1, imm):
        return encode_s(Opcode.STORE, funct3, rs1, rs2, imm)
    return encoder

lb = _load(F_LB)
lh = _load(F_LH)
lw = _load(F_LW)
lbu = _load(F_LBU)
lhu = _load(F_LHU)
sb = _store(F_SB)
sh = _store(F_SH)
sw = _store(F_SW)

def _op_imm(funct3):
    def encoder(rd, rs1, imm):
        return encode_i(Opcode.OP_IMM, rd, funct3, rs1, imm)
    return encoder

addi = _op_imm(F_ADD)
slti = _op_imm(F_SLT)
sltiu = _op_imm(F_SLTU)
xori = _op_imm(F_XOR)
ori = _op_imm(F_OR)
andi = _op_imm(F_AND)

def slli(rd, rs1, shamt):
    return encode_i(Opcode.OP_IMM, rd, F_SLL, rs1, shamt & 0x1F)

def srli(rd, rs1, shamt):
    return encode_i(Opcode.OP_IMM, rd, F_SRL, rs1, shamt & 0x1F)

def srai(rd, rs1, shamt):
    return encode_i(Opcode.OP_IMM, rd, F_SRL, rs1,
                    (FF_ALT << 5) | (shamt & 0x1F))

def _op(funct3, funct7 = FF_BASE):
    def encoder(rd, rs1, rs2):
        return encode_r(Opcode.OP, rd, funct3, rs1, rs2, funct7)
    return encoder

add = _op(F_ADD)
sub = _op(F_ADD, FF_ALT)
sll = _op(F_SLL)
slt = _op(F_SLT)
sltu = _op(F_SLTU)
xor = _op(F_XOR)
srl = _op(F_SRL)
sra = _op(F_SRL, FF_ALT)
or_ = _op(F_OR)
and_ = _op(F_AND)

def fence():
    return encode_i(Opcode.FENCE, 0, 0b000, 0, 0x0FF)

def ecall():
    return encode_i(Opcode.SYSTEM, 0, 0b000, 0, 0)

def ebreak():
    return encode_i(Opcode.SYSTEM, 0, 0b000, 0, 1)

def assemble(words):
    """Packs a sequence of instruction words into a little-endian image."""
    return struct.pack("<" + "I" * len(words), *(w & 0xFFFF_FFFF for w in words))
