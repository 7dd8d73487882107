from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.enum import Enum

class AluOp(Enum, shape = 4):
    ADD    = 0b0000
    SUB    = 0b0001
    AND    = 0b0010
    OR     = 0b0011
    XOR    = 0b0100
    SLL    = 0b0101
    SRL    = 0b0110
    SRA    = 0b0111
    SLT    = 0b1000
    SLTU   = 0b1001
    PASS_A = 0b1010
    PASS_B = 0b1011
    # 0b1100 through 0b1111 are unassigned and produce zero.

class Alu(Component):
    """A 32-bit ALU covering the RV32I integer operations.

    The comparison flags don't depend on the selected operation: lt and ltu
    always compare a against b directly, so that the control unit can resolve
    a branch from them in the same cycle regardless of what the ALU is being
    asked to compute.

    Attributes
    ----------
    a (input): left-hand operand.
    b (input): right-hand operand. Shifts use only its low five bits.
    op (input): operation selector.
    result (output): 32-bit result.
    zero (output): result is zero.
    lt (output): a < b, signed.
    ltu (output): a < b, unsigned.
    """
    a: In(32)
    b: In(32)
    op: In(AluOp)

    result: Out(32)
    zero: Out(1)
    lt: Out(1)
    ltu: Out(1)

    def elaborate(self, platform):
        m = Module()

        # Share one subtractor between SUB and both comparators. Extending the
        # complemented rhs with a 1 leaves the borrow in bit 32.
        difference = Signal(33)
        m.d.comb += [
            difference.eq(self.a + Cat(~self.b, C(1, 1)) + 1),
            self.ltu.eq(difference[32]),
        ]
        with m.If(self.a[31] ^ self.b[31]):
            m.d.comb += self.lt.eq(self.a[31])
        with m.Else():
            m.d.comb += self.lt.eq(difference[32])

        shamt = self.b[:5]

        with m.Switch(self.op):
            with m.Case(AluOp.ADD):
                m.d.comb += self.result.eq(self.a + self.b)
            with m.Case(AluOp.SUB):
                m.d.comb += self.result.eq(difference[:32])
            with m.Case(AluOp.AND):
                m.d.comb += self.result.eq(self.a & self.b)
            with m.Case(AluOp.OR):
                m.d.comb += self.result.eq(self.a | self.b)
            with m.Case(AluOp.XOR):
                m.d.comb += self.result.eq(self.a ^ self.b)
            with m.Case(AluOp.SLL):
                m.d.comb += self.result.eq(self.a << shamt)
            with m.Case(AluOp.SRL):
                m.d.comb += self.result.eq(self.a >> shamt)
            with m.Case(AluOp.SRA):
                m.d.comb += self.result.eq(self.a.as_signed() >> shamt)
            with m.Case(AluOp.SLT):
                m.d.comb += self.result.eq(self.lt)
            with m.Case(AluOp.SLTU):
                m.d.comb += self.result.eq(self.ltu)
            with m.Case(AluOp.PASS_A):
                m.d.comb += self.result.eq(self.a)
            with m.Case(AluOp.PASS_B):
                m.d.comb += self.result.eq(self.b)
            with m.Default():
                m.d.comb += self.result.eq(0)

        m.d.comb += self.zero.eq(self.result == 0)

        return m
