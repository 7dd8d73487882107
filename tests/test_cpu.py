import gc
import warnings

import pytest

from mcrv.control import State
from mcrv.isa import *
from mcrv.mem import ByteMemory
from mcrv.sim import Machine, SimulationTimeout

def machine_for(program, *, data = None, **kwargs):
    memory = ByteMemory.from_words(program, size = 1 << 14)
    for addr, word in (data or {}).items():
        memory.write(addr, 2, word)
    return Machine(memory, **kwargs)

def run(program, *, data = None, max_cycles = 1000):
    machine = machine_for(program, data = data)
    return machine, machine.run_program(max_cycles)

def test_add_and_sub():
    _, s = run([
        addi(1, 0, 10),
        addi(2, 0, 20),
        add(3, 1, 2),
        sub(4, 1, 2),
        ecall(),
    ])
    assert s.regs[1] == 10
    assert s.regs[2] == 20
    assert s.regs[3] == 30
    assert s.regs[4] == 0xFFFF_FFF6
    assert s.pc == 16

def test_lui_then_addi():
    _, s = run([
        lui(1, 0x12345),
        addi(1, 1, 0x678),
        ecall(),
    ])
    assert s.regs[1] == 0x1234_5678

def test_signed_and_unsigned_compare():
    _, s = run([
        addi(1, 0, -5),
        addi(2, 0, 3),
        slt(3, 1, 2),
        sltu(4, 1, 2),
        slti(5, 1, -4),
        sltiu(6, 2, -1),
        ecall(),
    ])
    assert s.regs[3] == 1
    assert s.regs[4] == 0
    assert s.regs[5] == 1
    # -1 is the largest unsigned immediate
    assert s.regs[6] == 1

def test_logic_and_shifts():
    _, s = run([
        lui(1, 0x80000),
        addi(1, 1, 0x0F0),       # x1 = 0x800000F0
        srai(2, 1, 4),
        srli(3, 1, 4),
        slli(4, 1, 1),
        addi(5, 0, 8),
        sra(6, 1, 5),
        srl(7, 1, 5),
        sll(8, 1, 5),
        xori(9, 1, -1),
        ori(10, 0, 0x555),
        andi(11, 1, 0x0FF),
        xor(12, 1, 10),
        or_(13, 1, 10),
        and_(14, 1, 10),
        ecall(),
    ])
    r = s.regs
    assert r[2] == 0xF800_000F
    assert r[3] == 0x0800_000F
    assert r[4] == 0x0000_01E0
    assert r[6] == 0xFF80_0000
    assert r[7] == 0x0080_0000
    assert r[8] == 0x0000_F000
    assert r[9] == 0x7FFF_FF0F
    assert r[10] == 0x555
    assert r[11] == 0xF0
    assert r[12] == 0x800000F0 ^ 0x555
    assert r[13] == 0x800000F0 | 0x555
    assert r[14] == 0x800000F0 & 0x555

def test_auipc():
    _, s = run([
        addi(0, 0, 0),
        auipc(1, 0x1),
        auipc(2, 0xFFFFF),
        ecall(),
    ])
    assert s.regs[1] == 0x0000_1004
    assert s.regs[2] == (0xFFFF_F000 + 8) & 0xFFFF_FFFF

def test_jal_links_and_jumps():
    _, s = run([
        jal(1, 12),             # 0: -> 12
        addi(2, 0, 1),          # 4: skipped
        ecall(),                # 8
        addi(3, 0, 3),          # 12
        jal(0, -8),             # 16: -> 8
    ])
    assert s.regs[1] == 4
    assert s.regs[2] == 0
    assert s.regs[3] == 3
    assert s.pc == 8

def test_jalr_clears_bit_zero_and_links():
    _, s = run([
        addi(5, 0, 13),         # 0
        jalr(1, 5, 0),          # 4: -> (13 + 0) & ~1 = 12
        ecall(),                # 8
        addi(2, 0, 7),          # 12
        jalr(5, 5, -5),         # 16: -> 8, link into the base register
    ])
    assert s.regs[1] == 8
    assert s.regs[2] == 7
    assert s.regs[5] == 20
    assert s.pc == 8

def test_loop_with_branches():
    _, s = run([
        addi(1, 0, 10),
        addi(10, 0, 0),
        add(10, 10, 1),
        addi(1, 1, -1),
        bne(1, 0, -8),
        ecall(),
    ])
    assert s.regs[10] == 55
    assert s.regs[1] == 0

@pytest.mark.parametrize("encoder,a,b,taken", [
    (beq, 5, 5, True), (beq, 5, 6, False),
    (bne, 5, 6, True), (bne, 5, 5, False),
    (blt, -1, 1, True), (blt, 1, -1, False),
    (bge, 1, -1, True), (bge, -1, 1, False), (bge, 3, 3, True),
    (bltu, 1, -1, True), (bltu, -1, 1, False),
    (bgeu, -1, 1, True), (bgeu, 1, -1, False),
])
def test_branch_conditions(encoder, a, b, taken):
    _, s = run([
        addi(1, 0, a),
        addi(2, 0, b),
        encoder(1, 2, 12),      # 8: -> 20 if taken
        addi(3, 0, 1),          # 12: not-taken marker
        ecall(),                # 16
        addi(4, 0, 1),          # 20: taken marker
        ecall(),                # 24
    ])
    assert s.regs[3] == int(not taken)
    assert s.regs[4] == int(taken)

def test_word_store_and_load():
    machine, s = run([
        lui(1, 0x1),            # x1 = 0x1000
        lui(2, 0xCAFEC),
        addi(2, 2, -0x542),     # x2 = 0xCAFEBABE
        sw(2, 1, 8),
        lw(3, 1, 8),
        ecall(),
    ])
    assert s.regs[3] == 0xCAFE_BABE
    assert machine.memory.read_word(0x1008) == 0xCAFE_BABE

def test_byte_and_halfword_round_trips():
    machine, s = run([
        lui(1, 0x1),            # x1 = 0x1000
        addi(2, 0, -128),       # x2 = 0xFFFFFF80
        sb(2, 1, 1),
        lb(3, 1, 1),
        lbu(4, 1, 1),
        addi(5, 0, -2),         # x5 = 0xFFFFFFFE
        sh(5, 1, 2),
        lh(6, 1, 2),
        lhu(7, 1, 2),
        addi(8, 0, 0x7F),
        sb(8, 1, 0),
        lb(9, 1, 0),
        lw(10, 1, 0),
        ecall(),
    ], data = {0x1000: 0x1111_1111})
    r = s.regs
    assert r[3] == 0xFFFF_FF80
    assert r[4] == 0x0000_0080
    assert r[6] == 0xFFFF_FFFE
    assert r[7] == 0x0000_FFFE
    assert r[9] == 0x0000_007F
    assert r[10] == 0xFFFE_807F
    assert machine.memory.read_word(0x1000) == 0xFFFE_807F

@pytest.mark.parametrize("offset,expected_b,expected_h", [
    (0, 0xFFFF_FFF8, 0xFFFF_D6F8),
    (1, 0xFFFF_FFD6, None),
    (2, 0xFFFF_FFB4, 0xFFFF_92B4),
    (3, 0xFFFF_FF92, None),
])
def test_load_lanes(offset, expected_b, expected_h):
    program = [
        lui(1, 0x1),
        lb(2, 1, offset),
        lbu(3, 1, offset),
    ]
    if expected_h is not None:
        program += [lh(4, 1, offset), lhu(5, 1, offset)]
    program.append(ecall())

    _, s = run(program, data = {0x1000: 0x92B4_D6F8})
    assert s.regs[2] == expected_b
    assert s.regs[3] == expected_b & 0xFF
    if expected_h is not None:
        assert s.regs[4] == expected_h
        assert s.regs[5] == expected_h & 0xFFFF

def test_x0_is_never_written():
    _, s = run([
        addi(0, 0, 55),
        lui(0, 0x12345),
        jal(0, 4),
        add(1, 0, 0),
        ecall(),
    ])
    assert s.regs[0] == 0
    assert s.regs[1] == 0

def test_cycle_counts():
    # branch not taken: 3 cycles
    machine = machine_for([bne(0, 0, 8), ecall()])
    s = machine.run(4)
    assert [r.state for r in s.trace] == [
        State.FETCH, State.DECODE, State.EXECUTE, State.FETCH,
    ]
    assert [r.pc for r in s.trace] == [0, 0, 0, 4]

    # load: 5 cycles
    machine = machine_for([lw(1, 0, 0), ecall()])
    s = machine.run(6)
    assert [r.state for r in s.trace] == [
        State.FETCH, State.DECODE, State.EXECUTE, State.MEMORY,
        State.WRITEBACK, State.FETCH,
    ]
    assert s.regs[1] == lw(1, 0, 0)

    # store: 4 cycles, ALU: 4 cycles
    machine = machine_for([sw(0, 0, 0x100), add(1, 0, 0), ecall()])
    s = machine.run(9)
    assert [r.state for r in s.trace] == [
        State.FETCH, State.DECODE, State.EXECUTE, State.MEMORY,
        State.FETCH, State.DECODE, State.EXECUTE, State.WRITEBACK,
        State.FETCH,
    ]

def test_illegal_instruction_is_a_no_op_that_holds_pc():
    machine = machine_for([addi(1, 0, 1), 0xFFFF_FFFF, addi(2, 0, 2)])
    seen = []

    async def bench(ctx):
        await machine.run_until_halt(ctx, 100)
        seen.append(machine.pc(ctx))
        # decode it and look at the flag
        await machine.cycle(ctx)
        seen.append(machine.illegal(ctx))
        seen.append(machine.read_regs(ctx))

    machine.simulate(bench)
    pc, illegal, regs = seen
    assert pc == 4
    assert illegal
    assert regs[1] == 1
    assert regs[2] == 0
    assert machine.halted

def test_fence_holds_pc():
    _, s = run([addi(1, 0, 1), fence(), addi(2, 0, 2)])
    assert s.pc == 4
    assert s.regs[2] == 0

def test_runaway_program_times_out():
    machine = machine_for([jal(0, 4), jal(0, -4)])
    with pytest.raises(SimulationTimeout):
        machine.run_program(200)

def test_reset_mid_instruction():
    machine = machine_for([addi(1, 0, 5), addi(2, 0, 6), ecall()])
    seen = []

    async def bench(ctx):
        # Complete the first instruction, then get the second one as far as
        # WRITEBACK and reset before it can commit.
        for _ in range(7):
            await machine.cycle(ctx)
        assert machine.state(ctx) == State.WRITEBACK
        assert machine.pc(ctx) == 4
        assert machine.read_reg(ctx, 1) == 5
        await machine.reset(ctx)
        seen.append((machine.state(ctx), machine.pc(ctx), machine.read_regs(ctx)))

    machine.simulate(bench)
    state, pc, regs = seen[0]
    assert state == State.FETCH
    assert pc == 0
    assert regs == [0] * 32

def test_reset_then_rerun():
    machine = machine_for([addi(1, 0, 5), ecall()])
    seen = []

    async def bench(ctx):
        await machine.run_until_halt(ctx, 100)
        seen.append(machine.read_reg(ctx, 1))
        await machine.reset(ctx)
        seen.append(machine.read_reg(ctx, 1))
        await machine.run_until_halt(ctx, 100)
        seen.append(machine.read_reg(ctx, 1))

    machine.simulate(bench)
    assert seen == [5, 0, 5]

def test_reset_vector():
    memory = ByteMemory(size = 1 << 12)
    memory.write(0x100, 2, addi(1, 0, 9))
    memory.write(0x104, 2, ebreak())
    machine = Machine(memory, reset_vector = 0x100)
    s = machine.run_program(100)
    assert s.regs[1] == 9
    assert s.pc == 0x104

def test_unwritten_registers_read_zero_repeatedly():
    machine = machine_for([ecall()])
    seen = []

    async def bench(ctx):
        for _ in range(4):
            seen.append(machine.read_regs(ctx))
            await machine.cycle(ctx)

    machine.simulate(bench)
    assert seen == [[0] * 32] * 4

def test_store_byte_lanes():
    machine = machine_for([
        lui(1, 0x1),
        sb(0, 1, 0),
        sb(0, 1, 1),
        sb(0, 1, 2),
        sb(0, 1, 3),
        sh(0, 1, 0),
        sh(0, 1, 2),
        sw(0, 1, 0),
        ecall(),
    ])
    seen = []

    async def bench(ctx):
        port = machine.cpu.mem
        for _ in range(4 + 7 * 4):
            if machine.state(ctx) == State.MEMORY:
                seen.append((
                    ctx.get(port.addr),
                    ctx.get(port.write_en),
                    ctx.get(port.lanes),
                ))
            await machine.cycle(ctx)

    machine.simulate(bench)
    assert seen == [
        (0x1000, 1, 0b0001),
        (0x1001, 1, 0b0010),
        (0x1002, 1, 0b0100),
        (0x1003, 1, 0b1000),
        (0x1000, 1, 0b0011),
        (0x1002, 1, 0b1100),
        (0x1000, 1, 0b1111),
    ]

def test_instruction_register_lifecycle():
    machine = machine_for([addi(1, 0, 5), ecall()])
    seen = []

    async def bench(ctx):
        seen.append((machine.state(ctx), ctx.get(machine.cpu.debug.inst)))
        for _ in range(5):
            await machine.cycle(ctx)
            seen.append((machine.state(ctx), ctx.get(machine.cpu.debug.inst)))
        await machine.reset(ctx)
        seen.append((machine.state(ctx), ctx.get(machine.cpu.debug.inst)))

    machine.simulate(bench)
    assert seen == [
        (State.FETCH, NOP),
        # only FETCH loads the instruction register
        (State.DECODE, addi(1, 0, 5)),
        (State.EXECUTE, addi(1, 0, 5)),
        (State.WRITEBACK, addi(1, 0, 5)),
        (State.FETCH, addi(1, 0, 5)),
        (State.DECODE, ecall()),
        # reset reloads a NOP
        (State.FETCH, NOP),
    ]

def test_cpu_is_built_per_simulation():
    machine = machine_for([addi(1, 0, 1), ecall()])
    assert machine.cpu is None

    with warnings.catch_warnings(record = True) as caught:
        warnings.simplefilter("always")
        machine.run_program(100)
        first = machine.cpu
        machine.run_program(100)
        assert machine.cpu is not first
        del first
        gc.collect()

    assert not [w for w in caught
                if w.category.__name__ == "UnusedElaboratable"]

def test_trace_keeps_most_recent_cycles():
    machine = machine_for([addi(1, 0, 1), ecall()], trace_depth = 3)
    s = machine.run(10)
    assert s.cycles == 10
    assert [r.cycle for r in s.trace] == [7, 8, 9]

    machine = machine_for([addi(1, 0, 1), ecall()], trace_depth = None)
    s = machine.run(10)
    assert [r.cycle for r in s.trace] == list(range(10))
