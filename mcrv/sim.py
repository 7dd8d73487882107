# Simulation harness: runs the core under the Amaranth simulator, with a
# Python memory adapter standing in for the bus.

from collections import deque
from dataclasses import dataclass, field

from amaranth.sim import Simulator

from mcrv.control import State
from mcrv.cpu import Cpu
from mcrv.mem import MemWidth

class SimulationTimeout(Exception):
    pass

@dataclass(frozen = True)
class CycleRecord:
    cycle: int
    state: State
    pc: int
    inst: int

@dataclass
class Snapshot:
    regs: list
    pc: int
    state: State
    cycles: int
    halted: bool
    trace: list = field(default_factory = list)

class Machine:
    """Connects a Cpu to a memory adapter and drives it one clock at a time.

    The adapter needs read(address, width) and write(address, width, data)
    methods; see mcrv.mem.ByteMemory. It is serviced by the testbench in the
    same cycle the CPU requests access, so memory is single-cycle.

    Testbenches are async functions taking the simulator context, and should
    advance time only through cycle() and reset(). For example:

        async def bench(ctx):
            await machine.run_until_halt(ctx, 1000)
            assert machine.read_reg(ctx, 1) == 10

        machine.simulate(bench)

    The CPU is considered halted when an instruction retires without moving
    the PC, since it will then execute the same instruction forever. SYSTEM
    and FENCE instructions, illegal opcodes, and jumps to self all do this.

    Parameters
    ----------
    memory: memory adapter. It persists across simulate() calls; the CPU does
        not, and starts each simulation from reset.
    reset_vector (int): passed to the Cpu.
    trace_depth (int or None): number of most recent CycleRecords kept in
        trace. None keeps every cycle.
    """

    def __init__(self, memory, *, reset_vector = 0, trace_depth = 1024):
        self.memory = memory
        self.reset_vector = reset_vector
        self.trace_depth = trace_depth
        # Built fresh by each simulate() call.
        self.cpu = None
        self._clear()

    def _clear(self):
        self.cycles = 0
        self.trace = deque(maxlen = self.trace_depth)
        self.halted = False
        # PC seen at the most recent FETCH.
        self._fetch_pc = None

    def simulate(self, bench, *, vcd_file = None):
        self.cpu = Cpu(reset_vector = self.reset_vector)
        self._clear()

        sim = Simulator(self.cpu)
        sim.add_clock(1e-6)
        sim.add_testbench(bench)

        if vcd_file is not None:
            with sim.write_vcd(vcd_file = vcd_file):
                sim.run()
        else:
            sim.run()

    async def cycle(self, ctx):
        """Services the memory port for the current cycle and advances the
        clock by one."""
        port = self.cpu.mem
        addr = ctx.get(port.addr)
        width = MemWidth(ctx.get(port.width))

        if ctx.get(port.read_en):
            ctx.set(port.read_data, self.memory.read(addr, width))
        else:
            ctx.set(port.read_data, 0)

        state = self.state(ctx)
        pc = self.pc(ctx)
        if state == State.FETCH:
            if self._fetch_pc == pc:
                self.halted = True
            self._fetch_pc = pc

        self.trace.append(CycleRecord(
            cycle = self.cycles,
            state = state,
            pc = pc,
            inst = ctx.get(self.cpu.debug.inst),
        ))

        if ctx.get(port.write_en):
            self.memory.write(addr, width, ctx.get(port.write_data))

        await ctx.tick()
        self.cycles += 1

    async def reset(self, ctx):
        """Holds reset for one cycle. Memory is not serviced meanwhile."""
        ctx.set(self.cpu.rst, 1)
        await ctx.tick()
        ctx.set(self.cpu.rst, 0)
        self.cycles += 1
        self.halted = False
        self._fetch_pc = None

    def _halting(self, ctx):
        return self.state(ctx) == State.FETCH and self._fetch_pc == self.pc(ctx)

    async def run_until_halt(self, ctx, max_cycles):
        """Runs until the CPU is about to fetch the instruction it just
        finished, leaving it in FETCH."""
        start = self.cycles
        while not self._halting(ctx):
            if self.cycles - start >= max_cycles:
                raise SimulationTimeout(
                    f"CPU didn't halt after {max_cycles} cycles "
                    f"(pc = 0x{self.pc(ctx):08x})"
                )
            await self.cycle(ctx)
        self.halted = True

    def read_reg(self, ctx, index):
        assert 0 <= index < 32, f"register index out of range: {index}"
        ctx.set(self.cpu.debug.reg_addr, index)
        return ctx.get(self.cpu.debug.reg_value)

    def read_regs(self, ctx):
        return [self.read_reg(ctx, i) for i in range(32)]

    def pc(self, ctx):
        return ctx.get(self.cpu.debug.pc)

    def state(self, ctx):
        return ctx.get(self.cpu.debug.state)

    def illegal(self, ctx):
        return bool(ctx.get(self.cpu.debug.illegal))

    def snapshot(self, ctx):
        return Snapshot(
            regs = self.read_regs(ctx),
            pc = self.pc(ctx),
            state = self.state(ctx),
            cycles = self.cycles,
            halted = self.halted,
            trace = list(self.trace),
        )

    def run(self, cycles, *, vcd_file = None):
        """Runs for a fixed number of cycles from reset."""
        result = []

        async def bench(ctx):
            for _ in range(cycles):
                await self.cycle(ctx)
            result.append(self.snapshot(ctx))

        self.simulate(bench, vcd_file = vcd_file)
        return result[0]

    def run_program(self, max_cycles, *, vcd_file = None):
        """Runs from reset until the CPU halts, or raises SimulationTimeout."""
        result = []

        async def bench(ctx):
            await self.run_until_halt(ctx, max_cycles)
            result.append(self.snapshot(ctx))

        self.simulate(bench, vcd_file = vcd_file)
        return result[0]
