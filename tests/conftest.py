import pytest

from amaranth.sim import Simulator

@pytest.fixture
def simulate():
    """Runs an async testbench against a design. Pass clock=True for designs
    with synchronous logic."""
    def run(dut, bench, *, clock = False):
        sim = Simulator(dut)
        if clock:
            sim.add_clock(1e-6)
        sim.add_testbench(bench)
        sim.run()
    return run
