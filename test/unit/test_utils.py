"""Unit tests for various utilities."""

__all__ = ["TestSimulationClock", "TestTimeStepper", "TestSweepValues"]


import numpy as np
import pytest

from testutils import fast

from xalheart.utils import (
    SimulationClock,
    count_nonfinite,
    sweep_values,
    time_stepper,
)


class TestSimulationClock:

    @fast
    def test_times_from_step_count(self):
        clock = SimulationClock(0.0, 1.0, 0.1)
        times = []
        while not clock.done:
            times.append(clock.current_time)
            assert clock.next_time == clock.t0 + (clock.step_count + 1)*clock.dt
            clock.advance()
        assert len(times) == 10
        assert times == [k*0.1 for k in range(10)]
        assert clock.step_count == 10

    @fast
    def test_resumed_clock(self):
        clock = SimulationClock(0.0, 1.0, 0.1, step_count=7)
        assert clock.current_time == 7*0.1
        assert clock.step_of(clock.current_time) == 7

    @fast
    def test_invalid(self):
        with pytest.raises(ValueError):
            SimulationClock(0.0, 1.0, 0.0)
        with pytest.raises(ValueError):
            SimulationClock(1.0, 0.0, 0.1)


class TestTimeStepper:

    @fast
    def test_intervals(self):
        intervals = list(time_stepper(0.0, 0.5, 0.1))
        assert len(intervals) == 5
        assert intervals[0] == (0.0, 0.1)
        for (_, t1), (t0, _) in zip(intervals[:-1], intervals[1:]):
            assert t0 == t1

        assert list(time_stepper(0.0, 2.0)) == [(0.0, 2.0)]
        with pytest.raises(ValueError):
            list(time_stepper(1.0, 1.0))


class TestSweepValues:

    @fast
    def test_includes_maximum(self):
        assert sweep_values(120.0, 126.0, 1.0) == [120.0 + k for k in range(7)]
        assert sweep_values(1.0, 1.0, 0.5) == [1.0]
        assert len(sweep_values(0.0, 0.3, 0.1)) == 4
        assert len(sweep_values(0.0, 0.35, 0.1)) == 4

    @fast
    def test_invalid(self):
        with pytest.raises(ValueError):
            sweep_values(0.0, 1.0, 0.0)
        with pytest.raises(ValueError):
            sweep_values(1.0, 0.0, 0.1)


@fast
def test_count_nonfinite():
    assert count_nonfinite(np.array([0.0, np.nan, np.inf, -np.inf, 1.0])) == 3

