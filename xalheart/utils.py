"""This module provides various utilities for internal use."""

__all__ = [
    "SimulationClock",
    "time_stepper",
    "count_nonfinite",
    "sweep_values",
]


import math

import numpy as np

import typing as tp


# Relative (to dt) slack when deciding whether the final time is reached
TIME_TOLERANCE = 1e-8


class SimulationClock:
    """The time of a single run.

    The time is recomputed from the step counter, ``t0 + step_count*dt``,
    so that a run resumed at step n reproduces the times of an
    uninterrupted run exactly.
    """

    def __init__(self, t0: float, final_time: float, dt: float, step_count: int = 0) -> None:
        if dt <= 0:
            raise ValueError("Expected a positive time step, got {}".format(dt))
        if final_time < t0:
            raise ValueError("final time {} is before start time {}".format(final_time, t0))
        self.t0 = t0
        self.final_time = final_time
        self.dt = dt
        self.step_count = step_count

    @property
    def current_time(self) -> float:
        return self.t0 + self.step_count*self.dt

    @property
    def next_time(self) -> float:
        return self.t0 + (self.step_count + 1)*self.dt

    @property
    def done(self) -> bool:
        return self.current_time >= self.final_time - TIME_TOLERANCE*self.dt

    def advance(self) -> None:
        self.step_count += 1

    def step_of(self, time: float) -> int:
        """Return the step index corresponding to `time`."""
        return int(round((time - self.t0)/self.dt))

    def __repr__(self) -> str:
        msg = "SimulationClock(current_time={}, dt={}, final_time={}, step_count={})"
        return msg.format(self.current_time, self.dt, self.final_time, self.step_count)


def time_stepper(t0: float, t1: float, dt: float = None) -> tp.Iterator[tp.Tuple[float, float]]:
    """Generate time intervals between `t0` and `t1` with length `dt`."""
    if t0 >= t1:
        raise ValueError("dt greater than time interval")
    elif dt is None:
        dt = t1 - t0

    clock = SimulationClock(t0, t1, dt)
    while not clock.done:
        yield clock.current_time, clock.next_time
        clock.advance()


def count_nonfinite(array: np.ndarray) -> int:
    """Return the number of NaN or Inf entries in `array`."""
    return int(array.size - np.count_nonzero(np.isfinite(array)))


def sweep_values(minimum: float, maximum: float, increment: float) -> tp.List[float]:
    """Return ``minimum + k*increment`` for all k up to and including `maximum`."""
    if increment <= 0:
        raise ValueError("Expected a positive increment, got {}".format(increment))
    if maximum < minimum:
        raise ValueError("maximum {} is less than minimum {}".format(maximum, minimum))
    num_values = int(math.floor((maximum - minimum)/increment + 1e-9)) + 1
    return [minimum + k*increment for k in range(num_values)]

