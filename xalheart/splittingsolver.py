r"""This module contains the operator splitting solver.

The solver integrates the bidomain or EMI equations coupled to a cell
model: find the transmembrane potential :math:`v = v(x, t)` and the
state variables :math:`s = s(x, t)` of the cell model such that

.. math::

   C_m v_t + I_{ion}(v, s) - I_s = \text{(diffusive currents)}

   s_t = F(v, s)

Every time step :math:`(t_0, t_1)` is split (Godunov splitting) in

  1. a reaction step, where the cell model is advanced from
     :math:`(v(t_0), s(t_0))` by the
     :py:class:`~xalheart.cellsolver.CellSolver`, giving a tentative
     potential :math:`\tilde v` and :math:`s(t_1)`, and
  2. a diffusion step, where the linear
     :py:class:`~xalheart.tissue.TissueOperator` maps :math:`\tilde v`
     to :math:`v(t_1)`.

The steps are strictly sequential: the reaction step of a time step
always starts from the committed result of the previous diffusion step.

Before every step, observers registered with
:py:meth:`SplittingSolver.add_observer` are invoked with the solver, for
instance to sample the potential or to write a checkpoint.
"""

# Copyright (C) 2026 xalheart developers
# Use and modify at will
# Last changed: 2026-10-19

__all__ = ["SplittingSolver", "StepPhase"]

import enum

import numpy as np

from xalheart.cellsolver import CellSolver
from xalheart.checkpoint import CheckpointRecord
from xalheart.exceptions import (
    ConfigurationError,
    DivergenceError,
)
from xalheart.parameters import (
    RunContext,
    SplittingParameters,
)
from xalheart.tissue import TissueOperator
from xalheart.utils import (
    SimulationClock,
    count_nonfinite,
)

import typing as tp

import time
import logging
import os


logging.basicConfig(level=os.environ.get("LOGLEVEL", "INFO"))
logger = logging.getLogger(__name__)


class StepPhase(enum.Enum):
    """Position of the solver in a time step."""
    AWAIT_STEP = "await step"
    SNAPSHOT = "snapshot"
    REACTION_UPDATE = "reaction update"
    DIFFUSION_SOLVE = "diffusion solve"
    COMMIT = "commit"
    DONE = "done"


class _Observer(tp.NamedTuple):
    callback: tp.Callable[["SplittingSolver"], None]
    cadence: int
    at_end: bool


class SplittingSolver:
    """
    A solver for the bidomain or EMI equations based on Godunov operator
    splitting of the reaction and the diffusion.

    *Arguments*
      operator (:py:class:`~xalheart.tissue.TissueOperator`)
        the tissue operator, assembled for the time step of the run
      cell_solver (:py:class:`~xalheart.cellsolver.CellSolver`)
        a cell solver with one node per degree of freedom of the operator
      parameters (:py:class:`~xalheart.parameters.SplittingParameters`, optional)
      context (:py:class:`~xalheart.parameters.RunContext`, optional)
        the sweep values of the run, stored in checkpoints
      applied_region (:py:class:`numpy.ndarray`, optional)
        boolean mask of the degrees of freedom where the stimulus is
        injected into the extracellular space instead of through the
        cell model

    *Example of usage*::

      solver = SplittingSolver(operator, cell_solver, parameters)
      for (t0, t1), fields in solver.solve():
          v = fields["V"]
    """

    def __init__(
        self,
        operator: TissueOperator,
        cell_solver: CellSolver,
        parameters: SplittingParameters = None,
        context: RunContext = None,
        applied_region: np.ndarray = None
    ) -> None:
        self._parameters = self.default_parameters()
        if parameters is not None:
            self._parameters = parameters

        if abs(operator.dt - self._parameters.dt) > 1e-12*self._parameters.dt:
            msg = "Operator assembled for dt = {}, but the solver uses dt = {}"
            raise ConfigurationError(msg.format(operator.dt, self._parameters.dt))
        if cell_solver.num_nodes != operator.num_dofs:
            msg = "Cell solver has {} nodes, the operator {} degrees of freedom"
            raise ConfigurationError(msg.format(cell_solver.num_nodes, operator.num_dofs))
        if applied_region is not None:
            if not operator.supports_applied_current:
                msg = "{} does not support an extracellular stimulus"
                raise ConfigurationError(msg.format(type(operator).__name__))
            applied_region = np.asarray(applied_region, dtype=bool)
            if applied_region.shape != (operator.num_dofs,):
                msg = "Expected an applied region of shape {}, got {}"
                raise ConfigurationError(msg.format((operator.num_dofs,), applied_region.shape))
        self._applied_region = applied_region

        self._operator = operator.assemble()
        self._cell_solver = cell_solver

        if context is None:
            protocol = cell_solver.protocol
            context = RunContext(protocol.S2.magnitude, protocol.S2.start - protocol.S1.start)
        self._context = context

        try:
            self._clock = SimulationClock(
                self._parameters.t0,
                self._parameters.T,
                self._parameters.dt
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        self._fields = operator.initial_fields(cell_solver.states[:, 0])
        self._observers: tp.List[_Observer] = []
        self._resumed_step: tp.Optional[int] = None
        self._phase = StepPhase.AWAIT_STEP

    @staticmethod
    def default_parameters() -> SplittingParameters:
        return SplittingParameters()

    @property
    def parameters(self) -> SplittingParameters:
        return self._parameters

    @property
    def clock(self) -> SimulationClock:
        return self._clock

    @property
    def context(self) -> RunContext:
        return self._context

    @property
    def phase(self) -> StepPhase:
        return self._phase

    @property
    def operator(self) -> TissueOperator:
        return self._operator

    @property
    def cell_solver(self) -> CellSolver:
        return self._cell_solver

    @property
    def applied_region(self) -> tp.Optional[np.ndarray]:
        return self._applied_region

    def solution_fields(self) -> tp.Dict[str, np.ndarray]:
        """Return the fields at the current time.

        Modifying these will modify the solution of the solver and thus
        provides a way of setting initial conditions.
        """
        return self._fields

    def gating_fields(self) -> tp.Dict[str, np.ndarray]:
        """Return the gating variables of the cell model, one field per gate."""
        model = self._cell_solver.cell_model
        names = list(model.initial_conditions().keys())
        return {
            "{}_gate".format(names[i]): self._cell_solver.states[:, i] for i in model.gating_indices
        }

    def checkpoint_fields(self) -> tp.Dict[str, np.ndarray]:
        """Return every field needed to resume the run."""
        fields = dict(self._fields)
        fields.update(self.gating_fields())
        return fields

    def add_observer(
        self,
        callback: tp.Callable[["SplittingSolver"], None],
        cadence: int,
        at_end: bool = False
    ) -> None:
        """Call `callback(solver)` before every `cadence`-th step.

        If `at_end` is True, the callback is also invoked once the final
        time is reached.
        """
        if cadence < 1:
            raise ConfigurationError("Expected a positive cadence, got {}".format(cadence))
        self._observers.append(_Observer(callback, cadence, at_end))

    def restore(self, record: CheckpointRecord) -> None:
        """Resume from a checkpoint."""
        step = self._clock.step_of(record.time)
        if abs(self._clock.t0 + step*self._clock.dt - record.time) > 1e-9*self._clock.dt:
            msg = "Checkpoint time {} is not a multiple of dt = {} after t0 = {}"
            raise ConfigurationError(msg.format(record.time, self._clock.dt, self._clock.t0))
        if not 0 <= step <= self._clock.step_of(self._clock.final_time):
            msg = "Checkpoint time {} is outside the interval ({}, {})"
            raise ConfigurationError(msg.format(record.time, self._clock.t0, self._clock.final_time))

        fields = self.checkpoint_fields()
        for name, values in fields.items():
            if name not in record.fields:
                raise ConfigurationError("Checkpoint has no field {}".format(name))
            if record.fields[name].shape != values.shape:
                msg = "Checkpoint field {} has shape {}, expected {}"
                raise ConfigurationError(msg.format(name, record.fields[name].shape, values.shape))

        for name in self._fields:
            self._fields[name] = np.array(record.fields[name], dtype=float)
        for name, gate in self.gating_fields().items():
            gate[:] = record.fields[name]
        excitable = self._cell_solver.excitable
        self._cell_solver.states[excitable, 0] = self._fields["V"][excitable]

        self._context = RunContext(
            record.S2_magnitude,
            record.S1S2_interval,
            self._context.outputdir,
            record.S1_magnitude
        )
        self._clock.step_count = step
        self._resumed_step = step
        self._phase = StepPhase.AWAIT_STEP
        logger.info("Resumed at t = %g (step %d)", record.time, step)

    def _snapshot(self, final: bool = False) -> None:
        step = self._clock.step_count
        if step == self._resumed_step:
            return
        for observer in self._observers:
            if step % observer.cadence == 0 or (final and observer.at_end):
                observer.callback(self)

    def step(self) -> tp.Tuple[float, float]:
        """Advance the solution by one time step.

        *Invariants*
          Given the fields and the ionic state in a correct state at the
          current time t0, gives them in a correct state at t0 + dt.
        """
        clock = self._clock
        t0 = clock.current_time
        t1 = clock.next_time

        self._phase = StepPhase.SNAPSHOT
        self._snapshot()

        # Compute tentative membrane potential and the state at t1
        self._phase = StepPhase.REACTION_UPDATE
        tick = time.perf_counter()
        vtilde = self._cell_solver.step(t0, t1, self._fields["V"])
        tock = time.perf_counter()

        # Diffusion from the tentative potential
        self._phase = StepPhase.DIFFUSION_SOLVE
        applied = None
        if self._applied_region is not None:
            magnitude = self._cell_solver.protocol.magnitude_at(t0)
            applied = np.where(self._applied_region, magnitude, 0.0)
        rhs = self._operator.rhs(vtilde, self._fields, applied)
        solution = self._operator.solve(rhs, t1)
        fields = self._operator.extract(solution)
        for name, values in fields.items():
            num_nonfinite = count_nonfinite(values)
            if num_nonfinite > 0:
                raise DivergenceError("field {}".format(name), t1, num_nonfinite)

        self._phase = StepPhase.COMMIT
        self._fields.update(fields)
        clock.advance()
        logger.debug(
            "Step %d (%g, %g): ODE %.3g s, PDE %.3g s",
            clock.step_count,
            t0,
            t1,
            tock - tick,
            time.perf_counter() - tock
        )

        self._phase = StepPhase.DONE if clock.done else StepPhase.AWAIT_STEP
        return t0, t1

    def solve(self) -> tp.Iterator[tp.Tuple[tp.Tuple[float, float], tp.Dict[str, np.ndarray]]]:
        """Solve from the current time to the final time.

        Return a generator of the time interval of every step and the
        solution fields at its end.

        *Example of usage*::

          for (t0, t1), fields in solver.solve():
              # do something with the solutions
        """
        self._phase = StepPhase.DONE if self._clock.done else StepPhase.AWAIT_STEP
        while not self._clock.done:
            interval = self.step()
            yield interval, self._fields
        self._snapshot(final=True)
        self._phase = StepPhase.DONE

    def run(self) -> SimulationClock:
        """Solve to the final time and return the clock."""
        for _ in self.solve():
            pass
        return self._clock
