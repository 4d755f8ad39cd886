r"""This module contains solvers for (subclasses of) CellModel.

The cell solvers advance the system of ODEs of a cell model

.. math::

   v_t = - I_{ion}(v, s) + I_s

   s_t = F(v, s)

at every excitable node independently. A time step is divided into a
number of equal sub-steps, and every sub-step evaluates the stimulus
protocol at its own time. Two schemes are available:

  * "ForwardEuler": :math:`x \leftarrow x + \Delta t\,\dot x` for all states
  * "RushLarsen": the gating variables are advanced exactly for frozen
    :math:`x_\infty` and :math:`\tau`,
    :math:`x \leftarrow x_\infty + (x - x_\infty) e^{-\Delta t/\tau}`,
    the remaining states with Forward Euler.
"""

# Copyright (C) 2026 xalheart developers
# Use and modify at will
# Last changed: 2026-10-19

__all__ = [
    "CellSolver",
    "SingleCellSolver",
    "forward_euler_update",
    "rush_larsen_update",
]

import numpy as np

from xalheart.cellmodels import CellModel
from xalheart.exceptions import (
    ConfigurationError,
    DivergenceError,
)
from xalheart.parameters import (
    CellSolverParameters,
    StimulusSpec,
)
from xalheart.stimulus import StimulusProtocol
from xalheart.utils import (
    count_nonfinite,
    time_stepper,
)

import typing as tp

import logging
import os


logging.basicConfig(level=os.environ.get("LOGLEVEL", "INFO"))
logger = logging.getLogger(__name__)


SUPPORTED_SCHEMES = ("ForwardEuler", "RushLarsen")


def forward_euler_update(x: np.ndarray, rate: np.ndarray, dt: float) -> np.ndarray:
    """Return x advanced by one Forward Euler step."""
    return x + dt*rate


def rush_larsen_update(x: np.ndarray, x_inf: np.ndarray, tau: np.ndarray, dt: float) -> np.ndarray:
    """Return x advanced by the exact solution of dx/dt = (x_inf - x)/tau."""
    return x_inf + (x - x_inf)*np.exp(-dt/tau)


class CellSolver:
    """Advance the ionic state of every excitable node of a tissue.

    The state of all nodes is stored in flat arrays of shape
    ``(num_nodes, num_states)``. Rows of nodes that are not excitable are
    never touched.

    *Arguments*
      cell_model (:py:class:`~xalheart.cellmodels.CellModel`)
        the ionic model
      num_nodes (int)
        number of degrees of freedom of the transmembrane potential
      protocol (:py:class:`~xalheart.stimulus.StimulusProtocol`)
        the stimulus protocol
      excitable (:py:class:`numpy.ndarray`, optional)
        boolean mask of the nodes on the excitable set, defaults to all
      in_electrode (:py:class:`numpy.ndarray`, optional)
        boolean mask of the nodes in the electrode region, defaults to all
      parameters (:py:class:`~xalheart.parameters.CellSolverParameters`, optional)
    """

    def __init__(
        self,
        cell_model: CellModel,
        num_nodes: int,
        protocol: StimulusProtocol,
        excitable: np.ndarray = None,
        in_electrode: np.ndarray = None,
        parameters: CellSolverParameters = None
    ) -> None:
        self._parameters = self.default_parameters()
        if parameters is not None:
            self._parameters = parameters

        if self._parameters.scheme not in SUPPORTED_SCHEMES:
            msg = "Unknown cell model scheme {!r}, expected one of {}"
            raise ConfigurationError(msg.format(self._parameters.scheme, SUPPORTED_SCHEMES))
        if self._parameters.num_substeps < 1:
            msg = "Expected at least one sub-step, got {}"
            raise ConfigurationError(msg.format(self._parameters.num_substeps))

        self._cell_model = cell_model
        self._protocol = protocol
        self._num_nodes = num_nodes

        if excitable is None:
            excitable = np.ones(num_nodes, dtype=bool)
        if in_electrode is None:
            in_electrode = np.ones(num_nodes, dtype=bool)
        excitable = np.asarray(excitable, dtype=bool)
        in_electrode = np.asarray(in_electrode, dtype=bool)
        for name, mask in (("excitable", excitable), ("in_electrode", in_electrode)):
            if mask.shape != (num_nodes,):
                msg = "Expected {} indicator of shape ({},), got {}"
                raise ConfigurationError(msg.format(name, num_nodes, mask.shape))

        self._excitable = excitable
        self._active = np.flatnonzero(excitable)
        self._in_electrode = in_electrode[self._active]

        self.consts, self.rates, self.states, self.algebraic = cell_model.allocate(num_nodes)
        self._consts_table = protocol.constants_table(cell_model, self.consts)
        logger.debug(
            "Created %s with %d of %d excitable nodes",
            self.__class__.__name__,
            self._active.size,
            num_nodes
        )

    @staticmethod
    def default_parameters() -> CellSolverParameters:
        return CellSolverParameters()

    @property
    def parameters(self) -> CellSolverParameters:
        return self._parameters

    @property
    def cell_model(self) -> CellModel:
        return self._cell_model

    @property
    def protocol(self) -> StimulusProtocol:
        return self._protocol

    @property
    def num_nodes(self) -> int:
        return self._num_nodes

    @property
    def excitable(self) -> np.ndarray:
        return self._excitable

    def active_constants(self, t: float) -> np.ndarray:
        """Return the constants of the excitable nodes at time `t`.

        Returns a single row if every excitable node uses the same constants,
        otherwise one row per excitable node.
        """
        kinds = self._protocol.select(t, self._in_electrode)
        if kinds.size == 0 or np.all(kinds == kinds[0]):
            kind = kinds[0] if kinds.size else 0
            return self._consts_table[kind]
        return self._consts_table[kinds]

    def advance_substep(
        self,
        t: float,
        dt: float,
        consts: np.ndarray,
        states: np.ndarray,
        rates: np.ndarray,
        algebraic: np.ndarray
    ) -> None:
        """Advance `states` in place by one sub-step of length `dt` from time `t`."""
        model = self._cell_model
        model.compute_rates(t, consts, rates, states, algebraic)

        if self._parameters.scheme == "RushLarsen":
            gates = list(model.gating_indices)
            x_inf, tau = model.gating_asymptotics(t, consts, states)
            gated = rush_larsen_update(states[..., gates], x_inf, tau, dt)
            states += dt*rates
            states[..., gates] = gated
        else:
            states += dt*rates

    def step(self, t0: float, t1: float, v: np.ndarray = None) -> np.ndarray:
        """Advance all excitable nodes from `t0` to `t1`.

        *Arguments*
          t0, t1 (float)
            The time interval of the step
          v (:py:class:`numpy.ndarray`, optional)
            The transmembrane potential at t0. If given, it replaces the
            potential stored in the ionic state of the excitable nodes.

        *Returns*
          The updated potential of every node (:py:class:`numpy.ndarray`).
          Nodes that are not excitable keep their input potential.
        """
        active = self._active
        if v is not None:
            self.states[active, 0] = v[active]

        states = self.states[active]
        rates = self.rates[active]
        algebraic = self.algebraic[active]

        num_substeps = self._parameters.num_substeps
        dt_sub = (t1 - t0)/num_substeps
        for k in range(num_substeps):
            t = t0 + k*dt_sub
            consts = self.active_constants(t)
            self.advance_substep(t, dt_sub, consts, states, rates, algebraic)

        self._cell_model.compute_variables(t0, self.active_constants(t0), rates, states, algebraic)

        num_nonfinite = count_nonfinite(states)
        if num_nonfinite > 0:
            raise DivergenceError("ionic state", t1, num_nonfinite)

        self.states[active] = states
        self.rates[active] = rates
        self.algebraic[active] = algebraic

        if v is None:
            return self.states[:, 0].copy()
        vtilde = np.array(v, dtype=float)
        vtilde[active] = states[:, 0]
        return vtilde

    def solve(
        self,
        t0: float,
        t1: float,
        dt: float = None
    ) -> tp.Iterator[tp.Tuple[tp.Tuple[float, float], np.ndarray]]:
        """Solve the problem in the interval (`t0`, `t1`) with timestep `dt`.

        Returns a generator of the current interval and the ionic states.

        *Example of usage*::

          for (t0, t1), states in solver.solve(0.0, 5.0, 0.1):
              v = states[:, 0]
        """
        for _t0, _t1 in time_stepper(t0, t1, dt):
            self.step(_t0, _t1)
            yield (_t0, _t1), self.states


class SingleCellSolver(CellSolver):
    """Solve the cell model of a single, stimulated cell.

    *Arguments*
      cell_model (:py:class:`~xalheart.cellmodels.CellModel`)
      S1 (:py:class:`~xalheart.parameters.StimulusSpec`)
        the stimulus
      parameters (:py:class:`~xalheart.parameters.CellSolverParameters`, optional)
    """

    def __init__(
        self,
        cell_model: CellModel,
        S1: StimulusSpec,
        S2: StimulusSpec = None,
        parameters: CellSolverParameters = None
    ) -> None:
        if S2 is None:
            S2 = StimulusSpec(start=S1.start, period=S1.period, duration=S1.duration, magnitude=0.0)
        protocol = StimulusProtocol(S1, S2)
        super().__init__(cell_model, 1, protocol, parameters=parameters)
