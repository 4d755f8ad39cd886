"""This module contains a base class for cardiac cell models."""

__all__ = ["CellModel"]

import numpy as np

from collections import OrderedDict

from typing import (
    Dict,
    Tuple,
)

from xalheart.exceptions import ConfigurationError


class CellModel:
    """
    Base class for cardiac cell models. Specialized cell models should
    subclass this class.

    A cell model is a system of ordinary differential equations for the
    transmembrane potential (always state 0) and a number of gating
    variables. It is described by three array-valued operations with the
    fixed shapes given by the class attributes ``num_states``,
    ``num_rates``, ``num_algebraic`` and ``num_consts``:

      init_consts(consts, rates, states)
      compute_rates(t, consts, rates, states, algebraic)
      compute_variables(t, consts, rates, states, algebraic)

    All arrays may carry a leading node axis, so that a flat arena of shape
    ``(num_nodes, num_states)`` is updated in one call. The constants may be
    shared, shape ``(num_consts,)``, or given per node.

    The four constants with indices ``stimulus_indices`` hold the start,
    period, duration and amplitude of the model's own periodic stimulus.
    """

    num_states = 0
    num_rates = 0
    num_algebraic = 0
    num_consts = 0

    # Indices of states with kinetics dx/dt = (x_inf - x)/tau
    gating_indices: Tuple[int, ...] = ()

    # (start, period, duration, amplitude)
    stimulus_indices: Tuple[int, int, int, int] = ()

    def __init__(self, params: Dict[str, float] = None, init_conditions: Dict[str, float] = None) -> None:
        """Create cell model, optionally from given parameters and initial conditions."""
        self._parameters = self.default_parameters()
        self._initial_conditions = self.default_initial_conditions()

        if params:
            self.set_parameters(**params)
        if init_conditions:
            self.set_initial_conditions(**init_conditions)

    @staticmethod
    def default_parameters() -> OrderedDict:
        "Set-up and return default parameters, ordered as the constants array."
        return OrderedDict()

    @staticmethod
    def default_initial_conditions() -> OrderedDict:
        "Set-up and return default initial conditions, ordered as the states array."
        return OrderedDict()

    def set_parameters(self, **params: float) -> None:
        "Update parameters in model."
        for name, value in params.items():
            if name not in self._parameters:
                raise ConfigurationError("'{}' is not a parameter in {}".format(name, self))
            self._parameters[name] = float(value)

    def set_initial_conditions(self, **init: float) -> None:
        "Update initial conditions in model."
        for name, value in init.items():
            if name not in self._initial_conditions:
                raise ConfigurationError("'{}' is not a state in {}".format(name, self))
            self._initial_conditions[name] = float(value)

    def parameters(self) -> OrderedDict:
        "Return the current parameters."
        return self._parameters

    def initial_conditions(self) -> OrderedDict:
        "Return the current initial conditions."
        return self._initial_conditions

    def allocate(self, num_nodes: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Return initialised (consts, rates, states, algebraic) for `num_nodes` nodes.

        The constants are shared between nodes and returned with shape
        ``(num_consts,)``.
        """
        consts = np.zeros(self.num_consts)
        rates = np.zeros((num_nodes, self.num_rates))
        states = np.zeros((num_nodes, self.num_states))
        algebraic = np.zeros((num_nodes, self.num_algebraic))
        self.init_consts(consts, rates, states)
        return consts, rates, states, algebraic

    def init_consts(self, consts: np.ndarray, rates: np.ndarray, states: np.ndarray) -> None:
        "Fill in constants and initial states."
        raise NotImplementedError("Must define init_consts")

    def compute_rates(
        self,
        t: float,
        consts: np.ndarray,
        rates: np.ndarray,
        states: np.ndarray,
        algebraic: np.ndarray
    ) -> None:
        "Evaluate rates and algebraic variables at `states`."
        raise NotImplementedError("Must define compute_rates")

    def compute_variables(
        self,
        t: float,
        consts: np.ndarray,
        rates: np.ndarray,
        states: np.ndarray,
        algebraic: np.ndarray
    ) -> None:
        "Evaluate algebraic variables at `states`."
        raise NotImplementedError("Must define compute_variables")

    def gating_asymptotics(
        self,
        t: float,
        consts: np.ndarray,
        states: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return steady states and time constants of the gating variables.

        Both arrays have shape ``states.shape[:-1] + (len(gating_indices),)``.
        """
        raise NotImplementedError("Must define gating_asymptotics")

    def __str__(self) -> str:
        return self.__class__.__name__
