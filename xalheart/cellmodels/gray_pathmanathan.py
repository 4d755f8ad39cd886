"""This module contains the Gray-Pathmanathan (2016) cell model.

The model has the transmembrane potential V and the sodium activation
and inactivation gates m and h as states:

  * 3 entries in each of the rate and state arrays
  * 7 entries in the algebraic array: m_inf, h_inf, tau_h, i_na, i_k,
    i_tot and i_Stim
  * 17 constants, see :py:meth:`GrayPathmanathan2016.default_parameters`

Units are mV, ms, mS/mm^2, uF/mm^2, uA/mm^2, and uA/uF for the stimulus.
"""

__all__ = ["GrayPathmanathan2016"]

import numpy as np

from collections import OrderedDict

from typing import Tuple

from xalheart.cellmodels.cellmodel import CellModel


class GrayPathmanathan2016(CellModel):
    """Minimal excitable model with one sodium and one potassium current."""

    num_states = 3
    num_rates = 3
    num_algebraic = 7
    num_consts = 17

    gating_indices = (1, 2)
    stimulus_indices = (13, 14, 15, 16)

    @staticmethod
    def default_parameters() -> OrderedDict:
        params = OrderedDict([
            ("g_Na", 0.11),
            ("E_Na", 65.0),
            ("E_K", -83.0),
            ("E_h", -74.7),
            ("E_m", -41.0),
            ("k_m", -4.0),
            ("k_r", 21.28),
            ("k_h", 4.4),
            ("tau_m", 0.12),
            ("tau_ho", 6.80738),
            ("delta_h", 0.799163),
            ("g_K", 0.003),
            ("C_m", 0.01),
            ("stim_start", 10.0),
            ("stim_period", 1000.0),
            ("stim_duration", 1.0),
            ("stim_amplitude", 80.0),
        ])
        return params

    @staticmethod
    def default_initial_conditions() -> OrderedDict:
        # m and h default to their steady states at V
        ic = OrderedDict([
            ("V", -83.0),
            ("m", None),
            ("h", None),
        ])
        return ic

    def init_consts(self, consts: np.ndarray, rates: np.ndarray, states: np.ndarray) -> None:
        consts[...] = list(self._parameters.values())
        V, m, h = self._initial_conditions.values()
        states[..., 0] = V
        m_inf, h_inf, _ = self._gates(consts, states[..., 0])
        states[..., 1] = m_inf if m is None else m
        states[..., 2] = h_inf if h is None else h
        rates[...] = 0.0

    @staticmethod
    def _gates(consts: np.ndarray, V: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return m_inf, h_inf and tau_h."""
        E_h = consts[..., 3]
        E_m = consts[..., 4]
        k_m = consts[..., 5]
        k_h = consts[..., 7]
        tau_ho = consts[..., 9]
        delta_h = consts[..., 10]

        m_inf = 1.0/(1.0 + np.exp((V - E_m)/k_m))
        h_inf = 1.0/(1.0 + np.exp((V - E_h)/k_h))
        tau_h = 2.0*tau_ho*np.exp(delta_h*(V - E_h)/k_h)/(1.0 + np.exp((V - E_h)/k_h))
        return m_inf, h_inf, tau_h

    @staticmethod
    def _stimulus(t: float, consts: np.ndarray) -> np.ndarray:
        """Return i_Stim, negative while the model's own stimulus is on."""
        start = consts[..., 13]
        period = consts[..., 14]
        duration = consts[..., 15]
        amplitude = consts[..., 16]
        phase = t - np.floor(t/period)*period
        active = (phase >= start) & (phase <= start + duration)
        return np.where(active, -amplitude, 0.0)

    def compute_variables(
        self,
        t: float,
        consts: np.ndarray,
        rates: np.ndarray,
        states: np.ndarray,
        algebraic: np.ndarray
    ) -> None:
        V = states[..., 0]
        m = states[..., 1]
        h = states[..., 2]

        m_inf, h_inf, tau_h = self._gates(consts, V)
        algebraic[..., 0] = m_inf
        algebraic[..., 1] = h_inf
        algebraic[..., 2] = tau_h

        E_Na = consts[..., 1]
        E_K = consts[..., 2]
        k_r = consts[..., 6]
        g_Na = consts[..., 0]
        g_K = consts[..., 11]
        algebraic[..., 3] = g_Na*m**3*h*(V - E_Na)
        algebraic[..., 4] = g_K*(V - E_K)*np.exp(-(V - E_K)/k_r)
        algebraic[..., 5] = algebraic[..., 3] + algebraic[..., 4]
        algebraic[..., 6] = self._stimulus(t, consts)

    def compute_rates(
        self,
        t: float,
        consts: np.ndarray,
        rates: np.ndarray,
        states: np.ndarray,
        algebraic: np.ndarray
    ) -> None:
        self.compute_variables(t, consts, rates, states, algebraic)
        tau_m = consts[..., 8]
        C_m = consts[..., 12]
        rates[..., 0] = -algebraic[..., 5]/C_m - algebraic[..., 6]
        rates[..., 1] = (algebraic[..., 0] - states[..., 1])/tau_m
        rates[..., 2] = (algebraic[..., 1] - states[..., 2])/algebraic[..., 2]

    def gating_asymptotics(
        self,
        t: float,
        consts: np.ndarray,
        states: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        m_inf, h_inf, tau_h = self._gates(consts, states[..., 0])
        tau_m = np.broadcast_to(consts[..., 8], m_inf.shape)
        x_inf = np.stack((m_inf, h_inf), axis=-1)
        tau = np.stack((tau_m, tau_h), axis=-1)
        return x_inf, tau
