r"""The S1-S2 stimulus protocol.

Two periodic pulse trains are applied through the cell model, or as an
extracellular current with a NeumannBC electrode: a baseline train S1
and a test train S2 starting a given interval after the S1 onset. A pulse is
active while

.. math::

   start \le t \bmod period \le start + duration

Nodes outside the electrode region never receive stimulus. Where both
trains are active at the same time, S1 is applied.
"""

__all__ = ["StimulusKind", "StimulusProtocol", "is_active", "STIMULUS_DISABLED"]

import enum
import math

import numpy as np

from xalheart.cellmodels import CellModel
from xalheart.exceptions import ConfigurationError
from xalheart.parameters import (
    ProtocolParameters,
    StimulusSpec,
)


# Stimulus start written into the "off" constants; the model's periodic
# term can never reach it.
STIMULUS_DISABLED = 1.0e10


class StimulusKind(enum.IntEnum):
    """Row of the stimulus constants table applied at a node."""
    OFF = 0
    S1 = 1
    S2 = 2


def is_active(spec: StimulusSpec, t: float) -> bool:
    """Return True if the pulse train `spec` is on at time `t`."""
    phase = t - math.floor(t/spec.period)*spec.period
    return spec.start <= phase <= spec.start + spec.duration


def _check_spec(name: str, spec: StimulusSpec) -> None:
    if not spec.period > 0:
        raise ConfigurationError("{} period must be positive, got {}".format(name, spec.period))
    if spec.duration < 0:
        raise ConfigurationError("{} duration must be non-negative, got {}".format(name, spec.duration))
    if not 0 <= spec.start < spec.period:
        msg = "{} start {} is outside the period [0, {})"
        raise ConfigurationError(msg.format(name, spec.start, spec.period))


class StimulusProtocol:
    """Decide which stimulus constants every node uses at a given time.

    *Arguments*
      S1 (:py:class:`~xalheart.parameters.StimulusSpec`)
        the baseline pulse train
      S2 (:py:class:`~xalheart.parameters.StimulusSpec`)
        the test pulse train
    """

    def __init__(self, S1: StimulusSpec, S2: StimulusSpec) -> None:
        _check_spec("S1", S1)
        _check_spec("S2", S2)
        self._S1 = S1
        self._S2 = S2

    @classmethod
    def from_parameters(
        cls,
        parameters: ProtocolParameters,
        S2_magnitude: float = None,
        S1S2_interval: float = None,
        S1_magnitude: float = None
    ) -> "StimulusProtocol":
        """Create the protocol, optionally overriding the magnitudes and the interval."""
        if S2_magnitude is None:
            S2_magnitude = parameters.S2_magnitude
        if S1S2_interval is None:
            S1S2_interval = parameters.S1S2_interval

        S2 = StimulusSpec(
            start=parameters.S1.start + S1S2_interval,
            period=parameters.S2_period,
            duration=parameters.S2_duration,
            magnitude=S2_magnitude,
        )
        S1 = parameters.S1
        if S1_magnitude is not None:
            S1 = S1._replace(magnitude=S1_magnitude)
        return cls(S1, S2)

    @property
    def S1(self) -> StimulusSpec:
        return self._S1

    @property
    def S2(self) -> StimulusSpec:
        return self._S2

    def active_kind(self, t: float) -> StimulusKind:
        """Return the pulse train applied inside the electrode region at time `t`."""
        if is_active(self._S1, t):
            return StimulusKind.S1
        if is_active(self._S2, t):
            return StimulusKind.S2
        return StimulusKind.OFF

    def magnitude_at(self, t: float) -> float:
        """Return the magnitude of the pulse applied at time `t`, or zero."""
        kind = self.active_kind(t)
        if kind == StimulusKind.S1:
            return self._S1.magnitude
        if kind == StimulusKind.S2:
            return self._S2.magnitude
        return 0.0

    def select(self, t: float, in_region: np.ndarray) -> np.ndarray:
        """Return the :py:class:`StimulusKind` of every node at time `t`."""
        kind = self.active_kind(t)
        return np.where(in_region, int(kind), int(StimulusKind.OFF))

    def constants_table(self, cell_model: CellModel, consts: np.ndarray) -> np.ndarray:
        """Return the constants for every :py:class:`StimulusKind`, one row each.

        The rows are copies of `consts` where only the stimulus constants of
        the cell model differ. The "off" row disables the model's own
        periodic stimulus.
        """
        start, period, duration, amplitude = cell_model.stimulus_indices
        table = np.tile(np.asarray(consts, dtype=float), (len(StimulusKind), 1))

        off = table[StimulusKind.OFF]
        off[start] = STIMULUS_DISABLED
        off[duration] = 0.0
        off[amplitude] = 0.0

        for kind, spec in ((StimulusKind.S1, self._S1), (StimulusKind.S2, self._S2)):
            row = table[kind]
            row[start] = spec.start
            row[period] = spec.period
            row[duration] = spec.duration
            row[amplitude] = spec.magnitude
        return table

    def __repr__(self) -> str:
        return "StimulusProtocol(S1={!r}, S2={!r})".format(self._S1, self._S2)
