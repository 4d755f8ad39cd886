"""Unit tests for the S1-S2 stimulus protocol."""

__all__ = ["TestIsActive", "TestStimulusProtocol"]


import numpy as np
import pytest

from testutils import fast, parametrize

from xalheart.cellmodels import GrayPathmanathan2016
from xalheart.exceptions import ConfigurationError
from xalheart.parameters import (
    ProtocolParameters,
    StimulusSpec,
)
from xalheart.stimulus import (
    STIMULUS_DISABLED,
    StimulusKind,
    StimulusProtocol,
    is_active,
)


class TestIsActive:
    """Test the activation rule of a single pulse train."""

    spec = StimulusSpec(start=10.0, period=100.0, duration=2.0, magnitude=50.0)

    @fast
    @parametrize(("t", "expected"), [
        (9.99, False),
        (10.0, True),
        (11.0, True),
        (12.0, True),
        (12.01, False),
        (110.0, True),
        (111.5, True),
        (113.0, False),
        (0.0, False),
    ])
    def test_window(self, t, expected):
        assert is_active(self.spec, t) == expected

    @fast
    def test_repeated_queries_agree(self):
        for t in np.linspace(0.0, 300.0, 301):
            assert is_active(self.spec, t) == is_active(self.spec, t)


class TestStimulusProtocol:
    """Test the selection of stimulus constants."""

    def setup_method(self):
        self.S1 = StimulusSpec(start=0.0, period=1000.0, duration=2.0, magnitude=120.0)
        self.S2 = StimulusSpec(start=150.0, period=1000.0, duration=2.0, magnitude=123.0)
        self.protocol = StimulusProtocol(self.S1, self.S2)
        self.model = GrayPathmanathan2016()
        self.consts, _, _, _ = self.model.allocate(1)

    @fast
    def test_active_kind(self):
        assert self.protocol.active_kind(1.0) == StimulusKind.S1
        assert self.protocol.active_kind(50.0) == StimulusKind.OFF
        assert self.protocol.active_kind(151.0) == StimulusKind.S2
        assert self.protocol.active_kind(1001.0) == StimulusKind.S1

    @fast
    def test_magnitude_at(self):
        assert self.protocol.magnitude_at(1.0) == 120.0
        assert self.protocol.magnitude_at(50.0) == 0.0
        assert self.protocol.magnitude_at(151.0) == 123.0

    @fast
    def test_overlap_gives_S1(self):
        S2 = StimulusSpec(start=1.0, period=1000.0, duration=2.0, magnitude=123.0)
        protocol = StimulusProtocol(self.S1, S2)
        assert protocol.active_kind(1.5) == StimulusKind.S1

        table = protocol.constants_table(self.model, self.consts)
        row = table[protocol.select(1.5, np.array([True]))[0]]
        start, period, duration, amplitude = self.model.stimulus_indices
        assert row[amplitude] == self.S1.magnitude
        assert row[start] == self.S1.start
        assert row[duration] == self.S1.duration

    @fast
    def test_outside_region_is_off(self):
        kinds = self.protocol.select(1.0, np.array([True, False, True]))
        assert list(kinds) == [StimulusKind.S1, StimulusKind.OFF, StimulusKind.S1]

    @fast
    def test_constants_table(self):
        table = self.protocol.constants_table(self.model, self.consts)
        start, period, duration, amplitude = self.model.stimulus_indices

        assert table.shape == (3, self.model.num_consts)
        off = table[StimulusKind.OFF]
        assert off[start] == STIMULUS_DISABLED
        assert off[amplitude] == 0.0
        assert off[duration] == 0.0
        assert np.isfinite(off[period]) and off[period] > 0

        assert table[StimulusKind.S2][amplitude] == 123.0
        assert table[StimulusKind.S2][start] == 150.0

        # Only the stimulus constants differ from the base constants
        others = [i for i in range(self.model.num_consts) if i not in self.model.stimulus_indices]
        for row in table:
            assert np.array_equal(row[others], self.consts[others])

    @fast
    def test_from_parameters(self):
        params = ProtocolParameters(S1=self.S1, S1S2_interval=150.0, S2_magnitude=121.0)
        protocol = StimulusProtocol.from_parameters(params)
        assert protocol.S2.start == 150.0
        assert protocol.S2.magnitude == 121.0

        protocol = StimulusProtocol.from_parameters(params, S2_magnitude=125.0, S1S2_interval=200.0)
        assert protocol.S2.start == 200.0
        assert protocol.S2.magnitude == 125.0
        assert protocol.S1 == self.S1

        protocol = StimulusProtocol.from_parameters(params, S1_magnitude=80.0)
        assert protocol.S1 == self.S1._replace(magnitude=80.0)

    @fast
    @parametrize("spec", [
        StimulusSpec(start=0.0, period=0.0),
        StimulusSpec(start=0.0, duration=-1.0),
        StimulusSpec(start=1000.0, period=1000.0),
        StimulusSpec(start=-1.0),
    ])
    def test_invalid_spec(self, spec):
        with pytest.raises(ConfigurationError):
            StimulusProtocol(self.S1, spec)
