"""Unit tests for the output writers."""

__all__ = ["TestPointSampler", "TestFieldWriter"]


import numpy as np
import pytest

from testutils import assert_almost_equal, fast

from xalheart.exceptions import ConfigurationError
from xalheart.output import (
    FieldWriter,
    PointSampler,
    nearest_dofs,
)


class TestPointSampler:

    def setup_method(self):
        self.coordinates = np.array([
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [2.0, 0.0, 0.0],
        ])

    @fast
    def test_nearest_dofs(self):
        points = np.array([[1.9, 0.1, 0.0], [0.4, 0.0, 0.0]])
        assert list(nearest_dofs(points, self.coordinates)) == [2, 0]

    @fast
    def test_header_and_rows(self, tmp_path):
        path = tmp_path / "run" / "samples.txt"
        sampler = PointSampler(path, [(2.0, 0.0, 0.0), (0.9, 0.0, 0.0)], self.coordinates)
        sampler.sample(0.0, np.array([-83.0, -82.0, -81.0]))
        sampler.sample(0.5, np.array([-80.0, 10.0, 20.0]))

        names, rows = PointSampler.read(path)
        assert names == ["time", "V(2 0 0)", "V(0.9 0 0)"]
        assert_almost_equal(rows, [[0.0, -81.0, -82.0], [0.5, 20.0, 10.0]], 1e-12)

    @fast
    def test_append(self, tmp_path):
        path = tmp_path / "samples.txt"
        PointSampler(path, [(0.0, 0.0, 0.0)], self.coordinates).sample(0.0, np.zeros(3))

        resumed = PointSampler(path, [(0.0, 0.0, 0.0)], self.coordinates, append=True)
        resumed.sample(1.0, np.ones(3))
        _, rows = PointSampler.read(path)
        assert_almost_equal(rows, [[0.0, 0.0], [1.0, 1.0]], 1e-12)

        PointSampler(path, [(0.0, 0.0, 0.0)], self.coordinates)
        assert path.read_text() == "time, V(0 0 0)\n"

    @fast
    def test_invalid_points(self, tmp_path):
        with pytest.raises(ConfigurationError):
            PointSampler(tmp_path / "samples.txt", [], self.coordinates)
        with pytest.raises(ConfigurationError):
            PointSampler(tmp_path / "samples.txt", [(0.0, 0.0)], self.coordinates)


class TestFieldWriter:

    @fast
    def test_write(self, tmp_path):
        coordinates = np.random.rand(4, 3)
        writer = FieldWriter(tmp_path / "fields", coordinates)
        writer.write(20, {"V": np.array([1.0, 2.0, 3.0, 4.0]), "W": np.array([0.5])})

        directory = tmp_path / "fields"
        assert writer.directory == directory
        assert_almost_equal(np.loadtxt(str(directory / "coordinates.txt")), coordinates, 1e-9)
        assert_almost_equal(np.loadtxt(str(directory / "V_000020.txt")), [1.0, 2.0, 3.0, 4.0], 1e-12)
        assert_almost_equal(np.loadtxt(str(directory / "W_000020.txt")), 0.5, 1e-12)
