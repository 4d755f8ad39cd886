"""Sampling and snapshot writers for the solution fields."""

__all__ = ["FieldWriter", "PointSampler", "nearest_dofs"]

import numpy as np

from pathlib import Path

from typing import (
    Dict,
    Sequence,
    Tuple,
    Union,
)

from xalheart.exceptions import ConfigurationError

import logging


logger = logging.getLogger(__name__)


def nearest_dofs(points: np.ndarray, coordinates: np.ndarray) -> np.ndarray:
    """Return the index of the degree of freedom closest to each point."""
    distance = np.linalg.norm(points[:, None, :] - coordinates[None, :, :], axis=2)
    return np.argmin(distance, axis=1)


class PointSampler:
    """Write the transmembrane potential at a few points to a text file.

    The file starts with a header naming the coordinates of every sample
    point, followed by one row ``time, V(p_1), ..., V(p_k)`` per sample.

    *Arguments*
      path (str or :py:class:`pathlib.Path`)
      points (sequence of (x, y, z))
        the sample points; each is mapped to the nearest degree of freedom
      coordinates (:py:class:`numpy.ndarray`)
        coordinates of the degrees of freedom of V
      append (bool, optional)
        continue an existing file, as when resuming from a checkpoint
    """

    def __init__(
        self,
        path: Union[str, Path],
        points: Sequence[Tuple[float, float, float]],
        coordinates: np.ndarray,
        append: bool = False,
        fmt: str = "{:.10g}"
    ) -> None:
        points = np.asarray(points, dtype=float)
        if points.ndim != 2 or points.shape[1] != 3 or points.shape[0] == 0:
            raise ConfigurationError("Expected sample points of shape (k, 3), got {}".format(points.shape))

        self._path = Path(path)
        self._points = points
        self._dofs = nearest_dofs(points, np.asarray(coordinates, dtype=float))
        self._fmt = fmt

        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not (append and self._path.is_file()):
            names = ["V({:g} {:g} {:g})".format(*point) for point in points]
            with self._path.open("w") as f:
                f.write(", ".join(["time"] + names) + "\n")

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dofs(self) -> np.ndarray:
        return self._dofs

    def sample(self, time: float, v: np.ndarray) -> None:
        """Append the values of `v` at the sample points."""
        values = [time] + list(v[self._dofs])
        with self._path.open("a") as f:
            f.write(", ".join(self._fmt.format(value) for value in values) + "\n")

    def __call__(self, solver: "SplittingSolver") -> None:
        self.sample(solver.clock.current_time, solver.solution_fields()["V"])

    @staticmethod
    def read(path: Union[str, Path]) -> Tuple[list, np.ndarray]:
        """Return the header names and the rows of a sample file."""
        with Path(path).open() as f:
            names = [name.strip() for name in f.readline().split(",")]
        rows = np.loadtxt(str(path), delimiter=",", skiprows=1, ndmin=2)
        return names, rows


class FieldWriter:
    """Write snapshots of the solution fields to a directory.

    Every snapshot of a field ``F`` at step ``n`` is written to
    ``F_<n>.txt``, one value per line. The coordinates of the degrees of
    freedom of V are written once, to ``coordinates.txt``.

    *Arguments*
      directory (str or :py:class:`pathlib.Path`)
      coordinates (:py:class:`numpy.ndarray`)
        coordinates of the degrees of freedom of V
    """

    def __init__(self, directory: Union[str, Path], coordinates: np.ndarray, fmt: str = "%.10g") -> None:
        self._directory = Path(directory)
        self._fmt = fmt
        self._directory.mkdir(parents=True, exist_ok=True)
        np.savetxt(str(self._directory / "coordinates.txt"), np.asarray(coordinates), fmt=fmt)

    @property
    def directory(self) -> Path:
        return self._directory

    def write(self, step: int, fields: Dict[str, np.ndarray]) -> None:
        for name, values in fields.items():
            path = self._directory / "{}_{:06d}.txt".format(name, step)
            np.savetxt(str(path), values, fmt=self._fmt)
        logger.debug("Wrote fields %s at step %d to %s", list(fields), step, self._directory)

    def __call__(self, solver: "SplittingSolver") -> None:
        self.write(solver.clock.step_count, solver.solution_fields())
