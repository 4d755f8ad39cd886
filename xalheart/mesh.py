"""Structured box geometries for the tissue operators.

The unknowns of the tissue operators live at the centres of the voxels of
a uniform box grid (:py:class:`BoxMesh`). For the EMI model the voxels
are labelled as extracellular (label 0) or as part of a myocyte (label
>= 1) by :py:class:`EMIGeometry`, from which the membrane and the
gap-junction facets follow.
"""

__all__ = [
    "Box",
    "BoxMesh",
    "EMIGeometry",
    "Faces",
    "Facets",
    "MEMBRANE_ORIENTATIONS",
    "GAP_ORIENTATIONS",
]

import numpy as np

from typing import (
    NamedTuple,
    Sequence,
    Tuple,
)

from xalheart.exceptions import ConfigurationError


# Outward normal of a membrane facet, seen from the myocyte
MEMBRANE_ORIENTATIONS = ("+x", "-x", "+y", "-y", "+z", "-z")

# Axis of a gap-junction facet
GAP_ORIENTATIONS = ("x", "y", "z")


class Faces(NamedTuple):
    """Interior faces between neighbouring voxels a and b along `axis`."""
    a: np.ndarray
    b: np.ndarray
    axis: np.ndarray


class Facets(NamedTuple):
    """Membrane or gap-junction facets.

    For membrane facets `a` is the intracellular and `b` the extracellular
    voxel. For gap-junction facets `a` and `b` belong to different
    myocytes, with `a` on the lower side along `axis`.
    """
    a: np.ndarray
    b: np.ndarray
    axis: np.ndarray
    orientation: np.ndarray
    area: np.ndarray
    coordinates: np.ndarray


class Box:
    """Axis aligned box, used as a geometric predicate.

    *Arguments*
      lower, upper (sequence of float)
        opposite corners of the box
    """

    def __init__(self, lower: Sequence[float], upper: Sequence[float], tolerance: float = 1e-12) -> None:
        self.lower = np.asarray(lower, dtype=float)
        self.upper = np.asarray(upper, dtype=float)
        if self.lower.shape != self.upper.shape:
            raise ConfigurationError("Box corners {} and {} differ in dimension".format(lower, upper))
        if np.any(self.upper < self.lower):
            raise ConfigurationError("Box corner {} is not below {}".format(lower, upper))
        self.tolerance = tolerance

    @classmethod
    def from_corner(cls, corner: Sequence[float], size: Sequence[float]) -> "Box":
        corner = np.asarray(corner, dtype=float)
        return cls(corner, corner + np.asarray(size, dtype=float))

    def contains(self, points: np.ndarray) -> np.ndarray:
        """Return a boolean mask of the points inside the box (boundary included)."""
        points = np.atleast_2d(points)[:, :self.lower.size]
        inside = (points >= self.lower - self.tolerance) & (points <= self.upper + self.tolerance)
        return np.all(inside, axis=1)

    def __repr__(self) -> str:
        return "Box({}, {})".format(self.lower.tolist(), self.upper.tolist())


class BoxMesh:
    """Uniform grid of ``nx*ny*nz`` voxels.

    *Arguments*
      shape (tuple of int)
        number of voxels along each axis
      spacing (tuple of float)
        voxel size along each axis (mm)
      origin (tuple of float, optional)
        lower corner of the grid
    """

    def __init__(
        self,
        shape: Tuple[int, int, int],
        spacing: Tuple[float, float, float],
        origin: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    ) -> None:
        if len(shape) != 3 or len(spacing) != 3 or len(origin) != 3:
            msg = "Expected three dimensional shape, spacing and origin, got {}, {}, {}"
            raise ConfigurationError(msg.format(shape, spacing, origin))
        if any(n < 1 for n in shape):
            raise ConfigurationError("Expected at least one voxel along each axis, got {}".format(shape))
        if any(h <= 0 for h in spacing):
            raise ConfigurationError("Expected positive voxel size, got {}".format(spacing))

        self.shape = tuple(int(n) for n in shape)
        self.spacing = np.asarray(spacing, dtype=float)
        self.origin = np.asarray(origin, dtype=float)
        self._ids = np.arange(self.num_cells).reshape(self.shape)

    @classmethod
    def from_size(
        cls,
        size: Tuple[float, float, float],
        meshsize: float,
        origin: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    ) -> "BoxMesh":
        """Create a grid covering `size` with voxels of size close to `meshsize`."""
        shape = tuple(max(1, int(round(length/meshsize))) for length in size)
        spacing = tuple(length/n for length, n in zip(size, shape))
        return cls(shape, spacing, origin)

    @property
    def num_cells(self) -> int:
        return int(np.prod(self.shape))

    @property
    def cell_volume(self) -> float:
        return float(np.prod(self.spacing))

    @property
    def ids(self) -> np.ndarray:
        """Voxel indices arranged on the grid."""
        return self._ids

    def face_area(self, axis: int) -> float:
        """Area of a face normal to `axis`."""
        return float(np.prod(np.delete(self.spacing, axis)))

    def coordinates(self) -> np.ndarray:
        """Voxel centres, shape ``(num_cells, 3)``."""
        axes = [
            self.origin[d] + (np.arange(n) + 0.5)*self.spacing[d] for d, n in enumerate(self.shape)
        ]
        grid = np.meshgrid(*axes, indexing="ij")
        return np.stack([g.ravel() for g in grid], axis=1)

    def faces(self, axis: int) -> Tuple[np.ndarray, np.ndarray]:
        """Return the voxel pairs (lower, upper) sharing a face normal to `axis`."""
        lower = np.take(self._ids, np.arange(self.shape[axis] - 1), axis=axis).ravel()
        upper = np.take(self._ids, np.arange(1, self.shape[axis]), axis=axis).ravel()
        return lower, upper

    def __repr__(self) -> str:
        return "BoxMesh(shape={}, spacing={})".format(self.shape, self.spacing.tolist())


class EMIGeometry:
    """A lattice of box shaped myocytes embedded in extracellular space.

    Every myocyte is a block of ``cell_shape`` voxels. Neighbouring myocytes
    are separated by a layer of one extracellular voxel, except for a single
    voxel bridge at the centre of the shared side, whose far face is a gap
    junction. The lattice is surrounded by `padding` layers of
    extracellular voxels.

    *Arguments*
      num_cells (tuple of int)
        number of myocytes along each axis
      cell_shape (tuple of int)
        number of voxels per myocyte along each axis
      spacing (tuple of float)
        voxel size (mm)
      padding (int, optional)
        extracellular layers around the lattice
      gap_axes (tuple of int, optional)
        axes along which neighbouring myocytes are coupled
    """

    def __init__(
        self,
        num_cells: Tuple[int, int, int],
        cell_shape: Tuple[int, int, int],
        spacing: Tuple[float, float, float],
        padding: int = 1,
        gap_axes: Tuple[int, ...] = (0, 1)
    ) -> None:
        if any(n < 1 for n in num_cells) or any(n < 1 for n in cell_shape):
            msg = "Expected positive number of cells and cell shape, got {} and {}"
            raise ConfigurationError(msg.format(num_cells, cell_shape))
        if padding < 1:
            raise ConfigurationError("Expected at least one padding layer, got {}".format(padding))

        self.num_cells = tuple(num_cells)
        self.cell_shape = tuple(cell_shape)
        self.padding = padding
        shape = tuple(
            2*padding + nc*cs + (nc - 1) for nc, cs in zip(self.num_cells, self.cell_shape)
        )
        self.mesh = BoxMesh(shape, spacing)

        labels = np.zeros(shape, dtype=int)
        for p, q, r in np.ndindex(*self.num_cells):
            start = [padding + i*(cs + 1) for i, cs in zip((p, q, r), self.cell_shape)]
            block = tuple(slice(s, s + cs) for s, cs in zip(start, self.cell_shape))
            tag = self.cell_tag(p, q, r)
            labels[block] = tag

            # Bridge through the separating layer towards the next myocyte
            for axis in gap_axes:
                if (p, q, r)[axis] + 1 >= self.num_cells[axis]:
                    continue
                bridge = [s + cs//2 for s, cs in zip(start, self.cell_shape)]
                bridge[axis] = start[axis] + self.cell_shape[axis]
                labels[tuple(bridge)] = tag
        self.labels = labels.ravel()

    def cell_tag(self, p: int, q: int, r: int) -> int:
        """Label of the myocyte with lattice position (p, q, r)."""
        ncx, ncy, _ = self.num_cells
        return 1 + p + ncx*(q + ncy*r)

    @property
    def intracellular(self) -> np.ndarray:
        return self.labels > 0

    def _facet_coordinates(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        x = self.mesh.coordinates()
        return 0.5*(x[a] + x[b])

    def conduction_faces(self) -> Faces:
        """Faces between two extracellular voxels or two voxels of the same myocyte."""
        a_list, b_list, axis_list = [], [], []
        for axis in range(3):
            a, b = self.mesh.faces(axis)
            same = self.labels[a] == self.labels[b]
            a_list.append(a[same])
            b_list.append(b[same])
            axis_list.append(np.full(np.count_nonzero(same), axis))
        return Faces(np.concatenate(a_list), np.concatenate(b_list), np.concatenate(axis_list))

    def membrane_facets(self) -> Facets:
        """Faces between a myocyte and the extracellular space."""
        a_list, b_list, axis_list, orientation_list = [], [], [], []
        for axis in range(3):
            lower, upper = self.mesh.faces(axis)
            lower_in = self.labels[lower] > 0
            upper_in = self.labels[upper] > 0

            # Myocyte below the facet: outward normal along +axis
            outward = lower_in & ~upper_in
            a_list.append(lower[outward])
            b_list.append(upper[outward])
            orientation_list.append(np.full(np.count_nonzero(outward), 2*axis))

            inward = ~lower_in & upper_in
            a_list.append(upper[inward])
            b_list.append(lower[inward])
            orientation_list.append(np.full(np.count_nonzero(inward), 2*axis + 1))

            axis_list.append(np.full(np.count_nonzero(outward) + np.count_nonzero(inward), axis))

        a = np.concatenate(a_list)
        b = np.concatenate(b_list)
        axis = np.concatenate(axis_list)
        area = np.array([self.mesh.face_area(d) for d in range(3)])[axis]
        return Facets(a, b, axis, np.concatenate(orientation_list), area, self._facet_coordinates(a, b))

    def gap_facets(self) -> Facets:
        """Faces between two different myocytes."""
        a_list, b_list, axis_list = [], [], []
        for axis in range(3):
            lower, upper = self.mesh.faces(axis)
            la = self.labels[lower]
            lb = self.labels[upper]
            gap = (la > 0) & (lb > 0) & (la != lb)
            a_list.append(lower[gap])
            b_list.append(upper[gap])
            axis_list.append(np.full(np.count_nonzero(gap), axis))

        a = np.concatenate(a_list)
        b = np.concatenate(b_list)
        axis = np.concatenate(axis_list)
        area = np.array([self.mesh.face_area(d) for d in range(3)])[axis]
        return Facets(a, b, axis, axis.copy(), area, self._facet_coordinates(a, b))
