r"""This module contains the linear tissue operators of the splitting solver.

After the reaction step has produced a tentative transmembrane potential
:math:`\tilde v`, the diffusive part of the tissue model is a linear
system with a fixed matrix, since the time step and the geometry do not
change during a run. The matrix is assembled and factorised once by
:py:meth:`TissueOperator.assemble`; every time step only builds a new
right-hand side and calls :py:meth:`TissueOperator.solve`.

Two formulations are available:

  * :py:class:`BidomainOperator`: find :math:`(u_i, u_e)` such that

    .. math::

       \chi C_m (v - \tilde v)/\Delta t - \mathrm{div}(M_i \mathrm{grad}\, u_i) = 0

       \mathrm{div}(M_i \mathrm{grad}\, u_i) + \mathrm{div}(M_e \mathrm{grad}\, u_e) = \chi C_m I_a

    with :math:`v = u_i - u_e`, zero flux on the boundary and zero average
    extracellular potential. The applied current :math:`I_a` is zero unless
    the electrode injects its pulses into the extracellular space.

  * :py:class:`EMIOperator`: find the bulk potential :math:`u` in every
    voxel, the membrane potential :math:`v` and the outward current
    :math:`J` on every membrane facet, and the gap-junction potential
    :math:`w` and current :math:`J_g` on every gap facet, such that
    current is conserved in every voxel and

    .. math::

       J = A C_m (v - \tilde v)/\Delta t, \qquad
       J_g = A (C_g (w - w_{old})/\Delta t + w/R_g)

Both use a two-point flux discretisation on the voxels of a
:py:class:`~xalheart.mesh.BoxMesh`.
"""

# Copyright (C) 2026 xalheart developers
# Use and modify at will
# Last changed: 2026-10-19

__all__ = [
    "TissueOperator",
    "BidomainOperator",
    "EMIOperator",
    "assemble",
]

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from abc import (
    ABC,
    abstractmethod,
)

from typing import (
    Dict,
    Tuple,
    Union,
)

from xalheart.exceptions import (
    AssemblyError,
    ConfigurationError,
    SolverError,
)
from xalheart.mesh import (
    BoxMesh,
    EMIGeometry,
    MEMBRANE_ORIENTATIONS,
)
from xalheart.parameters import (
    BidomainParameters,
    EMIParameters,
    KrylovParameters,
)

import logging


logger = logging.getLogger(__name__)


def stiffness_matrix(n: int, a: np.ndarray, b: np.ndarray, weights: np.ndarray) -> sp.csr_matrix:
    """Return the two-point flux matrix sum_f w_f (e_a - e_b)(e_a - e_b)^T."""
    rows = np.concatenate((a, b, a, b))
    cols = np.concatenate((a, b, b, a))
    data = np.concatenate((weights, weights, -weights, -weights))
    return sp.csr_matrix((data, (rows, cols)), shape=(n, n))


def incidence_matrix(n: int, rows: np.ndarray, values: np.ndarray) -> sp.csr_matrix:
    """Return the ``n x len(rows)`` matrix with `values` at (rows[j], j)."""
    cols = np.arange(rows.size)
    return sp.csr_matrix((values, (rows, cols)), shape=(n, rows.size))


class TissueOperator(ABC):
    """Interface of the linear operators used by the splitting solver.

    *Arguments*
      dt (float)
        the time step the operator is assembled for
      linear_solver_type (str)
        "direct" (LU factorisation) or "iterative" (ILU preconditioned GMRES)
      krylov_parameters (:py:class:`~xalheart.parameters.KrylovParameters`, optional)
    """

    field_names: Tuple[str, ...] = ("V",)

    # Whether rhs accepts an extracellular current applied through the electrode
    supports_applied_current = False

    def __init__(
        self,
        dt: float,
        linear_solver_type: str = "direct",
        krylov_parameters: KrylovParameters = None
    ) -> None:
        if not dt > 0:
            raise ConfigurationError("Expected a positive time step, got {}".format(dt))
        if linear_solver_type not in ("direct", "iterative"):
            msg = "Unknown solver type. Got {}, expected 'iterative' or 'direct'"
            raise ConfigurationError(msg.format(linear_solver_type))

        self._dt = dt
        self._linear_solver_type = linear_solver_type
        self._krylov_parameters = krylov_parameters or KrylovParameters()

        self._matrix: sp.csc_matrix = None
        self._factorisation = None
        self._preconditioner = None

    @property
    def dt(self) -> float:
        return self._dt

    @property
    def assembled(self) -> bool:
        return self._matrix is not None

    @property
    def matrix(self) -> sp.csc_matrix:
        return self._matrix

    @property
    @abstractmethod
    def num_dofs(self) -> int:
        """Number of degrees of freedom of the transmembrane potential."""

    @abstractmethod
    def transmembrane_coordinates(self) -> np.ndarray:
        """Coordinates of the transmembrane potential degrees of freedom."""

    @abstractmethod
    def _assemble_matrix(self) -> sp.spmatrix:
        pass

    @abstractmethod
    def rhs(
        self,
        vtilde: np.ndarray,
        fields: Dict[str, np.ndarray],
        applied: np.ndarray = None
    ) -> np.ndarray:
        """Return the right-hand side for the tentative potential `vtilde`.

        *Arguments*
          vtilde (:py:class:`numpy.ndarray`)
            the potential after the reaction step
          fields (dict)
            the fields committed at the start of the step
          applied (:py:class:`numpy.ndarray`, optional)
            stimulus magnitude (uA/uF) drawn from the extracellular space
            at every degree of freedom, for operators that support it
        """

    @abstractmethod
    def extract(self, solution: np.ndarray) -> Dict[str, np.ndarray]:
        """Return the fields carried between time steps from a solution vector."""

    def initial_fields(self, v0: np.ndarray) -> Dict[str, np.ndarray]:
        """Return the fields at the start of a run, given the potential `v0`."""
        return {"V": np.array(v0, dtype=float)}

    def assemble(self) -> "TissueOperator":
        """Assemble and factorise the matrix. Only the first call has any effect."""
        if self.assembled:
            return self

        try:
            matrix = sp.csc_matrix(self._assemble_matrix())
        except (ValueError, IndexError) as e:
            raise AssemblyError("Could not assemble {}: {}".format(self, e)) from e

        if self._linear_solver_type == "direct":
            try:
                self._factorisation = spla.splu(matrix)
            except RuntimeError as e:
                raise AssemblyError("Could not factorise {}: {}".format(self, e)) from e
        else:
            kp = self._krylov_parameters
            try:
                ilu = spla.spilu(matrix, drop_tol=kp.drop_tolerance, fill_factor=kp.fill_factor)
            except RuntimeError as e:
                raise AssemblyError("Could not compute preconditioner for {}: {}".format(self, e)) from e
            self._preconditioner = spla.LinearOperator(matrix.shape, ilu.solve)

        self._matrix = matrix
        logger.info(
            "Assembled %s: %d unknowns, %d nonzeros, %s solver",
            self,
            matrix.shape[0],
            matrix.nnz,
            self._linear_solver_type
        )
        return self

    def solve(self, rhs: np.ndarray, time: float = None) -> np.ndarray:
        """Solve the assembled system for `rhs`.

        *Arguments*
          rhs (:py:class:`numpy.ndarray`)
          time (float, optional)
            the time of the step, used for error reporting
        """
        if not self.assembled:
            raise RuntimeError("{} must be assembled before solve".format(self))

        if self._linear_solver_type == "direct":
            return self._factorisation.solve(rhs)

        kp = self._krylov_parameters
        iterations = 0

        def count(_):
            nonlocal iterations
            iterations += 1

        solution, info = spla.gmres(
            self._matrix,
            rhs,
            rtol=kp.relative_tolerance,
            atol=kp.absolute_tolerance,
            restart=kp.restart,
            maxiter=kp.maximum_iterations,
            M=self._preconditioner,
            callback=count,
            callback_type="pr_norm",
        )
        if info != 0:
            residual = float(np.linalg.norm(rhs - self._matrix @ solution))
            reason = "illegal input" if info < 0 else "no convergence"
            raise SolverError(time, iterations=iterations, residual=residual, reason=reason)
        return solution

    def __str__(self) -> str:
        return self.__class__.__name__


class BidomainOperator(TissueOperator):
    """The bidomain equations on a voxel grid.

    The unknowns are the intracellular and extracellular potentials of
    every voxel followed by a Lagrange multiplier for the zero average
    constraint on the extracellular potential.

    *Arguments*
      mesh (:py:class:`~xalheart.mesh.BoxMesh`)
      dt (float)
      parameters (:py:class:`~xalheart.parameters.BidomainParameters`, optional)
    """

    supports_applied_current = True

    def __init__(
        self,
        mesh: BoxMesh,
        dt: float,
        parameters: BidomainParameters = None,
        krylov_parameters: KrylovParameters = None
    ) -> None:
        self._parameters = parameters or BidomainParameters()
        super().__init__(dt, self._parameters.linear_solver_type, krylov_parameters)

        for name in ("intracellular_conductivity", "extracellular_conductivity"):
            sigma = getattr(self._parameters, name)
            if len(sigma) != 3 or min(sigma) < 0:
                msg = "Expected three non-negative values for {}, got {}"
                raise ConfigurationError(msg.format(name, sigma))
        self._mesh = mesh

        # chi*Cm, and chi*Cm/dt
        self._surface_capacitance = (
            self._parameters.surface_to_volume_ratio*self._parameters.membrane_capacitance
        )
        self._capacitance = self._surface_capacitance/dt

    @property
    def mesh(self) -> BoxMesh:
        return self._mesh

    @property
    def num_dofs(self) -> int:
        return self._mesh.num_cells

    def transmembrane_coordinates(self) -> np.ndarray:
        return self._mesh.coordinates()

    def _stiffness(self, sigma: Tuple[float, float, float]) -> sp.csr_matrix:
        n = self._mesh.num_cells
        K = sp.csr_matrix((n, n))
        for axis in range(3):
            a, b = self._mesh.faces(axis)
            weight = sigma[axis]*self._mesh.face_area(axis)/self._mesh.spacing[axis]
            K = K + stiffness_matrix(n, a, b, np.full(a.size, weight))
        return K

    def _assemble_matrix(self) -> sp.spmatrix:
        n = self._mesh.num_cells
        volume = np.full(n, self._mesh.cell_volume)
        cM = sp.diags(self._capacitance*volume)
        Ki = self._stiffness(self._parameters.intracellular_conductivity)
        Ke = self._stiffness(self._parameters.extracellular_conductivity)
        m = sp.csr_matrix(volume.reshape(-1, 1))

        return sp.bmat([
            [cM + Ki, -cM, None],
            [-cM, cM + Ke, m],
            [None, m.T, None],
        ])

    def rhs(
        self,
        vtilde: np.ndarray,
        fields: Dict[str, np.ndarray],
        applied: np.ndarray = None
    ) -> np.ndarray:
        volume = self._mesh.cell_volume
        b = self._capacitance*volume*vtilde
        be = -b
        if applied is not None:
            # Cathodal current; the multiplier row returns it uniformly
            be = be - self._surface_capacitance*volume*applied
        return np.concatenate((b, be, [0.0]))

    def extract(self, solution: np.ndarray) -> Dict[str, np.ndarray]:
        n = self._mesh.num_cells
        ui = solution[:n]
        ue = solution[n:2*n]
        return {"V": ui - ue}

    def extracellular_potential(self, solution: np.ndarray) -> np.ndarray:
        n = self._mesh.num_cells
        return solution[n:2*n]


class EMIOperator(TissueOperator):
    """The EMI equations on a labelled voxel grid.

    The unknowns are ordered as bulk potentials (one per voxel), membrane
    potentials and membrane currents (one each per membrane facet),
    gap-junction potentials and currents (one each per gap facet), and a
    Lagrange multiplier fixing the average extracellular potential.

    *Arguments*
      geometry (:py:class:`~xalheart.mesh.EMIGeometry`)
      dt (float)
      parameters (:py:class:`~xalheart.parameters.EMIParameters`, optional)
    """

    field_names = ("V", "W")

    def __init__(
        self,
        geometry: EMIGeometry,
        dt: float,
        parameters: EMIParameters = None,
        krylov_parameters: KrylovParameters = None
    ) -> None:
        self._parameters = parameters or EMIParameters()
        super().__init__(dt, self._parameters.linear_solver_type, krylov_parameters)

        self._geometry = geometry
        self._membrane = geometry.membrane_facets()
        self._gaps = geometry.gap_facets()
        if self._membrane.a.size == 0:
            raise ConfigurationError("EMI geometry has no membrane facets")

        capacitance = np.atleast_1d(np.asarray(self._parameters.membrane_capacitance, dtype=float))
        if capacitance.size == 1:
            capacitance = np.full(len(MEMBRANE_ORIENTATIONS), capacitance[0])
        if capacitance.size != len(MEMBRANE_ORIENTATIONS):
            msg = "Expected a scalar or {} membrane capacitances, got {}"
            raise ConfigurationError(msg.format(len(MEMBRANE_ORIENTATIONS), capacitance.size))
        if self._parameters.gap_resistance <= 0:
            msg = "Expected a positive gap resistance, got {}"
            raise ConfigurationError(msg.format(self._parameters.gap_resistance))

        # A*Cm/dt per membrane facet and A*Cg/dt per gap facet
        self._membrane_coefficient = self._membrane.area*capacitance[self._membrane.orientation]/dt
        self._gap_coefficient = self._gaps.area*self._parameters.gap_capacitance/dt

    @property
    def geometry(self) -> EMIGeometry:
        return self._geometry

    @property
    def num_dofs(self) -> int:
        return self._membrane.a.size

    @property
    def num_gap_dofs(self) -> int:
        return self._gaps.a.size

    def transmembrane_coordinates(self) -> np.ndarray:
        return self._membrane.coordinates

    def gap_coordinates(self) -> np.ndarray:
        return self._gaps.coordinates

    def membrane_orientation(self) -> np.ndarray:
        """Index into :py:data:`~xalheart.mesh.MEMBRANE_ORIENTATIONS` per membrane facet."""
        return self._membrane.orientation

    def initial_fields(self, v0: np.ndarray) -> Dict[str, np.ndarray]:
        return {"V": np.array(v0, dtype=float), "W": np.zeros(self.num_gap_dofs)}

    def _half_conductance(self, voxels: np.ndarray, axis: np.ndarray, area: np.ndarray) -> np.ndarray:
        """Conductance between the centre and a face of each voxel."""
        sigma = np.where(
            self._geometry.labels[voxels] > 0,
            self._parameters.intracellular_conductivity,
            self._parameters.extracellular_conductivity,
        )
        return sigma*area/(0.5*self._geometry.mesh.spacing[axis])

    def _assemble_matrix(self) -> sp.spmatrix:
        mesh = self._geometry.mesh
        n = mesh.num_cells
        membrane = self._membrane
        gaps = self._gaps
        nm = membrane.a.size
        ng = gaps.a.size

        # Conservation of current in the bulk
        faces = self._geometry.conduction_faces()
        spacing = mesh.spacing[faces.axis]
        areas = np.array([mesh.face_area(d) for d in range(3)])[faces.axis]
        sigma = np.where(
            self._geometry.labels[faces.a] > 0,
            self._parameters.intracellular_conductivity,
            self._parameters.extracellular_conductivity,
        )
        K = stiffness_matrix(n, faces.a, faces.b, sigma*areas/spacing)

        Bm = incidence_matrix(n, membrane.a, np.ones(nm)) - incidence_matrix(n, membrane.b, np.ones(nm))

        extracellular = ~self._geometry.intracellular
        m = sp.csr_matrix(np.where(extracellular, mesh.cell_volume, 0.0).reshape(-1, 1))

        # Membrane: current-voltage law and potential jump over the half voxels
        resistance_m = (
            1.0/self._half_conductance(membrane.a, membrane.axis, membrane.area)
            + 1.0/self._half_conductance(membrane.b, membrane.axis, membrane.area)
        )
        Im = sp.identity(nm, format="csr")

        if ng == 0:
            return sp.bmat([
                # u, Vm, Jm, lambda
                [K, None, Bm, m],
                [None, sp.diags(self._membrane_coefficient), -Im, None],
                [-Bm.T, Im, sp.diags(resistance_m), None],
                [m.T, None, None, None],
            ])

        # Gap junctions
        Bg = incidence_matrix(n, gaps.a, np.ones(ng)) - incidence_matrix(n, gaps.b, np.ones(ng))
        resistance_g = (
            1.0/self._half_conductance(gaps.a, gaps.axis, gaps.area)
            + 1.0/self._half_conductance(gaps.b, gaps.axis, gaps.area)
        )
        Ig = sp.identity(ng, format="csr")
        gap_admittance = self._gap_coefficient + gaps.area/self._parameters.gap_resistance

        return sp.bmat([
            # u, Vm, Jm, W, Jg, lambda
            [K, None, Bm, None, Bg, m],
            [None, sp.diags(self._membrane_coefficient), -Im, None, None, None],
            [-Bm.T, Im, sp.diags(resistance_m), None, None, None],
            [None, None, None, sp.diags(gap_admittance), -Ig, None],
            [-Bg.T, None, None, Ig, sp.diags(resistance_g), None],
            [m.T, None, None, None, None, None],
        ])

    def _offsets(self) -> Tuple[int, int, int, int, int]:
        n = self._geometry.mesh.num_cells
        nm = self.num_dofs
        ng = self.num_gap_dofs
        return n, n + nm, n + 2*nm, n + 2*nm + ng, n + 2*nm + 2*ng

    def rhs(
        self,
        vtilde: np.ndarray,
        fields: Dict[str, np.ndarray],
        applied: np.ndarray = None
    ) -> np.ndarray:
        if applied is not None:
            raise ConfigurationError("{} has no extracellular electrode current".format(type(self).__name__))
        v0, j0, w0, g0, end = self._offsets()
        b = np.zeros(end + 1)
        b[v0:j0] = self._membrane_coefficient*vtilde
        if self.num_gap_dofs > 0:
            b[w0:g0] = self._gap_coefficient*fields["W"]
        return b

    def extract(self, solution: np.ndarray) -> Dict[str, np.ndarray]:
        v0, j0, w0, g0, _ = self._offsets()
        return {"V": solution[v0:j0].copy(), "W": solution[w0:g0].copy()}

    def bulk_potential(self, solution: np.ndarray) -> np.ndarray:
        return solution[:self._geometry.mesh.num_cells]


def assemble(
    domain: Union[BoxMesh, EMIGeometry],
    parameters: Union[BidomainParameters, EMIParameters],
    dt: float,
    krylov_parameters: KrylovParameters = None
) -> TissueOperator:
    """Create and assemble the tissue operator for `parameters`."""
    if isinstance(parameters, BidomainParameters):
        if not isinstance(domain, BoxMesh):
            raise ConfigurationError("The bidomain operator needs a BoxMesh, got {!r}".format(domain))
        operator = BidomainOperator(domain, dt, parameters, krylov_parameters)
    elif isinstance(parameters, EMIParameters):
        if not isinstance(domain, EMIGeometry):
            raise ConfigurationError("The EMI operator needs an EMIGeometry, got {!r}".format(domain))
        operator = EMIOperator(domain, dt, parameters, krylov_parameters)
    else:
        raise ConfigurationError("Unknown tissue parameters {!r}".format(parameters))
    return operator.assemble()
