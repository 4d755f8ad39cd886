"""Unit tests for the bidomain and EMI tissue operators."""

__all__ = ["TestStiffness", "TestBidomainOperator", "TestEMIOperator"]


import numpy as np
import pytest

from testutils import (
    assert_almost_equal,
    assert_greater,
    fast,
    medium,
    parametrize,
    small_mesh,
)

from xalheart.exceptions import (
    ConfigurationError,
    SolverError,
)
from xalheart.mesh import EMIGeometry
from xalheart.parameters import (
    BidomainParameters,
    EMIParameters,
    KrylovParameters,
)
from xalheart.tissue import (
    BidomainOperator,
    EMIOperator,
    assemble,
    stiffness_matrix,
)


class TestStiffness:

    @fast
    def test_two_point_flux(self):
        K = stiffness_matrix(3, np.array([0, 1]), np.array([1, 2]), np.array([2.0, 3.0]))
        expected = np.array([
            [2.0, -2.0, 0.0],
            [-2.0, 5.0, -3.0],
            [0.0, -3.0, 3.0],
        ])
        assert_almost_equal(K.toarray(), expected, 1e-15)


class TestBidomainOperator:
    """Test the assembled bidomain system."""

    def setup_method(self):
        self.mesh = small_mesh()
        self.dt = 0.1

    @fast
    def test_matrix_is_symmetric(self):
        operator = BidomainOperator(self.mesh, self.dt).assemble()
        A = operator.matrix
        assert A.shape == (2*self.mesh.num_cells + 1,)*2
        assert abs(A - A.T).max() < 1e-14

    @fast
    def test_uniform_potential_is_preserved(self):
        operator = BidomainOperator(self.mesh, self.dt).assemble()
        vtilde = np.full(operator.num_dofs, -42.0)
        solution = operator.solve(operator.rhs(vtilde, {}))
        assert_almost_equal(operator.extract(solution)["V"], vtilde, 1e-8)

    @fast
    def test_conservation_and_zero_mean(self):
        operator = BidomainOperator(self.mesh, self.dt).assemble()
        vtilde = -83.0 + 100.0*np.random.rand(operator.num_dofs)
        solution = operator.solve(operator.rhs(vtilde, {}))
        v = operator.extract(solution)["V"]

        # Diffusion only redistributes the potential
        assert_almost_equal(np.sum(v), np.sum(vtilde), 1e-8)
        assert np.std(v) < np.std(vtilde)
        assert_almost_equal(np.sum(operator.extracellular_potential(solution)), 0.0, 1e-10)

    @medium
    def test_iterative_agrees_with_direct(self):
        vtilde = -83.0 + 100.0*np.random.rand(self.mesh.num_cells)
        fields = {}
        for solver_type in ("direct", "iterative"):
            params = BidomainParameters(linear_solver_type=solver_type)
            operator = BidomainOperator(self.mesh, self.dt, params).assemble()
            fields[solver_type] = operator.extract(operator.solve(operator.rhs(vtilde, {})))["V"]
        assert_almost_equal(fields["direct"], fields["iterative"], 1e-6)

    @fast
    def test_applied_current(self):
        operator = BidomainOperator(self.mesh, self.dt).assemble()
        vtilde = np.full(operator.num_dofs, -83.0)
        assert np.array_equal(operator.rhs(vtilde, {}, np.zeros(operator.num_dofs)), operator.rhs(vtilde, {}))

        region = np.zeros(operator.num_dofs, dtype=bool)
        region[:3] = True
        solution = operator.solve(operator.rhs(vtilde, {}, np.where(region, 120.0, 0.0)))
        v = operator.extract(solution)["V"]
        assert_almost_equal(np.sum(v), np.sum(vtilde), 1e-8)
        assert_greater(v[region].mean(), v[~region].mean())
        assert_almost_equal(np.sum(operator.extracellular_potential(solution)), 0.0, 1e-10)

    @fast
    def test_solver_error(self):
        params = BidomainParameters(linear_solver_type="iterative")
        krylov = KrylovParameters(
            relative_tolerance=1e-30,
            absolute_tolerance=0.0,
            maximum_iterations=1,
            restart=1,
            drop_tolerance=0.5,
            fill_factor=1.0,
        )
        operator = BidomainOperator(self.mesh, self.dt, params, krylov).assemble()
        vtilde = -83.0 + 100.0*np.random.rand(operator.num_dofs)
        with pytest.raises(SolverError) as e:
            operator.solve(operator.rhs(vtilde, {}), time=0.3)
        assert e.value.time == 0.3
        assert e.value.iterations is not None

    @fast
    def test_assemble_once(self):
        operator = BidomainOperator(self.mesh, self.dt)
        assert not operator.assembled
        with pytest.raises(RuntimeError):
            operator.solve(np.zeros(2*self.mesh.num_cells + 1))
        operator.assemble()
        matrix = operator.matrix
        assert operator.assemble().matrix is matrix

    @fast
    @parametrize("kwargs", [
        {"intracellular_conductivity": (1.0, 1.0)},
        {"extracellular_conductivity": (1.0, -1.0, 1.0)},
        {"linear_solver_type": "cholesky"},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ConfigurationError):
            BidomainOperator(self.mesh, self.dt, BidomainParameters()._replace(**kwargs))

    @fast
    def test_invalid_time_step(self):
        with pytest.raises(ConfigurationError):
            BidomainOperator(self.mesh, 0.0)


class TestEMIOperator:
    """Test the assembled EMI system on two coupled myocytes."""

    def setup_method(self):
        self.geometry = EMIGeometry((2, 1, 1), (3, 2, 2), (0.01, 0.01, 0.01))
        self.dt = 0.1
        self.params = EMIParameters()

    @fast
    def test_dofs(self):
        operator = EMIOperator(self.geometry, self.dt)
        assert operator.num_dofs == self.geometry.membrane_facets().a.size
        assert operator.num_gap_dofs == 1
        assert operator.transmembrane_coordinates().shape == (operator.num_dofs, 3)
        fields = operator.initial_fields(np.full(operator.num_dofs, -83.0))
        assert set(fields) == {"V", "W"}
        assert fields["W"].shape == (1,)

    @fast
    def test_uniform_potential_is_preserved(self):
        operator = EMIOperator(self.geometry, self.dt).assemble()
        vtilde = np.full(operator.num_dofs, -83.0)
        fields = operator.initial_fields(vtilde)
        solution = operator.solve(operator.rhs(vtilde, fields))
        result = operator.extract(solution)
        assert_almost_equal(result["V"], vtilde, 1e-6)
        assert_almost_equal(result["W"], np.zeros(1), 1e-6)

        bulk = operator.bulk_potential(solution)
        intracellular = self.geometry.intracellular
        assert_almost_equal(bulk[intracellular], np.full(np.count_nonzero(intracellular), -83.0), 1e-6)
        assert_almost_equal(bulk[~intracellular], np.zeros(np.count_nonzero(~intracellular)), 1e-6)

    @fast
    def test_rejects_applied_current(self):
        operator = EMIOperator(self.geometry, self.dt)
        assert not operator.supports_applied_current
        vtilde = np.full(operator.num_dofs, -83.0)
        with pytest.raises(ConfigurationError):
            operator.rhs(vtilde, operator.initial_fields(vtilde), np.zeros(operator.num_dofs))

    @fast
    def test_facet_geometry(self):
        operator = EMIOperator(self.geometry, self.dt)
        facets = self.geometry.membrane_facets()
        assert np.array_equal(operator.membrane_orientation(), facets.orientation)
        assert operator.gap_coordinates().shape == (1, 3)

    @fast
    def test_membrane_charge_is_conserved(self):
        operator = EMIOperator(self.geometry, self.dt).assemble()
        vtilde = -83.0 + 100.0*np.random.rand(operator.num_dofs)
        fields = operator.initial_fields(vtilde)
        v = operator.extract(operator.solve(operator.rhs(vtilde, fields)))["V"]

        facets = self.geometry.membrane_facets()
        charge = facets.area*self.params.membrane_capacitance
        assert_almost_equal(np.sum(charge*v), np.sum(charge*vtilde), 1e-12)

    @fast
    def test_gap_potential_follows_intracellular_difference(self):
        operator = EMIOperator(self.geometry, self.dt).assemble()
        facets = self.geometry.membrane_facets()
        first = self.geometry.labels[facets.a] == self.geometry.cell_tag(0, 0, 0)
        vtilde = np.where(first, -20.0, -83.0)

        fields = operator.initial_fields(vtilde)
        result = operator.extract(operator.solve(operator.rhs(vtilde, fields)))
        assert result["W"][0] > 0.0

    @fast
    def test_without_gap_junctions(self):
        geometry = EMIGeometry((1, 1, 1), (3, 2, 2), (0.01, 0.01, 0.01))
        operator = EMIOperator(geometry, self.dt).assemble()
        assert operator.num_gap_dofs == 0
        vtilde = np.full(operator.num_dofs, -60.0)
        result = operator.extract(operator.solve(operator.rhs(vtilde, operator.initial_fields(vtilde))))
        assert_almost_equal(result["V"], vtilde, 1e-6)
        assert result["W"].size == 0

    @fast
    def test_capacitance_per_orientation(self):
        params = self.params._replace(membrane_capacitance=(0.01, 0.01, 0.02, 0.02, 0.03, 0.03))
        operator = EMIOperator(self.geometry, self.dt, params).assemble()
        vtilde = -83.0 + 100.0*np.random.rand(operator.num_dofs)
        v = operator.extract(operator.solve(operator.rhs(vtilde, operator.initial_fields(vtilde))))["V"]

        facets = self.geometry.membrane_facets()
        charge = facets.area*np.array(params.membrane_capacitance)[facets.orientation]
        assert_almost_equal(np.sum(charge*v), np.sum(charge*vtilde), 1e-12)

    @fast
    @parametrize("kwargs", [
        {"membrane_capacitance": (0.01, 0.01)},
        {"gap_resistance": 0.0},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ConfigurationError):
            EMIOperator(self.geometry, self.dt, self.params._replace(**kwargs))

    @fast
    def test_assemble_dispatch(self):
        assert isinstance(assemble(self.geometry, self.params, self.dt), EMIOperator)
        assert isinstance(assemble(small_mesh(), BidomainParameters(), self.dt), BidomainOperator)
        with pytest.raises(ConfigurationError):
            assemble(small_mesh(), self.params, self.dt)
        with pytest.raises(ConfigurationError):
            assemble(self.geometry, BidomainParameters(), self.dt)
