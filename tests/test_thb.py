#!/usr/bin/env python3
"""
Tests for THB-splines (Truncated Hierarchical B-splines).

Covers the level hierarchy, function selection and truncation, the
hierarchical extraction operators and the exact coefficient transfer
returned by refinement.
"""

import numpy as np
import pytest
from numpy.testing import assert_array_almost_equal, assert_almost_equal, assert_array_equal

from adaptIGA.discretization.knot_vector import make_uniform_knot_vector
from adaptIGA.discretization.boundary import Side
from adaptIGA.errors import ConfigurationError
from adaptIGA.geometry.thb import THBHierarchy1D, THBHierarchy2D, THBBasis


POINTS = np.array([[0.1, 0.1], [0.5, 0.5], [0.9, 0.3], [0.25, 0.75]])


def make_thb(n_elem=4, p=2):
    kv = make_uniform_knot_vector(n_elem, p)
    return THBBasis(kv, kv)


def field_values(basis, coefficients, params):
    """Evaluate sum_k c_k N_k at parametric points."""
    out = []
    for xi, eta in params:
        element = basis.locate(xi, eta)
        t = element.parametric_to_reference(np.array([[xi, eta]]))
        values = basis.evaluate(element, t, n_ders=0)[0][:, 0]
        out.append(coefficients[element.function_ids] @ values)
    return np.array(out)


class TestTHBHierarchy1D:
    """Tests for the 1D level hierarchy."""

    def test_creation_from_knot_vector(self):
        hierarchy = THBHierarchy1D.from_knot_vector(make_uniform_knot_vector(4, 2))

        assert hierarchy.degree == 2
        assert hierarchy.n_levels == 1
        assert hierarchy.get_n_elements(0) == 4

    def test_add_level(self):
        """Each level halves every span."""
        hierarchy = THBHierarchy1D.from_knot_vector(make_uniform_knot_vector(4, 2))
        hierarchy.add_level()

        assert hierarchy.n_levels == 2
        assert hierarchy.get_n_elements(1) == 8
        assert hierarchy.get_n_basis(1) == 10
        assert hierarchy.refinement_matrices[0].shape == (10, 6)

    def test_ensure_level(self):
        hierarchy = THBHierarchy1D.from_knot_vector(make_uniform_knot_vector(2, 3))
        hierarchy.ensure_level(3)

        assert hierarchy.n_levels == 4
        assert hierarchy.get_n_elements(3) == 16

    def test_support_elements(self):
        hierarchy = THBHierarchy1D.from_knot_vector(make_uniform_knot_vector(4, 2))
        first, last = hierarchy.support_elements(0)

        assert_array_equal(first, [0, 0, 0, 1, 2, 3])
        assert_array_equal(last, [0, 1, 2, 3, 3, 3])


class TestTHBHierarchy2D:
    """Tests for the tensor-product hierarchy."""

    def test_tensor_index_conversion(self):
        hierarchy = THBHierarchy2D.from_knot_vectors(make_uniform_knot_vector(2, 2),
                                                     make_uniform_knot_vector(3, 2))

        assert hierarchy.get_n_basis_per_dir(0) == (4, 5)
        for idx in range(hierarchy.get_n_basis(0)):
            a, b = hierarchy.global_to_tensor(0, idx)
            assert hierarchy.tensor_to_global(0, a, b) == idx

    def test_refinement_matrix(self):
        """The bivariate refinement matrix preserves the partition of unity."""
        hierarchy = THBHierarchy2D.from_knot_vectors(make_uniform_knot_vector(2, 2),
                                                     make_uniform_knot_vector(2, 2))
        A = hierarchy.refinement_matrix(0)

        assert A.shape == (36, 16)
        assert_array_almost_equal(np.asarray(A.sum(axis=1)).ravel(), np.ones(36))


class TestTHBBasis:
    """Tests for selection, truncation and elements of THBBasis."""

    def test_unrefined_matches_tensor_basis(self):
        basis = make_thb(n_elem=4, p=2)

        assert basis.total_functions() == 36
        assert basis.total_elements() == 16
        assert basis.max_level == 0
        assert basis.function_record(7) == (0, 1, 1)
        assert basis.function_index(0, 1, 1) == 7

    def test_local_refinement_counts(self):
        """Refining the corner cell swaps one coarse function for four fine ones."""
        basis = make_thb(n_elem=4, p=2)
        marks = np.zeros(16, dtype=bool)
        marks[0] = True
        basis.refine(marks)

        assert basis.max_level == 1
        assert basis.total_elements() == 19
        assert basis.total_functions() == 39
        assert basis.function_index(0, 0, 0) is None
        assert basis.function_index(1, 1, 1) is not None
        assert basis.levels_summary() == [(15, 35), (4, 4)]

    def test_partition_of_unity_after_refinement(self):
        """Truncated functions still sum to one on every element."""
        basis = make_thb(n_elem=4, p=2)
        basis.refine_cells(0, [(1, 1), (2, 1), (1, 2)])
        basis.refine_cells(1, [(2, 2), (3, 3)])

        assert basis.max_level == 2
        ref_points = np.array([[0.2, 0.3], [0.5, 0.5], [0.8, 0.9]])
        for element in basis.elements():
            values, grads = basis.evaluate(element, ref_points)
            assert_array_almost_equal(values.sum(axis=0), 1.0)
            assert_array_almost_equal(grads.sum(axis=0), 0.0)
            assert np.all(values >= -1e-12)

    def test_elements_cover_domain(self):
        basis = make_thb(n_elem=2, p=3)
        basis.refine_cells(0, [(0, 0)])
        basis.refine_cells(1, [(0, 0), (1, 1)])

        area = sum(e.det_jacobian_ref_to_param() for e in basis.elements())
        assert_almost_equal(area, 1.0)
        assert [e.index for e in basis.elements()] == list(range(basis.total_elements()))

    def test_elements_ordered_by_level(self):
        basis = make_thb(n_elem=2, p=2)
        basis.refine_cells(0, [(1, 0)])

        levels = [e.level for e in basis.elements()]
        assert levels == sorted(levels)

    def test_locate_prefers_finest_active_cell(self):
        basis = make_thb(n_elem=2, p=2)
        basis.refine_cells(0, [(0, 0)])

        element = basis.locate(0.1, 0.1)
        assert (element.level, element.cell) == (1, (0, 0))
        assert basis.locate(0.9, 0.9).level == 0

    def test_refine_inactive_cell(self):
        basis = make_thb(n_elem=2, p=2)
        basis.refine_cells(0, [(0, 0)])

        with pytest.raises(ConfigurationError):
            basis.refine_cells(0, [(0, 0)])
        with pytest.raises(ConfigurationError):
            basis.refine_cells(1, [(3, 3)])
        with pytest.raises(ConfigurationError):
            basis.refine_cells(4, [(0, 0)])

    def test_children(self):
        """The corner function refines into the four corner functions of level 1."""
        basis = make_thb(n_elem=2, p=2)
        assert sorted(basis.children(0, 0, 0)) == [(0, 0), (0, 1), (1, 0), (1, 1)]

    def test_generation_bumped_by_refinement(self):
        basis = make_thb(n_elem=2, p=2)
        generation = basis.generation
        basis.refine_cells(0, [(0, 0)])
        assert basis.generation == generation + 1


class TestTHBTransfer:
    """Tests for the coefficient transfer of refinement."""

    def test_transfer_preserves_function(self):
        """Old and transferred coefficients describe the same function."""
        basis = make_thb(n_elem=4, p=2)
        rng = np.random.default_rng(0)
        old = rng.standard_normal(basis.total_functions())
        params = np.array([[0.05, 0.1], [0.3, 0.2], [0.6, 0.6], [0.95, 0.4]])
        before = field_values(basis, old, params)

        marks = np.zeros(basis.total_elements(), dtype=bool)
        marks[[0, 1, 5]] = True
        T = basis.refine(marks)

        assert T.shape == (basis.total_functions(), 36)
        assert_array_almost_equal(field_values(basis, T @ old, params), before)

    def test_transfer_of_constant(self):
        """A constant stays a constant: T maps ones to ones."""
        basis = make_thb(n_elem=2, p=3)
        basis.refine_cells(0, [(0, 0)])
        n_old = basis.total_functions()
        marks = np.zeros(basis.total_elements(), dtype=bool)
        marks[0] = True
        T = basis.refine(marks)

        assert_array_almost_equal(T @ np.ones(n_old), np.ones(basis.total_functions()))

    def test_uniform_refine(self):
        """Refining every cell refines level 0 itself; no level is added."""
        basis = make_thb(n_elem=4, p=2)
        T = basis.uniform_refine()

        assert basis.total_functions() == 100
        assert basis.total_elements() == 64
        assert basis.max_level == 0
        assert all(e.level == 0 for e in basis.elements())
        assert basis.knot_vectors[0].n_elements == 8
        assert T.shape == (100, 36)

    def test_uniform_refine_keeps_levels(self):
        """A locally refined basis keeps its levels, each on finer knots."""
        basis = make_thb(n_elem=2, p=2)
        basis.refine_cells(0, [(0, 0)])
        rng = np.random.default_rng(1)
        old = rng.standard_normal(basis.total_functions())
        params = np.array([[0.05, 0.1], [0.2, 0.4], [0.6, 0.6], [0.95, 0.9]])
        before = field_values(basis, old, params)

        T = basis.uniform_refine()

        assert basis.max_level == 1
        assert basis.refined_cells(0) == {(0, 0), (1, 0), (0, 1), (1, 1)}
        assert basis.levels_summary()[1][0] == 16
        assert_array_almost_equal(field_values(basis, T @ old, params), before)

    def test_repeated_uniform_refine_transfer(self):
        """Transfers of successive uniform refinements compose exactly."""
        basis = make_thb(n_elem=2, p=3)
        rng = np.random.default_rng(2)
        old = rng.standard_normal(basis.total_functions())
        params = np.array([[0.1, 0.7], [0.45, 0.3], [0.99, 0.01]])
        before = field_values(basis, old, params)

        coeffs = basis.uniform_refine() @ old
        coeffs = basis.uniform_refine() @ coeffs

        assert basis.max_level == 0
        assert basis.total_elements() == 64
        assert_array_almost_equal(field_values(basis, coeffs, params), before)

    def test_no_refinement_is_identity(self):
        basis = make_thb(n_elem=2, p=2)
        T = basis.refine(np.zeros(4, dtype=bool))
        assert_array_almost_equal(T.toarray(), np.eye(16))


class TestTHBSideTrace:
    """Tests for boundary traces."""

    def test_unrefined_trace(self):
        basis = make_thb(n_elem=2, p=2)
        ids, kv, S = basis.side_trace(Side.WEST)

        assert_array_equal(ids, [0, 4, 8, 12])
        assert kv.n_basis == 4
        assert_array_almost_equal(S.toarray(), np.eye(4))

    def test_refined_trace_partition_of_unity(self):
        """Traces of the active functions sum to one along the side."""
        basis = make_thb(n_elem=2, p=2)
        basis.refine_cells(0, [(0, 0)])
        ids, kv, S = basis.side_trace(Side.SOUTH)

        assert S.shape == (len(ids), kv.n_basis)
        assert_array_almost_equal(np.asarray(S.sum(axis=0)).ravel(), np.ones(kv.n_basis))

    def test_refined_on_side(self):
        basis = make_thb(n_elem=2, p=2)
        basis.refine_cells(0, [(1, 0), (1, 1)])

        assert basis.refined_on_side(0, Side.EAST) == [0, 1]
        assert basis.refined_on_side(0, Side.WEST) == []
        assert basis.n_cells_along(1, Side.NORTH) == 4
