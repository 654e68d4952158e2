"""
Unit tests for DOF classification, interface gluing and elimination.
"""

import pytest
import numpy as np
from numpy.testing import assert_array_equal, assert_array_almost_equal

from adaptIGA.assembly.sparse_system import estimate_nnz_per_row
from adaptIGA.discretization.boundary import (
    BoundaryConditions, DirichletStrategy, InterfaceStrategy, Side
)
from adaptIGA.discretization.dof_mapper import DofMapper, match_interface
from adaptIGA.discretization.knot_vector import make_uniform_knot_vector
from adaptIGA.discretization.multibasis import MultiBasis
from adaptIGA.errors import (
    ConfigurationError, NonConformingInterfaceError, StaleBasisError, UnmappedDofError
)
from adaptIGA.geometry import MultiPatch, NURBSSurface, make_l_shape, make_nurbs_unit_square
from adaptIGA.geometry.bspline import TensorBSplineBasis


def square_bases(p=2, n_elem=2, hierarchical=False):
    patches = MultiPatch.single(make_nurbs_unit_square(p=p, n_elem_xi=n_elem, n_elem_eta=n_elem))
    return patches, MultiBasis.from_geometry(patches, hierarchical=hierarchical)


def l_shape_bases(p=2, hierarchical=False, initial_refinements=0):
    patches = make_l_shape(p=p, n_elem=1)
    return patches, MultiBasis.from_geometry(patches, hierarchical=hierarchical,
                                             initial_refinements=initial_refinements)


class TestSinglePatch:
    """Classification on the unit square."""

    def test_no_conditions_all_free(self):
        """Without Dirichlet sides every function is free."""
        _, bases = square_bases()
        mapper = DofMapper.build(bases)

        assert mapper.n_free == 16
        assert mapper.n_eliminated == 0
        assert mapper.size == mapper.n_raw == 16

    def test_all_dirichlet_excludes_boundary(self):
        """Only the 2x2 interior functions stay free."""
        patches, bases = square_bases()
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0)
        mapper = DofMapper.build(bases, bcs)

        assert mapper.n_free == 4
        assert mapper.n_eliminated == 12
        assert_array_equal(np.flatnonzero(mapper.free_mask()), [5, 6, 9, 10])
        assert len(mapper.boundary_indices()) == 12

    def test_numbering_by_first_appearance(self):
        """Free functions and eliminated slots are numbered in patch order."""
        patches, bases = square_bases()
        mapper = DofMapper.build(bases, BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0))

        assert mapper.global_index(5) == 0
        assert mapper.global_index(10) == 3
        assert mapper.eliminated_slot(0) == 0
        assert mapper.index(0) == mapper.n_free
        assert mapper.index(15) == mapper.n_free + mapper.n_eliminated - 1
        assert_array_equal(mapper.indices([5, 6]), [0, 1])

    def test_nitsche_keeps_boundary_free(self):
        """Weakly imposed conditions eliminate nothing."""
        patches, bases = square_bases()
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0)
        mapper = DofMapper.build(bases, bcs, dirichlet_strategy=DirichletStrategy.NITSCHE)

        assert mapper.n_free == 16
        assert mapper.n_eliminated == 0

    def test_single_side(self):
        """Eliminating the west side removes one column of functions."""
        _, bases = square_bases()
        bcs = BoundaryConditions().add(0, "west", "dirichlet", 0.0)
        mapper = DofMapper.build(bases, bcs)

        assert mapper.n_eliminated == 4
        for i in (0, 4, 8, 12):
            assert not mapper.is_free(i)
        assert mapper.is_free(1)

    def test_neumann_sides_not_eliminated(self):
        """Natural conditions do not touch the classification."""
        _, bases = square_bases()
        bcs = BoundaryConditions().add(0, "east", "neumann", 1.0)
        assert DofMapper.build(bases, bcs).n_eliminated == 0


class TestMapperErrors:
    """Lookups that cannot be answered."""

    def test_global_index_of_eliminated(self):
        """Eliminated functions have no free index."""
        patches, bases = square_bases()
        mapper = DofMapper.build(bases, BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0))

        with pytest.raises(UnmappedDofError):
            mapper.global_index(0)

    def test_eliminated_slot_of_free(self):
        """Free functions have no eliminated slot."""
        patches, bases = square_bases()
        mapper = DofMapper.build(bases, BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0))

        with pytest.raises(UnmappedDofError):
            mapper.eliminated_slot(5)

    def test_out_of_range(self):
        """Unknown patches and function indices are reported."""
        _, bases = square_bases()
        mapper = DofMapper.build(bases)

        with pytest.raises(UnmappedDofError):
            mapper.index(16)
        with pytest.raises(UnmappedDofError):
            mapper.index(0, patch=1)
        with pytest.raises(UnmappedDofError):
            mapper.indices([0, -1])

    def test_finalized_mapper_is_frozen(self):
        """Gluing or eliminating after finalize() is a configuration error."""
        mapper = DofMapper([3, 3])
        mapper.finalize()

        with pytest.raises(ConfigurationError):
            mapper.eliminate(0, [0])
        with pytest.raises(ConfigurationError):
            mapper.glue(0, 0, 1, 0)

    def test_stale_basis(self):
        """A mapper built before refinement rejects the refined basis."""
        _, bases = square_bases(hierarchical=True)
        mapper = DofMapper.build(bases)
        mapper.check_basis(bases)

        bases.uniform_refine()
        with pytest.raises(StaleBasisError):
            mapper.check_basis(bases)


class TestVectors:
    """Expansion to and reduction from full coefficient vectors."""

    def test_expand_places_values(self):
        """Free values go to interior functions, eliminated values to the boundary."""
        patches, bases = square_bases()
        mapper = DofMapper.build(bases, BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0))
        free = np.array([1.0, 2.0, 3.0, 4.0])
        eliminated = np.arange(12, dtype=float) + 10.0

        full = mapper.expand(free, eliminated)

        assert full.shape == (16,)
        assert_array_almost_equal(full[[5, 6, 9, 10]], free)
        assert full[0] == 10.0
        assert full[15] == 21.0

    def test_expand_default_zero(self):
        """Missing eliminated values are zero."""
        patches, bases = square_bases()
        mapper = DofMapper.build(bases, BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0))
        full = mapper.expand(np.ones(4))

        assert full.sum() == 4.0
        assert_array_almost_equal(full[mapper.boundary_indices()], 0.0)

    def test_reduce_inverts_expand(self):
        """reduce() and eliminated_part() recover both parts."""
        patches, bases = square_bases()
        mapper = DofMapper.build(bases, BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0))
        free = np.array([0.5, -1.0, 2.0, 0.25])
        eliminated = np.linspace(0.0, 1.0, 12)

        full = mapper.expand(free, eliminated)
        assert_array_almost_equal(mapper.reduce(full), free)
        assert_array_almost_equal(mapper.eliminated_part(full), eliminated)

    def test_wrong_lengths(self):
        """Vectors of the wrong size are rejected."""
        _, bases = square_bases()
        mapper = DofMapper.build(bases)

        with pytest.raises(ValueError):
            mapper.expand(np.zeros(3))
        with pytest.raises(ValueError):
            mapper.reduce(np.zeros(3))

    def test_selection_and_restriction(self):
        """R P is the identity on the free DOFs."""
        patches, bases = square_bases()
        mapper = DofMapper.build(bases, BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0))
        P = mapper.selection_matrix()
        R = mapper.restriction_matrix()

        assert P.shape == (16, 4)
        assert R.shape == (4, 16)
        assert_array_almost_equal((R @ P).toarray(), np.eye(4))


class TestInterfaces:
    """Gluing of the L-shaped domain."""

    def test_glued_functions_counted_once(self):
        """Two interfaces of three functions each: 27 - 6 distinct functions."""
        _, bases = l_shape_bases()
        mapper = DofMapper.build(bases)

        assert mapper.n_raw == 27
        assert mapper.n_free == 21

    def test_no_gluing(self):
        """InterfaceStrategy.NONE keeps the patches independent."""
        _, bases = l_shape_bases()
        mapper = DofMapper.build(bases, interface_strategy=InterfaceStrategy.NONE)
        assert mapper.n_free == 27

    def test_glued_pairs_share_index(self):
        """Matching functions on both sides of an interface map to one DOF."""
        _, bases = l_shape_bases()
        mapper = DofMapper.build(bases)

        # patch 0 SOUTH row (0, 1, 2) meets patch 1 NORTH row (6, 7, 8)
        for i0, i1 in ((0, 6), (1, 7), (2, 8)):
            assert mapper.index(i0, patch=0) == mapper.index(i1, patch=1)
        # patch 1 EAST column (2, 5, 8) meets patch 2 WEST column (0, 3, 6)
        for i1, i2 in ((2, 0), (5, 3), (8, 6)):
            assert mapper.index(i1, patch=1) == mapper.index(i2, patch=2)
        assert mapper.index(4, patch=0) != mapper.index(4, patch=1)

    def test_all_dirichlet_l_shape(self):
        """Three patch interiors plus two interface midpoints stay free."""
        patches, bases = l_shape_bases()
        bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0)
        mapper = DofMapper.build(bases, bcs)

        assert mapper.n_free == 5
        assert mapper.n_eliminated == 16
        # the corner at the origin lies on the outer boundary
        assert not mapper.is_free(2, patch=0)
        assert mapper.is_free(1, patch=0)
        assert mapper.is_free(7, patch=1)

    def test_expand_glued_copies(self):
        """Both copies of a glued function receive the same value."""
        _, bases = l_shape_bases()
        mapper = DofMapper.build(bases)
        full = mapper.expand(np.arange(mapper.n_free, dtype=float))
        offsets = bases.offsets()

        assert full[offsets[0] + 1] == full[offsets[1] + 7]
        assert full[offsets[1] + 5] == full[offsets[2] + 3]

    def test_refined_interface_stays_conforming(self):
        """Refining next to an interface refines the neighbour as well."""
        _, bases = l_shape_bases(hierarchical=True, initial_refinements=1)
        marks = np.zeros(bases.total_elements(), dtype=bool)
        marks[0] = True  # patch 0, cell touching the interface with patch 1
        bases.refine(marks)

        assert bases[0].max_level == 1
        assert bases[1].max_level == 1
        assert bases[2].max_level == 0
        assert bases.total_elements() == 18

        mapper = DofMapper.build(bases)
        assert mapper.size < mapper.n_raw

    def test_initial_refinements_stay_on_level_zero(self):
        """Uniform refinement refines the knots instead of adding levels."""
        _, bases = l_shape_bases(hierarchical=True, initial_refinements=2)

        assert bases.max_level() == 0
        assert bases.total_elements() == 48
        assert estimate_nnz_per_row(bases) == 81
        # 3 x 36 functions, two interfaces of 6 glued pairs each
        assert DofMapper.build(bases).n_free == 96


class TestReversedInterface:
    """Gluing of sides parametrized in opposite directions."""

    def test_single_elements(self):
        """Two bilinear squares share two functions across the flipped side."""
        left = make_nurbs_unit_square(p=1, n_elem_xi=1, n_elem_eta=1)
        right = NURBSSurface(*left.knot_vectors,
                             np.array([[1.0, 1.0], [2.0, 1.0], [1.0, 0.0], [2.0, 0.0]]))
        bases = MultiBasis.from_geometry(MultiPatch([left, right]), hierarchical=False)
        mapper = DofMapper.build(bases)

        assert mapper.n_raw == 8
        assert mapper.n_free == 6
        assert mapper.index(1, 0) == mapper.index(2, 1)
        assert mapper.index(3, 0) == mapper.index(0, 1)

    def test_glued_counts(self, reversed_patches):
        bases = MultiBasis.from_geometry(reversed_patches, hierarchical=False)
        bcs = BoundaryConditions.all_dirichlet(reversed_patches.boundaries(), 0.0)

        assert DofMapper.build(bases).n_free == 28
        assert DofMapper.build(bases, bcs).n_free == 10

    def test_refinement_mirrored(self, reversed_patches):
        """A cell at the bottom of the left side refines the top of the right side."""
        bases = MultiBasis.from_geometry(reversed_patches)
        marks = np.zeros(bases.total_elements(), dtype=bool)
        marks[1] = True  # patch 0, cell (1, 0) on the east side
        bases.refine(marks)

        assert bases[1].refined_cells(0) == {(0, 1)}
        mapper = DofMapper.build(bases)
        assert mapper.size == mapper.n_raw - len(bases[0].boundary_functions(Side.EAST))


class TestMatchInterface:
    """Pairing of side traces."""

    def test_conforming_pairs(self):
        """Equal traces pair up in order."""
        kv = make_uniform_knot_vector(n_elements=2, degree=2)
        a = TensorBSplineBasis(kv, kv)
        b = TensorBSplineBasis(kv, kv)
        pairs = match_interface(a.side_trace(Side.EAST), b.side_trace(Side.WEST))

        assert pairs == [(3, 0), (7, 4), (11, 8), (15, 12)]

    def test_reversed_pairs(self):
        """A reversed interface pairs the ends crosswise."""
        kv = make_uniform_knot_vector(n_elements=1, degree=1)
        a = TensorBSplineBasis(kv, kv)
        b = TensorBSplineBasis(kv, kv)
        pairs = match_interface(a.side_trace(Side.EAST), b.side_trace(Side.WEST), reversed_=True)

        assert sorted(pairs) == [(1, 2), (3, 0)]

    def test_non_conforming(self):
        """Non-nested element counts cannot be glued."""
        kv_one = make_uniform_knot_vector(n_elements=1, degree=2)
        kv_three = make_uniform_knot_vector(n_elements=3, degree=2)
        a = TensorBSplineBasis(kv_one, kv_one)
        b = TensorBSplineBasis(kv_three, kv_three)

        with pytest.raises(NonConformingInterfaceError):
            match_interface(a.side_trace(Side.EAST), b.side_trace(Side.WEST))

    def test_degree_mismatch(self):
        """Traces of different degree do not match."""
        kv2 = make_uniform_knot_vector(n_elements=1, degree=2)
        kv1 = make_uniform_knot_vector(n_elements=1, degree=1)

        with pytest.raises(NonConformingInterfaceError):
            match_interface(TensorBSplineBasis(kv2, kv2).side_trace(Side.EAST),
                            TensorBSplineBasis(kv1, kv1).side_trace(Side.WEST))
