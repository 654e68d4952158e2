"""
Unit tests for NURBS geometry and multi-patch domains.
"""

import pytest
import numpy as np
from numpy.testing import assert_array_almost_equal, assert_almost_equal

from adaptIGA.discretization.knot_vector import make_open_knot_vector
from adaptIGA.discretization.boundary import Side
from adaptIGA.errors import ConfigurationError, GeometryMismatchError
from adaptIGA.geometry.nurbs import NURBSSurface
from adaptIGA.geometry.multipatch import MultiPatch, Interface, side_parameters
from adaptIGA.geometry.primitives import (
    make_nurbs_unit_square, make_nurbs_rectangle, make_nurbs_quarter_annulus, make_l_shape
)


class TestNURBSSurface:
    """Tests for NURBS surfaces."""

    def test_unit_square_identity_mapping(self):
        """The unit square maps (xi, eta) -> (xi, eta)."""
        surface = make_nurbs_unit_square(p=2, n_elem_xi=2, n_elem_eta=2)

        for xi in [0.0, 0.25, 0.5, 0.75, 1.0]:
            for eta in [0.0, 0.25, 0.5, 0.75, 1.0]:
                assert_array_almost_equal(surface.eval_point((xi, eta)), [xi, eta], decimal=10)

    def test_unit_square_jacobian(self):
        """The unit square has identity Jacobian."""
        surface = make_nurbs_unit_square(p=2, n_elem_xi=2, n_elem_eta=2)

        for xi in [0.25, 0.5, 0.75]:
            for eta in [0.25, 0.5, 0.75]:
                S, dS_dxi, dS_deta = surface.eval_derivatives((xi, eta))
                assert_array_almost_equal(dS_dxi, [1.0, 0.0])
                assert_array_almost_equal(dS_deta, [0.0, 1.0])

    def test_rectangle(self):
        """Corners and center of a rectangle."""
        surface = make_nurbs_rectangle(x_range=(0.0, 2.0), y_range=(0.0, 3.0),
                                       p=2, n_elem_xi=2, n_elem_eta=2)

        assert_array_almost_equal(surface.eval_point((0.0, 0.0)), [0.0, 0.0])
        assert_array_almost_equal(surface.eval_point((1.0, 0.0)), [2.0, 0.0])
        assert_array_almost_equal(surface.eval_point((0.0, 1.0)), [0.0, 3.0])
        assert_array_almost_equal(surface.eval_point((1.0, 1.0)), [2.0, 3.0])
        assert_array_almost_equal(surface.eval_point((0.5, 0.5)), [1.0, 1.5])

    def test_surface_properties(self):
        surface = make_nurbs_unit_square(p=2, n_elem_xi=4, n_elem_eta=3)

        assert surface.n_dim_parametric == 2
        assert surface.n_dim_physical == 2
        assert surface.degrees == (2, 2)
        assert surface.n_control_points_per_dir == (6, 5)
        assert surface.n_control_points == 30
        assert surface.domain == ((0.0, 1.0), (0.0, 1.0))
        assert not surface.is_rational

    def test_control_points_grid(self):
        surface = make_nurbs_unit_square(p=2, n_elem_xi=2, n_elem_eta=2)

        grid = surface.control_points_grid
        assert grid.shape == (4, 4, 2)
        assert_array_almost_equal(grid[0, 0], [0.0, 0.0])
        assert_array_almost_equal(grid[-1, -1], [1.0, 1.0])

    def test_weights_default_to_one(self):
        surface = make_nurbs_unit_square(p=2, n_elem_xi=2, n_elem_eta=2)
        assert_array_almost_equal(surface.weights, np.ones(surface.n_control_points))

    def test_control_point_count_mismatch(self):
        kv = make_open_knot_vector(n_basis=3, degree=2)
        with pytest.raises(GeometryMismatchError):
            NURBSSurface(kv, kv, np.zeros((8, 2)))

    def test_non_positive_weights(self):
        kv = make_open_knot_vector(n_basis=2, degree=1)
        with pytest.raises(GeometryMismatchError):
            NURBSSurface(kv, kv, np.zeros((4, 2)), np.array([1.0, 0.0, 1.0, 1.0]))


class TestRationalGeometry:
    """Tests for the exact quarter annulus."""

    def test_points_on_circles(self):
        """Inner and outer sides lie on exact circles."""
        surface = make_nurbs_quarter_annulus(1.0, 2.0)
        assert surface.is_rational

        for xi in np.linspace(0.0, 1.0, 7):
            inner = surface.eval_point((xi, 0.0))
            outer = surface.eval_point((xi, 1.0))
            assert_almost_equal(np.hypot(*inner), 1.0, decimal=12)
            assert_almost_equal(np.hypot(*outer), 2.0, decimal=12)

    def test_second_derivatives_of_affine_map(self):
        """An affine map has zero second derivatives."""
        surface = make_nurbs_rectangle((0.0, 2.0), (1.0, 2.0), p=2, n_elem_xi=2, n_elem_eta=1)
        points, J, H = surface.eval_mapping(np.array([[0.3, 0.4], [0.8, 0.1]]), second=True)

        assert_array_almost_equal(J[0], [[2.0, 0.0], [0.0, 1.0]])
        assert_array_almost_equal(H, 0.0)

    def test_second_derivatives_finite_difference(self):
        """Rational second derivatives agree with differences of the Jacobian."""
        surface = make_nurbs_quarter_annulus(1.0, 2.0)
        x0 = np.array([[0.4, 0.3]])
        h = 1e-6
        _, _, H = surface.eval_mapping(x0, second=True)
        _, J_plus = surface.eval_mapping(x0 + [h, 0.0])
        _, J_minus = surface.eval_mapping(x0 - [h, 0.0])

        assert_array_almost_equal(H[0, :, :, 0], (J_plus[0] - J_minus[0]) / (2 * h), decimal=5)


class TestMultiPatch:
    """Tests for multi-patch topology."""

    def test_single_patch(self):
        patches = MultiPatch.single(make_nurbs_unit_square(p=1, n_elem_xi=1, n_elem_eta=1))

        assert patches.n_patches == 1
        assert patches.interfaces == []
        assert len(patches.boundaries()) == 4

    def test_l_shape_interfaces(self, l_shape_patches):
        """The L-shape has two conforming interfaces and eight boundary sides."""
        patches = l_shape_patches

        assert len(patches) == 3
        found = {frozenset(iface.sides()) for iface in patches.interfaces}
        assert found == {
            frozenset({(0, Side.SOUTH), (1, Side.NORTH)}),
            frozenset({(1, Side.EAST), (2, Side.WEST)}),
        }
        assert not any(iface.reversed for iface in patches.interfaces)
        assert len(patches.boundaries()) == 8
        assert patches.is_boundary(0, Side.EAST)
        assert not patches.is_boundary(2, Side.WEST)

    def test_reversed_interface(self):
        """Opposite tangential orientation is detected."""
        left = make_nurbs_unit_square(p=1, n_elem_xi=1, n_elem_eta=1)
        # second square on [1,2]x[0,1] with eta pointing down
        cps = np.array([[1.0, 1.0], [2.0, 1.0], [1.0, 0.0], [2.0, 0.0]])
        right = NURBSSurface(*left.knot_vectors, cps)
        patches = MultiPatch([left, right])

        assert len(patches.interfaces) == 1
        iface = patches.interfaces[0]
        assert (iface.patch_a, iface.side_a, iface.patch_b, iface.side_b) == (0, Side.EAST, 1, Side.WEST)
        assert iface.reversed
        assert len(patches.boundaries()) == 6

    def test_reversed_interface_refined(self, reversed_patches):
        """Interior sample points are matched from the opposite end."""
        assert len(reversed_patches.interfaces) == 1
        assert reversed_patches.interfaces[0].reversed
        assert not reversed_patches.is_boundary(1, Side.WEST)

        t = np.array([0.2, 0.7])
        assert_array_almost_equal(reversed_patches.side_points(0, Side.EAST, t),
                                  reversed_patches.side_points(1, Side.WEST, 1.0 - t))

    def test_side_parameters(self):
        pts = side_parameters(((0.0, 2.0), (1.0, 3.0)), Side.NORTH, np.array([0.0, 0.5, 1.0]))
        assert_array_almost_equal(pts, [[0.0, 3.0], [1.0, 3.0], [2.0, 3.0]])

    def test_side_points(self):
        patches = make_l_shape(p=1)
        pts = patches.side_points(2, Side.NORTH, np.array([0.0, 1.0]))
        assert_array_almost_equal(pts, [[0.0, 0.0], [1.0, 0.0]])

    def test_explicit_interfaces(self):
        square = make_nurbs_unit_square(p=1, n_elem_xi=1, n_elem_eta=1)
        iface = Interface(0, Side.EAST, 1, Side.WEST)
        patches = MultiPatch([square, square], interfaces=[iface])
        assert patches.interfaces == [iface]

    def test_empty(self):
        with pytest.raises(ConfigurationError):
            MultiPatch([])
