"""
Pytest configuration and shared fixtures for adaptIGA tests.
"""

import pytest

from adaptIGA.geometry import (
    MultiPatch, NURBSSurface, make_l_shape, make_nurbs_rectangle, make_nurbs_unit_square
)


@pytest.fixture
def square_patches():
    """Unit square, degree 2, 2 x 2 elements."""
    return MultiPatch.single(make_nurbs_unit_square(p=2, n_elem_xi=2, n_elem_eta=2))


@pytest.fixture
def l_shape_patches():
    """Three-patch L-shape, degree 2, one element per patch."""
    return make_l_shape(p=2)


@pytest.fixture
def reversed_patches():
    """
    [0,1]x[0,1] and [1,2]x[0,1], degree 2, 2 x 2 elements each.

    The eta direction of the right patch points down, so the shared side
    is parametrized in opposite directions on the two patches.
    """
    left = make_nurbs_unit_square(p=2, n_elem_xi=2, n_elem_eta=2)
    right = make_nurbs_rectangle((1.0, 2.0), (0.0, 1.0), 2, 2, 2)
    n_xi, n_eta = right.n_control_points_per_dir
    grid = right.control_points_grid[::-1]
    weights = right.weights.reshape(n_eta, n_xi)[::-1]
    return MultiPatch([left, NURBSSurface(*right.knot_vectors, grid, weights)])
