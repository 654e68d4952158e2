"""
Primitive geometry factory functions.

This module provides factory functions for the NURBS geometries used in
the tests and example drivers:
- Unit square and rectangles
- Quarter annulus (exact, rational)
- The three-patch L-shaped domain [-1,1]^2 minus [0,1]^2
"""

import numpy as np
from typing import Tuple

from .nurbs import NURBSSurface
from .multipatch import MultiPatch
from ..discretization.knot_vector import KnotVector, make_uniform_knot_vector


def make_nurbs_unit_square(p: int = 2, n_elem_xi: int = 4,
                           n_elem_eta: int = 4) -> NURBSSurface:
    """
    Create a NURBS surface representing the unit square [0,1]².

    This is the simplest test geometry for IGA: identity mapping
    where parametric coordinates equal physical coordinates
    (control points at the Greville abscissae).

    Parameters:
        p: Polynomial degree in both directions
        n_elem_xi: Number of elements in xi direction
        n_elem_eta: Number of elements in eta direction

    Returns:
        NURBSSurface representing the unit square
    """
    kv_xi = make_uniform_knot_vector(n_elem_xi, p)
    kv_eta = make_uniform_knot_vector(n_elem_eta, p)

    gx, gy = np.meshgrid(kv_xi.greville_abscissae(), kv_eta.greville_abscissae())
    control_points = np.column_stack([gx.ravel(), gy.ravel()])

    return NURBSSurface(kv_xi, kv_eta, control_points)


def make_nurbs_rectangle(x_range: Tuple[float, float] = (0.0, 1.0),
                         y_range: Tuple[float, float] = (0.0, 1.0),
                         p: int = 2,
                         n_elem_xi: int = 4,
                         n_elem_eta: int = 4) -> NURBSSurface:
    """
    Create a NURBS surface representing a rectangle.

    Parameters:
        x_range: (x_min, x_max)
        y_range: (y_min, y_max)
        p: Polynomial degree
        n_elem_xi: Number of elements in xi direction
        n_elem_eta: Number of elements in eta direction

    Returns:
        NURBSSurface representing the rectangle
    """
    surface = make_nurbs_unit_square(p, n_elem_xi, n_elem_eta)

    x_min, x_max = x_range
    y_min, y_max = y_range

    control_points = surface.control_points
    control_points[:, 0] = x_min + (x_max - x_min) * control_points[:, 0]
    control_points[:, 1] = y_min + (y_max - y_min) * control_points[:, 1]

    return NURBSSurface(
        surface.knot_vectors[0],
        surface.knot_vectors[1],
        control_points,
        surface.weights
    )


def make_nurbs_quarter_annulus(inner_radius: float = 1.0,
                               outer_radius: float = 2.0) -> NURBSSurface:
    """
    Quarter annulus in the first quadrant, exact through rational weights.

    The annulus is parameterized with:
    - xi (angular): 0 on the x-axis, 1 on the y-axis; degree 2, weights
      1, 1/sqrt(2), 1
    - eta (radial): 0 at the inner radius, 1 at the outer radius; degree 1

    Its area is pi * (R^2 - r^2) / 4.
    """
    kv_xi = KnotVector(np.array([0.0, 0.0, 0.0, 1.0, 1.0, 1.0]), 2)
    kv_eta = KnotVector(np.array([0.0, 0.0, 1.0, 1.0]), 1)

    w_diag = 1.0 / np.sqrt(2.0)
    control_points = []
    weights = []
    for r in (inner_radius, outer_radius):
        control_points.extend([[r, 0.0], [r, r], [0.0, r]])
        weights.extend([1.0, w_diag, 1.0])

    return NURBSSurface(kv_xi, kv_eta, np.array(control_points), np.array(weights))


def make_l_shape(p: int = 2, n_elem: int = 1) -> MultiPatch:
    """
    L-shaped domain [-1,1]^2 minus [0,1]^2 as three unit-square patches.

    Patch layout (re-entrant corner at the origin):

        patch 0: [-1,0] x [ 0,1]
        patch 1: [-1,0] x [-1,0]
        patch 2: [ 0,1] x [-1,0]

    Parameters:
        p: Polynomial degree
        n_elem: Elements per direction and patch

    Returns:
        MultiPatch with detected interfaces (0 SOUTH - 1 NORTH,
        1 EAST - 2 WEST)
    """
    patches = [
        make_nurbs_rectangle((-1.0, 0.0), (0.0, 1.0), p, n_elem, n_elem),
        make_nurbs_rectangle((-1.0, 0.0), (-1.0, 0.0), p, n_elem, n_elem),
        make_nurbs_rectangle((0.0, 1.0), (-1.0, 0.0), p, n_elem, n_elem),
    ]
    return MultiPatch(patches)
