"""
NURBS (Non-Uniform Rational B-Spline) geometry representation.

NURBS extend B-splines by introducing weights for each control point,
enabling exact representation of conic sections (circles, ellipses, etc.).

A NURBS surface point is computed as:

    S(xi, eta) = sum_k (N_k(xi, eta) * w_k * P_k) / sum_k (N_k(xi, eta) * w_k)

where:
- N_k are tensor-product B-spline basis functions
- w_k are weights (positive real numbers)
- P_k are control points

The geometry is only the map from the parameter domain to physical space.
The discretization space (the basis the solution lives in) is a separate
SplineBasis built from the same knot vectors and refined independently,
so the geometry never changes during adaptive refinement.

Control points are stored flat with xi running fastest:
[P_{0,0}, P_{1,0}, ..., P_{n_xi-1,0}, P_{0,1}, ...]
"""

import numpy as np
from typing import Tuple, Optional
from abc import ABC, abstractmethod

from ..discretization.knot_vector import KnotVector
from ..errors import GeometryMismatchError
from .bspline import eval_basis_ders_1d


class NURBSGeometry(ABC):
    """
    Abstract base class for NURBS geometry objects.

    The solver interacts with geometry through this interface:
    control data, point evaluation and the mapping Jacobian.
    """

    @property
    @abstractmethod
    def n_dim_parametric(self) -> int:
        """Number of parametric dimensions."""

    @property
    @abstractmethod
    def n_dim_physical(self) -> int:
        """Number of physical/spatial dimensions."""

    @property
    @abstractmethod
    def n_control_points(self) -> int:
        """Total number of control points."""

    @property
    @abstractmethod
    def control_points(self) -> np.ndarray:
        """Control point coordinates as (n_control_points, n_dim_physical) array."""

    @property
    @abstractmethod
    def weights(self) -> np.ndarray:
        """NURBS weights as (n_control_points,) array."""

    @abstractmethod
    def eval_mapping(self, params: np.ndarray, second: bool = False):
        """Evaluate points and Jacobians at many parameter values."""


class NURBSSurface(NURBSGeometry):
    """
    NURBS surface mapping [xi] x [eta] to the plane.

    A NURBS surface S(xi, eta) is defined by:
    - Two knot vectors (xi and eta directions)
    - Control points P_{i,j} arranged in a grid
    - Weights w_{i,j} > 0
    """

    def __init__(self,
                 knot_vector_xi: KnotVector,
                 knot_vector_eta: KnotVector,
                 control_points: np.ndarray,
                 weights: Optional[np.ndarray] = None):
        """
        Initialize a NURBS surface.

        Parameters:
            knot_vector_xi: KnotVector for xi direction
            knot_vector_eta: KnotVector for eta direction
            control_points: (n_xi * n_eta, d) flat with xi fastest, or
                            (n_eta, n_xi, d) grid
            weights: (n_xi * n_eta,) or (n_eta, n_xi), defaults to 1.0

        Raises:
            GeometryMismatchError: control point or weight count does not
                                   match the knot vectors
        """
        self._kv_xi = knot_vector_xi
        self._kv_eta = knot_vector_eta

        n_xi = knot_vector_xi.n_basis
        n_eta = knot_vector_eta.n_basis
        n_total = n_xi * n_eta

        control_points = np.asarray(control_points, dtype=np.float64)
        if control_points.ndim == 3:
            if control_points.shape[:2] != (n_eta, n_xi):
                raise GeometryMismatchError(
                    f"Control points shape {control_points.shape} doesn't match "
                    f"expected ({n_eta}, {n_xi}, d)"
                )
            control_points = control_points.reshape(n_total, -1)
        elif control_points.shape[0] != n_total:
            raise GeometryMismatchError(
                f"Number of control points ({control_points.shape[0]}) "
                f"must equal n_xi * n_eta ({n_total})"
            )
        if control_points.shape[1] < 2:
            raise GeometryMismatchError("Control points need at least two coordinates")
        self._control_points = control_points

        if weights is None:
            self._weights = np.ones(n_total)
        else:
            weights = np.asarray(weights, dtype=np.float64).flatten()
            if len(weights) != n_total:
                raise GeometryMismatchError(f"Weights length ({len(weights)}) must equal {n_total}")
            if np.any(weights <= 0):
                raise GeometryMismatchError("All weights must be positive")
            self._weights = weights

        self._n_xi = n_xi
        self._n_eta = n_eta

    @property
    def n_dim_parametric(self) -> int:
        return 2

    @property
    def n_dim_physical(self) -> int:
        return self._control_points.shape[1]

    @property
    def n_control_points(self) -> int:
        return self._n_xi * self._n_eta

    @property
    def n_control_points_per_dir(self) -> Tuple[int, int]:
        """Number of control points in each direction (n_xi, n_eta)."""
        return (self._n_xi, self._n_eta)

    @property
    def control_points(self) -> np.ndarray:
        return self._control_points.copy()

    @property
    def control_points_grid(self) -> np.ndarray:
        """Control points as (n_eta, n_xi, d) grid."""
        return self._control_points.reshape(self._n_eta, self._n_xi, -1)

    @property
    def weights(self) -> np.ndarray:
        return self._weights.copy()

    @property
    def knot_vectors(self) -> Tuple[KnotVector, KnotVector]:
        return (self._kv_xi, self._kv_eta)

    @property
    def degrees(self) -> Tuple[int, int]:
        return (self._kv_xi.degree, self._kv_eta.degree)

    @property
    def domain(self) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        """Parametric domain as ((xi_min, xi_max), (eta_min, eta_max))."""
        return (self._kv_xi.domain, self._kv_eta.domain)

    @property
    def is_rational(self) -> bool:
        return not np.allclose(self._weights, self._weights[0])

    def _local_to_global_index(self, i: int, j: int) -> int:
        """
        Convert (i, j) tensor index to global flat index.

        Ordering: x (xi) varies fastest, y (eta) varies slowest.
        For a 4x3 grid (n_xi=4, n_eta=3):
          j=0: [0,1,2,3], j=1: [4,5,6,7], j=2: [8,9,10,11]
        """
        return j * self._n_xi + i

    def _global_to_local_index(self, idx: int) -> Tuple[int, int]:
        """Convert global flat index to (i, j) tensor index."""
        return (idx % self._n_xi, idx // self._n_xi)

    def _univariate(self, kv: KnotVector, values: np.ndarray, n_ders: int):
        """Spans and basis derivatives at the distinct values of one coordinate."""
        unique, inverse = np.unique(values, return_inverse=True)
        spans = np.array([kv.find_span(v) for v in unique])
        ders = np.array([eval_basis_ders_1d(kv, v, n_ders, s) for v, s in zip(unique, spans)])
        return spans[inverse], ders[inverse]

    def eval_mapping(self, params: np.ndarray, second: bool = False):
        """
        Evaluate the map and its derivatives at many parameter points.

        Quadrature points of one element share few distinct coordinates,
        so the univariate bases are evaluated once per distinct value.

        Parameters:
            params: (n, 2) parametric points
            second: Also return second derivatives

        Returns:
            points (n, 2); J (n, 2, 2) with J[q, i, d] = dx_i/dxi_d; and
            if second, H (n, 2, 2, 2) with H[q, a, b, c] = d2x_a/dxi_b dxi_c
        """
        params = np.atleast_2d(np.asarray(params, dtype=np.float64))
        n_ders = 2 if second else 1
        p_xi, p_eta = self.degrees
        span_x, Nx = self._univariate(self._kv_xi, params[:, 0], n_ders)
        span_y, Ny = self._univariate(self._kv_eta, params[:, 1], n_ders)

        n = params.shape[0]
        cp = self._control_points[:, :2]
        off_x = np.arange(p_xi + 1)
        off_y = np.arange(p_eta + 1)

        points = np.empty((n, 2))
        J = np.empty((n, 2, 2))
        H = np.empty((n, 2, 2, 2)) if second else None

        for q in range(n):
            rows = ((span_y[q] - p_eta + off_y)[:, None] * self._n_xi
                    + (span_x[q] - p_xi + off_x)[None, :]).ravel()
            w = self._weights[rows]
            wP = w[:, None] * cp[rows]

            def moments(kx, ky):
                B = np.outer(Ny[q, ky], Nx[q, kx]).ravel()
                return B @ wP, B @ w

            A00, W00 = moments(0, 0)
            A10, W10 = moments(1, 0)
            A01, W01 = moments(0, 1)
            S = A00 / W00
            Sx = (A10 - W10 * S) / W00
            Sy = (A01 - W01 * S) / W00
            points[q] = S
            J[q, :, 0] = Sx
            J[q, :, 1] = Sy

            if second:
                A20, W20 = moments(2, 0)
                A11, W11 = moments(1, 1)
                A02, W02 = moments(0, 2)
                H[q, :, 0, 0] = (A20 - 2.0 * W10 * Sx - W20 * S) / W00
                H[q, :, 1, 1] = (A02 - 2.0 * W01 * Sy - W02 * S) / W00
                Sxy = (A11 - W10 * Sy - W01 * Sx - W11 * S) / W00
                H[q, :, 0, 1] = Sxy
                H[q, :, 1, 0] = Sxy

        if second:
            return points, J, H
        return points, J

    def eval_point(self, xi: Tuple[float, float]) -> np.ndarray:
        """
        Evaluate surface at parameter values.

        Parameters:
            xi: Parameter values (xi, eta)

        Returns:
            Point coordinates as (2,) array
        """
        return self.eval_mapping(np.array([xi]))[0][0]

    def eval_derivatives(self, xi: Tuple[float, float]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Evaluate surface point and first derivatives.

        Returns:
            Tuple (S, dS/dxi, dS/deta) of (2,) arrays
        """
        points, J = self.eval_mapping(np.array([xi]))
        return points[0], J[0, :, 0], J[0, :, 1]

    def eval_points(self, params: np.ndarray) -> np.ndarray:
        """Physical points of many parameter values, shape (n, 2)."""
        return self.eval_mapping(params)[0]
