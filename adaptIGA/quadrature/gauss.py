"""
Gauss-Legendre quadrature for numerical integration.

Gauss quadrature provides optimal polynomial integration:
n points integrate exactly polynomials up to degree 2n-1.

The number of points per direction follows the rule

    n = quad_a * p + quad_b

with (quad_a, quad_b) = (1, 1) by default, i.e. p+1 points, which
integrates the B-spline mass matrix exactly on affine elements. Nonlinear
coefficients and rational geometries may ask for more points.

The reference domain is [0, 1] for consistency with Bernstein basis.
Standard Gauss points on [-1, 1] are mapped accordingly.

Usage:
    points, weights = gauss_legendre_1d(n)  # 1D quadrature on [0,1]
    points, weights = gauss_legendre_2d(n_xi, n_eta)  # 2D tensor-product
"""

import numpy as np
from typing import Tuple
from functools import lru_cache

from ..discretization.boundary import Side
from ..errors import ConfigurationError


@lru_cache(maxsize=32)
def gauss_legendre_1d(n: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gauss-Legendre quadrature points and weights on [0, 1].

    Parameters:
        n: Number of quadrature points

    Returns:
        (points, weights) where:
        - points: Array of n quadrature points in [0, 1]
        - weights: Array of n quadrature weights (sum to 1)
    """
    if n < 1:
        raise ConfigurationError("Need at least 1 quadrature point")

    points_std, weights_std = np.polynomial.legendre.leggauss(n)

    # Map to [0, 1]: x = (xi + 1) / 2, dx = 1/2 * dxi
    points = 0.5 * (points_std + 1.0)
    weights = 0.5 * weights_std

    points.setflags(write=False)
    weights.setflags(write=False)
    return points, weights


def gauss_legendre_2d(n_xi: int, n_eta: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Tensor-product Gauss-Legendre quadrature on [0,1]².

    Points are ordered with xi running fastest.

    Returns:
        (points, weights) where:
        - points: Array of shape (n_xi * n_eta, 2) with (xi, eta) coordinates
        - weights: Array of shape (n_xi * n_eta,) with weights
    """
    xi_pts, xi_wts = gauss_legendre_1d(n_xi)
    eta_pts, eta_wts = gauss_legendre_1d(n_eta)

    gx, gy = np.meshgrid(xi_pts, eta_pts)
    points = np.column_stack([gx.ravel(), gy.ravel()])
    weights = np.outer(eta_wts, xi_wts).ravel()

    return points, weights


def points_per_direction(degrees: Tuple[int, ...], quad_a: float = 1.0,
                         quad_b: int = 1) -> Tuple[int, ...]:
    """Number of Gauss points per direction, n = quad_a * p + quad_b (at least 1)."""
    return tuple(max(1, int(np.ceil(quad_a * p + quad_b))) for p in degrees)


class GaussQuadrature:
    """
    Encapsulates Gauss quadrature for element integration.

    Attributes:
        n_points_per_dir: Number of quadrature points per parametric direction
    """

    def __init__(self, n_points_per_dir: Tuple[int, ...]):
        self.n_points_per_dir = tuple(n_points_per_dir)
        self.n_dim = len(self.n_points_per_dir)

        if self.n_dim == 1:
            pts, wts = gauss_legendre_1d(self.n_points_per_dir[0])
            self._points, self._weights = pts.reshape(-1, 1), wts
        elif self.n_dim == 2:
            self._points, self._weights = gauss_legendre_2d(*self.n_points_per_dir)
        else:
            raise ConfigurationError(f"Unsupported dimension: {self.n_dim}")

    @property
    def n_points(self) -> int:
        """Total number of quadrature points."""
        return len(self._weights)

    @property
    def points(self) -> np.ndarray:
        """Quadrature points on reference element [0,1]^d, shape (n_points, n_dim)."""
        return self._points

    @property
    def weights(self) -> np.ndarray:
        """Quadrature weights, shape (n_points,)."""
        return self._weights

    @classmethod
    def for_degree(cls, degrees: Tuple[int, ...], quad_a: float = 1.0,
                   quad_b: int = 1) -> 'GaussQuadrature':
        """
        Create quadrature rule appropriate for given polynomial degrees.

        Parameters:
            degrees: Polynomial degrees in each direction
            quad_a, quad_b: Points per direction n = quad_a * p + quad_b

        Returns:
            GaussQuadrature instance
        """
        return cls(points_per_direction(degrees, quad_a, quad_b))

    def on_side(self, side: Side) -> Tuple[np.ndarray, np.ndarray]:
        """
        Line rule on one edge of the reference square.

        Uses the number of points of the direction tangential to the side.

        Returns:
            (points, weights): (n, 2) reference points on the edge and the
            (n,) weights of the unit-length edge
        """
        if self.n_dim != 2:
            raise ConfigurationError("Edge rules need a bivariate quadrature")
        t, w = gauss_legendre_1d(self.n_points_per_dir[side.tangential])
        points = np.empty((len(t), 2))
        points[:, side.direction] = 1.0 if side.is_max else 0.0
        points[:, side.tangential] = t
        return points, np.asarray(w)
