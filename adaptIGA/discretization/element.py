"""
Element abstraction.

An element is an active cell of a (possibly hierarchical) spline basis on
one patch. It is solver-ready: it carries everything the local evaluator
needs and nothing about knot vectors or the spline type.

- function_ids: patch-local indices of the basis functions nonzero on the
  element, in the row order of extraction_operator
- extraction_operator: C_e with N_active(t) = C_e @ B(t), B the tensor
  Bernstein basis of the element's degrees on [0,1]^2
- level / cell: refinement level and (i, j) cell index on that level, so
  hierarchical bases can link elements to their parents and children
"""

import numpy as np
from typing import Tuple
from dataclasses import dataclass, field

from .boundary import Side


@dataclass
class Element:
    """
    Active cell of a spline basis.

    Attributes:
        patch: Index of the patch the element lives on
        index: Position of the element in its basis' element list
        level: Refinement level (0 = coarsest)
        cell: (i, j) cell index on that level
        parametric_bounds: ((xi_min, xi_max), (eta_min, eta_max))
        function_ids: Patch-local indices of the active basis functions
        extraction_operator: C_e of shape (n_active, n_bernstein)
        degrees: Polynomial degrees in each direction
    """
    patch: int
    index: int
    level: int
    cell: Tuple[int, int]
    parametric_bounds: Tuple[Tuple[float, float], Tuple[float, float]]
    function_ids: np.ndarray
    extraction_operator: np.ndarray = field(repr=False)
    degrees: Tuple[int, int]

    @property
    def n_dim(self) -> int:
        return len(self.parametric_bounds)

    @property
    def n_local_basis(self) -> int:
        """Number of basis functions active on this element."""
        return self.extraction_operator.shape[0]

    @property
    def sizes(self) -> np.ndarray:
        """Parametric edge lengths (h_xi, h_eta)."""
        return np.array([b - a for a, b in self.parametric_bounds])

    @property
    def center(self) -> np.ndarray:
        return np.array([0.5 * (a + b) for a, b in self.parametric_bounds])

    def reference_to_parametric(self, t: np.ndarray) -> np.ndarray:
        """
        Map reference coordinates [0,1]^2 to parametric coordinates.

        Parameters:
            t: (n, 2) reference points

        Returns:
            (n, 2) parametric points
        """
        t = np.atleast_2d(t)
        lo = np.array([b[0] for b in self.parametric_bounds])
        return lo + t * self.sizes

    def parametric_to_reference(self, xi: np.ndarray) -> np.ndarray:
        """Inverse of reference_to_parametric."""
        xi = np.atleast_2d(xi)
        lo = np.array([b[0] for b in self.parametric_bounds])
        return (xi - lo) / self.sizes

    def det_jacobian_ref_to_param(self) -> float:
        """Determinant of the (affine) reference-to-parametric map."""
        return float(np.prod(self.sizes))

    def side_bounds(self, side: Side) -> Tuple[float, float]:
        """Parametric interval of the element along the tangential direction of side."""
        return self.parametric_bounds[side.tangential]

    def touches(self, side: Side, domain) -> bool:
        """
        True if the element has an edge on the given patch side.

        Parameters:
            side: Patch side
            domain: ((xi_min, xi_max), (eta_min, eta_max)) of the patch
        """
        d = side.direction
        target = domain[d][1] if side.is_max else domain[d][0]
        value = self.parametric_bounds[d][1] if side.is_max else self.parametric_bounds[d][0]
        return abs(value - target) <= 1e-12 * max(1.0, abs(target))

    def __hash__(self) -> int:
        return hash((self.patch, self.level, self.cell))

    def __eq__(self, other) -> bool:
        if isinstance(other, Element):
            return (self.patch, self.level, self.cell) == (other.patch, other.level, other.cell)
        return False
