"""
PDE descriptors.

A descriptor bundles what the assembler needs to know about a problem:
the geometry, the boundary conditions, the data functions, and which
visitor assembles its interior terms.

PoissonPde:
    -div(a ∇u) = f   in Ω

LinearizedPLaplacePde (one Picard step of the p-Laplacian):
    -div((eps² + |∇w|²)^((p-2)/2) ∇u) = f   in Ω

with w the previous iterate. For p = 2 the operator does not depend on w.
"""

import numpy as np
import sympy as sp
from typing import Callable, Optional

from ..assembly.visitors import VisitorKind, plaplace_coefficient
from ..discretization.boundary import BoundaryConditions
from ..errors import ConfigurationError
from ..io.expressions import X, Y, ExpressionFunction, as_function


class PdeBase:
    """Common part of the descriptors."""
    visitor_kind: VisitorKind

    def __init__(self, patches, boundary_conditions: Optional[BoundaryConditions],
                 source=None):
        self.patches = patches
        self.boundary_conditions = (boundary_conditions if boundary_conditions is not None
                                    else BoundaryConditions())
        self.source: Optional[Callable] = as_function(source)
        # exact solution, if known (error norms and estimators)
        self.exact: Optional[Callable] = None

    @property
    def n_patches(self) -> int:
        return len(self.patches)

    def source_values(self, points: np.ndarray) -> np.ndarray:
        if self.source is None:
            return np.zeros(len(points))
        out = self.source(points[:, 0], points[:, 1])
        return np.broadcast_to(np.asarray(out, dtype=np.float64), (len(points),))

    def diffusion(self, data, offset: int = 0) -> np.ndarray:
        """Diffusion coefficient at the quadrature points of evaluated data."""
        raise NotImplementedError

    def diffusion_gradient(self, data, offset: int = 0) -> np.ndarray:
        """Physical gradient (n_q, 2) of the diffusion coefficient."""
        return np.zeros((data.n_points, 2))


class PoissonPde(PdeBase):
    """
    Poisson problem with an optional variable coefficient.

    Parameters:
        patches: MultiPatch geometry
        boundary_conditions: Dirichlet/Neumann conditions
        source: f(x, y), number or expression string
        coefficient: a(x, y) > 0, defaults to 1
    """
    visitor_kind = VisitorKind.STIFFNESS

    def __init__(self, patches, boundary_conditions=None, source=None, coefficient=None):
        super().__init__(patches, boundary_conditions, source)
        self.coefficient: Optional[Callable] = as_function(coefficient)

    def diffusion(self, data, offset: int = 0) -> np.ndarray:
        if self.coefficient is None:
            return np.ones(data.n_points)
        out = self.coefficient(data.points[:, 0], data.points[:, 1])
        return np.broadcast_to(np.asarray(out, dtype=np.float64), (data.n_points,))

    def diffusion_gradient(self, data, offset: int = 0) -> np.ndarray:
        """Gradient of an expression coefficient; plain callables are treated as constant."""
        if not isinstance(self.coefficient, ExpressionFunction):
            return np.zeros((data.n_points, 2))
        out = self.coefficient.gradient(data.points[:, 0], data.points[:, 1])
        return np.broadcast_to(np.asarray(out, dtype=np.float64), (data.n_points, 2))


class LinearizedPLaplacePde(PdeBase):
    """
    Linearized p-Laplace problem with frozen iterate w.

    Parameters:
        patches: MultiPatch geometry
        boundary_conditions: Dirichlet/Neumann conditions
        source: f(x, y)
        eps: Regularization (> 0 unless p >= 2)
        p: Exponent (> 1)
        w: Full coefficient vector over the MultiBasis, None for w = 0
    """
    visitor_kind = VisitorKind.NONLINEAR_FLUX

    def __init__(self, patches, boundary_conditions=None, source=None,
                 eps: float = 1.0, p: float = 2.0, w: Optional[np.ndarray] = None):
        super().__init__(patches, boundary_conditions, source)
        if p <= 1.0:
            raise ConfigurationError(f"p-Laplace exponent must be > 1, got {p}")
        if eps < 0.0 or (eps == 0.0 and p < 2.0):
            raise ConfigurationError(f"Regularization eps={eps} is not admissible for p={p}")
        self.eps = float(eps)
        self.p = float(p)
        self.w = None if w is None else np.asarray(w, dtype=np.float64)

    @property
    def is_linear(self) -> bool:
        return self.p == 2.0

    def set_iterate(self, w: Optional[np.ndarray], n_functions: Optional[int] = None) -> None:
        """
        Replace the frozen iterate.

        Raises:
            ConfigurationError: w does not have n_functions entries
        """
        if w is not None:
            w = np.asarray(w, dtype=np.float64)
            if n_functions is not None and w.shape != (n_functions,):
                raise ConfigurationError(
                    f"Iterate has {w.shape[0]} coefficients, basis has {n_functions} functions")
        self.w = w

    def diffusion(self, data, offset: int = 0) -> np.ndarray:
        if self.w is None:
            grad_w = np.zeros((data.n_points, 2))
        else:
            grad_w = data.interpolate_gradient(self.w[offset + data.actives])
        return plaplace_coefficient(grad_w, self.eps, self.p)

    def diffusion_gradient(self, data, offset: int = 0) -> np.ndarray:
        """
        (p-2) (eps² + |∇w|²)^((p-4)/2) Hess(w) ∇w.

        Raises:
            ConfigurationError: data was evaluated without Hessians
        """
        if self.w is None or self.p == 2.0:
            return np.zeros((data.n_points, 2))
        if data.hessians is None:
            raise ConfigurationError("Coefficient gradient needs element data with Hessians")
        w = self.w[offset + data.actives]
        grad_w = data.interpolate_gradient(w)
        hess_w = np.einsum('k,kqij->qij', w, data.hessians)
        s = self.eps ** 2 + np.sum(grad_w ** 2, axis=1)
        factor = np.zeros_like(s)
        positive = s > 0.0
        factor[positive] = (self.p - 2.0) * s[positive] ** ((self.p - 4.0) / 2.0)
        return factor[:, None] * np.einsum('qij,qj->qi', hess_w, grad_w)


def plaplace_source(exact, eps: float = 1.0, p: float = 2.0):
    """
    Manufactured source f = -div((eps² + |∇u|²)^((p-2)/2) ∇u) of an exact solution.

    Parameters:
        exact: Expression string or ExpressionFunction of u(x, y)

    Returns:
        ExpressionFunction of f
    """
    u = as_function(exact)
    if not isinstance(u, ExpressionFunction):
        raise ConfigurationError("A manufactured source needs a symbolic exact solution")
    ux, uy = sp.diff(u.expr, X), sp.diff(u.expr, Y)
    a = (sp.Float(eps) ** 2 + ux ** 2 + uy ** 2) ** ((sp.Float(p) - 2) / 2)
    return ExpressionFunction(-(sp.diff(a * ux, X) + sp.diff(a * uy, Y)))
