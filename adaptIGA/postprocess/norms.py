"""
Error norms of discrete fields against exact solutions.

All norms are integrated element by element with the Gauss rule of the
element degree (one extra point per direction by default), so each can
also return the element-wise contributions in the order of
MultiBasis.elements():

    l2_error           |u_h - u|_{L2}
    h1_seminorm_error  |grad(u_h - u)|_{L2}
    lp_error           |u_h - u|_{Lp}
    f_distance         |F(grad u_h) - F(grad u)|_{L2},
                       F(v) = (eps^2 + |v|^2)^((p-2)/4) v

Exact solutions are functions of (x, y); an ExpressionFunction also
provides the exact gradient symbolically.
"""

import numpy as np
from typing import Callable, Union

from ..assembly.evaluator import ElementData, evaluate_element
from ..errors import ConfigurationError
from ..io.expressions import as_function
from ..quadrature.gauss import GaussQuadrature


def _values(function: Callable, points: np.ndarray) -> np.ndarray:
    out = function(points[:, 0], points[:, 1])
    return np.broadcast_to(np.asarray(out, dtype=np.float64), (len(points),))


def _gradient(exact, points: np.ndarray) -> np.ndarray:
    if hasattr(exact, "gradient"):
        return exact.gradient(points[:, 0], points[:, 1])
    raise ConfigurationError(
        "Gradient-based norms need an exact solution with a gradient "
        "(expression string or ExpressionFunction)")


def integrate_elements(field, integrand: Callable[[ElementData], np.ndarray],
                       extra_points: int = 1) -> np.ndarray:
    """
    Integrate a pointwise quantity over every active element.

    Parameters:
        field: DiscreteField
        integrand: Maps evaluated element data to values at its points
        extra_points: Gauss points per direction beyond p+1

    Returns:
        (n_elements,) integrals, patch-major element order
    """
    field.check_basis()
    out = []
    for k, basis in enumerate(field.bases):
        surface = field.patches[k]
        for element in basis.elements():
            quadrature = GaussQuadrature.for_degree(element.degrees, 1.0, 1 + extra_points)
            data = evaluate_element(basis, surface, element, quadrature)
            out.append(float(np.sum(data.weights * integrand(data))))
    return np.array(out)


def _finish(squares: np.ndarray, element_wise: bool, power: float = 2.0):
    squares = np.maximum(squares, 0.0)
    if element_wise:
        return squares ** (1.0 / power)
    return float(np.sum(squares) ** (1.0 / power))


def l2_error(field, exact, element_wise: bool = False) -> Union[float, np.ndarray]:
    """L2 norm of u_h - u (element-wise norms if element_wise)."""
    exact = as_function(exact)
    return _finish(integrate_elements(
        field, lambda d: (field.values_at(d) - _values(exact, d.points)) ** 2), element_wise)


def h1_seminorm_error(field, exact, element_wise: bool = False) -> Union[float, np.ndarray]:
    """L2 norm of grad(u_h - u)."""
    exact = as_function(exact)

    def integrand(d):
        diff = field.gradients_at(d) - _gradient(exact, d.points)
        return np.sum(diff ** 2, axis=1)

    return _finish(integrate_elements(field, integrand), element_wise)


def lp_error(field, exact, p: float = 2.0, element_wise: bool = False) -> Union[float, np.ndarray]:
    """Lp norm of u_h - u, p >= 1."""
    if p < 1.0:
        raise ConfigurationError(f"Lp norms need p >= 1, got {p}")
    exact = as_function(exact)
    return _finish(integrate_elements(
        field, lambda d: np.abs(field.values_at(d) - _values(exact, d.points)) ** p),
        element_wise, p)


def f_distance(field, exact, eps: float = 1.0, p: float = 2.0,
               element_wise: bool = False) -> Union[float, np.ndarray]:
    """L2 distance of F(grad u_h) and F(grad u), the natural p-Laplace error quantity."""
    exact = as_function(exact)

    def F(v):
        return ((eps ** 2 + np.sum(v ** 2, axis=1)) ** ((p - 2.0) / 4.0))[:, None] * v

    def integrand(d):
        diff = F(field.gradients_at(d)) - F(_gradient(exact, d.points))
        return np.sum(diff ** 2, axis=1)

    return _finish(integrate_elements(field, integrand), element_wise)


def convergence_rate(error_coarse: float, error_fine: float) -> float:
    """Observed rate for a halved mesh size: log(e_fine / e_coarse) / log(1/2)."""
    if error_coarse <= 0.0 or error_fine <= 0.0:
        return float('nan')
    return float(np.log(error_fine / error_coarse) / np.log(0.5))
