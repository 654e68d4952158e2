"""
Element-wise error indicators.

    L2_ERROR   eta_K = |u_h - u|_{L2(K)}              (exact solution known)
    H1_ERROR   eta_K = |grad(u_h - u)|_{L2(K)}        (exact gradient known)
    RESIDUAL   eta_K^2 = h_K^2 |f + div(a grad u_h)|^2_K
                         + 1/2 sum_E h_E |[[a du_h/dn]]|^2_E

The residual indicator sums flux jumps over all interior edges of a
patch and over the conforming interfaces between patches. Where an edge
is hanging (neighbouring cells on a finer level), the neighbour is
located point by point. The coefficient a is taken from the element's
own side of every edge. Inside a cell div(a grad u_h) is expanded as
a lap(u_h) + grad(a).grad(u_h).

The result has one entry per element of MultiBasis.elements().
"""

import logging
import numpy as np
from enum import Enum
from typing import Dict, Optional, Tuple

from ..assembly.evaluator import evaluate_element, evaluate_side
from ..discretization.boundary import Side
from ..errors import ConfigurationError
from ..geometry.multipatch import side_parameters
from ..io.expressions import as_function
from ..postprocess.norms import h1_seminorm_error, l2_error
from ..quadrature.gauss import GaussQuadrature

logger = logging.getLogger(__name__)

# relative parametric offset used to find the cell across an edge
_ACROSS = 1e-9


class EstimatorKind(Enum):
    L2_ERROR = "l2"
    H1_ERROR = "h1"
    RESIDUAL = "residual"

    @classmethod
    def from_name(cls, value) -> 'EstimatorKind':
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for kind in cls:
            if key in (kind.value, kind.name.lower()):
                return kind
        raise ConfigurationError(
            f"Unknown estimator {value!r}; expected one of: {', '.join(k.value for k in cls)}")


def estimate(field, kind, pde=None, exact=None) -> np.ndarray:
    """
    Element-wise indicators of a discrete solution.

    Parameters:
        field: DiscreteField
        kind: EstimatorKind (or its name)
        pde: PDE descriptor, needed by RESIDUAL (source and coefficient)
        exact: Exact solution, needed by L2_ERROR and H1_ERROR

    Raises:
        ConfigurationError: the data the estimator needs is missing
    """
    kind = EstimatorKind.from_name(kind)
    if kind in (EstimatorKind.L2_ERROR, EstimatorKind.H1_ERROR):
        if exact is None:
            raise ConfigurationError(f"The {kind.value} estimator needs the exact solution")
        norm = l2_error if kind is EstimatorKind.L2_ERROR else h1_seminorm_error
        values = norm(field, as_function(exact), element_wise=True)
    else:
        if pde is None:
            raise ConfigurationError("The residual estimator needs the PDE (source term)")
        values = residual_estimate(field, pde)
    logger.debug("%s estimate: total %.3e over %d elements", kind.value,
                 float(np.sqrt(np.sum(values ** 2))), len(values))
    return values


# ----------------------------------------------------------------------
# Residual estimator
# ----------------------------------------------------------------------

def _interface_map(patches) -> Dict[Tuple[int, Side], Tuple[int, Side, bool]]:
    out = {}
    for iface in patches.interfaces:
        out[(iface.patch_a, iface.side_a)] = (iface.patch_b, iface.side_b, iface.reversed)
        out[(iface.patch_b, iface.side_b)] = (iface.patch_a, iface.side_a, iface.reversed)
    return out


def _across(field, interfaces, patch: int, element, side: Side,
            params: np.ndarray) -> Optional[Tuple[int, np.ndarray]]:
    """
    Parametric points just across an element edge.

    Returns:
        (patch, params) of the neighbouring side, or None on the outer boundary
    """
    domain = field.bases[patch].domain
    d, tan = side.direction, side.tangential
    if element.touches(side, domain):
        neighbour = interfaces.get((patch, side))
        if neighbour is None:
            return None
        other, other_side, reversed_ = neighbour
        lo, hi = domain[tan]
        t = (params[:, tan] - lo) / (hi - lo)
        if reversed_:
            t = 1.0 - t
        return other, side_parameters(field.bases[other].domain, other_side, t)

    shifted = params.copy()
    shifted[:, d] += side.normal_sign * _ACROSS * (domain[d][1] - domain[d][0])
    return patch, shifted


def residual_estimate(field, pde) -> np.ndarray:
    """
    Residual-based indicators eta_K for -div(a grad u) = f.

    Parameters:
        field: DiscreteField of the discrete solution
        pde: Descriptor providing source_values(), diffusion() and diffusion_gradient()
    """
    field.check_basis()
    interfaces = _interface_map(field.patches)
    offsets = field.bases.offsets()
    out = []

    for k, basis in enumerate(field.bases):
        surface = field.patches[k]
        for element in basis.elements():
            quadrature = GaussQuadrature.for_degree(element.degrees)
            data = evaluate_element(basis, surface, element, quadrature, hessians=True)
            coeffs = field.local_coefficients(element)
            a = pde.diffusion(data, offsets[k])
            interior = (pde.source_values(data.points) + a * (coeffs @ data.laplacians)
                        + np.sum(pde.diffusion_gradient(data, offsets[k])
                                 * data.interpolate_gradient(coeffs), axis=1))
            eta2 = data.size ** 2 * float(np.sum(data.weights * interior ** 2))

            for side in Side:
                edge = evaluate_side(basis, surface, element, side, quadrature)
                ref, _ = quadrature.on_side(side)
                across = _across(field, interfaces, k, element, side,
                                 element.reference_to_parametric(ref))
                if across is None:
                    continue
                other, params = across
                flux = field.gradients_at(edge)
                flux_other = field.gradient(other, params)
                a_edge = pde.diffusion(edge, offsets[k])
                jump = a_edge * np.sum((flux - flux_other) * edge.normals, axis=1)
                eta2 += 0.5 * edge.measure * float(np.sum(edge.weights * jump ** 2))

            out.append(np.sqrt(eta2))

    return np.array(out)
