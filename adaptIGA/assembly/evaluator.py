"""
Element and edge evaluation at quadrature points.

Evaluation follows the Bézier extraction paradigm:
1. Evaluate the Bernstein basis on the reference element [0,1]^2
2. Apply the element extraction operator to get the spline functions
   (done by SplineBasis.evaluate)
3. Evaluate the geometry map and its Jacobian at the same points
4. Transform parametric derivatives to physical ones

    [dN/dx]   [dxi/dx  deta/dx] [dN/dxi ]
    [dN/dy] = [dxi/dy  deta/dy] [dN/deta]

The integration weight of quadrature point q is

    w_q * |det J_ref->param| * |det J_param->phys|

Laplacians (for residual estimators) need the geometry Hessian H:

    Hess_x N = J^{-T} (Hess_xi N - sum_a dN/dx_a H_a) J^{-1}
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional

from ..discretization.boundary import Side
from ..discretization.element import Element
from ..errors import GeometryMismatchError
from ..quadrature.gauss import GaussQuadrature


@dataclass
class ElementData:
    """
    Basis and geometry data of one element (or one element edge) at its
    quadrature points.

    Attributes:
        element: The element evaluated
        actives: Patch-local indices of the active functions
        values: (n_act, n_q) basis values
        gradients: (n_act, n_q, 2) physical gradients
        points: (n_q, 2) physical points
        jacobians: (n_q, 2, 2) with J[q, i, d] = dx_i/dxi_d
        weights: (n_q,) quadrature weights including all measures
        laplacians: (n_act, n_q) physical Laplacians, or None
        side: Edge the data lives on, None for interior data
        normals: (n_q, 2) outward unit normals on an edge, or None
        hessians: (n_act, n_q, 2, 2) physical Hessians, or None
    """
    element: Element
    actives: np.ndarray
    values: np.ndarray
    gradients: np.ndarray
    points: np.ndarray
    jacobians: np.ndarray
    weights: np.ndarray
    laplacians: Optional[np.ndarray] = None
    side: Optional[Side] = None
    normals: Optional[np.ndarray] = None
    hessians: Optional[np.ndarray] = None

    @property
    def patch(self) -> int:
        return self.element.patch

    @property
    def n_points(self) -> int:
        return self.points.shape[0]

    @property
    def measure(self) -> float:
        """Area of the element, or length of the edge."""
        return float(np.sum(self.weights))

    @property
    def size(self) -> float:
        """Characteristic length: sqrt(area) for elements, length for edges."""
        return self.measure if self.side is not None else float(np.sqrt(self.measure))

    def interpolate(self, coefficients: np.ndarray) -> np.ndarray:
        """Values of sum_k c_k N_k at the quadrature points."""
        return coefficients @ self.values

    def interpolate_gradient(self, coefficients: np.ndarray) -> np.ndarray:
        """(n_q, 2) gradient of sum_k c_k N_k."""
        return np.einsum('k,kqi->qi', coefficients, self.gradients)


def _map(basis, surface, element: Element, ref_points: np.ndarray, hessians: bool):
    n_ders = 2 if hessians else 1
    basis_data = basis.evaluate(element, ref_points, n_ders)
    params = element.reference_to_parametric(ref_points)
    geo = surface.eval_mapping(params, second=hessians)
    if geo[0].shape[0] != basis_data[0].shape[1]:
        raise GeometryMismatchError(
            f"Geometry returned {geo[0].shape[0]} points for "
            f"{basis_data[0].shape[1]} basis evaluation points")

    J = geo[1]
    inv_J = np.linalg.inv(J)
    gradients = np.einsum('kqd,qdi->kqi', basis_data[1], inv_J)

    laplacians = physical = None
    if hessians:
        H = geo[2]
        corrected = basis_data[2] - np.einsum('kqa,qabc->kqbc', gradients, H)
        physical = np.einsum('qbi,kqbc,qcj->kqij', inv_J, corrected, inv_J)
        laplacians = np.einsum('kqii->kq', physical)

    return basis_data[0], gradients, geo[0], J, inv_J, laplacians, physical


def evaluate_points(basis, surface, element: Element, ref_points: np.ndarray,
                    hessians: bool = False) -> ElementData:
    """
    Evaluate the active functions of an element at arbitrary reference points.

    The weights hold the pointwise measure |det J| * |element| only.
    """
    ref_points = np.atleast_2d(np.asarray(ref_points, dtype=np.float64))
    values, gradients, points, J, _, laplacians, physical = _map(
        basis, surface, element, ref_points, hessians)
    density = np.abs(np.linalg.det(J)) * element.det_jacobian_ref_to_param()

    return ElementData(element, element.function_ids, values, gradients,
                       points, J, density, laplacians, hessians=physical)


def evaluate_element(basis, surface, element: Element, quadrature: GaussQuadrature,
                     hessians: bool = False) -> ElementData:
    """
    Evaluate the active functions of an element at the quadrature nodes.

    Parameters:
        basis: SplineBasis of the element's patch
        surface: NURBSSurface of the element's patch
        element: Active element
        quadrature: Bivariate Gauss rule on [0,1]^2
        hessians: Also compute physical Hessians and Laplacians

    Raises:
        GeometryMismatchError: geometry and basis evaluation grids differ
    """
    data = evaluate_points(basis, surface, element, quadrature.points, hessians)
    data.weights = quadrature.weights * data.weights
    return data


def evaluate_side(basis, surface, element: Element, side: Side,
                  quadrature: GaussQuadrature, hessians: bool = False) -> ElementData:
    """
    Evaluate the active functions of an element on one of its edges.

    The weights are w_q * |dx/dt| * h (line measure) and the normals point
    out of the patch across that side.
    """
    ref_points, ref_weights = quadrature.on_side(side)
    values, gradients, points, J, inv_J, laplacians, physical = _map(
        basis, surface, element, ref_points, hessians)

    tan = side.tangential
    h = element.sizes[tan]
    weights = ref_weights * np.linalg.norm(J[:, :, tan], axis=1) * h

    # grad(xi_d) is normal to the iso-line xi_d = const
    normals = side.normal_sign * inv_J[:, side.direction, :]
    normals /= np.linalg.norm(normals, axis=1)[:, None]

    return ElementData(element, element.function_ids, values, gradients,
                       points, J, weights, laplacians, side, normals, physical)
