"""
Discrete spline fields over a multi-patch basis.

A DiscreteField couples a coefficient vector in the patch-major numbering
of a MultiBasis with the geometry, so that

    u_h(x(xi)) = sum_k c_k N_k(xi)

can be evaluated (values and physical gradients) at parametric points,
at quadrature points of an element, or on a sampling grid.

Coefficients of functions glued across an interface appear once per
patch and carry equal values.
"""

import numpy as np
from typing import Dict, List, Tuple

from ..assembly.evaluator import ElementData, evaluate_points
from ..discretization.element import Element
from ..errors import ConfigurationError, StaleBasisError


class DiscreteField:
    """
    Spline field over a MultiBasis.

    Parameters:
        patches: MultiPatch geometry
        bases: MultiBasis
        coefficients: Full coefficient vector (bases.total_functions() long)

    Raises:
        ConfigurationError: coefficient count does not match the basis
    """

    def __init__(self, patches, bases, coefficients: np.ndarray):
        coefficients = np.asarray(coefficients, dtype=np.float64)
        n = bases.total_functions()
        if coefficients.shape != (n,):
            raise ConfigurationError(
                f"Field has {coefficients.shape[0]} coefficients, basis has {n} functions")
        self.patches = patches
        self.bases = bases
        self.coefficients = coefficients
        self.generation = bases.generation
        self._offsets = bases.offsets()

    def __repr__(self) -> str:
        return f"DiscreteField(n_patches={len(self.bases)}, n_coefficients={len(self.coefficients)})"

    def check_basis(self) -> None:
        """
        Raises:
            StaleBasisError: the basis was refined after the field was created
        """
        if self.bases.generation != self.generation:
            raise StaleBasisError(
                "The basis was refined after this field was created; transfer it first")

    def patch_coefficients(self, patch: int) -> np.ndarray:
        return self.coefficients[self._offsets[patch]:self._offsets[patch + 1]]

    def local_coefficients(self, element: Element) -> np.ndarray:
        """Coefficients of the functions active on an element."""
        return self.coefficients[self._offsets[element.patch] + element.function_ids]

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def element_data(self, element: Element, ref_points: np.ndarray,
                     hessians: bool = False) -> ElementData:
        """Basis and geometry data of an element at reference points in [0,1]^2."""
        self.check_basis()
        return evaluate_points(self.bases[element.patch], self.patches[element.patch],
                               element, ref_points, hessians)

    def values_at(self, data: ElementData) -> np.ndarray:
        """u_h at the points of evaluated element data."""
        return data.interpolate(self.local_coefficients(data.element))

    def gradients_at(self, data: ElementData) -> np.ndarray:
        """(n_q, 2) physical gradient of u_h at the points of evaluated element data."""
        return data.interpolate_gradient(self.local_coefficients(data.element))

    def _group_by_element(self, patch: int, params: np.ndarray) -> Dict[int, Tuple[Element, List[int]]]:
        basis = self.bases[patch]
        groups: Dict[int, Tuple[Element, List[int]]] = {}
        for q, (xi, eta) in enumerate(params):
            element = basis.locate(xi, eta)
            groups.setdefault(element.index, (element, []))[1].append(q)
        return groups

    def _evaluate(self, patch: int, params: np.ndarray, gradient: bool) -> np.ndarray:
        self.check_basis()
        params = np.atleast_2d(np.asarray(params, dtype=np.float64))
        out = np.zeros((len(params), 2)) if gradient else np.zeros(len(params))
        for element, rows in self._group_by_element(patch, params).values():
            ref = element.parametric_to_reference(params[rows])
            data = self.element_data(element, ref)
            out[rows] = self.gradients_at(data) if gradient else self.values_at(data)
        return out

    def evaluate(self, patch: int, params: np.ndarray) -> np.ndarray:
        """
        Values of u_h at parametric points of one patch.

        Parameters:
            patch: Patch index
            params: (n, 2) parametric coordinates

        Returns:
            (n,) values
        """
        return self._evaluate(patch, params, gradient=False)

    def gradient(self, patch: int, params: np.ndarray) -> np.ndarray:
        """(n, 2) physical gradients of u_h at parametric points of one patch."""
        return self._evaluate(patch, params, gradient=True)

    def sample(self, patch: int, n_xi: int = 50,
               n_eta: int = 50) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Sample the field on a uniform parametric grid of one patch.

        Returns:
            (X, Y, U), each of shape (n_xi, n_eta)
        """
        (xi0, xi1), (eta0, eta1) = self.bases[patch].domain
        xi, eta = np.meshgrid(np.linspace(xi0, xi1, n_xi),
                              np.linspace(eta0, eta1, n_eta), indexing='ij')
        params = np.column_stack([xi.ravel(), eta.ravel()])
        points = self.patches[patch].eval_points(params)
        U = self.evaluate(patch, params)
        return (points[:, 0].reshape(n_xi, n_eta), points[:, 1].reshape(n_xi, n_eta),
                U.reshape(n_xi, n_eta))

    def transferred(self, transfer) -> 'DiscreteField':
        """Field on the refined basis obtained with a Transfer."""
        return DiscreteField(self.patches, self.bases, transfer.apply(self.coefficients))

