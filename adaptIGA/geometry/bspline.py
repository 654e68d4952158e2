"""
B-spline basis function evaluation and the tensor-product spline basis.

The i-th B-spline basis function of degree p is defined recursively:

    N_{i,0}(xi) = 1 if xi_i <= xi < xi_{i+1}, else 0

    N_{i,p}(xi) = (xi - xi_i)/(xi_{i+p} - xi_i) * N_{i,p-1}(xi)
                + (xi_{i+p+1} - xi)/(xi_{i+p+1} - xi_{i+1}) * N_{i+1,p-1}(xi)

Properties:
- Partition of unity: sum of all basis functions = 1
- Non-negativity: N_{i,p}(xi) >= 0
- Local support: N_{i,p} is non-zero only on [xi_i, xi_{i+p+1})

SplineBasis is the interface the assembler consumes: elements with
extraction operators, evaluation of the active functions on an element,
refinement with a coefficient transfer matrix, and boundary traces used by
the DOF mapper. Bivariate functions are numbered flat with xi running
fastest: index = b * n_xi + a.
"""

import numpy as np
from scipy import sparse
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from ..discretization.knot_vector import (
    KnotVector, refine_knot_vector_dyadic, compute_refinement_matrix
)
from ..discretization.extraction import BernsteinBasis, compute_extraction_operators_1d
from ..discretization.element import Element
from ..discretization.boundary import Side
from ..errors import ConfigurationError


def eval_basis_1d(kv: KnotVector, xi: float,
                  span: Optional[int] = None) -> np.ndarray:
    """
    Evaluate all non-zero B-spline basis functions at a parameter value
    (Cox-de Boor, only the p+1 nonzero functions).

    Parameters:
        kv: Knot vector
        xi: Parameter value
        span: Optional pre-computed span index

    Returns:
        Array of shape (p+1,) containing N_{span-p,p}(xi) to N_{span,p}(xi)
    """
    p = kv.degree
    knots = kv.knots

    if span is None:
        span = kv.find_span(xi)

    N = np.zeros(p + 1)
    N[0] = 1.0

    left = np.zeros(p + 1)
    right = np.zeros(p + 1)

    for j in range(1, p + 1):
        left[j] = xi - knots[span + 1 - j]
        right[j] = knots[span + j] - xi

        saved = 0.0
        for r in range(j):
            temp = N[r] / (right[r + 1] + left[j - r])
            N[r] = saved + right[r + 1] * temp
            saved = left[j - r] * temp
        N[j] = saved

    return N


def eval_basis_ders_1d(kv: KnotVector, xi: float, n_ders: int,
                       span: Optional[int] = None) -> np.ndarray:
    """
    Evaluate B-spline basis functions and derivatives at a parameter value.

    Piegl & Tiller "The NURBS Book", Algorithm A2.3. Derivatives of order
    higher than p are identically zero and returned as zero rows.

    Parameters:
        kv: Knot vector
        xi: Parameter value
        n_ders: Number of derivatives to compute (0 = just values)
        span: Optional pre-computed span index

    Returns:
        Array of shape (n_ders+1, p+1) where result[k, j] is the k-th derivative
        of N_{span-p+j, p}
    """
    p = kv.degree
    knots = kv.knots

    if span is None:
        span = kv.find_span(xi)

    result = np.zeros((n_ders + 1, p + 1))
    n_ders = min(n_ders, p)
    ders = result[:n_ders + 1]

    # ndu[j][r]: basis values (lower triangle) and knot differences (upper)
    ndu = np.zeros((p + 1, p + 1))
    ndu[0, 0] = 1.0

    left = np.zeros(p + 1)
    right = np.zeros(p + 1)

    for j in range(1, p + 1):
        left[j] = xi - knots[span + 1 - j]
        right[j] = knots[span + j] - xi

        saved = 0.0
        for r in range(j):
            ndu[j, r] = right[r + 1] + left[j - r]
            temp = ndu[r, j - 1] / ndu[j, r]
            ndu[r, j] = saved + right[r + 1] * temp
            saved = left[j - r] * temp

        ndu[j, j] = saved

    for j in range(p + 1):
        ders[0, j] = ndu[j, p]

    a = np.zeros((2, p + 1))

    for r in range(p + 1):
        s1, s2 = 0, 1
        a[0, 0] = 1.0

        for k in range(1, n_ders + 1):
            d = 0.0
            rk = r - k
            pk = p - k

            if r >= k:
                a[s2, 0] = a[s1, 0] / ndu[pk + 1, rk]
                d = a[s2, 0] * ndu[rk, pk]

            j1 = 1 if rk >= -1 else -rk
            j2 = k - 1 if r - 1 <= pk else p - r

            for j in range(j1, j2 + 1):
                a[s2, j] = (a[s1, j] - a[s1, j - 1]) / ndu[pk + 1, rk + j]
                d += a[s2, j] * ndu[rk + j, pk]

            if r <= pk:
                a[s2, k] = -a[s1, k - 1] / ndu[pk + 1, r]
                d += a[s2, k] * ndu[r, pk]

            ders[k, r] = d
            s1, s2 = s2, s1

    r = p
    for k in range(1, n_ders + 1):
        ders[k, :] *= r
        r *= (p - k)

    return result


class SplineBasis(ABC):
    """
    Bivariate spline basis on one patch.

    Subclasses provide the element list and the refinement logic; this
    class provides element evaluation, lookup and boundary helpers.

    Attributes:
        patch: Patch index stamped into the elements (set by MultiBasis)
        generation: Incremented by every refinement; DOF mappers and
                    fields record it to detect stale use
    """

    def __init__(self):
        self.patch = 0
        self.generation = 0
        self._elements: Optional[List[Element]] = None
        self._lookup = {}

    # ------------------------------------------------------------------
    # Interface implemented by subclasses
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def degrees(self) -> Tuple[int, int]:
        """Polynomial degrees (p_xi, p_eta)."""

    @property
    @abstractmethod
    def knot_vectors(self) -> Tuple[KnotVector, KnotVector]:
        """Level-0 knot vectors."""

    @property
    @abstractmethod
    def max_level(self) -> int:
        """Finest level holding active cells."""

    @abstractmethod
    def total_functions(self) -> int:
        """Number of basis functions."""

    @abstractmethod
    def _build_elements(self) -> List[Element]:
        """Create the active elements in their canonical order."""

    @abstractmethod
    def snapshot(self):
        """Opaque state that transfer_from() can compare against later."""

    @abstractmethod
    def transfer_from(self, snapshot) -> sparse.csr_matrix:
        """(new x old) coefficient transfer from a snapshotted space to the current one."""

    @abstractmethod
    def refine_elements(self, marked: Sequence[bool]) -> None:
        """Refine the marked elements without computing a transfer."""

    @abstractmethod
    def refine_all(self) -> None:
        """Refine every element without computing a transfer."""

    @abstractmethod
    def side_trace(self, side: Side) -> Tuple[np.ndarray, KnotVector, sparse.csr_matrix]:
        """
        Trace of the basis on a patch side.

        Returns:
            (ids, kv, S): ids of the functions nonzero on the side, the
            univariate knot vector the traces are expressed in, and
            S (len(ids) x kv.n_basis) with trace(N_ids[r]) = sum_k S[r, k] M_k
        """

    @abstractmethod
    def _cell_levels(self):
        """Per-level (knot vector xi, knot vector eta) pairs, coarsest first."""

    # ------------------------------------------------------------------
    # Shared machinery
    # ------------------------------------------------------------------

    @property
    def domain(self) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        kv_xi, kv_eta = self.knot_vectors
        return (kv_xi.domain, kv_eta.domain)

    def _invalidate(self) -> None:
        self.generation += 1
        self._elements = None
        self._lookup = {}

    def _check_marks(self, marked) -> np.ndarray:
        marked = np.asarray(marked, dtype=bool)
        if marked.size != self.total_elements():
            raise ConfigurationError(
                f"Got {marked.size} marks for {self.total_elements()} elements")
        return marked

    def refine(self, marked: Sequence[bool]) -> sparse.csr_matrix:
        """
        Refine the marked elements (each split into its four children).

        Parameters:
            marked: One flag per element of elements()

        Returns:
            Transfer T (new x old): new coefficients = T @ old coefficients
        """
        snap = self.snapshot()
        self.refine_elements(marked)
        return self.transfer_from(snap)

    def uniform_refine(self) -> sparse.csr_matrix:
        """Refine every element; returns the (new x old) coefficient transfer."""
        snap = self.snapshot()
        self.refine_all()
        return self.transfer_from(snap)

    def elements(self) -> List[Element]:
        """Active elements (cached until the next refinement)."""
        if self._elements is None:
            self._elements = self._build_elements()
            self._lookup = {(e.level,) + tuple(e.cell): e for e in self._elements}
        return self._elements

    def total_elements(self) -> int:
        return len(self.elements())

    def active_functions(self, element: Element) -> np.ndarray:
        """Patch-local indices of the functions nonzero on the element."""
        return element.function_ids

    def evaluate(self, element: Element, points: np.ndarray,
                 n_ders: int = 1) -> Tuple[np.ndarray, ...]:
        """
        Evaluate the active functions of an element.

        Parameters:
            element: Active element of this basis
            points: (n_q, 2) reference coordinates in [0,1]^2
            n_ders: 0 (values), 1 (+ parametric gradients), 2 (+ Hessians)

        Returns:
            values (n_act, n_q), gradients (n_act, n_q, 2),
            Hessians (n_act, n_q, 2, 2) with respect to (xi, eta)
        """
        bern = BernsteinBasis(element.degrees).eval_all(points, n_ders)
        C = element.extraction_operator
        h = element.sizes
        out = [C @ bern[0]]
        if n_ders >= 1:
            out.append(np.einsum('kb,bqd->kqd', C, bern[1]) / h)
        if n_ders >= 2:
            out.append(np.einsum('kb,bqde->kqde', C, bern[2]) / np.outer(h, h))
        return tuple(out)

    def boundary_functions(self, side) -> np.ndarray:
        """Patch-local indices of the functions nonzero on a side."""
        return self.side_trace(Side.from_name(side))[0]

    def elements_on_side(self, side) -> List[Element]:
        """Active elements with an edge on the given side."""
        side = Side.from_name(side)
        dom = self.domain
        return [e for e in self.elements() if e.touches(side, dom)]

    def locate(self, xi: float, eta: float) -> Element:
        """
        Active element containing a parametric point (half-open cells,
        closed at the upper domain end).
        """
        self.elements()
        for level in range(self.max_level, -1, -1):
            kv_xi, kv_eta = self._cell_levels()[level]
            key = (level, kv_xi.find_element(xi), kv_eta.find_element(eta))
            if key in self._lookup:
                return self._lookup[key]
        raise ValueError(f"No active element contains ({xi}, {eta})")

    def element_at(self, level: int, i: int, j: int) -> Optional[Element]:
        self.elements()
        return self._lookup.get((level, i, j))


class TensorBSplineBasis(SplineBasis):
    """
    Tensor-product B-spline basis of one patch.

    Supports uniform (dyadic) refinement only; local refinement needs
    a hierarchical basis.
    """

    def __init__(self, kv_xi: KnotVector, kv_eta: KnotVector):
        super().__init__()
        self._kv_xi = kv_xi
        self._kv_eta = kv_eta

    @classmethod
    def from_surface(cls, surface, degree: Optional[int] = None) -> 'TensorBSplineBasis':
        kv_xi, kv_eta = surface.knot_vectors
        if degree is not None:
            kv_xi, kv_eta = kv_xi.with_degree(degree), kv_eta.with_degree(degree)
        return cls(kv_xi, kv_eta)

    @property
    def degrees(self) -> Tuple[int, int]:
        return (self._kv_xi.degree, self._kv_eta.degree)

    @property
    def knot_vectors(self) -> Tuple[KnotVector, KnotVector]:
        return (self._kv_xi, self._kv_eta)

    @property
    def max_level(self) -> int:
        return 0

    @property
    def n_basis_per_dir(self) -> Tuple[int, int]:
        return (self._kv_xi.n_basis, self._kv_eta.n_basis)

    def total_functions(self) -> int:
        return self._kv_xi.n_basis * self._kv_eta.n_basis

    def _cell_levels(self):
        return [(self._kv_xi, self._kv_eta)]

    def tensor_to_global_index(self, a: int, b: int) -> int:
        return b * self._kv_xi.n_basis + a

    def global_to_tensor_index(self, idx: int) -> Tuple[int, int]:
        n_xi = self._kv_xi.n_basis
        return (idx % n_xi, idx // n_xi)

    def _build_elements(self) -> List[Element]:
        kv_xi, kv_eta = self._kv_xi, self._kv_eta
        C_xi = compute_extraction_operators_1d(kv_xi)
        C_eta = compute_extraction_operators_1d(kv_eta)
        n_xi = kv_xi.n_basis

        elements = []
        for j, bounds_eta in enumerate(kv_eta.elements):
            act_eta = kv_eta.active_basis_indices(j)
            for i, bounds_xi in enumerate(kv_xi.elements):
                act_xi = kv_xi.active_basis_indices(i)
                ids = (act_eta[:, None] * n_xi + act_xi[None, :]).ravel()
                elements.append(Element(
                    patch=self.patch,
                    index=len(elements),
                    level=0,
                    cell=(i, j),
                    parametric_bounds=(bounds_xi, bounds_eta),
                    function_ids=ids,
                    extraction_operator=np.kron(C_eta[j], C_xi[i]),
                    degrees=self.degrees,
                ))
        return elements

    def snapshot(self):
        return (self.generation, self._kv_xi, self._kv_eta)

    def transfer_from(self, snapshot) -> sparse.csr_matrix:
        generation, kv_xi, kv_eta = snapshot
        if generation == self.generation:
            return sparse.identity(self.total_functions(), format='csr')
        A_xi = compute_refinement_matrix(kv_xi, self._kv_xi)
        A_eta = compute_refinement_matrix(kv_eta, self._kv_eta)
        return sparse.kron(sparse.csr_matrix(A_eta), sparse.csr_matrix(A_xi), format='csr')

    def refine_all(self) -> None:
        self._kv_xi, _ = refine_knot_vector_dyadic(self._kv_xi)
        self._kv_eta, _ = refine_knot_vector_dyadic(self._kv_eta)
        self._invalidate()

    def refine_elements(self, marked: Sequence[bool]) -> None:
        marked = self._check_marks(marked)
        if marked.all():
            self.refine_all()
        elif marked.any():
            raise ConfigurationError(
                "Local refinement needs a hierarchical basis (use THBBasis)")

    def side_trace(self, side: Side) -> Tuple[np.ndarray, KnotVector, sparse.csr_matrix]:
        n_xi, n_eta = self.n_basis_per_dir
        if side.direction == 0:
            a = n_xi - 1 if side.is_max else 0
            ids = np.arange(n_eta) * n_xi + a
            kv = self._kv_eta
        else:
            b = n_eta - 1 if side.is_max else 0
            ids = b * n_xi + np.arange(n_xi)
            kv = self._kv_xi
        return ids, kv, sparse.identity(len(ids), format='csr')
