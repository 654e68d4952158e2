"""
Knot vector utilities.

A knot vector is a non-decreasing sequence of real numbers that defines
the parametric domain and basis function support for B-splines/NURBS.

Mathematical background:
- Open knot vectors have p+1 repeated knots at each end (interpolatory at boundaries)
- The number of basis functions n = len(knots) - p - 1
- Knot spans (elements) are unique intervals [xi_i, xi_{i+1}] where xi_i < xi_{i+1}

Refinement convention used throughout the package:
    P_fine = A @ P_coarse,   N_coarse_i = sum_k A[k, i] * N_fine_k
so A has shape (n_fine, n_coarse) and maps coarse coefficients to fine ones.
"""

import numpy as np
from typing import List, Tuple
from dataclasses import dataclass


@dataclass
class KnotVector:
    """
    Represents a univariate knot vector.

    Attributes:
        knots: The knot values (non-decreasing sequence)
        degree: Polynomial degree p

    Properties computed:
        n_basis: Number of basis functions
        n_elements: Number of non-zero measure knot spans
        elements: List of (start, end) parametric coordinates for each element
    """
    knots: np.ndarray
    degree: int

    def __post_init__(self):
        self.knots = np.asarray(self.knots, dtype=np.float64)
        self._validate()
        self._compute_elements()

    def _validate(self):
        """Validate knot vector properties."""
        if self.degree < 0:
            raise ValueError(f"Degree must be non-negative, got {self.degree}.")
        if len(self.knots) < 2 * (self.degree + 1):
            raise ValueError(
                f"Knot vector too short for degree {self.degree}. "
                f"Need at least {2 * (self.degree + 1)} knots, got {len(self.knots)}."
            )
        if not np.all(np.diff(self.knots) >= 0):
            raise ValueError("Knot vector must be non-decreasing.")

    def _compute_elements(self):
        """Compute the non-zero knot spans and their span indices."""
        unique_knots = np.unique(self.knots)
        self._unique_knots = unique_knots
        self._elements = []
        self._element_indices = []

        for i in range(len(unique_knots) - 1):
            xi_start = unique_knots[i]
            xi_end = unique_knots[i + 1]
            if xi_end > xi_start:
                self._elements.append((xi_start, xi_end))
                # last occurrence of xi_start
                span_idx = np.searchsorted(self.knots, xi_start, side='right') - 1
                span_idx = max(self.degree, min(span_idx, self.n_basis - 1))
                self._element_indices.append(span_idx)

    @property
    def n_basis(self) -> int:
        """Number of basis functions."""
        return len(self.knots) - self.degree - 1

    @property
    def n_elements(self) -> int:
        """Number of non-zero measure knot spans (elements)."""
        return len(self._elements)

    @property
    def elements(self) -> List[Tuple[float, float]]:
        """List of element intervals as (xi_start, xi_end) tuples."""
        return self._elements.copy()

    @property
    def unique_knots(self) -> np.ndarray:
        """Unique knot values (breakpoints)."""
        return self._unique_knots.copy()

    @property
    def domain(self) -> Tuple[float, float]:
        """Parametric domain (first unique knot, last unique knot)."""
        return (self._unique_knots[0], self._unique_knots[-1])

    def find_span(self, xi: float) -> int:
        """
        Find the knot span index containing parameter value xi.

        For xi in [xi_i, xi_{i+1}), returns i. The last span is closed.

        Parameters:
            xi: Parameter value

        Returns:
            Span index i such that xi in [xi_i, xi_{i+1})
        """
        n = self.n_basis
        p = self.degree

        if xi >= self.knots[n]:
            return n - 1
        if xi <= self.knots[p]:
            return p

        low = p
        high = n
        mid = (low + high) // 2

        while xi < self.knots[mid] or xi >= self.knots[mid + 1]:
            if xi < self.knots[mid]:
                high = mid
            else:
                low = mid
            mid = (low + high) // 2

        return mid

    def find_element(self, xi: float) -> int:
        """
        Find which element contains parameter value xi.

        Interior element boundaries use the half-open convention
        [xi_start, xi_end); the last element is closed at the domain end.

        Parameters:
            xi: Parameter value

        Returns:
            Element index (0-based)
        """
        lo, hi = self.domain
        if xi < lo - 1e-12 or xi > hi + 1e-12:
            raise ValueError(f"Parameter {xi} outside domain {self.domain}")
        starts = np.array([e[0] for e in self._elements])
        e = int(np.searchsorted(starts, xi, side='right')) - 1
        return min(max(e, 0), self.n_elements - 1)

    def element_to_span(self, element_idx: int) -> int:
        """Convert element index to knot span index."""
        return self._element_indices[element_idx]

    def active_basis_indices(self, element_idx: int) -> np.ndarray:
        """
        Get indices of the p+1 basis functions active on a given element.

        Parameters:
            element_idx: Element index

        Returns:
            Array of p+1 global basis function indices
        """
        span = self.element_to_span(element_idx)
        return np.arange(span - self.degree, span + 1)

    def support_elements(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        First and last element (inclusive) of every basis function support.

        Returns:
            (first, last) integer arrays of length n_basis
        """
        first = np.full(self.n_basis, self.n_elements, dtype=int)
        last = np.full(self.n_basis, -1, dtype=int)
        for e in range(self.n_elements):
            act = self.active_basis_indices(e)
            first[act] = np.minimum(first[act], e)
            last[act] = np.maximum(last[act], e)
        return first, last

    def greville_abscissae(self) -> np.ndarray:
        """
        Compute Greville abscissae (nodal parameters for basis functions).

        xi_i = (xi_{i+1} + ... + xi_{i+p}) / p; for p = 0 the midpoint of
        the support is used.

        Returns:
            Array of n Greville abscissae
        """
        p = self.degree
        n = self.n_basis
        greville = np.zeros(n)

        for i in range(n):
            if p == 0:
                greville[i] = 0.5 * (self.knots[i] + self.knots[i + 1])
            else:
                greville[i] = np.sum(self.knots[i + 1:i + p + 1]) / p

        return greville

    def reversed(self) -> 'KnotVector':
        """Knot vector of the reversed parametrization t -> a + b - t."""
        a, b = self.domain
        return KnotVector((a + b) - self.knots[::-1], self.degree)

    def matches(self, other: 'KnotVector', tol: float = 1e-12) -> bool:
        """True if both knot vectors have the same degree and knots."""
        return (self.degree == other.degree
                and len(self.knots) == len(other.knots)
                and bool(np.all(np.abs(self.knots - other.knots) <= tol)))

    def with_degree(self, degree: int) -> 'KnotVector':
        """
        Knot vector with the same breakpoints, the given degree and
        single interior knots (maximal smoothness).
        """
        u = self._unique_knots
        knots = np.concatenate([[u[0]] * (degree + 1), u[1:-1], [u[-1]] * (degree + 1)])
        return KnotVector(knots, degree)


def make_open_knot_vector(n_basis: int, degree: int,
                           domain: Tuple[float, float] = (0.0, 1.0)) -> KnotVector:
    """
    Create an open (clamped) uniform knot vector.

    Parameters:
        n_basis: Number of basis functions desired
        degree: Polynomial degree p
        domain: Parametric domain (start, end)

    Returns:
        KnotVector with uniform internal knots
    """
    p = degree
    n_knots = n_basis + p + 1
    n_internal = n_knots - 2 * (p + 1)

    if n_internal < 0:
        raise ValueError(
            f"Cannot create knot vector: n_basis={n_basis} too small for degree={degree}"
        )

    a, b = domain
    knots = [a] * (p + 1)
    if n_internal > 0:
        knots.extend(np.linspace(a, b, n_internal + 2)[1:-1])
    knots.extend([b] * (p + 1))

    return KnotVector(np.array(knots), degree)


def make_uniform_knot_vector(n_elements: int, degree: int,
                              domain: Tuple[float, float] = (0.0, 1.0)) -> KnotVector:
    """Open uniform knot vector with the given number of elements."""
    return make_open_knot_vector(n_elements + degree, degree, domain)


def compute_multiplicity(kv: KnotVector, xi: float, tol: float = 1e-14) -> int:
    """Number of times xi appears in the knot vector."""
    return int(np.sum(np.abs(kv.knots - xi) < tol))


def compute_knot_insertion_matrix(kv: KnotVector, xi: float) -> Tuple[KnotVector, np.ndarray]:
    """
    Compute the knot insertion matrix for inserting a single knot (Boehm).

    Parameters:
        kv: Original knot vector
        xi: Knot value to insert

    Returns:
        Tuple of (new_knot_vector, insertion_matrix A)
        A has shape (n_old + 1, n_old) and P_new = A @ P_old
    """
    p = kv.degree
    knots = kv.knots
    n_old = kv.n_basis

    k = kv.find_span(xi)

    new_knots = np.zeros(len(knots) + 1)
    new_knots[:k + 1] = knots[:k + 1]
    new_knots[k + 1] = xi
    new_knots[k + 2:] = knots[k + 1:]

    A = np.zeros((n_old + 1, n_old))

    for i in range(n_old + 1):
        if i <= k - p:
            A[i, i] = 1.0
        elif i >= k + 1:
            A[i, i - 1] = 1.0
        else:
            denom = knots[i + p] - knots[i]
            alpha = (xi - knots[i]) / denom if abs(denom) > 1e-14 else 0.0
            A[i, i - 1] = 1.0 - alpha
            A[i, i] = alpha

    return KnotVector(new_knots, p), A


def insert_knots(kv: KnotVector, values) -> Tuple[KnotVector, np.ndarray]:
    """
    Insert several knots one after the other.

    Returns:
        (refined knot vector, A) with A of shape (n_fine, n_coarse)
    """
    current_kv = kv
    A_total = np.eye(kv.n_basis)
    for xi in sorted(values):
        current_kv, A = compute_knot_insertion_matrix(current_kv, xi)
        A_total = A @ A_total
    return current_kv, A_total


def refine_knot_vector_dyadic(kv: KnotVector) -> Tuple[KnotVector, np.ndarray]:
    """
    Insert the midpoint of every non-zero span (dyadic refinement).

    Every element is split into two children, element e of the coarse
    vector becoming elements 2e and 2e+1 of the fine one.

    Returns:
        (refined_knot_vector, A) with A of shape (n_fine, n_coarse)
    """
    return insert_knots(kv, [0.5 * (a + b) for a, b in kv.elements])


def compute_refinement_matrix(kv_coarse: KnotVector, kv_fine: KnotVector) -> np.ndarray:
    """
    Refinement matrix between two nested knot vectors.

    Parameters:
        kv_coarse: Coarse level knot vector
        kv_fine: Fine level knot vector (must contain all knots from coarse)

    Returns:
        A with shape (n_fine, n_coarse), P_fine = A @ P_coarse
    """
    to_insert = []
    for knot in np.unique(kv_fine.knots):
        extra = compute_multiplicity(kv_fine, knot) - compute_multiplicity(kv_coarse, knot)
        if extra < 0:
            raise ValueError("Fine knot vector must contain all coarse knots")
        to_insert.extend([knot] * extra)
    for knot in np.unique(kv_coarse.knots):
        if compute_multiplicity(kv_fine, knot) == 0:
            raise ValueError("Fine knot vector must contain all coarse knots")

    _, A = insert_knots(kv_coarse, to_insert)
    return A
