"""
Bézier extraction operators.

On each element the spline functions that are nonzero there can be written
as linear combinations of Bernstein polynomials on the reference element:

    N_local(xi) = C_e @ B(t),   t = (xi - xi_start) / h

For tensor-product 2D elements the operator is the Kronecker product
C_e = C_eta ⊗ C_xi, with the xi index running fastest. Hierarchical bases
multiply this tensor operator from the left by their truncation
coefficients, so evaluation code only ever sees Bernstein polynomials and
one matrix per element.

Reference:
- Borden et al., "Isogeometric finite element data structures
  based on Bézier extraction of NURBS"
"""

import numpy as np
from typing import List, Tuple
from .knot_vector import KnotVector


def bernstein_1d(p: int, t, n_ders: int = 0) -> np.ndarray:
    """
    Bernstein polynomials of degree p and their derivatives.

    Parameters:
        p: Polynomial degree (p >= 0)
        t: Parameter values in [0, 1], scalar or array of shape (n,)
        n_ders: Highest derivative order

    Returns:
        Array of shape (n_ders + 1, n, p + 1); result[k, q, i] is
        d^k/dt^k B_{i,p}(t_q)
    """
    t = np.atleast_1d(np.asarray(t, dtype=np.float64))
    result = np.zeros((n_ders + 1, t.size, p + 1))

    # table[d] holds the degree-d Bernstein values
    table = [np.ones((t.size, 1))]
    for d in range(1, p + 1):
        prev = table[-1]
        cur = np.zeros((t.size, d + 1))
        cur[:, :-1] += (1.0 - t)[:, None] * prev
        cur[:, 1:] += t[:, None] * prev
        table.append(cur)

    for k in range(n_ders + 1):
        if k > p:
            break
        ders = table[p - k]
        for s in range(1, k + 1):
            deg = p - k + s
            nxt = np.zeros((t.size, deg + 1))
            nxt[:, 1:] += deg * ders
            nxt[:, :-1] -= deg * ders
            ders = nxt
        result[k] = ders

    return result


def _bernstein_basis(p: int, t: float) -> np.ndarray:
    """Bernstein polynomials of degree p at a single t, shape (p+1,)."""
    return bernstein_1d(p, t)[0, 0]


def bernstein_basis_ders(p: int, t: float, n_ders: int = 1) -> np.ndarray:
    """
    Bernstein polynomials and derivatives at a single t.

    Returns:
        Array of shape (n_ders+1, p+1) where result[k, i] is d^k/dt^k B_{i,p}(t)
    """
    return bernstein_1d(p, t, n_ders)[:, 0, :]


def compute_extraction_operators_1d(kv: KnotVector) -> List[np.ndarray]:
    """
    Bézier extraction operators for all elements of a knot vector.

    The operator is found by evaluating the p+1 active B-splines and the
    Bernstein polynomials at p+1 distinct points of the element and solving
    N = B @ C_e.T.

    Parameters:
        kv: Knot vector

    Returns:
        List of (p+1, p+1) operators, one per element. Row i belongs to
        the function kv.active_basis_indices(e)[i].
    """
    from ..geometry.bspline import eval_basis_1d

    p = kv.degree
    if p == 0:
        return [np.ones((1, 1)) for _ in range(kv.n_elements)]

    t_pts = 0.5 * (1 - np.cos(np.pi * np.arange(p + 1) / p))
    B_matrix = bernstein_1d(p, t_pts)[0]

    C_list = []
    for e, (xi_start, xi_end) in enumerate(kv.elements):
        h = xi_end - xi_start
        span = kv.element_to_span(e)
        N_matrix = np.array([eval_basis_1d(kv, xi_start + h * t, span) for t in t_pts])
        C_e = np.linalg.solve(B_matrix, N_matrix).T
        # clean round-off so zero patterns are exact
        C_e[np.abs(C_e) < 1e-14] = 0.0
        C_list.append(C_e)

    return C_list


def compute_extraction_operators_2d(kv_xi: KnotVector,
                                     kv_eta: KnotVector) -> List[np.ndarray]:
    """
    2D extraction operators C_e = C_eta ⊗ C_xi, element order j * n_xi + i.
    """
    C_xi_list = compute_extraction_operators_1d(kv_xi)
    C_eta_list = compute_extraction_operators_1d(kv_eta)

    return [np.kron(C_eta, C_xi) for C_eta in C_eta_list for C_xi in C_xi_list]


class BernsteinBasis:
    """
    Tensor-product Bernstein basis on the reference element [0,1]^2.

    B_{i,j}(xi, eta) = B_i(xi) * B_j(eta), flat index j * (p_xi + 1) + i.
    """

    def __init__(self, degrees: Tuple[int, ...]):
        self.degrees = tuple(degrees)
        self.n_dim = len(degrees)
        if self.n_dim != 2:
            raise ValueError(f"Only bivariate Bernstein bases are supported, got {degrees}")

    @property
    def n_basis(self) -> int:
        """Total number of tensor-product basis functions."""
        return (self.degrees[0] + 1) * (self.degrees[1] + 1)

    def eval(self, xi: Tuple[float, float]) -> np.ndarray:
        """Values of all functions at one reference point, shape (n_basis,)."""
        return self.eval_all(np.array([xi], dtype=np.float64))[0][:, 0]

    def eval_all(self, points: np.ndarray, n_ders: int = 1) -> Tuple[np.ndarray, ...]:
        """
        Evaluate the basis and its derivatives at many reference points.

        Parameters:
            points: (n_q, 2) reference coordinates
            n_ders: 0 (values), 1 (+ gradients) or 2 (+ Hessians)

        Returns:
            values (n_basis, n_q), and if requested gradients
            (n_basis, n_q, 2) and Hessians (n_basis, n_q, 2, 2)
        """
        points = np.atleast_2d(points)
        p_xi, p_eta = self.degrees
        bx = bernstein_1d(p_xi, points[:, 0], n_ders)
        by = bernstein_1d(p_eta, points[:, 1], n_ders)

        def tensor(kx, ky):
            # (n_q, p_eta+1, p_xi+1) -> (n_basis, n_q)
            return np.einsum('qj,qi->jiq', by[ky], bx[kx]).reshape(-1, points.shape[0])

        values = tensor(0, 0)
        if n_ders == 0:
            return (values,)

        grads = np.stack([tensor(1, 0), tensor(0, 1)], axis=-1)
        if n_ders == 1:
            return values, grads

        d_xy = tensor(1, 1)
        hess = np.empty(values.shape + (2, 2))
        hess[..., 0, 0] = tensor(2, 0)
        hess[..., 0, 1] = d_xy
        hess[..., 1, 0] = d_xy
        hess[..., 1, 1] = tensor(0, 2)
        return values, grads, hess
