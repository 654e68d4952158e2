"""
Linear solves for assembled systems.

Two backends:
    "lu"  sparse direct factorization (scipy.sparse.linalg.splu)
    "cg"  conjugate gradients for symmetric positive definite systems

Failures are reported as LinearSolverError; there are no retries.
"""

import logging
import numpy as np
from scipy import sparse
from scipy.sparse.linalg import cg, splu

from ..errors import ConfigurationError, LinearSolverError

logger = logging.getLogger(__name__)

METHODS = ("lu", "cg")


def solve_linear(matrix, rhs: np.ndarray, method: str = "lu",
                 tolerance: float = 1e-12, max_iterations: int = None) -> np.ndarray:
    """
    Solve K x = f.

    Parameters:
        matrix: Square sparse (or dense) matrix
        rhs: Right-hand side
        method: "lu" or "cg"
        tolerance: Relative residual tolerance of "cg"
        max_iterations: Iteration cap of "cg" (default: scipy's)

    Raises:
        ConfigurationError: unknown method or shape mismatch
        LinearSolverError: singular matrix or CG not converged
    """
    method = str(method).lower()
    if method not in METHODS:
        raise ConfigurationError(f"Unknown linear solver '{method}', expected one of {METHODS}")

    K = sparse.csc_matrix(matrix)
    f = np.asarray(rhs, dtype=np.float64)
    if K.shape[0] != K.shape[1] or K.shape[0] != f.shape[0]:
        raise ConfigurationError(f"Cannot solve a {K.shape} system with {f.shape[0]} right-hand side entries")
    if K.shape[0] == 0:
        return np.zeros(0)

    if method == "lu":
        try:
            x = splu(K).solve(f)
        except RuntimeError as exc:
            raise LinearSolverError(f"LU factorization of the {K.shape[0]}x{K.shape[0]} "
                                    f"system failed: {exc}") from exc
        if not np.all(np.isfinite(x)):
            raise LinearSolverError("LU solve produced non-finite values")
        return x

    x, info = cg(K, f, rtol=tolerance, atol=0.0, maxiter=max_iterations)
    if info != 0:
        raise LinearSolverError(f"CG did not converge to rtol={tolerance:g} (info={info})")
    logger.debug("CG solve of %d unknowns converged", K.shape[0])
    return x
