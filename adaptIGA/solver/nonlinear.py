"""
Picard (fixed-point) iteration for the linearized p-Laplacian.

Every iteration freezes the previous iterate w in the diffusion
coefficient, solves the resulting linear problem and measures the
residual of the new iterate against the operator built from itself:

    K(w_k) x_{k+1} = f
    w_{k+1} = expand(x_{k+1})
    r_{k+1} = K(w_{k+1}) x_{k+1} - f

The loop stops once |r| <= tolerance (converged) or after max_iterations
(not converged). Non-convergence is reported in the result, never raised.

For p = 2 the operator does not depend on w, so the first solve is exact
and the loop stops after one iteration.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from ..assembly.assembler import AssembledSystem, Assembler, AssemblerOptions
from ..discretization.boundary import DirichletStrategy, InterfaceStrategy
from ..errors import ConfigurationError
from .linear import METHODS, solve_linear

logger = logging.getLogger(__name__)


@dataclass
class NonlinearOptions:
    """Settings of one fixed-point solve."""

    tolerance: float = 1e-12            # |K(w) x - f|_2 convergence threshold
    max_iterations: int = 50            # hard cap on Picard iterations
    linear_solver: str = "lu"           # "lu" or "cg"
    linear_tolerance: float = 1e-12     # rtol of "cg"
    reuse_residual_system: bool = False  # next system = last residual assembly

    def __post_init__(self):
        if not np.isfinite(self.tolerance) or self.tolerance < 0.0:
            raise ConfigurationError(f"Tolerance must be a non-negative number, got {self.tolerance}")
        if isinstance(self.max_iterations, bool) or int(self.max_iterations) != self.max_iterations \
                or self.max_iterations < 1:
            raise ConfigurationError(
                f"max_iterations must be a positive integer, got {self.max_iterations}")
        self.max_iterations = int(self.max_iterations)
        if str(self.linear_solver).lower() not in METHODS:
            raise ConfigurationError(f"Unknown linear solver '{self.linear_solver}'")


@dataclass
class FixedPointResult:
    """
    Outcome of a fixed-point solve.

    Unpacks as (solution, iterations, residual_norm).

    Attributes:
        solution: DiscreteField of the last iterate
        iterations: Number of linear solves performed
        residual_norm: Euclidean norm of the last residual over the free DOFs
        converged: residual_norm <= tolerance
        residual_history: Residual norm after every iteration
        free_solution: Last iterate restricted to the free DOFs
        system: The residual system K(w) assembled with the last iterate
    """
    solution: object
    iterations: int
    residual_norm: float
    converged: bool
    residual_history: List[float] = field(default_factory=list)
    free_solution: Optional[np.ndarray] = field(default=None, repr=False)
    system: Optional[AssembledSystem] = field(default=None, repr=False)

    def __iter__(self) -> Iterator:
        return iter((self.solution, self.iterations, self.residual_norm))


def solve_nonlinear(pde, basis, tolerance: Optional[float] = None,
                    max_iterations: Optional[int] = None,
                    boundary_strategy=DirichletStrategy.ELIMINATION,
                    interface_strategy=InterfaceStrategy.GLUE,
                    options: Optional[NonlinearOptions] = None,
                    assembler_options: Optional[AssemblerOptions] = None) -> FixedPointResult:
    """
    Solve the p-Laplace problem by fixed-point iteration.

    Parameters:
        pde: LinearizedPLaplacePde; its iterate w is the initial guess
             (None for zero) and holds the final iterate on return
        basis: MultiBasis
        tolerance, max_iterations: Override the values in options
        boundary_strategy: ELIMINATION or NITSCHE
        interface_strategy: GLUE or NONE
        options: NonlinearOptions
        assembler_options: AssemblerOptions

    Raises:
        ConfigurationError: invalid tolerance/max_iterations, or an initial
                            iterate of the wrong length
        LinearSolverError: a linear solve failed
    """
    options = options if options is not None else NonlinearOptions()
    if tolerance is not None or max_iterations is not None:
        options = NonlinearOptions(
            tolerance=options.tolerance if tolerance is None else tolerance,
            max_iterations=options.max_iterations if max_iterations is None else max_iterations,
            linear_solver=options.linear_solver,
            linear_tolerance=options.linear_tolerance,
            reuse_residual_system=options.reuse_residual_system,
        )

    if not hasattr(pde, "set_iterate"):
        raise ConfigurationError(f"{type(pde).__name__} has no iterate to fix")
    n_functions = basis.total_functions()
    if pde.w is not None:
        pde.set_iterate(pde.w, n_functions)

    assembler = Assembler(pde, basis, boundary_strategy, interface_strategy, assembler_options)
    system = assembler.assemble()

    history: List[float] = []
    x = np.zeros(assembler.mapper.n_free)
    residual_system = system
    residual_norm = np.inf
    converged = False
    iteration = 0

    while iteration < options.max_iterations:
        iteration += 1
        x = solve_linear(system.matrix, system.rhs, options.linear_solver,
                         options.linear_tolerance)
        pde.set_iterate(system.expand(x), n_functions)

        residual_system = assembler.assemble()
        residual_norm = float(np.linalg.norm(residual_system.residual(x)))
        history.append(residual_norm)
        logger.debug("Picard iteration %d: |r| = %.3e", iteration, residual_norm)

        if residual_norm <= options.tolerance:
            converged = True
            break
        system = residual_system if options.reuse_residual_system else assembler.assemble()

    if converged:
        logger.info("Fixed-point iteration converged in %d iterations (|r| = %.3e)",
                    iteration, residual_norm)
    else:
        logger.warning("Fixed-point iteration did not converge in %d iterations (|r| = %.3e)",
                       iteration, residual_norm)

    return FixedPointResult(
        solution=assembler.construct_solution(x),
        iterations=iteration,
        residual_norm=residual_norm,
        converged=converged,
        residual_history=history,
        free_solution=x,
        system=residual_system,
    )
