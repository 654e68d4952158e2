"""
Refinement of multi-patch bases and the adaptive loop.

    solve -> estimate -> mark -> refine -> solve -> ...

Refinement returns a Transfer: the block-diagonal (new x old) matrix that
maps full coefficient vectors of the old basis to the refined one. The
refined space contains the old one, so transferred fields are unchanged
as functions.
"""

import logging
import numpy as np
from dataclasses import dataclass
from scipy import sparse
from typing import List, Optional, Tuple

from ..assembly.assembler import Assembler, AssemblerOptions
from ..discretization.boundary import DirichletStrategy, InterfaceStrategy
from ..errors import ConfigurationError
from ..postprocess.norms import l2_error
from ..solver.linear import solve_linear
from ..solver.nonlinear import NonlinearOptions, solve_nonlinear
from .estimators import EstimatorKind, estimate
from .marking import MarkingCriterion, mark

logger = logging.getLogger(__name__)


class Transfer:
    """
    Coefficient transfer between two generations of a MultiBasis.

    Attributes:
        matrix: (n_new x n_old) sparse matrix over full coefficient vectors
    """

    def __init__(self, matrix):
        self.matrix = sparse.csr_matrix(matrix)

    def __repr__(self) -> str:
        return f"Transfer({self.n_new} x {self.n_old})"

    @property
    def n_old(self) -> int:
        return self.matrix.shape[1]

    @property
    def n_new(self) -> int:
        return self.matrix.shape[0]

    def apply(self, coefficients: np.ndarray) -> np.ndarray:
        """New full coefficients of an old full coefficient vector."""
        coefficients = np.asarray(coefficients, dtype=np.float64)
        if coefficients.shape[0] != self.n_old:
            raise ConfigurationError(
                f"Transfer expects {self.n_old} coefficients, got {coefficients.shape[0]}")
        return self.matrix @ coefficients

    def free_operator(self, old_mapper, new_mapper) -> sparse.csr_matrix:
        """
        (new n_free x old n_free) map between free solution vectors, for
        zero values on the eliminated functions.
        """
        if old_mapper.n_raw != self.n_old or new_mapper.n_raw != self.n_new:
            raise ConfigurationError("DofMappers do not match the transfer dimensions")
        return (new_mapper.restriction_matrix() @ self.matrix @ old_mapper.selection_matrix()).tocsr()


def refine(bases, marks) -> Transfer:
    """Refine the marked elements of a MultiBasis (in place)."""
    marks = np.asarray(marks, dtype=bool)
    transfer = Transfer(bases.refine(marks))
    logger.debug("Refined %d of %d elements: %d -> %d functions",
                 int(marks.sum()), marks.size, transfer.n_old, transfer.n_new)
    return transfer


def uniform_refine(bases) -> Transfer:
    """Refine every element of a MultiBasis (in place)."""
    return Transfer(bases.uniform_refine())


def adapt(basis, solution, estimator_kind, criterion, parameter: float,
          pde=None, exact=None) -> Tuple[object, Transfer]:
    """
    One estimate-mark-refine step.

    Parameters:
        basis: MultiBasis the solution lives on (refined in place)
        solution: DiscreteField
        estimator_kind: EstimatorKind or name
        criterion: MarkingCriterion, number or name
        parameter: Marking parameter in [0, 1]
        pde: Needed by the residual estimator
        exact: Needed by the error estimators

    Returns:
        (basis, transfer)
    """
    if solution.bases is not basis:
        raise ConfigurationError("The solution does not live on the given basis")
    values = estimate(solution, estimator_kind, pde=pde, exact=exact)
    marks = mark(values, criterion, parameter)
    return basis, refine(basis, marks)


@dataclass
class RefinementRecord:
    """Summary of one pass of the adaptive loop."""
    pass_index: int
    n_functions: int
    n_free: int
    n_elements: int
    n_marked: int
    estimate: float
    l2_error: Optional[float] = None
    iterations: int = 1


class AdaptiveRefinementController:
    """
    Adaptive solve-estimate-mark-refine loop.

    Parameters:
        estimator_kind: EstimatorKind driving the marking
        criterion: MarkingCriterion (1-3)
        parameter: Marking parameter in [0, 1]
        passes: Number of solves; the basis is refined between them
        boundary_strategy: ELIMINATION or NITSCHE
        interface_strategy: GLUE or NONE
        assembler_options: AssemblerOptions
        nonlinear_options: Options of the fixed-point solve (p-Laplace PDEs)
        linear_solver: "lu" or "cg"
    """

    def __init__(self, estimator_kind=EstimatorKind.RESIDUAL,
                 criterion=MarkingCriterion.TOP_FRACTION, parameter: float = 0.85,
                 passes: int = 2,
                 boundary_strategy=DirichletStrategy.ELIMINATION,
                 interface_strategy=InterfaceStrategy.GLUE,
                 assembler_options: Optional[AssemblerOptions] = None,
                 nonlinear_options: Optional[NonlinearOptions] = None,
                 linear_solver: str = "lu"):
        if passes < 1:
            raise ConfigurationError(f"Need at least one pass, got {passes}")
        if not 0.0 <= parameter <= 1.0:
            raise ConfigurationError(f"Marking parameter must lie in [0, 1], got {parameter}")
        self.estimator_kind = EstimatorKind.from_name(estimator_kind)
        self.criterion = MarkingCriterion.from_name(criterion)
        self.parameter = float(parameter)
        self.passes = int(passes)
        self.boundary_strategy = DirichletStrategy.from_name(boundary_strategy)
        self.interface_strategy = InterfaceStrategy.from_name(interface_strategy)
        self.assembler_options = assembler_options
        self.nonlinear_options = nonlinear_options
        self.linear_solver = linear_solver
        self.records: List[RefinementRecord] = []
        self.solution = None

    def _solve(self, pde, bases):
        if hasattr(pde, "set_iterate"):
            result = solve_nonlinear(pde, bases, boundary_strategy=self.boundary_strategy,
                                     interface_strategy=self.interface_strategy,
                                     options=self.nonlinear_options,
                                     assembler_options=self.assembler_options)
            return result.solution, result.system.n_free, result.iterations
        assembler = Assembler(pde, bases, self.boundary_strategy, self.interface_strategy,
                              self.assembler_options)
        system = assembler.assemble()
        x = solve_linear(system.matrix, system.rhs, self.linear_solver)
        return assembler.construct_solution(x), system.n_free, 1

    def run(self, pde, bases, exact=None) -> List[RefinementRecord]:
        """
        Run all passes.

        Parameters:
            pde: PDE descriptor on the geometry of bases
            bases: MultiBasis (refined in place)
            exact: Exact solution, for L2 errors and the error estimators

        Returns:
            One RefinementRecord per pass; the last solution is kept in
            self.solution
        """
        self.records = []
        for n in range(1, self.passes + 1):
            solution, n_free, iterations = self._solve(pde, bases)
            values = estimate(solution, self.estimator_kind, pde=pde, exact=exact)
            marks = mark(values, self.criterion, self.parameter)

            record = RefinementRecord(
                pass_index=n,
                n_functions=bases.total_functions(),
                n_free=n_free,
                n_elements=bases.total_elements(),
                n_marked=int(marks.sum()),
                estimate=float(np.sqrt(np.sum(values ** 2))),
                l2_error=None if exact is None else l2_error(solution, exact),
                iterations=iterations,
            )
            self.records.append(record)
            self.solution = solution
            logger.info("Pass %d: %d functions, %d elements, estimate %.3e, marked %d",
                        n, record.n_functions, record.n_elements, record.estimate,
                        record.n_marked)

            if n < self.passes:
                transfer = refine(bases, marks)
                if getattr(pde, "w", None) is not None:
                    pde.set_iterate(transfer.apply(pde.w), bases.total_functions())
        return self.records
