"""
Global assembly of a PDE over a multi-patch spline discretization.

The assembly loop is:
    for patch in patch_order:
        for element in basis[patch].elements():
            visitor.evaluate(...)          # basis + geometry at quadrature points
            visitor.assemble()             # local matrix and rhs
            visitor.local_to_global(...)   # map, condense, scatter
    Neumann edges, then (Nitsche) Dirichlet edges

Dirichlet conditions are either eliminated (their values are computed once
per Assembler by a boundary L2 projection and condensed into the rhs) or
imposed weakly by Nitsche's method. Interfaces are glued by the DofMapper.

The assembler knows NOTHING about knot vectors or spline types; it only
sees elements, their active functions and the geometry map.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from scipy import sparse
from scipy.sparse.linalg import splu
from typing import Callable, Dict, Optional, Sequence, Tuple

from ..discretization.boundary import (
    DirichletStrategy, DirichletValues, InterfaceStrategy
)
from ..discretization.dof_mapper import DofMapper
from ..errors import ConfigurationError, GeometryMismatchError
from ..quadrature.gauss import GaussQuadrature
from .evaluator import evaluate_side
from .sparse_system import SparseSystem, estimate_nnz_per_row
from .visitors import (
    MassVisitor, MomentVisitor, NeumannVisitor, NitscheVisitor, make_visitor
)

logger = logging.getLogger(__name__)


@dataclass
class AssemblerOptions:
    """
    Assembly options.

    Attributes:
        dirichlet_values: How eliminated values are computed
        quad_a, quad_b: Gauss points per direction n = quad_a * p + quad_b
        nitsche_penalty: Penalty constant, None for 2.5 (p+1)^2
        reserve_multiplier: Scales the triplet reservation estimate
    """
    dirichlet_values: DirichletValues = DirichletValues.L2_PROJECTION
    quad_a: float = 1.0
    quad_b: int = 1
    nitsche_penalty: Optional[float] = None
    reserve_multiplier: float = 1.0

    def __post_init__(self):
        self.dirichlet_values = DirichletValues.from_name(self.dirichlet_values)
        if self.quad_a < 0 or self.quad_b < 0:
            raise ConfigurationError("Quadrature parameters must be non-negative")
        if self.nitsche_penalty is not None and self.nitsche_penalty <= 0:
            raise ConfigurationError("Nitsche penalty must be positive")
        if self.reserve_multiplier <= 0:
            raise ConfigurationError("Reserve multiplier must be positive")


@dataclass
class AssembledSystem:
    """
    Result of an assembly.

    Attributes:
        matrix: (n_free x n_free) CSR matrix
        rhs: (n_free,) right-hand side (condensed)
        mapper: DofMapper the system is numbered with
        eliminated_values: Values of the eliminated DOFs
    """
    matrix: sparse.csr_matrix
    rhs: np.ndarray
    mapper: DofMapper
    eliminated_values: np.ndarray = field(repr=False)

    @property
    def n_free(self) -> int:
        return self.mapper.n_free

    def expand(self, free: np.ndarray) -> np.ndarray:
        """Full (patch-major) coefficients from a free solution vector."""
        return self.mapper.expand(free, self.eliminated_values)

    def reduce(self, full: np.ndarray) -> np.ndarray:
        return self.mapper.reduce(full)

    def residual(self, free: np.ndarray) -> np.ndarray:
        """K x - f"""
        return self.matrix @ free - self.rhs


class Assembler:
    """
    Assembles one PDE descriptor over a MultiBasis.

    Parameters:
        pde: PoissonPde or LinearizedPLaplacePde
        bases: MultiBasis, one basis per geometry patch
        dirichlet_strategy: ELIMINATION or NITSCHE
        interface_strategy: GLUE or NONE
        options: AssemblerOptions

    Raises:
        GeometryMismatchError: basis and geometry patch counts differ
        ConfigurationError: boundary conditions refer to unknown sides
    """

    def __init__(self, pde, bases,
                 dirichlet_strategy=DirichletStrategy.ELIMINATION,
                 interface_strategy=InterfaceStrategy.GLUE,
                 options: Optional[AssemblerOptions] = None):
        if len(bases) != len(pde.patches):
            raise GeometryMismatchError(
                f"Basis has {len(bases)} patches, geometry has {len(pde.patches)}")
        self.pde = pde
        self.bases = bases
        self.dirichlet_strategy = DirichletStrategy.from_name(dirichlet_strategy)
        self.interface_strategy = InterfaceStrategy.from_name(interface_strategy)
        self.options = options if options is not None else AssemblerOptions()
        self._quadratures: Dict[Tuple[int, int], GaussQuadrature] = {}

        pde.boundary_conditions.validate(len(pde.patches), pde.patches.interfaces)

        self.mapper = DofMapper.build(bases, pde.boundary_conditions, pde.patches.interfaces,
                                      self.interface_strategy, self.dirichlet_strategy)
        self.eliminated_values = self._compute_eliminated_values()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def quadrature(self, degrees: Tuple[int, int]) -> GaussQuadrature:
        if degrees not in self._quadratures:
            self._quadratures[degrees] = GaussQuadrature.for_degree(
                degrees, self.options.quad_a, self.options.quad_b)
        return self._quadratures[degrees]

    def _new_system(self) -> SparseSystem:
        self.mapper.check_basis(self.bases)
        system = SparseSystem(self.mapper)
        system.reserve(estimate_nnz_per_row(self.bases, self.options.reserve_multiplier))
        return system

    def _patch_order(self, patch_order: Optional[Sequence[int]]) -> Sequence[int]:
        if patch_order is None:
            return range(len(self.bases))
        if sorted(patch_order) != list(range(len(self.bases))):
            raise ConfigurationError(f"Patch order {list(patch_order)} is not a permutation")
        return patch_order

    def _visit_elements(self, visitor, system, patch_order=None, values=None) -> None:
        offsets = self.bases.offsets()
        for k in self._patch_order(patch_order):
            basis, surface = self.bases[k], self.pde.patches[k]
            for element in basis.elements():
                visitor.evaluate(basis, surface, element, self.quadrature(element.degrees),
                                 offsets[k])
                visitor.assemble()
                visitor.local_to_global(system, values)

    def _visit_sides(self, visitor, system, values=None) -> None:
        k = visitor.bc.patch
        basis, surface = self.bases[k], self.pde.patches[k]
        offset = self.bases.offsets()[k]
        for element in basis.elements_on_side(visitor.bc.side):
            visitor.evaluate(basis, surface, element, self.quadrature(element.degrees), offset)
            visitor.assemble()
            visitor.local_to_global(system, values)

    # ------------------------------------------------------------------
    # Eliminated values
    # ------------------------------------------------------------------

    def _compute_eliminated_values(self) -> np.ndarray:
        """
        Joint L2 projection of the Dirichlet data onto the eliminated functions.
        """
        mapper = self.mapper
        n = mapper.n_eliminated
        if n == 0 or self.options.dirichlet_values is DirichletValues.HOMOGENEOUS:
            return np.zeros(n)

        rows, cols, vals = [], [], []
        rhs = np.zeros(n)
        for bc in self.pde.boundary_conditions.dirichlet():
            basis, surface = self.bases[bc.patch], self.pde.patches[bc.patch]
            for element in basis.elements_on_side(bc.side):
                d = evaluate_side(basis, surface, element, bc.side,
                                  self.quadrature(element.degrees))
                idx = mapper.indices(d.actives, bc.patch)
                elim = idx >= mapper.n_free
                slots = idx[elim] - mapper.n_free
                V = d.values[elim]
                local = (V * d.weights) @ V.T
                rows.append(np.repeat(slots, len(slots)))
                cols.append(np.tile(slots, len(slots)))
                vals.append(local.ravel())
                np.add.at(rhs, slots, V @ (d.weights * bc.values(d.points)))

        M = sparse.coo_matrix((np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
                              shape=(n, n)).tocsr()
        # slots without boundary support keep the value 0
        empty = np.abs(M.diagonal()) < 1e-300
        if empty.any():
            M = M + sparse.diags(empty.astype(np.float64))
        values = splu(M.tocsc()).solve(rhs)
        logger.debug("Projected Dirichlet data onto %d eliminated functions", n)
        return values

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(self, patch_order: Optional[Sequence[int]] = None) -> AssembledSystem:
        """
        Assemble the PDE's matrix and right-hand side.

        Parameters:
            patch_order: Order in which patches are visited (default 0..n-1);
                         the result does not depend on it
        """
        system = self._new_system()
        values = self.eliminated_values

        self._visit_elements(make_visitor(self.pde.visitor_kind, self.pde), system,
                             patch_order, values)

        for bc in self.pde.boundary_conditions.neumann():
            self._visit_sides(NeumannVisitor(bc), system, values)

        if self.dirichlet_strategy is DirichletStrategy.NITSCHE:
            for bc in self.pde.boundary_conditions.dirichlet():
                self._visit_sides(NitscheVisitor(bc, self.pde, self.options.nitsche_penalty),
                                  system, values)

        K, f = system.finalize()
        logger.debug("Assembled %d x %d system with %d nonzeros", K.shape[0], K.shape[1], K.nnz)
        return AssembledSystem(K, f, self.mapper, values)

    def assemble_mass(self) -> sparse.csr_matrix:
        """Mass matrix over the free functions."""
        system = self._new_system()
        self._visit_elements(MassVisitor(), system)
        return system.finalize()[0]

    def assemble_moments(self, function: Callable) -> np.ndarray:
        """Moments ∫ g N_i over the free functions."""
        system = self._new_system()
        self._visit_elements(MomentVisitor(function), system)
        return system.finalize()[1]

    def construct_solution(self, free: np.ndarray):
        """DiscreteField of a free solution vector."""
        from ..postprocess.field import DiscreteField

        return DiscreteField(self.pde.patches, self.bases,
                             self.mapper.expand(free, self.eliminated_values))


def assemble(pde, basis, boundary_strategy=DirichletStrategy.ELIMINATION,
             interface_strategy=InterfaceStrategy.GLUE,
             options: Optional[AssemblerOptions] = None) -> AssembledSystem:
    """Assemble a PDE over a MultiBasis in one call."""
    return Assembler(pde, basis, boundary_strategy, interface_strategy, options).assemble()
