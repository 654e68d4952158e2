"""
adaptIGA - Isogeometric assembly and adaptive solution

Assembles and solves 2D PDEs on multi-patch spline (isogeometric)
discretizations, with Truncated Hierarchical B-splines (THB) for local
refinement.

Key modules:
- geometry: NURBS patches, multi-patch domains, tensor and THB bases
- discretization: Knot vectors, elements, Bézier extraction, DOF mapping
- assembly: Element visitors, sparse systems, the global assembler
- solver: PDE descriptors, linear and fixed-point (Picard) solvers
- adaptivity: Error indicators, marking, refinement and transfer
- postprocess: Discrete fields and error norms
- io: Expressions and YAML run configurations

Quick start (Poisson on the L-shaped domain):
    from adaptIGA.geometry import make_l_shape
    from adaptIGA.discretization.boundary import BoundaryConditions
    from adaptIGA.discretization.multibasis import MultiBasis
    from adaptIGA.solver.pde import PoissonPde
    from adaptIGA.assembly import assemble
    from adaptIGA.solver.linear import solve_linear

    patches = make_l_shape(p=2)
    bases = MultiBasis.from_geometry(patches, initial_refinements=2)
    bcs = BoundaryConditions.all_dirichlet(patches.boundaries(), 0.0)
    system = assemble(PoissonPde(patches, bcs, source=1.0), bases)
    u = system.expand(solve_linear(system.matrix, system.rhs))

Adaptive refinement:
    from adaptIGA.adaptivity import adapt, EstimatorKind, MarkingCriterion

    bases, transfer = adapt(bases, field, EstimatorKind.RESIDUAL,
                            MarkingCriterion.DOERFLER, 0.5, pde=pde)
"""

__version__ = "0.1.0"
__author__ = "Wataru Fukuda"

# Core imports for convenience
from .errors import (
    IGAError,
    ConfigurationError,
    GeometryMismatchError,
    UnmappedDofError,
    NonConformingInterfaceError,
    MissingReservationError,
    StaleBasisError,
    LinearSolverError,
)
from .geometry import NURBSSurface, TensorBSplineBasis, THBBasis, MultiPatch, make_l_shape
from .discretization.boundary import (
    Side, BoundaryConditions, DirichletStrategy, InterfaceStrategy
)
from .discretization.multibasis import MultiBasis
from .discretization.dof_mapper import DofMapper
from .assembly import Assembler, AssemblerOptions, assemble
from .solver.pde import PoissonPde, LinearizedPLaplacePde
from .solver.nonlinear import solve_nonlinear, NonlinearOptions, FixedPointResult
from .adaptivity import (
    EstimatorKind, MarkingCriterion, estimate, mark, adapt, AdaptiveRefinementController
)
from .postprocess.field import DiscreteField
