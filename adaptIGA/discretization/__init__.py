"""
Discretization module for IGA.

Provides:
- KnotVector: Knot vector representation
- Element: Active cell with its extraction operator
- Boundary sides, boundary conditions and strategy enums
- Bézier extraction operators

MultiBasis and DofMapper live in their own modules and import the
geometry package; import them directly:
    from adaptIGA.discretization.multibasis import MultiBasis
    from adaptIGA.discretization.dof_mapper import DofMapper
"""

from .knot_vector import KnotVector, make_open_knot_vector, make_uniform_knot_vector
from .element import Element
from .boundary import (
    Side,
    ConditionKind,
    DirichletStrategy,
    InterfaceStrategy,
    DirichletValues,
    BoundaryCondition,
    BoundaryConditions,
)
from .extraction import (
    compute_extraction_operators_1d,
    compute_extraction_operators_2d,
    BernsteinBasis
)
