"""
L2 projection of a function onto a multi-patch spline space.

    find u_h:  (u_h, v) = (g, v)   for all v

i.e. M c = b with the mass matrix M and the moments b_i = ∫ g N_i.
Interface functions are glued, so the result is continuous across
conforming interfaces.
"""

import numpy as np

from ..assembly.assembler import Assembler
from ..discretization.boundary import DirichletStrategy, InterfaceStrategy
from ..io.expressions import as_function
from .linear import solve_linear
from .pde import PoissonPde


def project_l2(patches, bases, function, method: str = "lu") -> np.ndarray:
    """
    L2 projection onto the space spanned by a MultiBasis.

    Parameters:
        patches: MultiPatch geometry
        bases: MultiBasis
        function: g(x, y), number, expression string or callable

    Returns:
        Full coefficient vector (bases.total_functions() long)
    """
    assembler = Assembler(PoissonPde(patches), bases,
                          DirichletStrategy.ELIMINATION, InterfaceStrategy.GLUE)
    M = assembler.assemble_mass()
    b = assembler.assemble_moments(as_function(function))
    return assembler.mapper.expand(solve_linear(M, b, method))
