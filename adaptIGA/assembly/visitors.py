"""
Element visitors.

A visitor computes the local contribution of one element (or one boundary
edge) to the global system:

    visitor.evaluate(basis, surface, element, quadrature)   # basis + geometry data
    visitor.assemble()                                      # local matrix / rhs
    visitor.local_to_global(system, eliminated_values)      # scatter

The set of visitors is closed: VisitorKind names them and the registry maps
each kind to its class.

Interior visitors:
    MASS            M_ij = ∫ N_i N_j
    STIFFNESS       K_ij = ∫ a ∇N_i·∇N_j,      f_i = ∫ f N_i
    MOMENT          f_i = ∫ g N_i
    NONLINEAR_FLUX  K_ij = ∫ a(w) ∇N_i·∇N_j,   a(w) = (eps² + |∇w|²)^((p-2)/2)

Boundary visitors:
    NEUMANN         f_i = ∫_E g N_i ds
    NITSCHE         K_ij = ∫_E -a (∂N_i/∂n N_j + N_i ∂N_j/∂n) + μ a N_i N_j ds
                    f_i  = ∫_E -a ∂N_i/∂n g + μ a g N_i ds,   μ = penalty / h_E
"""

import numpy as np
from enum import Enum
from typing import Callable, Dict, Optional, Type

from ..discretization.boundary import BoundaryCondition
from ..errors import ConfigurationError
from .evaluator import ElementData, evaluate_element, evaluate_side


class VisitorKind(Enum):
    MASS = "mass"
    STIFFNESS = "stiffness"
    MOMENT = "moment"
    NONLINEAR_FLUX = "nonlinear_flux"
    NEUMANN = "neumann"
    NITSCHE = "nitsche"


def default_nitsche_penalty(degree: int) -> float:
    """2.5 (p+1)^2"""
    return 2.5 * (degree + 1) ** 2


def plaplace_coefficient(grad_w: np.ndarray, eps: float, p: float) -> np.ndarray:
    """(eps² + |∇w|²)^((p-2)/2) at every row of grad_w (n_q, 2)."""
    return (eps ** 2 + np.sum(grad_w ** 2, axis=1)) ** ((p - 2.0) / 2.0)


class Visitor:
    """
    Base class of all visitors.

    Local buffers are overwritten by every evaluate()/assemble() pair.
    """
    kind: VisitorKind
    needs_hessians = False

    def __init__(self):
        self.data: Optional[ElementData] = None
        self.local_matrix: Optional[np.ndarray] = None
        self.local_rhs: Optional[np.ndarray] = None
        self.offset = 0

    def evaluate(self, basis, surface, element, quadrature, offset: int = 0) -> ElementData:
        """
        Evaluate basis and geometry on the element.

        Parameters:
            offset: Start of the element's patch in the patch-major
                    coefficient numbering (for coefficient-dependent terms)
        """
        self.offset = offset
        self.data = evaluate_element(basis, surface, element, quadrature, self.needs_hessians)
        self.local_matrix = None
        self.local_rhs = None
        return self.data

    def assemble(self) -> None:
        raise NotImplementedError

    def local_to_global(self, system, eliminated_values: Optional[np.ndarray] = None) -> None:
        system.accumulate(self.local_matrix, self.local_rhs, self.data.actives,
                          self.data.patch, eliminated_values)


def _values_at(function: Optional[Callable], points: np.ndarray) -> np.ndarray:
    if function is None:
        return np.zeros(len(points))
    out = function(points[:, 0], points[:, 1])
    return np.broadcast_to(np.asarray(out, dtype=np.float64), (len(points),))


class MassVisitor(Visitor):
    kind = VisitorKind.MASS

    def assemble(self) -> None:
        V, w = self.data.values, self.data.weights
        self.local_matrix = (V * w) @ V.T
        self.local_rhs = np.zeros(V.shape[0])


class StiffnessVisitor(Visitor):
    """Diffusion operator with the PDE's coefficient and load."""
    kind = VisitorKind.STIFFNESS

    def __init__(self, pde):
        super().__init__()
        self.pde = pde

    def coefficient(self) -> np.ndarray:
        return self.pde.diffusion(self.data, self.offset)

    def assemble(self) -> None:
        d = self.data
        aw = self.coefficient() * d.weights
        self.local_matrix = np.einsum('kqi,q,lqi->kl', d.gradients, aw, d.gradients)
        self.local_rhs = d.values @ (d.weights * _values_at(self.pde.source, d.points))


class NonlinearFluxVisitor(StiffnessVisitor):
    """Stiffness of the linearized p-Laplacian with the frozen iterate w."""
    kind = VisitorKind.NONLINEAR_FLUX

    def coefficient(self) -> np.ndarray:
        d = self.data
        w = self.pde.w
        if w is None:
            grad_w = np.zeros((d.n_points, 2))
        else:
            grad_w = d.interpolate_gradient(w[self.offset + d.actives])
        return plaplace_coefficient(grad_w, self.pde.eps, self.pde.p)


class MomentVisitor(Visitor):
    """Load vector of a given function, no matrix."""
    kind = VisitorKind.MOMENT

    def __init__(self, function: Callable):
        super().__init__()
        self.function = function

    def assemble(self) -> None:
        d = self.data
        self.local_rhs = d.values @ (d.weights * _values_at(self.function, d.points))


class BoundaryVisitor(Visitor):
    """Visitor that integrates over the edge of an element on one patch side."""

    def __init__(self, bc: BoundaryCondition):
        super().__init__()
        self.bc = bc

    def evaluate(self, basis, surface, element, quadrature, offset: int = 0) -> ElementData:
        self.offset = offset
        self.data = evaluate_side(basis, surface, element, self.bc.side, quadrature)
        self.local_matrix = None
        self.local_rhs = None
        return self.data


class NeumannVisitor(BoundaryVisitor):
    """Flux a du/dn = g on a side."""
    kind = VisitorKind.NEUMANN

    def assemble(self) -> None:
        d = self.data
        self.local_rhs = d.values @ (d.weights * self.bc.values(d.points))


class NitscheVisitor(BoundaryVisitor):
    """Symmetric Nitsche imposition of u = g on a side."""
    kind = VisitorKind.NITSCHE

    def __init__(self, bc: BoundaryCondition, pde, penalty: Optional[float] = None):
        super().__init__(bc)
        self.pde = pde
        self.penalty = penalty

    def assemble(self) -> None:
        d = self.data
        penalty = self.penalty
        if penalty is None:
            penalty = default_nitsche_penalty(max(d.element.degrees))
        mu = penalty / d.size

        a = self.pde.diffusion(d, self.offset)
        V = d.values
        dn = np.einsum('kqi,qi->kq', d.gradients, d.normals)
        aw = a * d.weights
        g = self.bc.values(d.points)

        consistency = (dn * aw) @ V.T
        self.local_matrix = -consistency - consistency.T + mu * (V * aw) @ V.T
        self.local_rhs = -dn @ (aw * g) + mu * V @ (aw * g)


VISITORS: Dict[VisitorKind, Type[Visitor]] = {
    VisitorKind.MASS: MassVisitor,
    VisitorKind.STIFFNESS: StiffnessVisitor,
    VisitorKind.MOMENT: MomentVisitor,
    VisitorKind.NONLINEAR_FLUX: NonlinearFluxVisitor,
    VisitorKind.NEUMANN: NeumannVisitor,
    VisitorKind.NITSCHE: NitscheVisitor,
}


def make_visitor(kind, *args, **kwargs) -> Visitor:
    """Instantiate the visitor registered for a kind."""
    if not isinstance(kind, VisitorKind):
        try:
            kind = VisitorKind(str(kind).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown visitor kind {kind!r}") from None
    return VISITORS[kind](*args, **kwargs)
