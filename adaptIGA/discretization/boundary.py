"""
Boundary sides, boundary conditions and the strategies that decide how
they enter the assembled system.

Patch sides follow the usual compass convention on [0,1]^2:

    WEST  : xi  = xi_min        EAST  : xi  = xi_max
    SOUTH : eta = eta_min       NORTH : eta = eta_max

The names left/right/bottom/top are accepted as aliases.
"""

import numpy as np
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from ..errors import ConfigurationError
from ..io.expressions import as_function


class Side(Enum):
    """Side of a bivariate patch."""
    WEST = 1
    EAST = 2
    SOUTH = 3
    NORTH = 4

    @property
    def direction(self) -> int:
        """Parametric direction that is constant on this side."""
        return 0 if self in (Side.WEST, Side.EAST) else 1

    @property
    def tangential(self) -> int:
        """Parametric direction running along this side."""
        return 1 - self.direction

    @property
    def is_max(self) -> bool:
        """True for the sides at the upper end of the parameter range."""
        return self in (Side.EAST, Side.NORTH)

    @property
    def normal_sign(self) -> float:
        return 1.0 if self.is_max else -1.0

    @classmethod
    def from_name(cls, name: Union[str, 'Side']) -> 'Side':
        if isinstance(name, Side):
            return name
        key = str(name).strip().lower()
        if key not in _SIDE_ALIASES:
            raise ConfigurationError(f"Unknown patch side: {name!r}")
        return _SIDE_ALIASES[key]


_SIDE_ALIASES: Dict[str, Side] = {
    "west": Side.WEST, "left": Side.WEST,
    "east": Side.EAST, "right": Side.EAST,
    "south": Side.SOUTH, "bottom": Side.SOUTH,
    "north": Side.NORTH, "top": Side.NORTH,
}


def _enum_from_name(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls[str(value).strip().upper()]
    except KeyError:
        names = ", ".join(m.name.lower() for m in enum_cls)
        raise ConfigurationError(
            f"Unknown {enum_cls.__name__} {value!r}; expected one of: {names}") from None


class ConditionKind(Enum):
    """Kind of a boundary condition."""
    DIRICHLET = "dirichlet"
    NEUMANN = "neumann"

    @classmethod
    def from_name(cls, value) -> 'ConditionKind':
        return _enum_from_name(cls, value)


class DirichletStrategy(Enum):
    """How Dirichlet conditions are imposed."""
    ELIMINATION = "elimination"
    NITSCHE = "nitsche"

    @classmethod
    def from_name(cls, value) -> 'DirichletStrategy':
        if str(value).strip().lower() == "penalty":
            return cls.NITSCHE
        return _enum_from_name(cls, value)


class InterfaceStrategy(Enum):
    """How patch interfaces are coupled."""
    GLUE = "glue"
    NONE = "none"

    @classmethod
    def from_name(cls, value) -> 'InterfaceStrategy':
        if str(value).strip().lower() == "conforming":
            return cls.GLUE
        return _enum_from_name(cls, value)


class DirichletValues(Enum):
    """How the values of eliminated DOFs are computed."""
    L2_PROJECTION = "l2_projection"
    HOMOGENEOUS = "homogeneous"

    @classmethod
    def from_name(cls, value) -> 'DirichletValues':
        return _enum_from_name(cls, value)


@dataclass(frozen=True)
class BoundaryCondition:
    """
    One boundary condition on one patch side.

    Attributes:
        patch: Patch index
        side: Patch side
        kind: Dirichlet or Neumann
        function: Callable f(x, y) on physical coordinates returning the
                  prescribed value (Dirichlet) or flux a*du/dn (Neumann);
                  None means zero
    """
    patch: int
    side: Side
    kind: ConditionKind
    function: Optional[Callable] = field(default=None, compare=False)

    def values(self, points: np.ndarray) -> np.ndarray:
        """Evaluate the condition at physical points of shape (n, 2)."""
        if self.function is None:
            return np.zeros(len(points))
        out = self.function(points[:, 0], points[:, 1])
        return np.broadcast_to(np.asarray(out, dtype=np.float64), (len(points),)).copy()


class BoundaryConditions:
    """
    Ordered set of boundary conditions.

    A (patch, side) pair carries at most one condition. Once handed to a
    PDE descriptor the set is treated as immutable; build a new one to
    change the boundary data.
    """

    def __init__(self, conditions: Sequence[BoundaryCondition] = ()):
        self._conditions: List[BoundaryCondition] = []
        for bc in conditions:
            self._append(bc)

    def _append(self, bc: BoundaryCondition) -> None:
        for other in self._conditions:
            if other.patch == bc.patch and other.side == bc.side:
                raise ConfigurationError(
                    f"Patch {bc.patch} side {bc.side.name} already has a "
                    f"{other.kind.value} condition")
        self._conditions.append(bc)

    def add(self, patch: int, side, kind, function=None) -> 'BoundaryConditions':
        """
        Add a condition; returns self so calls can be chained.

        The data may be a callable f(x, y), a number or an expression string.
        """
        self._append(BoundaryCondition(patch, Side.from_name(side),
                                       ConditionKind.from_name(kind), as_function(function)))
        return self

    @classmethod
    def all_dirichlet(cls, boundaries: Sequence[Tuple[int, Side]],
                      function=None) -> 'BoundaryConditions':
        """Dirichlet condition with the same data on every listed boundary."""
        bcs = cls()
        for patch, side in boundaries:
            bcs.add(patch, side, ConditionKind.DIRICHLET, function)
        return bcs

    def __iter__(self) -> Iterator[BoundaryCondition]:
        return iter(self._conditions)

    def __len__(self) -> int:
        return len(self._conditions)

    def dirichlet(self) -> List[BoundaryCondition]:
        return [bc for bc in self._conditions if bc.kind is ConditionKind.DIRICHLET]

    def neumann(self) -> List[BoundaryCondition]:
        return [bc for bc in self._conditions if bc.kind is ConditionKind.NEUMANN]

    def dirichlet_sides(self) -> List[Tuple[int, Side]]:
        return [(bc.patch, bc.side) for bc in self.dirichlet()]

    def validate(self, n_patches: int, interfaces=()) -> None:
        """
        Check that every condition refers to an existing outer boundary.

        Raises:
            ConfigurationError: unknown patch, or a condition on an interface side
        """
        inner = set()
        for iface in interfaces:
            inner.add((iface.patch_a, iface.side_a))
            inner.add((iface.patch_b, iface.side_b))
        for bc in self._conditions:
            if not 0 <= bc.patch < n_patches:
                raise ConfigurationError(
                    f"Boundary condition on patch {bc.patch}, but only {n_patches} patches exist")
            if (bc.patch, bc.side) in inner:
                raise ConfigurationError(
                    f"Patch {bc.patch} side {bc.side.name} is an interface, not a boundary")
