"""
Multi-patch geometries.

A MultiPatch is an ordered list of NURBS surfaces plus the conforming
interfaces between them. Interfaces are found geometrically by comparing
sample points along the patch sides, so the patches only need to meet
exactly along whole sides.
"""

import logging
import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..discretization.boundary import Side
from ..errors import ConfigurationError
from .nurbs import NURBSSurface

logger = logging.getLogger(__name__)

_SAMPLES = np.array([0.0, 0.2, 0.5, 0.7, 1.0])


@dataclass(frozen=True)
class Interface:
    """
    Conforming interface between two patch sides.

    Attributes:
        patch_a, side_a: First side
        patch_b, side_b: Second side
        reversed: True if the tangential parametrizations run in opposite
                  directions
    """
    patch_a: int
    side_a: Side
    patch_b: int
    side_b: Side
    reversed: bool = False

    def sides(self) -> Tuple[Tuple[int, Side], Tuple[int, Side]]:
        return ((self.patch_a, self.side_a), (self.patch_b, self.side_b))


def side_parameters(domain, side: Side, t: np.ndarray) -> np.ndarray:
    """
    Parametric points on a patch side.

    Parameters:
        domain: ((xi_min, xi_max), (eta_min, eta_max))
        side: Patch side
        t: Relative positions in [0, 1] along the side

    Returns:
        (len(t), 2) parametric points
    """
    d, tan = side.direction, side.tangential
    lo, hi = domain[tan]
    out = np.empty((len(t), 2))
    out[:, d] = domain[d][1] if side.is_max else domain[d][0]
    out[:, tan] = lo + np.asarray(t) * (hi - lo)
    return out


class MultiPatch:
    """
    Ordered collection of patches with their interfaces.

    Parameters:
        patches: NURBS surfaces
        interfaces: Explicit interfaces; detected from the geometry if None
        tol: Relative tolerance for the geometric side matching
    """

    def __init__(self, patches: Sequence[NURBSSurface],
                 interfaces: Optional[Sequence[Interface]] = None,
                 tol: float = 1e-10):
        self.patches: List[NURBSSurface] = list(patches)
        if not self.patches:
            raise ConfigurationError("A MultiPatch needs at least one patch")
        if interfaces is None:
            interfaces = self._detect_interfaces(tol)
        self.interfaces: List[Interface] = list(interfaces)
        logger.debug("MultiPatch with %d patches and %d interfaces",
                     len(self.patches), len(self.interfaces))

    @classmethod
    def single(cls, patch: NURBSSurface) -> 'MultiPatch':
        return cls([patch], interfaces=[])

    def __len__(self) -> int:
        return len(self.patches)

    def __getitem__(self, k: int) -> NURBSSurface:
        return self.patches[k]

    def __iter__(self):
        return iter(self.patches)

    @property
    def n_patches(self) -> int:
        return len(self.patches)

    def side_points(self, patch: int, side: Side, t: np.ndarray = _SAMPLES) -> np.ndarray:
        surface = self.patches[patch]
        return surface.eval_points(side_parameters(surface.domain, side, t))

    def _detect_interfaces(self, tol: float) -> List[Interface]:
        pts = np.vstack([s.control_points[:, :2] for s in self.patches])
        scale = max(float(np.ptp(pts, axis=0).max()), 1.0)

        sides = [(k, side) for k in range(len(self.patches)) for side in Side]
        samples = {key: self.side_points(*key) for key in sides}
        # the same positions walked from the other end
        mirrored = {key: self.side_points(*key, t=1.0 - _SAMPLES) for key in sides}

        interfaces = []
        for n, (ka, sa) in enumerate(sides):
            for kb, sb in sides[n + 1:]:
                if kb == ka:
                    continue
                a = samples[(ka, sa)]
                if np.allclose(a, samples[(kb, sb)], rtol=0.0, atol=tol * scale):
                    interfaces.append(Interface(ka, sa, kb, sb, False))
                elif np.allclose(a, mirrored[(kb, sb)], rtol=0.0, atol=tol * scale):
                    interfaces.append(Interface(ka, sa, kb, sb, True))
        return interfaces

    def boundaries(self) -> List[Tuple[int, Side]]:
        """Patch sides that are not part of an interface."""
        inner = set()
        for iface in self.interfaces:
            inner.update(iface.sides())
        return [(k, side) for k in range(len(self.patches)) for side in Side
                if (k, side) not in inner]

    def is_boundary(self, patch: int, side: Side) -> bool:
        return (patch, side) in self.boundaries()
