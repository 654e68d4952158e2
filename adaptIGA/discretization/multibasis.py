"""
Multi-patch spline bases.

A MultiBasis holds one SplineBasis per patch of a MultiPatch. Functions of
the multi-basis are numbered patch by patch (patch-local index plus the
patch offset); the DofMapper later merges the copies of interface
functions and splits off the eliminated ones.

Refinement keeps patch interfaces conforming: a hierarchical patch whose
first cell layer along an interface is refined forces the mirrored cells
of the neighbour to be refined as well. The trace of a THB basis on a side
only depends on that layer, so both sides then carry identical traces.
"""

import logging
import numpy as np
from scipy import sparse
from typing import List, Optional, Sequence, Tuple

from ..errors import ConfigurationError
from ..geometry.bspline import SplineBasis, TensorBSplineBasis
from ..geometry.thb import THBBasis
from ..geometry.multipatch import MultiPatch
from .element import Element

logger = logging.getLogger(__name__)


class MultiBasis:
    """
    One spline basis per patch.

    Parameters:
        bases: Patch bases, in patch order
        geometry: The MultiPatch the bases discretize
    """

    def __init__(self, bases: Sequence[SplineBasis], geometry: MultiPatch):
        if len(bases) != len(geometry):
            raise ConfigurationError(
                f"{len(bases)} bases given for {len(geometry)} patches")
        self.bases: List[SplineBasis] = list(bases)
        self.geometry = geometry
        for k, basis in enumerate(self.bases):
            basis.patch = k
            basis._invalidate()

    @classmethod
    def from_geometry(cls, geometry: MultiPatch, hierarchical: bool = True,
                      degree: Optional[int] = None,
                      initial_refinements: int = 0) -> 'MultiBasis':
        """
        Basis built from the patches' own knot vectors.

        Parameters:
            geometry: Multi-patch geometry
            hierarchical: THB bases (local refinement) or tensor B-splines
            degree: Override the geometry degree (same breakpoints)
            initial_refinements: Uniform refinements applied right away
        """
        cls_basis = THBBasis if hierarchical else TensorBSplineBasis
        mb = cls([cls_basis.from_surface(s, degree) for s in geometry], geometry)
        for _ in range(initial_refinements):
            mb.uniform_refine()
        return mb

    def __len__(self) -> int:
        return len(self.bases)

    def __getitem__(self, k: int) -> SplineBasis:
        return self.bases[k]

    def __iter__(self):
        return iter(self.bases)

    @property
    def n_patches(self) -> int:
        return len(self.bases)

    @property
    def interfaces(self):
        return self.geometry.interfaces

    @property
    def generation(self) -> Tuple[int, ...]:
        """Changes whenever any patch basis is refined."""
        return tuple(b.generation for b in self.bases)

    @property
    def max_degree(self) -> int:
        return max(max(b.degrees) for b in self.bases)

    def offsets(self) -> np.ndarray:
        """Start of every patch block in the patch-major numbering (length n_patches+1)."""
        return np.concatenate([[0], np.cumsum([b.total_functions() for b in self.bases])])

    def total_functions(self) -> int:
        return int(self.offsets()[-1])

    def total_elements(self) -> int:
        return sum(b.total_elements() for b in self.bases)

    def elements(self) -> List[Element]:
        """All active elements, patch by patch."""
        return [e for b in self.bases for e in b.elements()]

    def max_level(self) -> int:
        return max(b.max_level for b in self.bases)

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def _split_marks(self, marked) -> List[np.ndarray]:
        marked = np.asarray(marked, dtype=bool)
        counts = [b.total_elements() for b in self.bases]
        if marked.size != sum(counts):
            raise ConfigurationError(
                f"Got {marked.size} marks for {sum(counts)} elements")
        return np.split(marked, np.cumsum(counts)[:-1])

    def refine(self, marked: Sequence[bool]) -> sparse.csr_matrix:
        """
        Refine the marked elements of all patches.

        Parameters:
            marked: One flag per element of elements()

        Returns:
            Block-diagonal (new x old) transfer in the patch-major numbering
        """
        parts = self._split_marks(marked)
        snaps = [b.snapshot() for b in self.bases]
        for basis, part in zip(self.bases, parts):
            basis.refine_elements(part)
        self.repair_interfaces()
        return self._transfer(snaps)

    def uniform_refine(self) -> sparse.csr_matrix:
        """Refine every element of every patch; returns the block-diagonal transfer."""
        snaps = [b.snapshot() for b in self.bases]
        for basis in self.bases:
            basis.refine_all()
        return self._transfer(snaps)

    def _transfer(self, snaps) -> sparse.csr_matrix:
        blocks = [b.transfer_from(s) for b, s in zip(self.bases, snaps)]
        return sparse.block_diag(blocks, format='csr')

    def repair_interfaces(self) -> int:
        """
        Mirror first-layer refinement across interfaces until stable.

        Returns:
            Number of cells refined to restore conformity
        """
        added = 0
        changed = True
        while changed:
            changed = False
            for iface in self.interfaces:
                (pa, sa), (pb, sb) = iface.sides()
                for (p_from, s_from), (p_to, s_to) in (((pa, sa), (pb, sb)), ((pb, sb), (pa, sa))):
                    src, dst = self.bases[p_from], self.bases[p_to]
                    if not (isinstance(src, THBBasis) and isinstance(dst, THBBasis)):
                        continue
                    for level in range(src.n_levels):
                        n = src.n_cells_along(level, s_from)
                        if level < dst.n_levels and dst.n_cells_along(level, s_to) != n:
                            raise ConfigurationError(
                                f"Patches {p_from} and {p_to} have different element "
                                f"counts along their interface")
                        have = set(dst.refined_on_side(level, s_to)) if level < dst.n_levels else set()
                        need = []
                        for t in src.refined_on_side(level, s_from):
                            t_dst = n - 1 - t if iface.reversed else t
                            if t_dst not in have:
                                need.append(dst.side_cell(level, s_to, t_dst))
                        if need:
                            dst.refine_cells(level, need)
                            added += len(need)
                            changed = True
        if added:
            logger.debug("Refined %d extra cells to keep interfaces conforming", added)
        return added
