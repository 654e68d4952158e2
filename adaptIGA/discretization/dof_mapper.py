"""
Degree-of-freedom mapping.

Every basis function of a MultiBasis is addressed by (patch, local index).
The DofMapper classifies each of them as

- free: an unknown of the linear system, index in [0, n_free)
- eliminated: a Dirichlet function whose value is prescribed, slot in
  [0, n_eliminated)

In the unified numbering used by the assembler eliminated functions come
after the free ones: unified = n_free + slot.

Interface gluing identifies the copies of a function that lives on both
sides of a conforming patch interface (union-find over the patch-major
function numbering). A glued group is eliminated if any member is.

Once built the mapper is never mutated; it remembers the basis generation
it was built for so that a refined basis is not used with a stale mapper.
"""

import logging
import numpy as np
from scipy import sparse
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import (
    ConfigurationError, NonConformingInterfaceError, StaleBasisError, UnmappedDofError
)
from .boundary import BoundaryConditions, DirichletStrategy, InterfaceStrategy
from .knot_vector import KnotVector, refine_knot_vector_dyadic

logger = logging.getLogger(__name__)


def _normalized(kv: KnotVector) -> KnotVector:
    a, b = kv.domain
    return KnotVector((kv.knots - a) / (b - a), kv.degree)


def _conforming_traces(trace_a, trace_b, reversed_: bool):
    """
    Express two side traces in a common univariate knot vector.

    Returns:
        (ids_a, S_a, ids_b, S_b) with dense S in the shared basis

    Raises:
        NonConformingInterfaceError: the knot vectors cannot be matched by
                                     dyadic refinement
    """
    ids_a, kv_a, S_a = trace_a
    ids_b, kv_b, S_b = trace_b
    kv_a, kv_b = _normalized(kv_a), _normalized(kv_b)
    S_a, S_b = sparse.csr_matrix(S_a), sparse.csr_matrix(S_b)
    if reversed_:
        kv_b = kv_b.reversed()
        S_b = S_b[:, np.arange(S_b.shape[1])[::-1]]

    if kv_a.degree != kv_b.degree:
        raise NonConformingInterfaceError(
            f"Interface degrees differ ({kv_a.degree} vs {kv_b.degree})")
    while kv_a.n_elements < kv_b.n_elements:
        kv_a, A = refine_knot_vector_dyadic(kv_a)
        S_a = S_a @ sparse.csr_matrix(A).T
    while kv_b.n_elements < kv_a.n_elements:
        kv_b, A = refine_knot_vector_dyadic(kv_b)
        S_b = S_b @ sparse.csr_matrix(A).T
    if not kv_a.matches(kv_b, tol=1e-10):
        raise NonConformingInterfaceError("Interface knot vectors do not match")
    return ids_a, S_a.toarray(), ids_b, S_b.toarray()


def match_interface(trace_a, trace_b, reversed_: bool = False,
                    tol: float = 1e-10) -> List[Tuple[int, int]]:
    """
    Pair the functions of two sides that have the same trace.

    Parameters:
        trace_a, trace_b: (ids, kv, S) as returned by SplineBasis.side_trace
        reversed_: Opposite tangential orientation

    Returns:
        List of (local id on side a, local id on side b)

    Raises:
        NonConformingInterfaceError: some trace has no partner
    """
    ids_a, S_a, ids_b, S_b = _conforming_traces(trace_a, trace_b, reversed_)
    if len(ids_a) != len(ids_b):
        raise NonConformingInterfaceError(
            f"Interface carries {len(ids_a)} functions on one side and {len(ids_b)} on the other")

    lookup: Dict[tuple, int] = {}
    for r, row in enumerate(S_b):
        lookup[tuple(np.round(row, 9))] = r

    pairs = []
    for r, row in enumerate(S_a):
        s = lookup.get(tuple(np.round(row, 9)))
        if s is None or not np.allclose(row, S_b[s], rtol=0.0, atol=tol):
            raise NonConformingInterfaceError(
                f"Interface function {ids_a[r]} has no matching trace on the other side")
        pairs.append((int(ids_a[r]), int(ids_b[s])))
    return pairs


class DofMapper:
    """
    Map (patch, local function) pairs to free indices or eliminated slots.

    Build with DofMapper.build(); the constructor only sets up the raw
    numbering so that gluing and elimination can be applied before
    finalize().
    """

    def __init__(self, counts: Sequence[int], generation=None):
        self._offsets = np.concatenate([[0], np.cumsum(counts)]).astype(np.int64)
        n_raw = int(self._offsets[-1])
        self._parent = np.arange(n_raw)
        self._eliminated_raw = np.zeros(n_raw, dtype=bool)
        self._finalized = False
        self.generation = generation
        self.n_free = 0
        self.n_eliminated = 0

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, bases, boundary_conditions: Optional[BoundaryConditions] = None,
              interfaces=None,
              interface_strategy: InterfaceStrategy = InterfaceStrategy.GLUE,
              dirichlet_strategy: DirichletStrategy = DirichletStrategy.ELIMINATION) -> 'DofMapper':
        """
        Classify and number all functions of a MultiBasis.

        Parameters:
            bases: MultiBasis
            boundary_conditions: Dirichlet sides are eliminated under the
                                 ELIMINATION strategy
            interfaces: Interfaces to glue (default: those of bases.geometry)
            interface_strategy: GLUE or NONE
            dirichlet_strategy: ELIMINATION or NITSCHE
        """
        interface_strategy = InterfaceStrategy.from_name(interface_strategy)
        dirichlet_strategy = DirichletStrategy.from_name(dirichlet_strategy)
        if interfaces is None:
            interfaces = bases.interfaces

        mapper = cls([b.total_functions() for b in bases], bases.generation)

        if interface_strategy is InterfaceStrategy.GLUE:
            for iface in interfaces:
                pairs = match_interface(bases[iface.patch_a].side_trace(iface.side_a),
                                        bases[iface.patch_b].side_trace(iface.side_b),
                                        iface.reversed)
                for ia, ib in pairs:
                    mapper.glue(iface.patch_a, ia, iface.patch_b, ib)

        if boundary_conditions is not None and dirichlet_strategy is DirichletStrategy.ELIMINATION:
            for patch, side in boundary_conditions.dirichlet_sides():
                mapper.eliminate(patch, bases[patch].boundary_functions(side))

        mapper.finalize()
        logger.debug("DofMapper: %d free, %d eliminated, %d raw functions",
                     mapper.n_free, mapper.n_eliminated, mapper.n_raw)
        return mapper

    def _raw(self, i, patch: int):
        if not 0 <= patch < len(self._offsets) - 1:
            raise UnmappedDofError(f"Unknown patch {patch}")
        i = np.asarray(i, dtype=np.int64)
        size = self._offsets[patch + 1] - self._offsets[patch]
        if np.any((i < 0) | (i >= size)):
            raise UnmappedDofError(f"Function index {i} out of range on patch {patch}")
        return self._offsets[patch] + i

    def _find(self, r: int) -> int:
        parent = self._parent
        root = r
        while parent[root] != root:
            root = parent[root]
        while parent[r] != root:
            parent[r], r = root, parent[r]
        return root

    def _check_open(self) -> None:
        if self._finalized:
            raise ConfigurationError("DofMapper is finalized and cannot be changed")

    def glue(self, patch_a: int, i_a: int, patch_b: int, i_b: int) -> None:
        """Identify function i_a of patch_a with function i_b of patch_b."""
        self._check_open()
        ra = self._find(int(self._raw(i_a, patch_a)))
        rb = self._find(int(self._raw(i_b, patch_b)))
        if ra != rb:
            self._parent[max(ra, rb)] = min(ra, rb)

    def eliminate(self, patch: int, ids) -> None:
        """Mark functions of a patch as eliminated."""
        self._check_open()
        self._eliminated_raw[self._raw(np.asarray(ids, dtype=np.int64), patch)] = True

    def finalize(self) -> None:
        """Number free functions and eliminated slots by first appearance."""
        self._check_open()
        n_raw = self.n_raw
        roots = np.array([self._find(r) for r in range(n_raw)], dtype=np.int64)
        eliminated_root = np.zeros(n_raw, dtype=bool)
        np.logical_or.at(eliminated_root, roots, self._eliminated_raw)

        number = np.full(n_raw, -1, dtype=np.int64)
        n_free = n_elim = 0
        for r in range(n_raw):
            root = roots[r]
            if number[root] >= 0:
                continue
            if eliminated_root[root]:
                number[root] = n_elim
                n_elim += 1
            else:
                number[root] = n_free
                n_free += 1

        is_elim = eliminated_root[roots]
        self._unified = np.where(is_elim, n_free + number[roots], number[roots])
        self._is_free = ~is_elim
        self.n_free = n_free
        self.n_eliminated = n_elim
        self._finalized = True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def n_raw(self) -> int:
        """Number of (patch, function) pairs."""
        return int(self._offsets[-1])

    @property
    def size(self) -> int:
        """Number of distinct functions after gluing (free + eliminated)."""
        return self.n_free + self.n_eliminated

    @property
    def offsets(self) -> np.ndarray:
        return self._offsets

    @property
    def n_patches(self) -> int:
        return len(self._offsets) - 1

    def is_free(self, i: int, patch: int = 0) -> bool:
        return bool(self._is_free[self._raw(i, patch)])

    def index(self, i: int, patch: int = 0) -> int:
        """Unified index: free index, or n_free + eliminated slot."""
        return int(self._unified[self._raw(i, patch)])

    def indices(self, ids, patch: int = 0) -> np.ndarray:
        """Vectorised index()."""
        return self._unified[self._raw(np.asarray(ids, dtype=np.int64), patch)]

    def global_index(self, i: int, patch: int = 0) -> int:
        """
        Free index of a function.

        Raises:
            UnmappedDofError: the function is eliminated
        """
        r = self._raw(i, patch)
        if not self._is_free[r]:
            raise UnmappedDofError(f"Function {i} on patch {patch} is eliminated")
        return int(self._unified[r])

    def eliminated_slot(self, i: int, patch: int = 0) -> int:
        """
        Slot of an eliminated function.

        Raises:
            UnmappedDofError: the function is free
        """
        r = self._raw(i, patch)
        if self._is_free[r]:
            raise UnmappedDofError(f"Function {i} on patch {patch} is free")
        return int(self._unified[r] - self.n_free)

    def free_mask(self) -> np.ndarray:
        """Boolean mask over the patch-major numbering."""
        return self._is_free.copy()

    def unified_indices(self) -> np.ndarray:
        """Unified index of every function in the patch-major numbering."""
        return self._unified.copy()

    def boundary_indices(self) -> np.ndarray:
        """Patch-major indices of the eliminated functions."""
        return np.flatnonzero(~self._is_free)

    # ------------------------------------------------------------------
    # Vectors
    # ------------------------------------------------------------------

    def expand(self, free: np.ndarray, eliminated: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Full coefficient vector (patch-major) from free values and the
        eliminated values (zeros if None).
        """
        free = np.asarray(free, dtype=np.float64)
        if free.shape[0] != self.n_free:
            raise ValueError(f"Expected {self.n_free} free values, got {free.shape[0]}")
        if eliminated is None:
            eliminated = np.zeros(self.n_eliminated)
        return np.concatenate([free, eliminated])[self._unified]

    def reduce(self, full: np.ndarray) -> np.ndarray:
        """Free part of a full coefficient vector."""
        full = np.asarray(full, dtype=np.float64)
        if full.shape[0] != self.n_raw:
            raise ValueError(f"Expected {self.n_raw} coefficients, got {full.shape[0]}")
        out = np.zeros(self.n_free)
        out[self._unified[self._is_free]] = full[self._is_free]
        return out

    def eliminated_part(self, full: np.ndarray) -> np.ndarray:
        """Eliminated values contained in a full coefficient vector."""
        full = np.asarray(full, dtype=np.float64)
        out = np.zeros(self.n_eliminated)
        mask = ~self._is_free
        out[self._unified[mask] - self.n_free] = full[mask]
        return out

    def selection_matrix(self) -> sparse.csr_matrix:
        """P (n_raw x n_free) with full = P @ free for zero eliminated values."""
        rows = np.flatnonzero(self._is_free)
        return sparse.csr_matrix((np.ones(len(rows)), (rows, self._unified[rows])),
                                 shape=(self.n_raw, self.n_free))

    def restriction_matrix(self) -> sparse.csr_matrix:
        """R (n_free x n_raw) picking one representative of every free function."""
        rows = np.flatnonzero(self._is_free)
        _, first = np.unique(self._unified[rows], return_index=True)
        rows = rows[first]
        return sparse.csr_matrix((np.ones(len(rows)), (self._unified[rows], rows)),
                                 shape=(self.n_free, self.n_raw))

    def check_basis(self, bases) -> None:
        """
        Raises:
            StaleBasisError: the basis was refined after the mapper was built
        """
        if bases.generation != self.generation:
            raise StaleBasisError(
                "The basis was refined after this DofMapper was built; rebuild the mapper")
