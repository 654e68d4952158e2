#!/usr/bin/env python3
"""
THB-splines (Truncated Hierarchical B-splines).

THB-splines allow local refinement while keeping a linearly independent,
non-negative partition of unity.

Key concepts:
1. Hierarchy of nested tensor B-spline spaces obtained by dyadic refinement
2. Nested domains Omega^0 ⊇ Omega^1 ⊇ ..., stored per level as the set of
   refined cells of that level
3. Selection: level-l function beta is active iff supp beta ⊆ Omega^l and
   supp beta ⊄ Omega^{l+1}
4. Truncation: when moving a coarse function to level l+1, the terms of
   level-(l+1) functions whose support lies in Omega^{l+1} are dropped

Implementation approach: hierarchical Bézier extraction
- Every active function is stored as a record (level, tensor index)
- Per level l a sparse representation matrix M_l holds the coefficients of
  all active functions of levels <= l in the level-l tensor basis, with
  truncation already applied
- On an active cell of level m the rows of M_m belonging to the p+1 x p+1
  local B-splines give the element's truncation block; multiplied by the
  tensor Bézier operator it becomes the element extraction operator
- Refinement returns the exact coefficient transfer between the old and
  new THB spaces (the spaces are nested)

Created: 2025-01-19
Author: Wataru Fukuda
"""

from __future__ import annotations

import logging
import numpy as np
from scipy import sparse
from scipy.sparse.linalg import splu
from typing import List, Set, Tuple, Optional, Sequence, NamedTuple
from dataclasses import dataclass, field

from ..discretization.knot_vector import KnotVector, refine_knot_vector_dyadic
from ..discretization.extraction import compute_extraction_operators_1d
from ..discretization.element import Element
from ..discretization.boundary import Side
from ..errors import ConfigurationError
from .bspline import SplineBasis

logger = logging.getLogger(__name__)

# coefficients below this are round-off of the refinement products
_CHOP = 1e-13


def _chop(M: sparse.spmatrix) -> sparse.csr_matrix:
    M = sparse.csr_matrix(M)
    M.data[np.abs(M.data) < _CHOP] = 0.0
    M.eliminate_zeros()
    return M


@dataclass
class THBHierarchy1D:
    """
    1D hierarchy of nested knot vectors.

    Attributes:
        degree: Polynomial degree (same for all levels)
        knot_vectors: One knot vector per level
        refinement_matrices: A_l (n_{l+1} x n_l), P_{l+1} = A_l @ P_l
    """
    degree: int
    knot_vectors: List[KnotVector] = field(default_factory=list)
    refinement_matrices: List[sparse.csr_matrix] = field(default_factory=list)
    _supports: List[Tuple[np.ndarray, np.ndarray]] = field(default_factory=list, repr=False)
    _extraction: List[List[np.ndarray]] = field(default_factory=list, repr=False)

    @classmethod
    def from_knot_vector(cls, kv: KnotVector) -> 'THBHierarchy1D':
        hierarchy = cls(degree=kv.degree)
        hierarchy.knot_vectors = [kv]
        return hierarchy

    @property
    def n_levels(self) -> int:
        return len(self.knot_vectors)

    def add_level(self) -> None:
        """Add level n+1 by inserting the midpoint of every span of level n."""
        new_kv, A = refine_knot_vector_dyadic(self.knot_vectors[-1])
        self.knot_vectors.append(new_kv)
        self.refinement_matrices.append(_chop(A))

    def ensure_level(self, level: int) -> None:
        while self.n_levels <= level:
            self.add_level()

    def get_n_basis(self, level: int) -> int:
        return self.knot_vectors[level].n_basis

    def get_n_elements(self, level: int) -> int:
        return self.knot_vectors[level].n_elements

    def support_elements(self, level: int) -> Tuple[np.ndarray, np.ndarray]:
        """(first, last) element of every level-l function's support."""
        while len(self._supports) <= level:
            self._supports.append(self.knot_vectors[len(self._supports)].support_elements())
        return self._supports[level]

    def extraction_operators(self, level: int) -> List[np.ndarray]:
        while len(self._extraction) <= level:
            self._extraction.append(
                compute_extraction_operators_1d(self.knot_vectors[len(self._extraction)]))
        return self._extraction[level]

    def without_coarsest(self) -> 'THBHierarchy1D':
        """Copy whose level l is level l+1 of this hierarchy."""
        self.ensure_level(1)
        return THBHierarchy1D(
            degree=self.degree,
            knot_vectors=self.knot_vectors[1:],
            refinement_matrices=self.refinement_matrices[1:],
            _supports=self._supports[1:],
            _extraction=self._extraction[1:],
        )


@dataclass
class THBHierarchy2D:
    """Tensor product of two 1D hierarchies."""
    hierarchy_xi: THBHierarchy1D
    hierarchy_eta: THBHierarchy1D
    _refinement_2d: List[sparse.csr_matrix] = field(default_factory=list, repr=False)

    @classmethod
    def from_knot_vectors(cls, kv_xi: KnotVector, kv_eta: KnotVector) -> 'THBHierarchy2D':
        return cls(
            hierarchy_xi=THBHierarchy1D.from_knot_vector(kv_xi),
            hierarchy_eta=THBHierarchy1D.from_knot_vector(kv_eta)
        )

    @property
    def n_levels(self) -> int:
        return min(self.hierarchy_xi.n_levels, self.hierarchy_eta.n_levels)

    @property
    def degrees(self) -> Tuple[int, int]:
        return (self.hierarchy_xi.degree, self.hierarchy_eta.degree)

    def ensure_level(self, level: int) -> None:
        self.hierarchy_xi.ensure_level(level)
        self.hierarchy_eta.ensure_level(level)

    def knot_vectors(self, level: int) -> Tuple[KnotVector, KnotVector]:
        return (self.hierarchy_xi.knot_vectors[level], self.hierarchy_eta.knot_vectors[level])

    def get_n_basis_per_dir(self, level: int) -> Tuple[int, int]:
        return (self.hierarchy_xi.get_n_basis(level), self.hierarchy_eta.get_n_basis(level))

    def get_n_basis(self, level: int) -> int:
        n_xi, n_eta = self.get_n_basis_per_dir(level)
        return n_xi * n_eta

    def get_n_elements_per_dir(self, level: int) -> Tuple[int, int]:
        return (self.hierarchy_xi.get_n_elements(level), self.hierarchy_eta.get_n_elements(level))

    def tensor_to_global(self, level: int, a: int, b: int) -> int:
        return b * self.hierarchy_xi.get_n_basis(level) + a

    def global_to_tensor(self, level: int, idx: int) -> Tuple[int, int]:
        n_xi = self.hierarchy_xi.get_n_basis(level)
        return (idx % n_xi, idx // n_xi)

    def refinement_matrix(self, level: int) -> sparse.csr_matrix:
        """A_l ⊗: (n_{l+1} x n_l) in flat numbering."""
        self.ensure_level(level + 1)
        while len(self._refinement_2d) <= level:
            l = len(self._refinement_2d)
            self._refinement_2d.append(sparse.kron(
                self.hierarchy_eta.refinement_matrices[l],
                self.hierarchy_xi.refinement_matrices[l], format='csr'))
        return self._refinement_2d[level]

    def without_coarsest(self) -> 'THBHierarchy2D':
        return THBHierarchy2D(
            hierarchy_xi=self.hierarchy_xi.without_coarsest(),
            hierarchy_eta=self.hierarchy_eta.without_coarsest(),
            _refinement_2d=self._refinement_2d[1:],
        )


class FunctionRecord(NamedTuple):
    """Arena entry of one active THB function."""
    level: int
    a: int
    b: int


def _all_in(grid: np.ndarray, first_x, last_x, first_y, last_y) -> np.ndarray:
    """
    For every function (a, b) with support cells [first_x[a], last_x[a]] x
    [first_y[b], last_y[b]], test whether all those cells are set in grid
    (shape (n_cells_eta, n_cells_xi)). Returns a (n_b, n_a) boolean array.
    """
    S = np.zeros((grid.shape[0] + 1, grid.shape[1] + 1), dtype=np.int64)
    S[1:, 1:] = np.cumsum(np.cumsum(grid.astype(np.int64), axis=0), axis=1)
    fx, lx = first_x[None, :], last_x[None, :] + 1
    fy, ly = first_y[:, None], last_y[:, None] + 1
    count = S[ly, lx] - S[fy, lx] - S[ly, fx] + S[fy, fx]
    return count == (lx - fx) * (ly - fy)


class THBBasis(SplineBasis):
    """
    Truncated hierarchical B-spline basis on one patch.

    Functions are numbered level by level; inside a level by their flat
    tensor index b * n_xi + a. Elements are ordered by (level, j, i).
    """

    def __init__(self, kv_xi: KnotVector, kv_eta: KnotVector):
        super().__init__()
        self.hierarchy = THBHierarchy2D.from_knot_vectors(kv_xi, kv_eta)
        # refined cells of every level; level 0 covers the whole patch
        self._refined: List[Set[Tuple[int, int]]] = [set()]
        self._built = False
        self._records: List[FunctionRecord] = []
        self._level_ids: List[np.ndarray] = []
        self._M: List[sparse.csr_matrix] = []
        # uniform refinements applied to level 0
        self._coarsened = 0

    @classmethod
    def from_surface(cls, surface, degree: Optional[int] = None) -> 'THBBasis':
        kv_xi, kv_eta = surface.knot_vectors
        if degree is not None:
            kv_xi, kv_eta = kv_xi.with_degree(degree), kv_eta.with_degree(degree)
        return cls(kv_xi, kv_eta)

    # ------------------------------------------------------------------
    # Basic properties
    # ------------------------------------------------------------------

    @property
    def degrees(self) -> Tuple[int, int]:
        return self.hierarchy.degrees

    @property
    def knot_vectors(self) -> Tuple[KnotVector, KnotVector]:
        return self.hierarchy.knot_vectors(0)

    @property
    def max_level(self) -> int:
        return len(self._refined) - 1

    @property
    def n_levels(self) -> int:
        return len(self._refined)

    def total_functions(self) -> int:
        self._ensure_built()
        return len(self._records)

    def function_record(self, index: int) -> FunctionRecord:
        """(level, a, b) of an active function."""
        self._ensure_built()
        return self._records[index]

    def function_index(self, level: int, a: int, b: int) -> Optional[int]:
        """Index of the active function with this record, or None."""
        self._ensure_built()
        flat = self.hierarchy.tensor_to_global(level, a, b)
        ids = self._level_ids[level]
        pos = int(np.searchsorted(ids, flat))
        if pos < len(ids) and ids[pos] == flat:
            return self._level_offsets[level] + pos
        return None

    def children(self, level: int, a: int, b: int) -> List[Tuple[int, int]]:
        """Tensor indices of the level+1 functions in the refinement of (a, b)."""
        A = self.hierarchy.refinement_matrix(level).tocsc()
        col = self.hierarchy.tensor_to_global(level, a, b)
        rows = A.indices[A.indptr[col]:A.indptr[col + 1]]
        return [self.hierarchy.global_to_tensor(level + 1, r) for r in rows]

    def _cell_levels(self):
        return [self.hierarchy.knot_vectors(l) for l in range(self.n_levels)]

    def levels_summary(self) -> List[Tuple[int, int]]:
        """(active cells, active functions) per level."""
        self._ensure_built()
        cells = [0] * self.n_levels
        for e in self.elements():
            cells[e.level] += 1
        return [(cells[l], len(self._level_ids[l])) for l in range(self.n_levels)]

    # ------------------------------------------------------------------
    # Domains and selection
    # ------------------------------------------------------------------

    def _grids(self, level: int) -> Tuple[np.ndarray, np.ndarray]:
        """Boolean (n_cells_eta, n_cells_xi) grids of Omega^l and of refined cells."""
        ne_xi, ne_eta = self.hierarchy.get_n_elements_per_dir(level)
        dom = np.zeros((ne_eta, ne_xi), dtype=bool)
        if level == 0:
            dom[:] = True
        else:
            for (i, j) in self._refined[level - 1]:
                dom[2 * j:2 * j + 2, 2 * i:2 * i + 2] = True
        ref = np.zeros_like(dom)
        for (i, j) in self._refined[level]:
            ref[j, i] = True
        return dom, ref

    def _ensure_built(self) -> None:
        if self._built:
            return
        hier = self.hierarchy
        hier.ensure_level(self.max_level)

        self._domains = []
        masks = []
        for level in range(self.n_levels):
            dom, ref = self._grids(level)
            self._domains.append((dom, ref))
            fx, lx = hier.hierarchy_xi.support_elements(level)
            fy, ly = hier.hierarchy_eta.support_elements(level)
            in_dom = _all_in(dom, fx, lx, fy, ly)
            in_ref = _all_in(ref, fx, lx, fy, ly)
            masks.append((in_dom, in_ref))

        records = []
        self._level_ids = []
        self._level_offsets = []
        for level, (in_dom, in_ref) in enumerate(masks):
            active = (in_dom & ~in_ref).ravel()
            ids = np.flatnonzero(active)
            self._level_offsets.append(len(records))
            self._level_ids.append(ids)
            n_xi = hier.get_n_basis_per_dir(level)[0]
            records.extend(FunctionRecord(level, int(k % n_xi), int(k // n_xi)) for k in ids)
        self._records = records
        n_total = len(records)

        # representation matrices with truncation
        self._M = []
        for level, (in_dom, _) in enumerate(masks):
            n_l = hier.get_n_basis(level)
            ids = self._level_ids[level]
            cols = self._level_offsets[level] + np.arange(len(ids))
            select = sparse.csr_matrix((np.ones(len(ids)), (ids, cols)), shape=(n_l, n_total))
            if level == 0:
                self._M.append(select)
                continue
            keep = (~in_dom).ravel().astype(np.float64)
            pushed = sparse.diags(keep) @ hier.refinement_matrix(level - 1) @ self._M[-1]
            self._M.append(_chop(pushed + select))

        self._built = True
        logger.debug("THB basis rebuilt: %d levels, %d functions",
                     self.n_levels, n_total)

    def _invalidate(self) -> None:
        super()._invalidate()
        self._built = False

    # ------------------------------------------------------------------
    # Elements
    # ------------------------------------------------------------------

    def _build_elements(self) -> List[Element]:
        self._ensure_built()
        hier = self.hierarchy
        elements = []
        for level in range(self.n_levels):
            dom, ref = self._domains[level]
            kv_xi, kv_eta = hier.knot_vectors(level)
            C_xi = hier.hierarchy_xi.extraction_operators(level)
            C_eta = hier.hierarchy_eta.extraction_operators(level)
            n_xi = kv_xi.n_basis
            M = self._M[level]
            for j, i in zip(*np.nonzero(dom & ~ref)):
                act_xi = kv_xi.active_basis_indices(i)
                act_eta = kv_eta.active_basis_indices(j)
                rows = (act_eta[:, None] * n_xi + act_xi[None, :]).ravel()
                local = M[rows]
                ids = np.unique(local.indices)
                T = local[:, ids].toarray().T
                elements.append(Element(
                    patch=self.patch,
                    index=len(elements),
                    level=level,
                    cell=(int(i), int(j)),
                    parametric_bounds=(kv_xi.elements[i], kv_eta.elements[j]),
                    function_ids=ids,
                    extraction_operator=T @ np.kron(C_eta[j], C_xi[i]),
                    degrees=self.degrees,
                ))
        return elements

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def refine_cells(self, level: int, cells) -> None:
        """
        Refine active cells of one level.

        Raises:
            ConfigurationError: a cell is not an active cell of that level
        """
        self._ensure_built()
        if not 0 <= level < self.n_levels:
            raise ConfigurationError(f"Level {level} has no active cells")
        dom, ref = self._domains[level]
        for (i, j) in cells:
            if not dom[j, i] or ref[j, i]:
                raise ConfigurationError(f"Cell ({i}, {j}) is not active on level {level}")
            self._refined[level].add((int(i), int(j)))
        if level + 1 >= len(self._refined):
            self._refined.append(set())
        self.hierarchy.ensure_level(level + 1)
        self._invalidate()

    def refine_elements(self, marked: Sequence[bool]) -> None:
        marked = self._check_marks(marked)
        by_level = {}
        for e in (el for el, m in zip(self.elements(), marked) if m):
            by_level.setdefault(e.level, []).append(e.cell)
        for level in sorted(by_level):
            self.refine_cells(level, by_level[level])

    def refine_all(self) -> None:
        """
        Split every knot span of every level.

        The level structure is kept: level l now lives on the knot vectors
        of the former level l+1 and its refined cells are the children of
        the former ones.
        """
        self.hierarchy = self.hierarchy.without_coarsest()
        self._refined = [{(2 * i + di, 2 * j + dj) for (i, j) in cells
                          for di in (0, 1) for dj in (0, 1)}
                         for cells in self._refined]
        self._coarsened += 1
        self._invalidate()

    def refined_cells(self, level: int) -> Set[Tuple[int, int]]:
        return set(self._refined[level]) if level < len(self._refined) else set()

    def side_cell(self, level: int, side: Side, t: int) -> Tuple[int, int]:
        """Cell of the first layer along a side at tangential position t."""
        ne = self.hierarchy.get_n_elements_per_dir(level)
        normal = ne[side.direction] - 1 if side.is_max else 0
        return (normal, t) if side.direction == 0 else (t, normal)

    def refined_on_side(self, level: int, side: Side) -> List[int]:
        """Tangential positions of the refined first-layer cells along a side."""
        ne = self.hierarchy.get_n_elements_per_dir(level)
        normal = ne[side.direction] - 1 if side.is_max else 0
        return sorted(cell[side.tangential] for cell in self.refined_cells(level)
                      if cell[side.direction] == normal)

    def n_cells_along(self, level: int, side: Side) -> int:
        return self.hierarchy.get_n_elements_per_dir(level)[side.tangential]

    def snapshot(self):
        self._ensure_built()
        return (self.generation, self._M, self.hierarchy, self._coarsened)

    def transfer_from(self, snapshot) -> sparse.csr_matrix:
        """
        Coefficients of the old functions in the new basis.

        Both spaces are represented in the finest tensor basis and the
        (exact) coefficients are recovered from the normal equations.
        """
        generation, old_M, old_hierarchy, old_coarsened = snapshot
        self._ensure_built()
        if generation == self.generation:
            return sparse.identity(self.total_functions(), format='csr')

        top = self.max_level
        # the current top level, counted in the old hierarchy
        target = top + self._coarsened - old_coarsened
        Mo = old_M[-1]
        for level in range(len(old_M) - 1, target):
            Mo = old_hierarchy.refinement_matrix(level) @ Mo
        Mn = self._M[top]

        gram = (Mn.T @ Mn).tocsc()
        rhs = (Mn.T @ Mo).toarray()
        T = splu(gram).solve(rhs)
        T[np.abs(T) < 1e-12] = 0.0
        return sparse.csr_matrix(T)

    # ------------------------------------------------------------------
    # Boundary traces
    # ------------------------------------------------------------------

    def side_trace(self, side: Side) -> Tuple[np.ndarray, KnotVector, sparse.csr_matrix]:
        self._ensure_built()
        top = self.max_level
        kv_xi, kv_eta = self.hierarchy.knot_vectors(top)
        n_xi, n_eta = kv_xi.n_basis, kv_eta.n_basis
        if side.direction == 0:
            a = n_xi - 1 if side.is_max else 0
            rows = np.arange(n_eta) * n_xi + a
            kv = kv_eta
        else:
            b = n_eta - 1 if side.is_max else 0
            rows = b * n_xi + np.arange(n_xi)
            kv = kv_xi
        on_side = self._M[top][rows]
        ids = np.unique(on_side.indices)
        return ids, kv, on_side[:, ids].T.tocsr()
