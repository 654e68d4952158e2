"""
Global sparse system with static condensation of eliminated DOFs.

Local contributions arrive as dense blocks over an element's active
functions. Their rows and columns are mapped through the DofMapper:

    free x free        -> matrix triplets
    free x eliminated  -> moved to the right-hand side: f_i -= A_ij g_j
    eliminated rows    -> dropped

Triplets are collected in preallocated COO buffers (reserve()) and summed
into a CSR matrix by finalize().
"""

import logging
import numpy as np
from scipy import sparse
from typing import Optional, Tuple

from ..errors import MissingReservationError

logger = logging.getLogger(__name__)


def estimate_nnz_per_row(bases, multiplier: float = 1.0) -> int:
    """
    Triplets expected per matrix row.

    A function overlaps at most (p+1)^2 elements per direction pair, each
    adding (p+1)^2 entries; hierarchical levels allow more overlaps.
    """
    per_row = max(int(np.prod([(p + 1) ** 2 for p in b.degrees])) for b in bases)
    levels = max(b.max_level for b in bases) + 1
    return max(1, int(np.ceil(multiplier * per_row * levels)))


class SparseSystem:
    """
    Triplet-based global system over the free DOFs of a mapper.

    Usage:
        system = SparseSystem(mapper)
        system.reserve(nnz_per_row)
        system.accumulate(K_e, f_e, actives, patch, eliminated_values)
        K, f = system.finalize()
    """

    def __init__(self, mapper):
        self.mapper = mapper
        self.n_free = mapper.n_free
        self.rhs = np.zeros(self.n_free)
        self._rows = np.zeros(0, dtype=np.int64)
        self._cols = np.zeros(0, dtype=np.int64)
        self._vals = np.zeros(0)
        self._count = 0
        self._reserved = False
        self._warned = False

    @property
    def capacity(self) -> int:
        return len(self._vals)

    @property
    def n_triplets(self) -> int:
        return self._count

    def reserve(self, nnz_per_row: int) -> None:
        """Allocate triplet buffers for n_free * nnz_per_row entries."""
        if nnz_per_row <= 0:
            raise MissingReservationError(f"Reservation must be positive, got {nnz_per_row}")
        size = max(self.n_free, 1) * int(nnz_per_row)
        self._rows = np.empty(size, dtype=np.int64)
        self._cols = np.empty(size, dtype=np.int64)
        self._vals = np.empty(size)
        self._count = 0
        self._reserved = True

    def _grow(self, needed: int) -> None:
        if not self._warned:
            logger.warning("SparseSystem reservation of %d triplets exceeded; growing buffers",
                           self.capacity)
            self._warned = True
        size = max(2 * self.capacity, needed)
        for name in ('_rows', '_cols', '_vals'):
            old = getattr(self, name)
            new = np.empty(size, dtype=old.dtype)
            new[:self._count] = old[:self._count]
            setattr(self, name, new)

    def accumulate(self, local_matrix: Optional[np.ndarray], local_rhs: Optional[np.ndarray],
                   actives: np.ndarray, patch: int = 0,
                   eliminated_values: Optional[np.ndarray] = None) -> None:
        """
        Add a local contribution.

        Parameters:
            local_matrix: (n_act, n_act) block or None
            local_rhs: (n_act,) vector or None
            actives: Patch-local function indices of the block rows/columns
            patch: Patch of the element
            eliminated_values: Values of the eliminated DOFs for condensation

        Raises:
            UnmappedDofError: an active index has no classification
        """
        idx = self.mapper.indices(actives, patch)
        free = idx < self.n_free
        fi = idx[free]

        if local_rhs is not None:
            np.add.at(self.rhs, fi, np.asarray(local_rhs)[free])

        if local_matrix is None:
            return

        block = np.asarray(local_matrix)[np.ix_(free, free)]
        n = block.size
        if n:
            if not self._reserved:
                raise MissingReservationError("accumulate() called before reserve()")
            if self._count + n > self.capacity:
                self._grow(self._count + n)
            s = slice(self._count, self._count + n)
            self._rows[s] = np.repeat(fi, len(fi))
            self._cols[s] = np.tile(fi, len(fi))
            self._vals[s] = block.ravel()
            self._count += n

        eliminated = ~free
        if eliminated_values is not None and eliminated.any() and free.any():
            g = eliminated_values[idx[eliminated] - self.n_free]
            coupling = np.asarray(local_matrix)[np.ix_(free, eliminated)]
            np.add.at(self.rhs, fi, -(coupling @ g))

    def finalize(self) -> Tuple[sparse.csr_matrix, np.ndarray]:
        """
        Sum the triplets into a CSR matrix.

        Raises:
            MissingReservationError: reserve() was never called
        """
        if not self._reserved:
            raise MissingReservationError("SparseSystem finalized without a nonzero reservation")
        n = self._count
        K = sparse.coo_matrix((self._vals[:n], (self._rows[:n], self._cols[:n])),
                              shape=(self.n_free, self.n_free)).tocsr()
        K.sum_duplicates()
        return K, self.rhs.copy()
