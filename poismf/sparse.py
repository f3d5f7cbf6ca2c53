"""
Dual-View Sparse Count Matrix

The optimizer traverses the count matrix X by rows while updating A and by
columns while updating B. Both traversals must be O(nnz), so X is kept twice:
once row-compressed (CSR) and once column-compressed (CSC). The two views are
built together, validated to hold the same (row, col, value) multiset, and
frozen: any change to the data requires building a new object.
"""

import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp


def _freeze(matrix):
    for arr in (matrix.data, matrix.indices, matrix.indptr):
        arr.flags.writeable = False
    return matrix


def _check_view(view, n_major: int, n_minor: int, name: str):
    values, indices, offsets = (np.asarray(a) for a in view)
    values = values.astype(np.float64).reshape(-1)
    indices = indices.reshape(-1)
    offsets = offsets.reshape(-1)

    if offsets.shape[0] != n_major + 1:
        raise ValueError(f"{name} offsets must have length {n_major + 1}, got {offsets.shape[0]}")
    if indices.shape[0] != values.shape[0]:
        raise ValueError(f"{name} view has {indices.shape[0]} indices but {values.shape[0]} values")
    if offsets[0] != 0 or offsets[-1] != values.shape[0] or np.any(np.diff(offsets) < 0):
        raise ValueError(
            f"{name} offsets must increase from 0 to the number of entries ({values.shape[0]})"
        )
    if indices.size and (indices.min() < 0 or indices.max() >= n_minor):
        raise ValueError(f"{name} view indices must fall in [0, {n_minor})")
    if not np.all(np.isfinite(values)):
        raise ValueError("Counts must be finite")
    if np.any(values < 0):
        raise ValueError("Counts must be non-negative")
    return values, indices, offsets


def reindex(labels: Sequence) -> Tuple[np.ndarray, np.ndarray]:
    r"""
    Map arbitrary labels to consecutive integer codes.

    Parameters
    ----------
    labels : array-like
        One label per triplet (user ids, item ids, ...).

    Returns
    -------
    codes : np.ndarray
        Integer code of each label, in [0, len(uniques)).
    uniques : np.ndarray
        Sorted unique labels; ``uniques[codes]`` recovers the input.
    """
    uniques, codes = np.unique(np.asarray(labels), return_inverse=True)
    return codes.reshape(-1).astype(np.int64), uniques


@dataclass(frozen=True)
class DualSparseMatrix:
    """Immutable count matrix with row-compressed and column-compressed views"""
    csr: sp.csr_matrix
    csc: sp.csc_matrix

    @classmethod
    def from_scipy(cls, X) -> 'DualSparseMatrix':
        """Build both views from any scipy sparse matrix (or dense array)."""
        if not sp.issparse(X):
            X = np.asarray(X)
            if X.ndim != 2:
                raise ValueError(f"X must be 2D matrix, got shape {X.shape}")
        coo = sp.coo_matrix(X, dtype=np.float64)
        return cls.from_triplets(coo.row, coo.col, coo.data, shape=coo.shape)

    @classmethod
    def from_triplets(
        cls,
        rows: Sequence[int],
        cols: Sequence[int],
        values: Sequence[float],
        shape: Optional[Tuple[int, int]] = None
    ) -> 'DualSparseMatrix':
        r"""
        Build both views from integer (row, col, count) triplets.

        Duplicated (row, col) pairs are summed and explicit zeros are dropped,
        with a warning in both cases. Negative or non-finite counts raise
        ``ValueError``.
        """
        rows = np.asarray(rows, dtype=np.int64).reshape(-1)
        cols = np.asarray(cols, dtype=np.int64).reshape(-1)
        values = np.asarray(values, dtype=np.float64).reshape(-1)

        if not (rows.shape == cols.shape == values.shape):
            raise ValueError(
                f"rows, cols and values must have the same length, got "
                f"{rows.shape[0]}, {cols.shape[0]} and {values.shape[0]}"
            )
        if not np.all(np.isfinite(values)):
            raise ValueError("Counts must be finite")
        if np.any(values < 0):
            raise ValueError("Counts must be non-negative")
        if rows.size and (rows.min() < 0 or cols.min() < 0):
            raise ValueError("Row and column indices must be non-negative")

        if shape is None:
            shape = (int(rows.max()) + 1 if rows.size else 0,
                     int(cols.max()) + 1 if cols.size else 0)
        elif rows.size and (rows.max() >= shape[0] or cols.max() >= shape[1]):
            raise ValueError(f"Triplet indices fall outside of shape {shape}")

        zeros = values == 0
        if np.any(zeros):
            warnings.warn(f"Dropping {int(zeros.sum())} zero-valued entries", UserWarning)
            rows, cols, values = rows[~zeros], cols[~zeros], values[~zeros]

        coo = sp.coo_matrix((values, (rows, cols)), shape=shape)
        csr = coo.tocsr()
        csr.sum_duplicates()
        if csr.nnz < values.shape[0]:
            warnings.warn(
                f"Summed {values.shape[0] - csr.nnz} duplicated (row, col) entries",
                UserWarning
            )
        csr.sort_indices()
        csc = csr.tocsc()
        csc.sort_indices()
        return cls(_freeze(csr), _freeze(csc))

    @classmethod
    def from_views(
        cls,
        row_view: Tuple[np.ndarray, np.ndarray, np.ndarray],
        col_view: Tuple[np.ndarray, np.ndarray, np.ndarray],
        shape: Tuple[int, int]
    ) -> 'DualSparseMatrix':
        r"""
        Wrap already-compressed views given as (values, indices, offsets).

        Explicitly stored zeros are dropped from both views, with a warning.
        Raises ``ValueError`` on malformed offsets or out-of-range indices, and
        unless both views then describe the same set of (row, col, value)
        entries.
        """
        values_r, col_ind, row_ptr = _check_view(row_view, shape[0], shape[1], 'Row')
        values_c, row_ind, col_ptr = _check_view(col_view, shape[1], shape[0], 'Column')

        csr = sp.csr_matrix((values_r, col_ind, row_ptr), shape=shape, copy=True)
        csc = sp.csc_matrix((values_c, row_ind, col_ptr), shape=shape, copy=True)
        csr.sort_indices()
        csc.sort_indices()
        if not (csr.has_canonical_format and csc.has_canonical_format):
            raise ValueError("Views must not contain duplicated entries")

        n_zeros = int(np.sum(csr.data == 0)) + int(np.sum(csc.data == 0))
        if n_zeros:
            warnings.warn(f"Dropping {n_zeros} zero-valued entries", UserWarning)
            csr.eliminate_zeros()
            csc.eliminate_zeros()

        other = csc.tocsr()
        other.sort_indices()
        if not (np.array_equal(csr.indptr, other.indptr)
                and np.array_equal(csr.indices, other.indices)
                and np.array_equal(csr.data, other.data)):
            raise ValueError("Row and column views do not hold the same entries")
        return cls(_freeze(csr), _freeze(csc))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.csr.shape

    @property
    def nnz(self) -> int:
        return self.csr.nnz

    def row(self, i: int) -> Tuple[np.ndarray, np.ndarray]:
        """Column indices and counts of row ``i``."""
        start, end = self.csr.indptr[i], self.csr.indptr[i + 1]
        return self.csr.indices[start:end], self.csr.data[start:end]

    def col(self, j: int) -> Tuple[np.ndarray, np.ndarray]:
        """Row indices and counts of column ``j``."""
        start, end = self.csc.indptr[j], self.csc.indptr[j + 1]
        return self.csc.indices[start:end], self.csc.data[start:end]

