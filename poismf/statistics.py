"""
Shared Statistics for the Row Subproblems

Every row objective needs the linear term  sum_j a.M_j  over *all* rows j of
the opposite matrix, not just the observed ones. That sum equals a.colsum(M),
so it is computed once per half-iteration and shared read-only by all rows.

With an implicit-feedback weight multiplier w != 1 the observed entries get
weight w while the missing ones keep weight 1, which shifts the linear term of
row r by (w - 1) * sum_{c in nnz(r)} M[c]. The shifted vectors are written
into a pre-allocated (n_rows, k) buffer, one row at a time.
"""

import numpy as np


def column_sums(M: np.ndarray, l1_reg: float = 0.0, out: np.ndarray = None) -> np.ndarray:
    r"""
    Column sums of a factor matrix shifted by the L1 penalty.

    .. math::
        s_j = \sum_i M_{ij} + \lambda_1

    Parameters
    ----------
    M : np.ndarray
        Factor matrix of shape (n, k).
    l1_reg : float
        L1 penalty added to every component.
    out : np.ndarray, optional
        Destination of length k.

    Returns
    -------
    np.ndarray
        Vector of length k.
    """
    out = np.sum(M, axis=0, out=out)
    if l1_reg > 0:
        out += l1_reg
    return out


def adjust_row_sums(
    M: np.ndarray,
    colsum: np.ndarray,
    indptr: np.ndarray,
    indices: np.ndarray,
    weight_mult: float,
    out: np.ndarray
) -> np.ndarray:
    r"""
    Per-row linear terms under implicit-feedback weighting.

    .. math::
        r_i = s + (w - 1) \sum_{c \in nnz(i)} M_c

    Parameters
    ----------
    M : np.ndarray
        Opposite factor matrix of shape (n_cols, k).
    colsum : np.ndarray
        Output of :func:`column_sums` for ``M``.
    indptr, indices : np.ndarray
        Offsets and minor indices of the compressed view whose major axis
        indexes the rows being updated (CSR arrays when updating A, CSC
        arrays when updating B). Only the sparsity pattern is used.
    weight_mult : float
        Weight multiplier w of the observed entries.
    out : np.ndarray
        Buffer with at least ``len(indptr) - 1`` rows and k columns; the
        leading block is overwritten.

    Returns
    -------
    np.ndarray
        The overwritten (n_rows, k) block of ``out``.
    """
    n_rows = indptr.shape[0] - 1
    block = out[:n_rows]
    # Sums land in place; temporaries never exceed one row's support
    for i in range(n_rows):
        np.sum(M[indices[indptr[i]:indptr[i + 1]]], axis=0, out=block[i])
    block *= weight_mult - 1.0
    block += colsum
    return block
