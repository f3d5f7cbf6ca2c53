"""
Evaluation Functions for Poisson Factorization

Objective values, likelihoods and ranking metrics computed from finished (or
intermediate) factor matrices.
"""

import numpy as np
import scipy.sparse as sp
from scipy.special import gammaln
from typing import Dict, Optional
from sklearn.metrics import roc_auc_score

from ..sparse import DualSparseMatrix


def poisson_objective(
    A: np.ndarray,
    B: np.ndarray,
    X: DualSparseMatrix,
    l2_reg: float = 0.0,
    l1_reg: float = 0.0,
    weight_mult: float = 1.0
) -> float:
    r"""
    Regularized negative log-likelihood minimized by the optimizer.

    .. math::
        F(A, B) = \sum_{i,j} a_i^T b_j + (w - 1) \sum_{(i,j) \in nnz} a_i^T b_j
                  - w \sum_{(i,j) \in nnz} x_{ij} \log(a_i^T b_j)
                  + \lambda_2 (\|A\|^2 + \|B\|^2) + \lambda_1 (\|A\|_1 + \|B\|_1)

    Equals the sum over rows of the row subproblem objectives (up to terms
    constant in the row being optimized). Computed in O(nnz * k) without
    materializing A B^T.

    Returns
    -------
    float
        Objective value; ``inf`` if an observed entry has zero intensity.
    """
    coo = X.csr.tocoo()
    pred = np.einsum('ij,ij->i', A[coo.row], B[coo.col])
    if np.any(pred <= 0):
        return np.inf

    total = float(A.sum(axis=0) @ B.sum(axis=0))
    if weight_mult != 1.0:
        total += (weight_mult - 1.0) * float(pred.sum())
    total -= weight_mult * float(coo.data @ np.log(pred))
    total += l2_reg * (float(np.sum(A ** 2)) + float(np.sum(B ** 2)))
    total += l1_reg * (float(A.sum()) + float(B.sum()))
    return total


def poisson_loglikelihood(
    A: np.ndarray,
    B: np.ndarray,
    rows: np.ndarray,
    cols: np.ndarray,
    counts: np.ndarray,
    full: bool = False
) -> float:
    r"""
    Poisson log-likelihood of the given (row, col, count) entries only.

    .. math::
        \sum_{(i, j)} x_{ij} \log(a_i^T b_j) - a_i^T b_j - \log(x_{ij}!)

    Parameters
    ----------
    full : bool
        Include the ``log(x!)`` term, which does not depend on the factors.
    """
    rows = np.asarray(rows, dtype=np.int64)
    cols = np.asarray(cols, dtype=np.int64)
    counts = np.asarray(counts, dtype=np.float64)
    pred = np.einsum('ij,ij->i', A[rows], B[cols])
    with np.errstate(divide='ignore'):
        llk = float(np.sum(counts * np.log(pred) - pred))
    if full:
        llk -= float(np.sum(gammaln(counts + 1.0)))
    return llk


def auc_per_row(
    A: np.ndarray,
    B: np.ndarray,
    X_test: sp.spmatrix,
    X_train: Optional[sp.spmatrix] = None,
    min_positives: int = 1
) -> Dict[str, float]:
    r"""
    ROC-AUC of each row's scores at telling held-out items from unseen ones.

    Items present in ``X_train`` for a row are excluded from its ranking.
    Rows with fewer than ``min_positives`` held-out items, or with no
    negatives left, are skipped.

    Returns
    -------
    dict
        Contains 'auc' (mean over evaluated rows) and 'n_rows'.
    """
    X_test = sp.csr_matrix(X_test)
    X_train = sp.csr_matrix(X_train) if X_train is not None else None
    aucs = []
    for i in range(X_test.shape[0]):
        positives = X_test.indices[X_test.indptr[i]:X_test.indptr[i + 1]]
        if positives.shape[0] < min_positives:
            continue
        keep = np.ones(B.shape[0], dtype=bool)
        if X_train is not None:
            keep[X_train.indices[X_train.indptr[i]:X_train.indptr[i + 1]]] = False
        labels = np.zeros(B.shape[0])
        labels[positives] = 1.0
        labels = labels[keep]
        if labels.sum() in (0, labels.shape[0]):
            continue
        aucs.append(roc_auc_score(labels, (B @ A[i])[keep]))

    return {
        'auc': float(np.mean(aucs)) if aucs else np.nan,
        'n_rows': len(aucs),
    }


def precision_at_k(
    A: np.ndarray,
    B: np.ndarray,
    X_test: sp.spmatrix,
    X_train: Optional[sp.spmatrix] = None,
    k: int = 10
) -> float:
    r"""
    Mean fraction of each row's top-k scored items that appear in ``X_test``.

    Items present in ``X_train`` are excluded from the ranking. Rows without
    held-out items are skipped.
    """
    X_test = sp.csr_matrix(X_test)
    X_train = sp.csr_matrix(X_train) if X_train is not None else None
    hits = []
    for i in range(X_test.shape[0]):
        positives = X_test.indices[X_test.indptr[i]:X_test.indptr[i + 1]]
        if positives.shape[0] == 0:
            continue
        scores = B @ A[i]
        if X_train is not None:
            scores[X_train.indices[X_train.indptr[i]:X_train.indptr[i + 1]]] = -np.inf
        top = np.argsort(-scores, kind='stable')[:k]
        hits.append(np.isin(top, positives).sum() / min(k, B.shape[0]))
    return float(np.mean(hits)) if hits else np.nan
