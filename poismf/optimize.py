"""
Alternating Optimizer for Poisson Matrix Factorization

Fits X ~ Poisson(A B^T) for a sparse non-negative count matrix X by
alternating block-coordinate descent on the regularized negative
log-likelihood:

.. math::
    \\min_{A, B \\geq 0} \\sum_{i,j} \\left[ a_i^T b_j - x_{ij} \\log(a_i^T b_j) \\right]
        + \\lambda_2 (\\|A\\|_F^2 + \\|B\\|_F^2) + \\lambda_1 (\\|A\\|_1 + \\|B\\|_1)

Each outer iteration:

1. Compute the column sums of B (plus the L1 penalty, plus per-row
   corrections under implicit-feedback weighting).
2. Update every row of A in parallel. With B fixed, the rows of A are
   independent convex problems that only read their own slice of X, the
   shared B and the shared statistics, so the phase needs no locking.
3. Compute the column sums of A.
4. Update every row of B in parallel, symmetrically, from the column view.
5. Let the solver adapt (the proximal gradient step is halved).

Cancellation is cooperative and checked at the top of every outer iteration
and between the A- and B-phases, never inside a row.

References
----------
Cortes, David (2018). "Fast Non-Bayesian Poisson Factorization for
Implicit-Feedback Recommendations." arXiv:1811.01908.
"""

import sys
import time
from contextlib import nullcontext
from enum import Enum
from typing import Callable, Optional

import numpy as np
from joblib import Parallel, delayed
from threadpoolctl import threadpool_limits

from .cancellation import CancellationToken
from .config import FitConfig
from .objective import NumericalDegeneracyError, RowObjective
from .solvers import RowSolver, make_solver
from .sparse import DualSparseMatrix
from .statistics import adjust_row_sums, column_sums


class FitStatus(str, Enum):
    """Outcome of :func:`fit_factors`"""
    SUCCESS = 'success'
    OUT_OF_MEMORY = 'out_of_memory'
    ABORTED = 'aborted'


def _check_factor(name: str, M, n_rows: int, k: Optional[int] = None) -> None:
    if not isinstance(M, np.ndarray):
        raise TypeError(f"{name} must be a numpy array, got {type(M).__name__}")
    if M.dtype != np.float64 or not M.flags.c_contiguous or not M.flags.writeable:
        raise TypeError(
            f"{name} must be a writeable C-contiguous float64 array, "
            f"as it is updated in place"
        )
    if M.ndim != 2 or M.shape[0] != n_rows or (k is not None and M.shape[1] != k):
        expected = f"({n_rows}, {k if k is not None else 'k'})"
        raise ValueError(f"{name} must have shape {expected}, got {M.shape}")
    if M.shape[1] < 1:
        raise ValueError(f"{name} must have at least one column")
    if not np.all(np.isfinite(M)):
        raise ValueError(f"{name} contains non-finite values")
    if np.any(M < 0):
        raise ValueError(f"{name} contains negative values")


class _Workspace:
    """Buffers allocated once per call and released when it returns."""

    def __init__(self, n_tasks: int, solver: RowSolver, dimA: int, dimB: int, k: int,
                 weighted: bool):
        self.stat = np.empty(k)
        # One private scratch block per worker task
        self.arena = np.empty((n_tasks, solver.scratch_size(k)))
        self.row_stats = np.empty((max(dimA, dimB), k)) if weighted else None


def _statistics(M: np.ndarray, indptr: np.ndarray, indices: np.ndarray,
                config: FitConfig, ws: _Workspace) -> Optional[np.ndarray]:
    column_sums(M, config.l1_reg, out=ws.stat)
    if config.weighted:
        return adjust_row_sums(M, ws.stat, indptr, indices, config.weight_mult, ws.row_stats)
    return None


def _update_rows(
    target: np.ndarray,
    opposite: np.ndarray,
    view,
    config: FitConfig,
    solver: RowSolver,
    ws: _Workspace,
    parallel: Parallel,
    side: str
) -> None:
    indptr, indices, data = view.indptr, view.indices, view.data
    row_stats = _statistics(opposite, indptr, indices, config, ws)
    stat = ws.stat

    def _work(task: int, start: int, end: int):
        scratch = ws.arena[task]
        for i in range(start, end):
            lo, hi = indptr[i], indptr[i + 1]
            objective = RowObjective(
                opposite, indices[lo:hi], data[lo:hi],
                stat if row_stats is None else row_stats[i],
                config.l2_reg, config.weight_mult
            )
            try:
                solver.solve_row(target[i], objective, scratch)
            except NumericalDegeneracyError as err:
                err.row, err.side = i, side
                raise

    n_tasks = ws.arena.shape[0]
    bounds = np.linspace(0, target.shape[0], n_tasks + 1).astype(np.int64)
    if n_tasks == 1:
        _work(0, 0, target.shape[0])
    else:
        parallel(
            delayed(_work)(task, int(bounds[task]), int(bounds[task + 1]))
            for task in range(n_tasks)
        )


def fit_factors(
    A: np.ndarray,
    B: np.ndarray,
    X: DualSparseMatrix,
    *,
    l2_reg: float = 0.0,
    l1_reg: float = 0.0,
    weight_mult: float = 1.0,
    step_size: float = 1e-7,
    method='tncg',
    limit_step: bool = True,
    num_iterations: int = 10,
    max_updates: Optional[int] = None,
    num_threads: int = 1,
    verbose: int = 0,
    cancel_token: Optional[CancellationToken] = None,
    callback: Optional[Callable[[int, str], None]] = None
) -> FitStatus:
    r"""
    Optimize already-initialized factor matrices in place.

    Parameters
    ----------
    A : np.ndarray
        Row factors of shape (dimA, k), C-contiguous float64, non-negative.
        Updated in place, never reallocated.
    B : np.ndarray
        Column factors of shape (dimB, k), same requirements as A.
    X : DualSparseMatrix
        Count matrix of shape (dimA, dimB).
    l2_reg, l1_reg : float
        Regularization strengths for the squared L2 and the L1 norms of
        both factor matrices.
    weight_mult : float
        Weight of the observed (non-zero) entries relative to the missing
        ones. 1.0 disables implicit-feedback reweighting.
    step_size : float
        Initial step of the proximal gradient method, halved after every
        outer iteration. Ignored by the other methods.
    method : {'pg', 'cg', 'tncg'}
        Row subproblem solver.
    limit_step : bool
        CG only: truncate line-search steps so that at most one variable
        is zeroed per iteration.
    num_iterations : int
        Number of outer iterations (A-phase followed by B-phase).
    max_updates : int, optional
        Per-row update budget: updates for PG, iterations for CG, function
        evaluations for TNCG. Defaults to 1, 5 and 15 respectively.
    num_threads : int
        Worker threads for the row updates. Non-positive means all cores.
    verbose : int
        - 0: No output
        - 2: Print timings of every outer iteration
    cancel_token : CancellationToken, optional
        Polled at phase boundaries.
    callback : callable, optional
        ``callback(iteration, phase)`` after every completed phase, ``phase``
        being ``'A'`` or ``'B'``. Runs before the cancellation poll.

    Returns
    -------
    FitStatus
        ``SUCCESS``, ``ABORTED`` if the token was cancelled (A and B keep the
        values of the last completed phase) or ``OUT_OF_MEMORY`` if the
        working buffers could not be allocated (A and B untouched).

    Raises
    ------
    NumericalDegeneracyError
        If a row to be updated predicts zero intensity for an observed count.
    ValueError, TypeError
        On invalid parameters or inputs.

    Examples
    --------
    >>> import numpy as np
    >>> from poismf import DualSparseMatrix, fit_factors
    >>> X = DualSparseMatrix.from_triplets([0, 1, 1], [0, 0, 2], [3., 1., 5.])
    >>> A = np.random.rand(2, 2)
    >>> B = np.random.rand(3, 2)
    >>> fit_factors(A, B, X, method='cg', num_iterations=5)
    <FitStatus.SUCCESS: 'success'>
    """
    config = FitConfig(
        l2_reg=l2_reg, l1_reg=l1_reg, weight_mult=weight_mult,
        step_size=step_size, method=method, limit_step=limit_step,
        num_iterations=num_iterations, max_updates=max_updates,
        num_threads=num_threads, verbose=verbose
    )
    if not isinstance(X, DualSparseMatrix):
        raise TypeError(f"X must be a DualSparseMatrix, got {type(X).__name__}")
    dimA, dimB = X.shape
    _check_factor('A', A, dimA)
    k = A.shape[1]
    _check_factor('B', B, dimB, k)

    solver = make_solver(config)
    n_tasks = max(1, min(config.num_threads, max(dimA, dimB)))
    try:
        ws = _Workspace(n_tasks, solver, dimA, dimB, k, config.weighted)
    except MemoryError:
        if verbose:
            print("Error: out of memory.", file=sys.stderr)
        return FitStatus.OUT_OF_MEMORY

    token = cancel_token if cancel_token is not None else CancellationToken()
    start_time = time.time()

    limits = threadpool_limits(limits=1) if n_tasks > 1 else nullcontext()
    with limits, Parallel(n_jobs=n_tasks, backend='threading') as parallel:
        for iteration in range(config.num_iterations):
            if token.is_cancelled:
                return _aborted(iteration, verbose)

            t0 = time.time()
            _update_rows(A, B, X.csr, config, solver, ws, parallel, 'A')
            if callback is not None:
                callback(iteration, 'A')
            if token.is_cancelled:
                return _aborted(iteration, verbose)

            t1 = time.time()
            _update_rows(B, A, X.csc, config, solver, ws, parallel, 'B')
            if callback is not None:
                callback(iteration, 'B')
            solver.end_iteration()

            if verbose >= 2:
                print(f"Iter {iteration + 1:4d}: "
                      f"A-phase {t1 - t0:.3f}s, "
                      f"B-phase {time.time() - t1:.3f}s")

    if verbose >= 2:
        print(f"Total elapsed time: {time.time() - start_time:.3f}s "
              f"({config.method.value}, {config.num_iterations} iterations)")
    return FitStatus.SUCCESS


def _aborted(iteration: int, verbose: int) -> FitStatus:
    if verbose:
        print(f"Procedure aborted at iteration {iteration + 1}", file=sys.stderr)
    return FitStatus.ABORTED


def solve_single_row(
    B: np.ndarray,
    indices: np.ndarray,
    counts: np.ndarray,
    a: Optional[np.ndarray] = None,
    *,
    l2_reg: float = 0.0,
    l1_reg: float = 0.0,
    weight_mult: float = 1.0,
    step_size: float = 1e-7,
    method='tncg',
    limit_step: bool = True,
    max_updates: Optional[int] = None
) -> np.ndarray:
    r"""
    Factors of a new row with the opposite matrix held fixed.

    Runs the same row solver as :func:`fit_factors` once, for a row that was
    not part of the fit (``dimA = 1``).

    Parameters
    ----------
    B : np.ndarray
        Fixed opposite factors of shape (dimB, k).
    indices : np.ndarray
        Columns (rows of B) with non-zero counts.
    counts : np.ndarray
        The matching counts.
    a : np.ndarray, optional
        Starting point of length k, overwritten with the result. Defaults to
        a vector of ones scaled by the mean count.

    Returns
    -------
    np.ndarray
        Non-negative vector of length k.
    """
    config = FitConfig(
        l2_reg=l2_reg, l1_reg=l1_reg, weight_mult=weight_mult,
        step_size=step_size, method=method, limit_step=limit_step,
        num_iterations=1, max_updates=max_updates
    )
    B = np.ascontiguousarray(B, dtype=np.float64)
    k = B.shape[1]
    indices = np.asarray(indices, dtype=np.int64).reshape(-1)
    counts = np.asarray(counts, dtype=np.float64).reshape(-1)
    if indices.shape != counts.shape:
        raise ValueError("indices and counts must have the same length")
    if np.any(counts < 0):
        raise ValueError("Counts must be non-negative")
    if indices.size and (indices.min() < 0 or indices.max() >= B.shape[0]):
        raise ValueError(f"indices must fall in [0, {B.shape[0]})")

    if a is None:
        scale = counts.mean() / max(k, 1) if counts.size else 1.0
        a = np.full(k, max(scale, 1e-3))
    elif a.shape != (k,):
        raise ValueError(f"a must have shape ({k},), got {a.shape}")

    stat = column_sums(B, config.l1_reg)
    if config.weighted:
        indptr = np.array([0, indices.shape[0]])
        stat = adjust_row_sums(B, stat, indptr, indices, config.weight_mult,
                               np.empty((1, k)))[0]

    solver = make_solver(config)
    scratch = np.empty(solver.scratch_size(k))
    objective = RowObjective(B, indices, counts, stat, config.l2_reg, config.weight_mult)
    try:
        solver.solve_row(a, objective, scratch)
    except NumericalDegeneracyError as err:
        err.row, err.side = 0, 'new row'
        raise
    return a
