"""
Poisson Factorization Model

Estimator wrapping the alternating optimizer with the pieces around it:
re-indexing of arbitrary user/item labels, initialization of the factor
matrices, prediction of scores, top-N ranking and inference of factors for
rows that were not part of the fit.
"""

import time
import warnings
from contextlib import nullcontext
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import scipy.sparse as sp

from .cancellation import CancellationToken, cancel_on_interrupt
from .config import FitConfig, Method
from .optimize import FitStatus, fit_factors, solve_single_row
from .sparse import DualSparseMatrix, reindex
from .utils.evaluation import poisson_loglikelihood, poisson_objective


class PoissonMF:
    r"""
    Poisson matrix factorization for implicit-feedback count data.

    Models a sparse count matrix X (users x items) as X ~ Poisson(A B^T)
    with non-negative A and B, fitted by maximum (penalized) likelihood.

    Parameters
    ----------
    k : int
        Number of latent factors.
    method : {'tncg', 'cg', 'pg'}
        Row subproblem solver. 'tncg' gives the best likelihood and the
        sparsest factors, 'pg' is the fastest per iteration.
    l2_reg, l1_reg : float
        Regularization of the squared L2 and L1 norms of both factors.
    weight_mult : float
        Weight of observed entries relative to missing ones.
    niter : int
        Number of outer iterations.
    maxupd : int, optional
        Per-row update budget (method-dependent default).
    limit_step : bool
        CG only: zero out at most one variable per line search.
    initial_step : float
        Initial step size of the proximal gradient method.
    random_state : int
        Seed for the initialization of A and B.
    nthreads : int
        Worker threads. Non-positive means all cores.
    reindex : bool
        Map arbitrary user/item labels of triplet input to consecutive
        integers. When False, labels must already be non-negative integers.
    handle_interrupt : bool
        Turn Ctrl+C into a graceful early stop of the fit.
    verbose : int
        - 0: No output
        - 1: Record the objective after every iteration in ``history_``
        - 2: Also print progress

    Attributes
    ----------
    A_ : np.ndarray
        User factors of shape (n_users, k).
    B_ : np.ndarray
        Item factors of shape (n_items, k).
    user_mapping_, item_mapping_ : np.ndarray
        Label of every row of ``A_`` / ``B_``.
    status_ : FitStatus
        Outcome of the last call to ``fit``.
    history_ : dict
        'f' (objective values) and 't' (elapsed seconds), when verbose.

    Examples
    --------
    >>> import numpy as np
    >>> from poismf import PoissonMF
    >>> triplets = np.array([[0, 0, 3], [0, 2, 1], [1, 1, 4], [2, 0, 2]])
    >>> model = PoissonMF(k=2, method='cg', niter=5).fit(triplets)
    >>> model.topN(user=0, n=1, exclude=[0, 2]).tolist()
    [1]
    """

    def __init__(
        self,
        k: int = 20,
        method: str = 'tncg',
        l2_reg: float = 1e-3,
        l1_reg: float = 0.0,
        weight_mult: float = 1.0,
        niter: int = 10,
        maxupd: Optional[int] = None,
        limit_step: bool = True,
        initial_step: float = 1e-7,
        random_state: int = 1,
        nthreads: int = 1,
        reindex: bool = True,
        handle_interrupt: bool = True,
        verbose: int = 0
    ):
        if k <= 0 or k != int(k):
            raise ValueError(f"k must be a positive integer, got {k}")
        self.k = int(k)
        self.method = method
        self.l2_reg = l2_reg
        self.l1_reg = l1_reg
        self.weight_mult = weight_mult
        self.niter = niter
        self.maxupd = maxupd
        self.limit_step = limit_step
        self.initial_step = initial_step
        self.random_state = random_state
        self.nthreads = nthreads
        self.reindex = reindex
        self.handle_interrupt = handle_interrupt
        self.verbose = verbose
        # Validate eagerly so that bad hyperparameters fail before any data work
        self._config()

    def _config(self) -> FitConfig:
        return FitConfig(
            l2_reg=self.l2_reg, l1_reg=self.l1_reg, weight_mult=self.weight_mult,
            step_size=self.initial_step, method=self.method,
            limit_step=self.limit_step, num_iterations=self.niter,
            max_updates=self.maxupd, num_threads=self.nthreads,
            verbose=self.verbose
        )

    # ------------------------------------------------------------------
    # Data handling
    # ------------------------------------------------------------------
    def _build_matrix(self, X) -> DualSparseMatrix:
        if isinstance(X, DualSparseMatrix):
            self.user_mapping_ = np.arange(X.shape[0])
            self.item_mapping_ = np.arange(X.shape[1])
            return X
        if sp.issparse(X):
            self.user_mapping_ = np.arange(X.shape[0])
            self.item_mapping_ = np.arange(X.shape[1])
            return DualSparseMatrix.from_scipy(X)

        triplets = np.asarray(X)
        if triplets.ndim != 2 or triplets.shape[1] != 3:
            raise ValueError(
                f"X must be a sparse matrix or an (n, 3) array of "
                f"(user, item, count) triplets, got shape {triplets.shape}"
            )
        counts = triplets[:, 2].astype(np.float64)
        if self.reindex:
            rows, self.user_mapping_ = reindex(triplets[:, 0])
            cols, self.item_mapping_ = reindex(triplets[:, 1])
        else:
            rows = triplets[:, 0].astype(np.int64)
            cols = triplets[:, 1].astype(np.int64)
            self.user_mapping_ = np.arange(rows.max() + 1 if rows.size else 0)
            self.item_mapping_ = np.arange(cols.max() + 1 if cols.size else 0)
        shape = (self.user_mapping_.shape[0], self.item_mapping_.shape[0])
        return DualSparseMatrix.from_triplets(rows, cols, counts, shape=shape)

    @staticmethod
    def _lookup(mapping: np.ndarray, labels) -> Tuple[np.ndarray, np.ndarray]:
        labels = np.asarray(labels).reshape(-1)
        if mapping.shape[0] == 0:
            return np.zeros(labels.shape[0], dtype=np.int64), np.zeros(labels.shape[0], dtype=bool)
        codes = np.searchsorted(mapping, labels)
        codes = np.clip(codes, 0, mapping.shape[0] - 1)
        valid = mapping[codes] == labels
        return codes.astype(np.int64), valid

    def _check_fitted(self):
        if not hasattr(self, 'A_'):
            raise ValueError("Model has not been fitted yet; call fit() first")

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------
    def _init_factors(self, X: DualSparseMatrix) -> Tuple[np.ndarray, np.ndarray]:
        rng = np.random.RandomState(self.random_state)
        dimA, dimB = X.shape
        mean_count = float(X.csr.data.mean()) if X.nnz else 1.0
        # Initial predictions of the same order as the observed counts
        scale = np.sqrt(mean_count / self.k)
        A = rng.uniform(0.1, 1.0, size=(dimA, self.k)) * scale
        B = rng.uniform(0.1, 1.0, size=(dimB, self.k)) * scale
        return A, B

    def fit(self, X, cancel_token: Optional[CancellationToken] = None) -> 'PoissonMF':
        r"""
        Fit the model to count data.

        Parameters
        ----------
        X : scipy.sparse matrix, DualSparseMatrix or array-like (n, 3)
            Counts, either as a matrix (users in rows) or as
            (user, item, count) triplets.
        cancel_token : CancellationToken, optional
            Token to request an early stop from another thread.

        Returns
        -------
        self
        """
        config = self._config()
        X = self._build_matrix(X)

        empty_rows = int(np.sum(np.diff(X.csr.indptr) == 0))
        empty_cols = int(np.sum(np.diff(X.csc.indptr) == 0))
        if empty_rows or empty_cols:
            warnings.warn(
                f"{empty_rows} users and {empty_cols} items have no data; "
                f"their factors will be driven to zero",
                UserWarning
            )

        A, B = self._init_factors(X)
        token = cancel_token if cancel_token is not None else CancellationToken()
        self.history_ = {'f': [], 't': []}
        start_time = time.time()

        def _record(iteration: int, phase: str):
            if phase != 'B':
                return
            f = poisson_objective(A, B, X, config.l2_reg, config.l1_reg, config.weight_mult)
            elapsed = time.time() - start_time
            self.history_['f'].append(f)
            self.history_['t'].append(elapsed)
            if self.verbose >= 2:
                print(f"Iter {iteration + 1:4d}: objective = {f:.6f}, "
                      f"elapsed time = {elapsed:.3f}s")

        if self.handle_interrupt:
            guard = cancel_on_interrupt(token, verbose=bool(self.verbose))
        else:
            guard = nullcontext(token)
        with guard:
            status = fit_factors(
                A, B, X,
                l2_reg=config.l2_reg, l1_reg=config.l1_reg,
                weight_mult=config.weight_mult, step_size=config.step_size,
                method=config.method, limit_step=config.limit_step,
                num_iterations=config.num_iterations,
                max_updates=config.max_updates,
                num_threads=config.num_threads, verbose=self.verbose,
                cancel_token=token,
                callback=_record if self.verbose else None
            )

        if status == FitStatus.OUT_OF_MEMORY:
            raise MemoryError("Could not allocate the working buffers for the fit")
        if status == FitStatus.ABORTED:
            warnings.warn(
                "Fitting was interrupted; factors hold the last completed phase",
                UserWarning
            )

        self.A_, self.B_ = A, B
        self.status_ = status
        self._fitted_method = config.method
        self._fitted_maxupd = config.max_updates
        return self

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------
    def predict(self, user, item) -> np.ndarray:
        r"""
        Expected counts ``A[user] . B[item]`` for pairs of labels.

        Pairs with a user or item not seen during fit get NaN.
        """
        self._check_fitted()
        users, valid_u = self._lookup(self.user_mapping_, user)
        items, valid_i = self._lookup(self.item_mapping_, item)
        if users.shape != items.shape:
            raise ValueError("user and item must have the same length")
        out = np.full(users.shape[0], np.nan)
        valid = valid_u & valid_i
        out[valid] = np.einsum('ij,ij->i', self.A_[users[valid]], self.B_[items[valid]])
        return out

    def topN(
        self,
        user,
        n: int = 10,
        include: Optional[Sequence] = None,
        exclude: Optional[Sequence] = None,
        output_score: bool = False
    ) -> Union[np.ndarray, Tuple[np.ndarray, np.ndarray]]:
        r"""
        Highest scoring items for one user.

        Parameters
        ----------
        user : label
            User seen during fit.
        n : int
            Number of items to return.
        include : sequence, optional
            Rank only these items.
        exclude : sequence, optional
            Never return these items (e.g. the ones already consumed).
        output_score : bool
            Also return the predicted scores.

        Returns
        -------
        items : np.ndarray
            Item labels, best first.
        scores : np.ndarray
            Only when ``output_score``.
        """
        self._check_fitted()
        if include is not None and exclude is not None:
            raise ValueError("Pass only one of 'include' and 'exclude'")
        codes, valid = self._lookup(self.user_mapping_, [user])
        if not valid[0]:
            raise ValueError(f"Unknown user: {user!r}")

        scores = self.B_ @ self.A_[codes[0]]
        candidates = np.ones(scores.shape[0], dtype=bool)
        if include is not None:
            idx, ok = self._lookup(self.item_mapping_, include)
            candidates[:] = False
            candidates[idx[ok]] = True
        if exclude is not None:
            idx, ok = self._lookup(self.item_mapping_, exclude)
            candidates[idx[ok]] = False

        pool = np.flatnonzero(candidates)
        n = min(n, pool.shape[0])
        order = pool[np.argsort(-scores[pool], kind='stable')[:n]]
        if output_score:
            return self.item_mapping_[order], scores[order]
        return self.item_mapping_[order]

    def predict_factors(
        self,
        items: Sequence,
        counts: Sequence[float],
        method: Optional[str] = None,
        maxupd: Optional[int] = None
    ) -> np.ndarray:
        r"""
        Factors of a new user from its (item, count) data, B held fixed.

        Runs the row solver once with the fitted hyperparameters. Items not
        seen during fit are ignored with a warning.

        Returns
        -------
        np.ndarray
            Non-negative vector of length k.
        """
        self._check_fitted()
        idx, ok = self._lookup(self.item_mapping_, items)
        counts = np.asarray(counts, dtype=np.float64).reshape(-1)
        if counts.shape[0] != idx.shape[0]:
            raise ValueError("items and counts must have the same length")
        if not np.all(ok):
            warnings.warn(f"Ignoring {int((~ok).sum())} unknown items", UserWarning)
        idx, counts = idx[ok], counts[ok]
        keep = counts > 0
        idx, counts = idx[keep], counts[keep]
        if idx.shape[0] == 0:
            raise ValueError("No data left to infer factors from")

        # Merge repeated items
        uniq, inverse = np.unique(idx, return_inverse=True)
        counts = np.bincount(inverse.reshape(-1), weights=counts)

        return solve_single_row(
            self.B_, uniq, counts,
            l2_reg=self.l2_reg, l1_reg=self.l1_reg,
            weight_mult=self.weight_mult, step_size=self.initial_step,
            method=method if method is not None else self._fitted_method,
            limit_step=self.limit_step,
            max_updates=maxupd if maxupd is not None else self._fitted_maxupd
        )

    def transform(self, X: sp.spmatrix, method: Optional[str] = None,
                  maxupd: Optional[int] = None) -> np.ndarray:
        r"""
        Factors for several new users, one per row of ``X``.

        ``X`` must have one column per item seen during fit, in the order of
        ``item_mapping_``. Rows without data get all-zero factors.
        """
        self._check_fitted()
        X = sp.csr_matrix(X, dtype=np.float64)
        if X.shape[1] != self.B_.shape[0]:
            raise ValueError(f"X must have {self.B_.shape[0]} columns, got {X.shape[1]}")
        out = np.zeros((X.shape[0], self.k))
        for i in range(X.shape[0]):
            start, end = X.indptr[i], X.indptr[i + 1]
            cols, vals = X.indices[start:end], X.data[start:end]
            if not np.any(vals > 0):
                continue
            out[i] = self.predict_factors(
                self.item_mapping_[cols], vals, method=method, maxupd=maxupd
            )
        return out

    def eval_llk(self, X, full_llk: bool = False) -> Dict[str, float]:
        r"""
        Poisson log-likelihood of held-out (user, item, count) triplets.

        Triplets with users or items not seen during fit are skipped. A sparse
        matrix is read in the order of ``user_mapping_`` and ``item_mapping_``,
        and its rows or columns past the fitted ones are skipped.

        Returns
        -------
        dict
            Contains 'llk' and 'n_used' (number of triplets evaluated).
        """
        self._check_fitted()
        if sp.issparse(X):
            # Matrix positions are codes in the order of the mappings
            coo = sp.coo_matrix(X)
            rows, cols, counts = coo.row.astype(np.int64), coo.col.astype(np.int64), coo.data
            ok = (rows < self.user_mapping_.shape[0]) & (cols < self.item_mapping_.shape[0])
        else:
            triplets = np.asarray(X)
            counts = triplets[:, 2]
            rows, ok_r = self._lookup(self.user_mapping_, triplets[:, 0])
            cols, ok_c = self._lookup(self.item_mapping_, triplets[:, 1])
            ok = ok_r & ok_c
        llk = poisson_loglikelihood(
            self.A_, self.B_, rows[ok], cols[ok],
            np.asarray(counts, dtype=np.float64)[ok], full=full_llk
        )
        return {'llk': llk, 'n_used': int(ok.sum())}

    def __repr__(self):
        return (f"PoissonMF(k={self.k}, method={Method.parse(self.method).value!r}, "
                f"l2_reg={self.l2_reg}, l1_reg={self.l1_reg}, niter={self.niter})")

