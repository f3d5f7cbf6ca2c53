"""
poismf: Fast Poisson Matrix Factorization for Sparse Count Data

Fits a low-rank non-negative factorization X ~ Poisson(A B^T) of a large
sparse count matrix (users x items, genes x cells, documents x words) by
maximizing the Poisson likelihood with optional L1/L2 regularization.

Optimization is alternating block-coordinate descent: with one factor matrix
fixed, every row of the other is an independent small convex problem, solved
in parallel with one of three interchangeable methods:

- **PG**: Proximal gradient with a decaying global step
  Cheapest per iteration, least sparse factors

- **CG**: Non-negative conjugate gradient with Armijo line search
  Better likelihood, can zero out variables exactly

- **TNCG**: Truncated-Newton conjugate gradient (bound constrained)
  Highest cost per row, best likelihood and sparsest factors

Only the non-zero entries of X are ever touched: the contribution of the
missing entries enters in closed form through the column sums of the fixed
factor matrix.

Typical Usage
=============

1. Estimator with arbitrary user/item labels:

    >>> import numpy as np
    >>> from poismf import PoissonMF
    >>> triplets = np.array([[10, 7, 3], [10, 9, 1], [11, 8, 4], [12, 7, 2]])
    >>> model = PoissonMF(k=2, method='tncg', niter=10).fit(triplets)
    >>> scores = model.predict(user=[10, 11], item=[8, 7])
    >>> new_user = model.predict_factors(items=[7, 9], counts=[1, 2])

2. Low-level optimizer on pre-initialized factors (updated in place):

    >>> from poismf import DualSparseMatrix, fit_factors, CancellationToken
    >>> X = DualSparseMatrix.from_triplets([0, 1, 1], [0, 0, 2], [3., 1., 5.])
    >>> A = np.random.rand(2, 5)
    >>> B = np.random.rand(3, 5)
    >>> status = fit_factors(A, B, X, method='pg', step_size=1e-3,
    ...                      num_iterations=20, num_threads=2)

Mathematical Background
=======================

With B fixed, row a of A minimizes

    f(a) = s^T a - w sum_j x_j log(a^T b_j) + l2 ||a||^2,   a >= 0

where s = sum_j b_j + l1 (the column sums of B), the log term runs over
the row's non-zero entries only and w weights observed entries relative to
missing ones (w = 1: plain Poisson likelihood).

Key References
===============

Cortes, David (2018).
"Fast Non-Bayesian Poisson Factorization for Implicit-Feedback Recommendations"
arXiv preprint arXiv:1811.01908.

License: BSD-2-Clause

"""

__version__ = "0.1.0"
__all__ = [
    # Estimator
    'PoissonMF',
    # Core optimizer
    'fit_factors',
    'solve_single_row',
    'FitStatus',
    'FitConfig',
    'Method',
    'DualSparseMatrix',
    'reindex',
    'CancellationToken',
    'cancel_on_interrupt',
    'NumericalDegeneracyError',
    # Utilities
    'poisson_objective',
    'poisson_loglikelihood',
    'auc_per_row',
    'precision_at_k',
]

from .config import FitConfig, Method
from .sparse import DualSparseMatrix, reindex
from .cancellation import CancellationToken, cancel_on_interrupt
from .objective import NumericalDegeneracyError
from .optimize import FitStatus, fit_factors, solve_single_row
from .model import PoissonMF
from .utils.evaluation import (
    poisson_objective,
    poisson_loglikelihood,
    auc_per_row,
    precision_at_k,
)
