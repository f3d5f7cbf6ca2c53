"""
Truncated-Newton Row Solver

Bound-constrained truncated Newton with an inner conjugate-gradient loop
(scipy's TNC). The box is [0, inf) in every coordinate, the inner CG loop is
capped at max(1, min(50, k/2)) iterations and the outer loop at ``max_updates``
function evaluations. Highest per-row cost, best likelihood, sparsest factors.
"""

import numpy as np
from scipy.optimize import fmin_tnc

from .base import RowSolver
from ..config import Method
from ..objective import NumericalDegeneracyError

# Lower clamp for intensities at trial points on the boundary
MIN_INTENSITY = 1e-10


class TruncatedNewtonSolver(RowSolver):
    """Truncated-Newton CG on the box [0, inf)."""
    method = Method.TNCG
    # scipy's TNC allocates its own workspace
    scratch_multiplier = 0

    def __init__(self, max_updates: int = 15):
        super().__init__(max_updates)

    @staticmethod
    def max_cg_iter(k: int) -> int:
        return int(max(1.0, min(50.0, k / 2.0)))

    def solve_row(self, a, objective, scratch):
        k = a.shape[0]
        # Starting point must have a defined gradient
        objective.fun_and_grad(a)

        x, _, _ = fmin_tnc(
            objective.fun_and_grad,
            a.copy(),
            args=(None, MIN_INTENSITY),
            bounds=[(0.0, None)] * k,
            messages=0,
            maxCGit=self.max_cg_iter(k),
            maxfun=self.max_updates,
            eta=0.25,
            stepmx=10.0,
            accuracy=0.0,
            fmin=0.0,
            ftol=1e-4,
            xtol=-1.0,
            pgtol=-1.0,
            rescale=1.3,
            disp=0
        )
        np.maximum(x, 0.0, out=x)

        if objective.nnz and np.any(objective.predictions(x) <= 0):
            raise NumericalDegeneracyError(
                "Truncated-Newton solution has zero intensity for an observed count"
            )
        a[:] = x
        return a
