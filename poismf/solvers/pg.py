"""
Proximal Gradient Row Solver

Fixed-step proximal gradient on the row objective. The L2 term is handled by
its proximal operator (a shrinkage by 1 / (1 + 2 l2 step)) and the
non-negativity constraint by projection:

    a <- max(0, (a + step * w * g - step * s) / (1 + 2 * l2 * step))

where g = sum_j x_j / (a.M_j) M_j is the likelihood ascent direction. The step
is shared by every row and halved after each full outer iteration.
"""

import numpy as np

from .base import RowSolver
from ..config import Method


class ProximalGradientSolver(RowSolver):
    """Cheapest per update, slowest to converge, least sparsifying."""
    method = Method.PG
    scratch_multiplier = 1

    def __init__(self, max_updates: int = 1, step_size: float = 1e-7):
        super().__init__(max_updates)
        self.step_size = step_size

    def solve_row(self, a, objective, scratch):
        k = a.shape[0]
        grad = scratch[:k]
        step = self.step_size
        shrink = 1.0 / (1.0 + 2.0 * objective.l2_reg * step)
        ascent = step * objective.weight_mult

        for _ in range(self.max_updates):
            objective.likelihood_gradient(a, out=grad)
            a += ascent * grad
            a -= step * objective.stat
            a *= shrink
            np.maximum(a, 0.0, out=a)
        return a

    def end_iteration(self):
        self.step_size *= 0.5
