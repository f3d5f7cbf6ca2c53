"""
Common interface of the row subproblem solvers.
"""

import numpy as np

from ..objective import RowObjective


class RowSolver:
    """
    Minimizes one row's objective subject to non-negativity, in place.

    Subclasses set ``scratch_multiplier``: the driver hands every worker a
    private float64 scratch block of ``scratch_multiplier * k`` entries, which
    ``solve_row`` may overwrite freely.
    """
    method = None
    scratch_multiplier = 1

    def __init__(self, max_updates: int = 1):
        self.max_updates = max_updates

    def scratch_size(self, k: int) -> int:
        return self.scratch_multiplier * k

    def solve_row(self, a: np.ndarray, objective: RowObjective, scratch: np.ndarray) -> np.ndarray:
        """Update ``a`` in place and return it. Every entry is >= 0 on return."""
        raise NotImplementedError

    def end_iteration(self):
        """Hook called once both factor matrices have been updated."""
