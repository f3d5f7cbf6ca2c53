"""
Row subproblem solvers.

Three interchangeable strategies for the same bound-constrained per-row
objective, in increasing order of cost and quality:

- :class:`ProximalGradientSolver` (``'pg'``)
- :class:`ConjugateGradientSolver` (``'cg'``)
- :class:`TruncatedNewtonSolver` (``'tncg'``)
"""

from .base import RowSolver
from .pg import ProximalGradientSolver
from .cg import ConjugateGradientSolver, minimize_nonneg_cg
from .tncg import TruncatedNewtonSolver
from ..config import FitConfig, Method

__all__ = [
    'RowSolver',
    'ProximalGradientSolver',
    'ConjugateGradientSolver',
    'TruncatedNewtonSolver',
    'minimize_nonneg_cg',
    'make_solver',
]


def make_solver(config: FitConfig) -> RowSolver:
    """Instantiate the solver selected by ``config.method``."""
    if config.method == Method.PG:
        return ProximalGradientSolver(config.max_updates, step_size=config.step_size)
    if config.method == Method.CG:
        return ConjugateGradientSolver(config.max_updates, limit_step=config.limit_step)
    if config.method == Method.TNCG:
        return TruncatedNewtonSolver(config.max_updates)
    raise ValueError(f"Unknown method: {config.method}")
