"""
Non-negative Conjugate Gradient Row Solver

Conjugate gradient with Polak-Ribiere+ updates restricted to the feasible
orthant. Directions that would push an active (zero-valued) variable further
down are zeroed, a backtracking Armijo search is run along the projected path,
and the method falls back to the projected steepest-descent direction whenever
the conjugate direction stops being a descent direction.

In ``limit_step`` mode the initial step of each line search is truncated to
the largest step that keeps every variable feasible, so that each iteration
zeroes out at most one coordinate exactly. This drives the factors to exact
sparsity instead of relying on the projection.

References
----------
Li, Can (2013). "A conjugate gradient type method for the nonnegative
constraints optimization problems." Journal of Applied Mathematics.
"""

from typing import Callable, Optional, Tuple

import numpy as np

from .base import RowSolver
from ..config import Method


def _projected_gradient(x: np.ndarray, g: np.ndarray, out: np.ndarray) -> np.ndarray:
    # Gradient where x > 0, min(g, 0) at the bound
    np.copyto(out, g)
    at_bound = x <= 0
    out[at_bound] = np.minimum(g[at_bound], 0.0)
    return out


def minimize_nonneg_cg(
    x: np.ndarray,
    fun: Callable[[np.ndarray], float],
    grad: Callable[..., np.ndarray],
    maxiter: int,
    maxnfeval: int = 150,
    tol: float = 1e-2,
    decr_lnsrch: float = 0.25,
    lnsrch_const: float = 0.01,
    max_ls: int = 20,
    limit_step: bool = True,
    buffer: Optional[np.ndarray] = None
) -> Tuple[float, int, int]:
    r"""
    Minimize a smooth function subject to x >= 0 with conjugate gradient.

    Parameters
    ----------
    x : np.ndarray
        Feasible starting point, overwritten with the solution.
    fun : callable
        ``fun(x) -> float``. May return ``inf`` at infeasible trial points,
        which the line search then rejects.
    grad : callable
        ``grad(x, out) -> out``, gradient written into ``out``.
    maxiter : int
        Maximum number of accepted steps.
    maxnfeval : int
        Maximum number of function evaluations.
    tol : float
        Stop when the norm of the projected gradient falls below this.
    decr_lnsrch : float
        Factor by which the step is shrunk during backtracking.
    lnsrch_const : float
        Armijo sufficient-decrease constant.
    max_ls : int
        Maximum backtracking steps per line search.
    limit_step : bool
        Truncate steps so that at most one variable hits zero per iteration.
    buffer : np.ndarray, optional
        Scratch space of at least ``5 * len(x)`` entries.

    Returns
    -------
    f : float
        Objective value at the returned point.
    niter : int
        Number of accepted steps.
    nfeval : int
        Number of function evaluations.
    """
    n = x.shape[0]
    if buffer is None:
        buffer = np.empty(5 * n)
    new_x, g, new_g, d, tmp = (buffer[i * n:(i + 1) * n] for i in range(5))

    grad(x, out=g)
    f = fun(x)
    nfeval = 1

    np.negative(_projected_gradient(x, g, d), out=d)
    niter = 0
    while niter < maxiter and nfeval < maxnfeval:
        if np.linalg.norm(_projected_gradient(x, g, tmp)) <= tol:
            break

        gd = float(g @ d)
        if gd >= 0:
            np.negative(_projected_gradient(x, g, d), out=d)
            gd = float(g @ d)
            if gd >= 0:
                break

        step = 1.0
        hit = -1
        if limit_step:
            decreasing = np.flatnonzero(d < 0)
            if decreasing.shape[0]:
                ratios = -x[decreasing] / d[decreasing]
                pos = int(np.argmin(ratios))
                if ratios[pos] <= step:
                    step = float(ratios[pos])
                    hit = int(decreasing[pos])

        accepted = False
        for ls in range(max_ls):
            np.multiply(d, step, out=new_x)
            new_x += x
            if hit >= 0 and ls == 0:
                new_x[hit] = 0.0
            np.maximum(new_x, 0.0, out=new_x)
            new_f = fun(new_x)
            nfeval += 1

            np.subtract(new_x, x, out=tmp)
            if new_f <= f + lnsrch_const * float(g @ tmp):
                accepted = True
                break
            if nfeval >= maxnfeval:
                break
            step *= decr_lnsrch

        if not accepted:
            break

        np.copyto(x, new_x)
        f = new_f
        niter += 1

        grad(x, out=new_g)
        np.subtract(new_g, g, out=tmp)
        gg = float(g @ g)
        beta = max(0.0, float(new_g @ tmp) / gg) if gg > 0 else 0.0
        np.copyto(g, new_g)

        d *= beta
        d -= g
        d[(x <= 0) & (d < 0)] = 0.0

    return f, niter, nfeval


class ConjugateGradientSolver(RowSolver):
    """Medium cost, notably better likelihood and sparsity than PG."""
    method = Method.CG
    scratch_multiplier = 5

    def __init__(self, max_updates: int = 5, limit_step: bool = True,
                 maxnfeval: int = 150, tol: float = 1e-2):
        super().__init__(max_updates)
        self.limit_step = limit_step
        self.maxnfeval = maxnfeval
        self.tol = tol

    def solve_row(self, a, objective, scratch):
        minimize_nonneg_cg(
            a, objective.fun, objective.grad,
            maxiter=self.max_updates,
            maxnfeval=self.maxnfeval,
            tol=self.tol,
            decr_lnsrch=0.25,
            lnsrch_const=0.01,
            max_ls=20,
            limit_step=self.limit_step,
            buffer=scratch
        )
        return a
