"""
Row Subproblem Objective

With the opposite factor matrix M held fixed, each row a of the matrix being
updated solves an independent problem:

.. math::
    \\min_{a \\geq 0} \\; f(a) = s^T a - w \\sum_{(j, x_j)} x_j \\log(a^T M_j) + \\lambda_2 \\|a\\|^2

where s is the shared statistics vector (column sums of M plus the L1 penalty,
shifted per row under implicit-feedback weighting), the sum runs over the
non-zero entries of the row only, and w is the weight multiplier of observed
entries. Its gradient is

.. math::
    \\nabla f(a) = s - w \\sum_{(j, x_j)} \\frac{x_j}{a^T M_j} M_j + 2 \\lambda_2 a

Both are evaluated in O(nnz_row * k).
"""

from typing import Optional, Tuple

import numpy as np


class NumericalDegeneracyError(FloatingPointError):
    """
    An observed count has a non-positive predicted intensity.

    The Poisson log-likelihood and its gradient are undefined there, so the
    row cannot be updated without producing non-finite factors.
    """

    def __init__(self, message: str, row: Optional[int] = None, side: Optional[str] = None):
        super().__init__(message)
        self.row = row
        self.side = side

    def __str__(self):
        msg = super().__str__()
        if self.row is not None:
            msg = f"{msg} (row {self.row} of {self.side or 'factor matrix'})"
        return msg


class RowObjective:
    """
    Objective and gradient of one row's subproblem.

    Holds views into the shared read-only data; constructing one per row is
    cheap and keeps the evaluators free of shared mutable state.
    """

    __slots__ = ('M_sub', 'counts', 'stat', 'l2_reg', 'weight_mult')

    def __init__(
        self,
        M: np.ndarray,
        indices: np.ndarray,
        counts: np.ndarray,
        stat: np.ndarray,
        l2_reg: float = 0.0,
        weight_mult: float = 1.0
    ):
        self.M_sub = M[indices]
        self.counts = counts
        self.stat = stat
        self.l2_reg = l2_reg
        self.weight_mult = weight_mult

    @property
    def nnz(self) -> int:
        return self.counts.shape[0]

    def predictions(self, a: np.ndarray) -> np.ndarray:
        """Predicted intensities a.M_j over the row's support."""
        return self.M_sub @ a

    def _checked_ratio(self, a: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        pred = self.predictions(a)
        if np.any(pred <= 0) or not np.all(np.isfinite(pred)):
            raise NumericalDegeneracyError(
                "Predicted intensity is zero for an observed count"
            )
        return pred, self.counts / pred

    def likelihood_gradient(self, a: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        r"""
        Ascent direction of the (unweighted) log-likelihood term.

        .. math::
            g = \sum_{(j, x_j)} \frac{x_j}{a^T M_j} M_j
        """
        if out is None:
            out = np.empty(a.shape[0])
        if self.nnz == 0:
            out[:] = 0.0
            return out
        _, ratio = self._checked_ratio(a)
        np.dot(ratio, self.M_sub, out=out)
        return out

    def fun(self, a: np.ndarray) -> float:
        """
        Objective value; ``inf`` where an observed entry has zero intensity.

        Used for trial points of line searches, which reject such points
        instead of failing.
        """
        reg = float(self.stat @ a) + self.l2_reg * float(a @ a)
        if self.nnz == 0:
            return reg
        pred = self.predictions(a)
        if np.any(pred <= 0):
            return np.inf
        return reg - self.weight_mult * float(self.counts @ np.log(pred))

    def grad(self, a: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        """Gradient; raises :class:`NumericalDegeneracyError` if undefined."""
        out = self.likelihood_gradient(a, out)
        out *= -self.weight_mult
        out += self.stat
        if self.l2_reg:
            out += (2.0 * self.l2_reg) * a
        return out

    def fun_and_grad(
        self,
        a: np.ndarray,
        out: Optional[np.ndarray] = None,
        floor: Optional[float] = None
    ) -> Tuple[float, np.ndarray]:
        """
        Objective and gradient in one pass over the row's support.

        With ``floor`` set, predicted intensities are clamped from below
        instead of raising, which turns the log term into a finite barrier
        for trial points landing on the boundary.
        """
        if out is None:
            out = np.empty(a.shape[0])
        f = float(self.stat @ a) + self.l2_reg * float(a @ a)
        if self.nnz:
            if floor is None:
                pred, ratio = self._checked_ratio(a)
            else:
                pred = np.maximum(self.predictions(a), floor)
                ratio = self.counts / pred
            np.dot(ratio, self.M_sub, out=out)
            out *= -self.weight_mult
            f -= self.weight_mult * float(self.counts @ np.log(pred))
        else:
            out[:] = 0.0
        out += self.stat
        if self.l2_reg:
            out += (2.0 * self.l2_reg) * a
        return f, out
