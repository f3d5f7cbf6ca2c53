"""
Fit Configuration

This module holds the scalar hyperparameters of one call to the alternating
optimizer, together with their validation.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class Method(str, Enum):
    """Row subproblem solver"""
    PG = 'pg'
    CG = 'cg'
    TNCG = 'tncg'

    @classmethod
    def parse(cls, value: Union[str, 'Method']) -> 'Method':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"method must be one of {[m.value for m in cls]}, got {value!r}"
            ) from None


# Per-row update budget used when `max_updates` is not given
DEFAULT_MAX_UPDATES = {
    Method.PG: 1,
    Method.CG: 5,
    Method.TNCG: 15,
}


@dataclass
class FitConfig:
    """Validated parameters for :func:`poismf.optimize.fit_factors`"""
    l2_reg: float = 0.0
    l1_reg: float = 0.0
    weight_mult: float = 1.0
    step_size: float = 1e-7
    method: Union[str, Method] = Method.TNCG
    limit_step: bool = True
    num_iterations: int = 10
    max_updates: Optional[int] = None
    num_threads: int = 1
    verbose: int = 0

    def __post_init__(self):
        self.method = Method.parse(self.method)

        if self.l2_reg < 0:
            raise ValueError(f"l2_reg must be non-negative, got {self.l2_reg}")
        if self.l1_reg < 0:
            raise ValueError(f"l1_reg must be non-negative, got {self.l1_reg}")
        if not self.weight_mult > 0:
            raise ValueError(f"weight_mult must be positive, got {self.weight_mult}")
        if not self.step_size > 0:
            raise ValueError(f"step_size must be positive, got {self.step_size}")

        if self.num_iterations < 0 or self.num_iterations != int(self.num_iterations):
            raise ValueError(
                f"num_iterations must be a non-negative integer, got {self.num_iterations}"
            )
        self.num_iterations = int(self.num_iterations)

        if self.max_updates is None:
            self.max_updates = DEFAULT_MAX_UPDATES[self.method]
        if self.max_updates < 1 or self.max_updates != int(self.max_updates):
            raise ValueError(
                f"max_updates must be a positive integer, got {self.max_updates}"
            )
        self.max_updates = int(self.max_updates)

        # Same convention as joblib: non-positive means all cores
        if self.num_threads is None or self.num_threads <= 0:
            self.num_threads = os.cpu_count() or 1
        self.num_threads = int(self.num_threads)
        self.limit_step = bool(self.limit_step)

    @property
    def weighted(self) -> bool:
        return self.weight_mult != 1.0
