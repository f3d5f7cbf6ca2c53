"""
Utility modules for Poisson factorization.
"""

from .evaluation import (
    poisson_objective,
    poisson_loglikelihood,
    auc_per_row,
    precision_at_k,
)

__all__ = [
    'poisson_objective',
    'poisson_loglikelihood',
    'auc_per_row',
    'precision_at_k',
]
