import numpy as np
import pytest

from poismf.objective import NumericalDegeneracyError, RowObjective
from poismf.solvers import (
    ConjugateGradientSolver,
    ProximalGradientSolver,
    TruncatedNewtonSolver,
    minimize_nonneg_cg,
)
from poismf.statistics import column_sums


def _random_problem(seed: int = 0, k: int = 4, n_cols: int = 12, nnz: int = 6,
                    l2_reg: float = 0.1, weight_mult: float = 1.0):
    rng = np.random.RandomState(seed)
    M = rng.uniform(0.2, 1.5, size=(n_cols, k))
    indices = np.sort(rng.choice(n_cols, size=nnz, replace=False))
    counts = rng.randint(1, 8, size=nnz).astype(float)
    stat = column_sums(M)
    objective = RowObjective(M, indices, counts, stat, l2_reg, weight_mult)
    a = rng.uniform(0.5, 1.5, size=k)
    return objective, a


def _solvers():
    return [
        ProximalGradientSolver(max_updates=5, step_size=1e-3),
        ConjugateGradientSolver(max_updates=10, limit_step=True),
        ConjugateGradientSolver(max_updates=10, limit_step=False),
        TruncatedNewtonSolver(max_updates=30),
    ]


def test_gradient_matches_finite_differences() -> None:
    objective, a = _random_problem(weight_mult=2.0)
    grad = objective.grad(a)

    eps = 1e-6
    numeric = np.empty_like(a)
    for i in range(a.shape[0]):
        step = np.zeros_like(a)
        step[i] = eps
        numeric[i] = (objective.fun(a + step) - objective.fun(a - step)) / (2 * eps)
    np.testing.assert_allclose(grad, numeric, rtol=1e-5, atol=1e-6)


def test_fun_and_grad_agree_with_separate_evaluators() -> None:
    objective, a = _random_problem(l2_reg=0.3, weight_mult=0.5)
    f, g = objective.fun_and_grad(a)

    assert f == pytest.approx(objective.fun(a), rel=1e-12)
    np.testing.assert_allclose(g, objective.grad(a), rtol=1e-12)


def test_fun_is_infinite_at_zero_intensity() -> None:
    objective, a = _random_problem()
    assert objective.fun(np.zeros_like(a)) == np.inf


def test_proximal_gradient_literal_update() -> None:
    B = np.array([[1.0], [1.0]])
    objective = RowObjective(B, np.array([0]), np.array([4.0]), column_sums(B))
    a = np.array([0.5])

    ProximalGradientSolver(max_updates=1, step_size=0.1).solve_row(a, objective, np.empty(1))

    expected = max(0.0, (0.5 + 0.1 * (4.0 / (0.5 * 1.0))) / 1.0 - 0.1 * 2.0)
    np.testing.assert_allclose(a, [expected], rtol=1e-14)


def test_proximal_gradient_l2_shrinkage() -> None:
    objective, a = _random_problem(l2_reg=0.5)
    a0 = a.copy()
    step = 1e-2

    ProximalGradientSolver(max_updates=1, step_size=step).solve_row(a, objective, np.empty(a.shape[0]))

    g = objective.likelihood_gradient(a0)
    expected = np.maximum((a0 + step * g - step * objective.stat) / (1 + 2 * 0.5 * step), 0)
    np.testing.assert_allclose(a, expected, rtol=1e-12)


def test_proximal_gradient_clips_to_zero() -> None:
    M = np.array([[1.0, 1.0]])
    objective = RowObjective(M, np.array([0]), np.array([1.0]), np.array([100.0, 0.1]))
    a = np.array([0.5, 0.5])

    ProximalGradientSolver(max_updates=1, step_size=0.1).solve_row(a, objective, np.empty(2))

    assert a[0] == 0.0
    assert a[1] > 0.0


def test_proximal_gradient_step_halves_per_iteration() -> None:
    solver = ProximalGradientSolver(step_size=0.4)
    solver.end_iteration()
    solver.end_iteration()
    assert solver.step_size == pytest.approx(0.1)


@pytest.mark.parametrize('solver', _solvers(), ids=lambda s: f"{s.method.value}")
def test_solvers_keep_rows_non_negative_and_improve(solver) -> None:
    for seed in range(5):
        objective, a = _random_problem(seed=seed)
        f_before = objective.fun(a)
        scratch = np.empty(solver.scratch_size(a.shape[0]))

        result = solver.solve_row(a, objective, scratch)

        assert result is a
        assert np.all(a >= 0)
        assert np.all(np.isfinite(a))
        assert objective.fun(a) <= f_before + 1e-12


@pytest.mark.parametrize('solver', _solvers(), ids=lambda s: f"{s.method.value}")
def test_solvers_handle_rows_without_data(solver) -> None:
    M = np.ones((3, 2))
    objective = RowObjective(M, np.array([], dtype=np.int64), np.array([]), np.array([3.0, 3.0]), 0.1)
    a = np.array([0.5, 0.5])
    f_before = objective.fun(a)

    solver.solve_row(a, objective, np.empty(solver.scratch_size(2)))

    assert np.all(a >= 0)
    assert objective.fun(a) <= f_before


@pytest.mark.parametrize('solver', _solvers(), ids=lambda s: f"{s.method.value}")
def test_solvers_reject_zero_intensity(solver) -> None:
    objective, a = _random_problem()
    a[:] = 0.0
    with pytest.raises(NumericalDegeneracyError):
        solver.solve_row(a, objective, np.empty(solver.scratch_size(a.shape[0])))


def test_one_dimensional_optimum() -> None:
    # f(a) = s a - x log(a b): minimized at a = x / s
    M = np.array([[2.0]])
    counts = np.array([4.0])
    stat = np.array([2.0])

    a = np.array([0.3])
    objective = RowObjective(M, np.array([0]), counts, stat)
    TruncatedNewtonSolver(max_updates=100).solve_row(a, objective, np.empty(0))
    np.testing.assert_allclose(a, [2.0], rtol=1e-2)

    a = np.array([0.3])
    ConjugateGradientSolver(max_updates=100).solve_row(a, objective, np.empty(5))
    np.testing.assert_allclose(a, [2.0], rtol=1e-2)


def test_limit_step_gives_exact_zeros() -> None:
    # Second factor never contributes to the likelihood, so its optimum is 0
    M = np.array([[1.0, 0.0], [2.0, 0.0]])
    stat = np.array([3.0, 1.0])
    objective = RowObjective(M, np.array([0, 1]), np.array([2.0, 5.0]), stat)
    a = np.array([0.5, 0.5])

    ConjugateGradientSolver(max_updates=50, limit_step=True).solve_row(a, objective, np.empty(10))

    assert a[1] == 0.0
    assert a[0] > 0.0


def test_nonneg_cg_on_quadratic() -> None:
    target = np.array([1.0, -2.0, 3.0])

    def fun(x):
        return float(np.sum((x - target) ** 2))

    def grad(x, out):
        np.subtract(x, target, out=out)
        out *= 2.0
        return out

    x = np.full(3, 0.5)
    f, niter, nfeval = minimize_nonneg_cg(x, fun, grad, maxiter=200, maxnfeval=1000)

    assert x[1] == 0.0
    np.testing.assert_allclose(x, [1.0, 0.0, 3.0], atol=1e-2)
    assert f == pytest.approx(4.0, abs=1e-3)
    assert 0 < niter <= 200
    assert nfeval <= 1000


def test_truncated_newton_inner_iteration_cap() -> None:
    assert TruncatedNewtonSolver.max_cg_iter(1) == 1
    assert TruncatedNewtonSolver.max_cg_iter(3) == 1
    assert TruncatedNewtonSolver.max_cg_iter(10) == 5
    assert TruncatedNewtonSolver.max_cg_iter(250) == 50
