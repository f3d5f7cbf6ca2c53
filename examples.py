"""
Example script comparing the Poisson factorization methods

This script:
1. Simulates implicit-feedback counts from a known low-rank Poisson model
2. Holds out part of the observed entries for evaluation
3. Fits PoissonMF with the three row solvers (PG, CG, TNCG)
4. Reports held-out log-likelihood, ROC-AUC and precision@10
5. Plots the objective of every method against iterations and time

Generated plots:
- outputs/poismf_convergence.png
"""

import os

import numpy as np
import matplotlib.pyplot as plt
import scipy.sparse as sp

from poismf import PoissonMF, auc_per_row, precision_at_k


def generate_synthetic_data(n_users=500, n_items=300, k=5, seed=42):
    """
    Draw counts from X ~ Poisson(A B^T) with sparse gamma-distributed factors.
    """
    rng = np.random.RandomState(seed)
    A_true = rng.gamma(0.3, 1.0, size=(n_users, k))
    B_true = rng.gamma(0.3, 1.0, size=(n_items, k))
    X = rng.poisson(A_true @ B_true.T)

    rows, cols = np.nonzero(X)
    counts = X[rows, cols].astype(float)

    print("=" * 70)
    print("SYNTHETIC DATA GENERATED")
    print("=" * 70)
    print(f"Users: {n_users}, items: {n_items}, true rank: {k}")
    print(f"Non-zero entries: {counts.shape[0]} "
          f"({100.0 * counts.shape[0] / (n_users * n_items):.1f}% dense)")
    print()
    return rows, cols, counts, (n_users, n_items)


def train_test_split(rows, cols, counts, shape, test_fraction=0.2, seed=0):
    rng = np.random.RandomState(seed)
    test = rng.rand(rows.shape[0]) < test_fraction
    X_train = sp.csr_matrix((counts[~test], (rows[~test], cols[~test])), shape=shape)
    X_test = sp.csr_matrix((counts[test], (rows[test], cols[test])), shape=shape)
    return X_train, X_test


def fit_method(method, X_train, X_test, niter=10):
    print("\n" + "=" * 70)
    print(f"METHOD: {method.upper()}")
    print("=" * 70)

    model = PoissonMF(
        k=10, method=method, niter=niter, l2_reg=1e-3,
        initial_step=1e-4, nthreads=-1, verbose=2
    )
    model.fit(X_train)

    llk = model.eval_llk(X_test)
    auc = auc_per_row(model.A_, model.B_, X_test, X_train)
    p10 = precision_at_k(model.A_, model.B_, X_test, X_train, k=10)

    print(f"\nResults:")
    print(f"  Held-out log-likelihood: {llk['llk']:.2f} ({llk['n_used']} entries)")
    print(f"  ROC-AUC: {auc['auc']:.4f} over {auc['n_rows']} users")
    print(f"  Precision@10: {p10:.4f}")
    print(f"  Sparsity of A: {100.0 * np.mean(model.A_ == 0):.1f}% zeros")
    return model


def plot_convergence(models):
    """
    Plot the training objective of every method
    """
    fig, axes = plt.subplots(1, 2, figsize=(12, 4))

    for method, model in models.items():
        hist = model.history_
        iterations = np.arange(1, len(hist['f']) + 1)
        axes[0].plot(iterations, hist['f'], marker='o', label=method)
        axes[1].plot(hist['t'], hist['f'], marker='o', label=method)

    axes[0].set_xlabel('Iteration')
    axes[0].set_ylabel('Objective')
    axes[0].set_title('Objective per Iteration')
    axes[1].set_xlabel('Elapsed Time (s)')
    axes[1].set_ylabel('Objective')
    axes[1].set_title('Objective per Second')
    for ax in axes:
        ax.legend()
        ax.grid(True, alpha=0.3)

    os.makedirs('outputs', exist_ok=True)
    plt.tight_layout()
    plt.savefig('outputs/poismf_convergence.png', dpi=100, bbox_inches='tight')
    print("\nConvergence plot saved as 'outputs/poismf_convergence.png'")
    plt.close()


def main():
    rows, cols, counts, shape = generate_synthetic_data()
    X_train, X_test = train_test_split(rows, cols, counts, shape)

    models = {}
    for method in ('pg', 'cg', 'tncg'):
        models[method] = fit_method(method, X_train, X_test)

    plot_convergence(models)

    print("\n" + "=" * 70)
    print("EXAMPLES COMPLETED SUCCESSFULLY")
    print("=" * 70)
    print("\nKey Takeaways:")
    print("1. PG: cheapest iterations, needs many of them")
    print("2. CG: good middle ground between speed and fit")
    print("3. TNCG: best likelihood and sparsest factors per iteration")
    print()


if __name__ == "__main__":
    main()
