import numpy as np
import pytest

from poismf.sparse import DualSparseMatrix
from poismf.statistics import adjust_row_sums, column_sums


def _data(seed: int = 0):
    rng = np.random.RandomState(seed)
    rows = np.array([0, 0, 0, 1, 3, 3])
    cols = np.array([0, 2, 4, 1, 2, 3])
    counts = rng.randint(1, 6, size=rows.shape[0]).astype(float)
    X = DualSparseMatrix.from_triplets(rows, cols, counts, shape=(4, 5))
    A = rng.uniform(0.1, 2.0, size=(4, 3))
    B = rng.uniform(0.1, 2.0, size=(5, 3))
    return X, A, B


def test_column_sums() -> None:
    M = np.array([[1.0, 2.0], [3.0, 4.0], [0.5, 0.0]])
    np.testing.assert_allclose(column_sums(M), [4.5, 6.0])


def test_column_sums_shifted_by_l1() -> None:
    M = np.array([[1.0, 2.0], [3.0, 4.0], [0.5, 0.0]])
    out = np.empty(2)
    result = column_sums(M, l1_reg=0.25, out=out)

    assert result is out
    np.testing.assert_allclose(out, [4.75, 6.25])


@pytest.mark.parametrize('w', [0.3, 1.7, 5.0, 25.0])
def test_row_correction_closed_form(w: float) -> None:
    X, _, B = _data()
    colsum = column_sums(B, l1_reg=0.1)
    out = np.full((10, 3), np.nan)

    block = adjust_row_sums(B, colsum, X.csr.indptr, X.csr.indices, w, out)

    assert block.shape == (4, 3)
    for r in range(4):
        support, _ = X.row(r)
        expected = colsum + (w - 1.0) * B[support].sum(axis=0)
        np.testing.assert_allclose(block[r], expected, rtol=1e-12, atol=1e-14)
    # Rows past the block are left alone
    assert np.all(np.isnan(out[4:]))


def test_row_correction_without_support_is_colsum() -> None:
    X, _, B = _data()
    colsum = column_sums(B)
    out = np.empty((4, 3))

    adjust_row_sums(B, colsum, X.csr.indptr, X.csr.indices, 3.0, out)

    # Row 2 has no data
    np.testing.assert_array_equal(out[2], colsum)


def test_row_correction_column_view() -> None:
    X, A, _ = _data()
    w = 2.5
    colsum = column_sums(A)
    out = np.empty((5, 3))

    adjust_row_sums(A, colsum, X.csc.indptr, X.csc.indices, w, out)

    for c in range(5):
        support, _ = X.col(c)
        expected = colsum + (w - 1.0) * A[support].sum(axis=0)
        np.testing.assert_allclose(out[c], expected, rtol=1e-12, atol=1e-14)


def test_row_correction_is_written_into_buffer() -> None:
    X, _, B = _data()
    colsum = column_sums(B)
    out = np.full((6, 3), -1.0)

    block = adjust_row_sums(B, colsum, X.csr.indptr, X.csr.indices, 2.0, out)

    assert block.base is out
    np.testing.assert_array_equal(out[:4], block)
    np.testing.assert_allclose(out[0], colsum + B[[0, 2, 4]].sum(axis=0), rtol=1e-12)
    np.testing.assert_array_equal(out[4:], -1.0)
