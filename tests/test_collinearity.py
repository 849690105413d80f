import numpy as np
import pytest
from numpy.testing import assert_array_equal

from pyfereg.estimation.collinearity import basecol, getcols
from pyfereg.estimation.numba.find_collinear_variables_nb import (
    _find_collinear_variables_nb,
)


def test_find_collinear_variables():
    # last column is the sum of the second and third
    N = 100
    dim = 1000
    X1 = np.random.RandomState(495).randn(dim, N)
    X1 = np.concatenate([X1, X1[:, [1]] + X1[:, [2]]], axis=1)
    collinear_flags, n_collinear, all_collinear = _find_collinear_variables_nb(
        X1.T @ X1
    )

    expected_flags = np.array(N * [False] + [True])
    assert_array_equal(collinear_flags, expected_flags)
    assert n_collinear == 1
    assert not all_collinear


def test_find_collinear_variables_all_zero():
    X = np.zeros((10, 2))
    collinear_flags, n_collinear, all_collinear = _find_collinear_variables_nb(X.T @ X)
    assert_array_equal(collinear_flags, np.array([True, True]))
    assert n_collinear == 2
    assert all_collinear


def test_basecol_keeps_earliest_duplicate():
    rng = np.random.default_rng(123)
    x = rng.normal(size=50)
    z = rng.normal(size=50)
    X = np.column_stack([x, z, x])

    keep = basecol(X)
    assert_array_equal(keep, np.array([True, True, False]))

    reduced = getcols(X, keep)
    assert reduced.shape == (50, 2)
    assert_array_equal(reduced, X[:, :2])
    # a copy, not a view
    reduced[0, 0] = 1e6
    assert X[0, 0] != 1e6


def test_basecol_multiple_matrices_prefers_leading_blocks():
    rng = np.random.default_rng(7)
    Z = rng.normal(size=(40, 2))
    X = np.column_stack([Z[:, 0] * 2.0, rng.normal(size=40)])
    endog = rng.normal(size=40)

    keep = basecol(Z, X, endog)
    assert_array_equal(keep, np.array([True, True, False, True, True]))


def test_basecol_relative_tolerance():
    # large scale columns are not flagged because of absolute rounding error
    rng = np.random.default_rng(99)
    X = rng.normal(size=(200, 3)) * 1e6
    assert basecol(X).all()


def test_basecol_empty_and_zero_column():
    assert basecol(np.empty((5, 0))).size == 0

    X = np.column_stack([np.ones(5), np.zeros(5)])
    assert_array_equal(basecol(X), np.array([True, False]))


@pytest.mark.parametrize("collin_tol", [1e-10, 1e-6])
def test_basecol_invariant(collin_tol):
    rng = np.random.default_rng(11)
    a = rng.normal(size=30)
    X = np.column_stack([a, 2 * a, rng.normal(size=30), a - 1, np.ones(30)])
    keep = basecol(X, collin_tol=collin_tol)
    assert keep.sum() == getcols(X, keep).shape[1]
    assert_array_equal(keep, np.array([True, False, True, True, False]))
