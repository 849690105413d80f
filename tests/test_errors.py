import numpy as np
import pandas as pd
import pytest

import pyfereg as pr
from pyfereg.errors import (
    EmptySampleError,
    FormulaSyntaxError,
    InvalidArgumentError,
    LengthMismatchError,
    NonFiniteValueError,
    SingularMatrixError,
    VcovTypeNotSupportedError,
)
from pyfereg.estimation.literals import SaveOptions
from pyfereg.estimation.solvers import solve_ols


def test_empty_sample(data):
    with pytest.raises(EmptySampleError, match="sample is empty"):
        pr.reg(data, "Y ~ X1", subset=np.zeros(data.shape[0], dtype=bool))


def test_subset_length_mismatch(data):
    with pytest.raises(LengthMismatchError):
        pr.reg(data, "Y ~ X1", subset=np.ones(10, dtype=bool))
    # a length mismatch is an invalid argument
    with pytest.raises(InvalidArgumentError):
        pr.reg(data, "Y ~ X1", subset=np.ones(10, dtype=bool))


def test_non_finite_regressor(data):
    df = data.copy()
    df.loc[5, "X2"] = np.inf
    with pytest.raises(NonFiniteValueError, match="exogenous variables"):
        pr.reg(df, "Y ~ X1 + X2")


def test_non_finite_dependent_variable(data):
    df = data.copy()
    df.loc[5, "Y"] = -np.inf
    with pytest.raises(NonFiniteValueError, match="dependent variable"):
        pr.reg(df, "Y ~ X1 | f1")


def test_non_finite_weights(data):
    df = data.copy()
    df.loc[5, "weights"] = np.inf
    with pytest.raises(NonFiniteValueError, match="weights"):
        pr.reg(df, "Y ~ X1", weights="weights")


def test_non_positive_weights_are_dropped(data):
    df = data.copy()
    df.loc[5:9, "weights"] = 0.0
    fit = pr.reg(df, "Y ~ X1", weights="weights")
    assert not fit.esample[5:10].any()


@pytest.mark.parametrize("vcov", ["HC3", {"CRV3": "group_id"}, "nid"])
def test_vcov_not_supported(data, vcov):
    with pytest.raises(VcovTypeNotSupportedError):
        pr.reg(data, "Y ~ X1", vcov=vcov)


@pytest.mark.parametrize("save", ["bad", True, 1])
def test_invalid_save(data, save):
    with pytest.raises(InvalidArgumentError):
        pr.reg(data, "Y ~ X1", save=save)


def test_save_options_parse():
    assert SaveOptions.parse("all") is SaveOptions.ALL
    assert SaveOptions.parse(SaveOptions.FIXED_EFFECTS).fixed_effects
    assert not SaveOptions.parse("residuals").fixed_effects
    with pytest.raises(InvalidArgumentError):
        SaveOptions.parse(False)


def test_invalid_weights(data):
    with pytest.raises(InvalidArgumentError):
        pr.reg(data, "Y ~ X1", weights=1)
    with pytest.raises(InvalidArgumentError):
        pr.reg(data, "Y ~ X1", weights="not_a_column")


def test_multiple_dependent_variables(data):
    with pytest.raises(InvalidArgumentError):
        pr.reg(data, "Y + Y2 ~ X1")


def test_invalid_method(data):
    with pytest.raises(ValueError):
        pr.reg(data, "Y ~ X1 | f1", method="jax")
    with pytest.raises(ValueError):
        pr.reg(data, "Y ~ X1 | f1", method=True)


@pytest.mark.parametrize(
    "kwargs, error",
    [
        ({"tol": 0.0}, ValueError),
        ({"tol": 1}, TypeError),
        ({"maxiter": 0}, ValueError),
        ({"maxiter": 1.5}, TypeError),
        ({"dof_add": -1}, ValueError),
        ({"collin_tol": 2.0}, ValueError),
        ({"drop_singletons": "yes"}, TypeError),
        ({"vcov": 1}, TypeError),
    ],
)
def test_invalid_arguments(data, kwargs, error):
    with pytest.raises(error):
        pr.reg(data, "Y ~ X1 | f1", **kwargs)


@pytest.mark.parametrize(
    "fml",
    [
        "Y ~ X1 | f1 | X_endo ~ Z1 | f2",
        "Y X1",
        "Y ~ X1 | X_endo ~ Z1 | X2 ~ Z2",
        "Y ~ X1 | f1 | f2",
        "Y ~ X1 + X_endo | X_endo ~ Z1",
        "Y ~ X1 + Z1 | X_endo ~ Z1",
    ],
)
def test_formula_syntax_errors(data, fml):
    with pytest.raises(FormulaSyntaxError):
        pr.reg(data, fml)


def test_undefined_variables(data):
    with pytest.raises(KeyError):
        pr.reg(data, "Y9 ~ X1")
    with pytest.raises(KeyError):
        pr.reg(data, "Y ~ X1 | f9")
    with pytest.raises(KeyError):
        pr.reg(data, "Y ~ X1", vcov={"CRV1": "cluster9"})


def test_singular_cross_product():
    with pytest.raises(SingularMatrixError):
        solve_ols(np.zeros((2, 2)), np.ones(2))


def test_partial_out_rejects_iv(data):
    with pytest.raises(InvalidArgumentError):
        pr.partial_out(data, "Y ~ X1 | X_endo ~ Z1")


def test_non_pandas_input_is_converted():
    pa = pytest.importorskip("pyarrow")
    df = pd.DataFrame({"y": [1.0, 2.0, 4.0, 3.0], "x": [0.0, 1.0, 2.0, 3.0]})
    fit = pr.reg(pa.table(df), "y ~ x")
    fit_ref = pr.reg(df, "y ~ x")
    np.testing.assert_allclose(fit.coefficients, fit_ref.coefficients)
