import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

import pyfereg as pr
from pyfereg.estimation.literals import SaveOptions


def _sm_ols(data, yvar, xvars, weights=None):
    X = sm.add_constant(data[xvars])
    if weights is None:
        return sm.OLS(data[yvar], X)
    return sm.WLS(data[yvar], X, weights=data[weights])


def test_ols_vs_statsmodels(data_complete):
    fit = pr.reg(data_complete, "Y ~ X1 + X2")
    fit_sm = _sm_ols(data_complete, "Y", ["X1", "X2"]).fit()

    np.testing.assert_allclose(fit.coefficients, fit_sm.params.to_numpy(), rtol=1e-8)
    np.testing.assert_allclose(fit.se().to_numpy(), fit_sm.bse.to_numpy(), rtol=1e-8)
    np.testing.assert_allclose(fit.pvalue().to_numpy(), fit_sm.pvalues.to_numpy(), rtol=1e-6)
    assert fit.coefnames == ["Intercept", "X1", "X2"]
    assert fit.depvar == "Y"
    assert fit.r2 == pytest.approx(fit_sm.rsquared)
    assert fit.adj_r2 == pytest.approx(fit_sm.rsquared_adj)
    assert fit.F == pytest.approx(fit_sm.fvalue)
    assert fit.p == pytest.approx(fit_sm.f_pvalue)
    assert fit.nobs == data_complete.shape[0]
    assert fit.dof_residual == data_complete.shape[0] - 3
    assert fit.iterations is None
    assert fit.r2_within is None
    assert fit.F_kp is None
    assert not fit.has_fixef
    assert not fit.has_iv


@pytest.mark.parametrize(
    "vcov, cov_type, cov_kwds",
    [
        ("hetero", "HC1", None),
        ("HC1", "HC1", None),
        ({"CRV1": "group_id"}, "cluster", "group_id"),
    ],
)
def test_robust_se_vs_statsmodels(data_complete, vcov, cov_type, cov_kwds):
    fit = pr.reg(data_complete, "Y ~ X1 + X2", vcov=vcov)
    kwds = {"groups": data_complete[cov_kwds]} if cov_kwds else None
    fit_sm = _sm_ols(data_complete, "Y", ["X1", "X2"]).fit(
        cov_type=cov_type, cov_kwds=kwds
    )
    np.testing.assert_allclose(fit.se().to_numpy(), fit_sm.bse.to_numpy(), rtol=1e-8)


def test_weighted_ols_vs_statsmodels(data_complete):
    fit = pr.reg(data_complete, "Y ~ X1 + X2", weights="weights")
    fit_sm = _sm_ols(data_complete, "Y", ["X1", "X2"], weights="weights").fit()
    np.testing.assert_allclose(fit.coefficients, fit_sm.params.to_numpy(), rtol=1e-8)
    np.testing.assert_allclose(fit.se().to_numpy(), fit_sm.bse.to_numpy(), rtol=1e-8)


def test_unit_weights_reproduce_ols(data):
    df = data.copy()
    df["w1"] = 1.0
    fit = pr.reg(df, "Y ~ X1 + X2 | f1", save="all")
    fit_w = pr.reg(df, "Y ~ X1 + X2 | f1", weights="w1", save="all")

    np.testing.assert_allclose(fit.coefficients, fit_w.coefficients, rtol=1e-10)
    np.testing.assert_allclose(fit.vcov_matrix, fit_w.vcov_matrix, rtol=1e-10)
    np.testing.assert_allclose(fit.resid(), fit_w.resid(), atol=1e-10)


def test_residuals_orthogonal_to_regressors(data):
    fit = pr.reg(data, "Y ~ X1 + X2", save="residuals")
    u = fit.resid()[fit.esample].to_numpy()
    df = data.loc[fit.esample]
    X = np.column_stack([np.ones(fit.nobs), df["X1"], df["X2"]])
    np.testing.assert_allclose(X.T @ u, 0, atol=1e-8)
    assert fit.resid()[~fit.esample].isna().all()


@pytest.mark.parametrize("method", ["numba", "lsmr", "lsmr_threads"])
def test_fixed_effects_match_dummy_regression(data, method):
    fit = pr.reg(
        data, "Y ~ X1 + X2 | f1", method=method, tol=1e-12, drop_singletons=False
    )
    fit_dummy = pr.reg(data, "Y ~ X1 + X2 + C(f1)", drop_singletons=False)

    assert fit.coefnames == ["X1", "X2"]
    np.testing.assert_allclose(fit.coefficients, fit_dummy.coefficients[1:3], rtol=1e-6)
    np.testing.assert_allclose(fit.se().to_numpy(), fit_dummy.se().to_numpy()[1:3], rtol=1e-6)
    assert fit.nobs == fit_dummy.nobs
    assert fit.dof_residual == fit_dummy.dof_residual
    assert fit.r2 == pytest.approx(fit_dummy.r2)
    assert fit.adj_r2 == pytest.approx(fit_dummy.adj_r2)
    assert fit.converged
    assert fit.iterations > 0
    assert 0 < fit.r2_within < fit.r2
    assert fit.has_fixef
    assert fit.fixef_names == ["f1"]


def test_two_way_fixed_effects_match_dummy_regression(data):
    fit = pr.reg(data, "Y ~ X1 + X2 | f1 + f2", tol=1e-12, drop_singletons=False)
    fit_dummy = pr.reg(data, "Y ~ X1 + X2 + C(f1) + C(f2)", drop_singletons=False)
    np.testing.assert_allclose(fit.coefficients, fit_dummy.coefficients[1:3], rtol=1e-6)
    # the two fixed effects share one redundant level
    assert fit.dof_residual == fit_dummy.dof_residual - 1


def test_combined_fixed_effect(data):
    df = data.copy()
    df["f12"] = df["f1"].astype(str) + "_" + df["f2"].astype(str)
    df.loc[df["f1"].isna(), "f12"] = np.nan

    fit = pr.reg(df, "Y ~ X1 + X2 | f1^f2", tol=1e-12)
    fit_manual = pr.reg(df, "Y ~ X1 + X2 | f12", tol=1e-12)
    np.testing.assert_allclose(fit.coefficients, fit_manual.coefficients, rtol=1e-8)
    assert fit.nobs == fit_manual.nobs


def test_interacted_fixed_effect_keeps_intercept(data_complete):
    fit = pr.reg(data_complete, "Y ~ X1 | f1&X2", tol=1e-12)
    assert fit.coefnames == ["Intercept", "X1"]
    assert fit.has_intercept

    fit_star = pr.reg(data_complete, "Y ~ X1 | f1*X2", tol=1e-12)
    assert fit_star.coefnames == ["X1"]
    assert fit_star.fixef_names == ["f1", "f1&X2"]


def test_single_observation_group():
    df = pd.DataFrame({"y": [1.0, 1.0], "x": [1.0, 2.0], "id": [1, 1]})
    fit = pr.reg(df, "y ~ x | id")

    assert fit.nobs == 2
    assert fit.dof_absorbed == 1
    assert fit.dof_residual == 1
    assert fit.coefficients[0] == pytest.approx(0.0, abs=1e-12)
    assert np.isnan(fit.F)


def test_collinear_column_reinserted(data_complete):
    df = data_complete.copy()
    df["X3"] = 2 * df["X1"]
    fit = pr.reg(df, "Y ~ X1 + X3 + X2")
    fit_ref = pr.reg(df, "Y ~ X1 + X2")

    assert fit.coefnames == ["Intercept", "X1", "X3", "X2"]
    assert fit.collin_vars == ["X3"]
    assert fit.coefficients[2] == 0.0
    assert np.isnan(fit.vcov_matrix[2]).all()
    assert np.isnan(fit.vcov_matrix[:, 2]).all()
    np.testing.assert_allclose(fit.coefficients[[0, 1, 3]], fit_ref.coefficients)
    np.testing.assert_allclose(
        fit.vcov_matrix[np.ix_([0, 1, 3], [0, 1, 3])], fit_ref.vcov_matrix
    )
    assert fit.dof_residual == fit_ref.dof_residual


def test_regressor_absorbed_by_fixed_effect(data):
    df = data.copy()
    df["f1_copy"] = df["f1"] * 2
    fit = pr.reg(df, "Y ~ X1 + f1_copy | f1")
    assert fit.collin_vars == ["f1_copy"]
    assert fit.coefficients[1] == 0.0


def test_saved_fixed_effects_decompose_dependent_variable(data):
    fit = pr.reg(data, "Y ~ X1 + X2 | f1 + f2", save="all", tol=1e-12)
    df = data.loc[fit.esample]
    fe = fit.fixef().loc[fit.esample]
    fitted = df[["X1", "X2"]].to_numpy() @ fit.coefficients + fe.sum(axis=1).to_numpy()

    np.testing.assert_allclose(
        df["Y"].to_numpy() - fitted, fit.resid()[fit.esample].to_numpy(), atol=1e-6
    )
    assert list(fe.columns) == ["fe_f1", "fe_f2"]
    assert fit.fixef()[~fit.esample].isna().all().all()
    assert fit.augmentdf.index.equals(data.index)


@pytest.mark.parametrize(
    "save, columns",
    [
        ("none", []),
        (SaveOptions.RESIDUALS, ["residuals"]),
        ("fe", ["fe_f1"]),
        (SaveOptions.ALL, ["residuals", "fe_f1"]),
    ],
)
def test_save_options(data, save, columns):
    fit = pr.reg(data, "Y ~ X1 | f1", save=save)
    assert list(fit.augmentdf.columns) == columns


def test_accessors_raise_if_not_saved(data):
    fit = pr.reg(data, "Y ~ X1 | f1")
    with pytest.raises(ValueError, match="Residuals were not saved"):
        fit.resid()
    with pytest.raises(ValueError, match="Fixed effects were not saved"):
        fit.fixef()


def test_subset(data):
    subset = (data["f3"] > 5).to_numpy()
    fit = pr.reg(data, "Y ~ X1 + X2", subset=subset)
    fit_ref = pr.reg(data.loc[subset].reset_index(drop=True), "Y ~ X1 + X2")
    np.testing.assert_allclose(fit.coefficients, fit_ref.coefficients)
    assert fit.nobs == fit_ref.nobs
    assert not fit.esample[~subset].any()


def test_subset_with_missing_entries(data):
    subset = pd.Series([True] * data.shape[0], dtype=object)
    subset.iloc[:10] = None
    fit = pr.reg(data, "Y ~ X1", subset=subset)
    assert not fit.esample[:10].any()


def test_nested_fixed_effect_costs_one_dof(data):
    fit = pr.reg(data, "Y ~ X1 + X2 | group_id", vcov={"CRV1": "group_id"})
    assert fit.dof_absorbed == 1
    assert fit.dof_residual == fit.nobs - 2 - 1
    assert fit.df_t == data["group_id"].nunique() - 1

    fit_iid = pr.reg(data, "Y ~ X1 + X2 | group_id")
    assert fit_iid.dof_absorbed == data["group_id"].nunique()


def test_dof_add(data):
    fit = pr.reg(data, "Y ~ X1 + X2", dof_add=5)
    fit_ref = pr.reg(data, "Y ~ X1 + X2")
    assert fit.dof_residual == fit_ref.dof_residual - 5


def test_repeated_runs_are_identical(data):
    fit1 = pr.reg(data, "Y ~ X1 + X2 | f1 + f2", vcov={"CRV1": "group_id"})
    fit2 = pr.reg(data, "Y ~ X1 + X2 | f1 + f2", vcov={"CRV1": "group_id"})
    np.testing.assert_array_equal(fit1.coefficients, fit2.coefficients)
    np.testing.assert_array_equal(fit1.vcov_matrix, fit2.vcov_matrix)


def test_single_precision(data):
    fit = pr.reg(data, "Y ~ X1 + X2 | f1", double_precision=False)
    fit_ref = pr.reg(data, "Y ~ X1 + X2 | f1")
    np.testing.assert_allclose(fit.coefficients, fit_ref.coefficients, rtol=1e-4)


def test_non_convergence_warns(data):
    with pytest.warns(
        UserWarning, match=r"Convergence not achieved in \d+ iterations with tol=1e-08"
    ):
        fit = pr.reg(data, "Y ~ X1 + X2 | f1 + f2", maxiter=1)
    assert not fit.converged


def test_singletons_are_dropped():
    df = pd.DataFrame(
        {
            "y": [1.0, 2.0, 3.0, 4.0, 5.0],
            "x": [0.5, 1.0, 0.1, 3.0, 2.0],
            "g": [0, 0, 1, 1, 2],
        }
    )
    with pytest.warns(UserWarning, match="1 singleton"):
        fit = pr.reg(df, "y ~ x | g")
    assert fit.nobs == 4
    np.testing.assert_array_equal(fit.esample, [True, True, True, True, False])

    fit_keep = pr.reg(df, "y ~ x | g", drop_singletons=False)
    assert fit_keep.nobs == 5


def test_options_provide_defaults(data):
    with pr.option_context(vcov="hetero", save="residuals"):
        fit = pr.reg(data, "Y ~ X1")
        assert pr.get_option("vcov") == "hetero"
    assert fit.vcov_type == "hetero"
    assert "residuals" in fit.augmentdf.columns
    assert pr.get_option("vcov") == "iid"

    with pytest.raises(KeyError):
        pr.set_option(not_an_option=1)


def test_tidy(data):
    fit = pr.reg(data, "Y ~ X1 + X2")
    tidy = fit.tidy()
    assert list(tidy.columns) == [
        "Estimate",
        "Std. Error",
        "t value",
        "Pr(>|t|)",
        "2.5%",
        "97.5%",
    ]
    assert list(tidy.index) == fit.coefnames
    np.testing.assert_allclose(tidy["t value"], fit.coef() / fit.se())

    ci = fit.confint(alpha=0.1)
    assert list(ci.columns) == ["5.0%", "95.0%"]
    assert (ci["5.0%"] < fit.coef()).all()
    assert fit.vcov().shape == (3, 3)


def test_contrast_coding_in_formula():
    rng = np.random.default_rng(5)
    n = 60
    g = np.repeat(["a", "b", "c"], n // 3)
    x = rng.normal(size=n)
    y = 1.0 + x + (g == "b") - 2.0 * (g == "c") + rng.normal(size=n)
    df = pd.DataFrame({"y": y, "x": x, "g": g})

    fit = pr.reg(df, "y ~ x + C(g)")
    fit_base = pr.reg(df, "y ~ x + C(g, contr.treatment(base='c'))")

    assert fit.coefnames[-1].endswith("[T.c]")
    assert fit_base.coefnames[-2].endswith("[T.a]")
    assert fit_base.rss == pytest.approx(fit.rss)
    assert fit_base.coefficients[1] == pytest.approx(fit.coefficients[1])
