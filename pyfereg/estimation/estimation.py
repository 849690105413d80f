from collections.abc import Mapping
from typing import Optional, Union

import numpy as np
import pandas as pd

from pyfereg.errors import InvalidArgumentError
from pyfereg.estimation.collinearity import basecol, getcols
from pyfereg.estimation.demean_ import get_fixed_effect_solver
from pyfereg.estimation.esample_ import build_esample
from pyfereg.estimation.feiv_ import Feiv
from pyfereg.estimation.feols_ import Feols
from pyfereg.estimation.fixed_effects_ import get_fixed_effects
from pyfereg.estimation.formula_parser import parse_formula
from pyfereg.estimation.literals import (
    DemeanerMethodOptions,
    SaveOptions,
    VcovTypeOptions,
    _validate_literal_argument,
)
from pyfereg.estimation.model_matrix_ import model_matrix, required_variables
from pyfereg.estimation.results_ import FixedEffectModel, build_augmentdf
from pyfereg.estimation.solvers import project
from pyfereg.options import options
from pyfereg.utils.dev_utils import DataFrameType, _narwhals_to_pandas


def reg(
    data: DataFrameType,  # type: ignore
    fml: str,
    vcov: Optional[Union[VcovTypeOptions, dict[str, str]]] = None,
    weights: Optional[str] = None,
    subset=None,
    method: Optional[DemeanerMethodOptions] = None,
    maxiter: Optional[int] = None,
    tol: Optional[float] = None,
    drop_singletons: Optional[bool] = None,
    double_precision: Optional[bool] = None,
    dof_add: int = 0,
    save: Optional[Union[SaveOptions, str]] = None,
    collin_tol: Optional[float] = None,
) -> FixedEffectModel:
    """
    Estimate a linear model with high dimensional fixed effects and / or instruments.

    Parameters
    ----------
    data : DataFrameType
        A pandas or polars dataframe (or any frame narwhals can convert to
        pandas) containing the variables in the formula.

    fml : str
        A formula string of the form
        "Y ~ X1 + X2 | FE1 + FE2 | X_endo ~ Z1 + Z2". "|" separates the
        regressors, the fixed effects and the IV part; the fixed effects and
        the IV part are optional and can come in either order. The regressors
        are handled by formulaic, so transformations such as `np.log(X1)` or
        `C(X1)` work. Fixed effects can be combined (`fe1^fe2`), interacted
        with a numeric variable (`fe1&X2`, a group specific slope) or both
        (`fe1*X2`, shorthand for `fe1 + fe1&X2`).

    vcov : Union[VcovTypeOptions, dict[str, str]], optional
        Type of variance-covariance matrix for inference. Options include
        "iid", "hetero", "HC1", or a dictionary for CRV1 inference, e.g.
        `{"CRV1": "group_id"}` or `{"CRV1": "group_id+f3"}` for multi-way
        clustering. Defaults to the `vcov` option, "iid".

    weights : str, optional
        Name of the column in `data` with the weights for WLS estimation.
        Observations with missing or non-positive weights are dropped.

    subset : array-like, optional
        A vector with one entry per row of `data`. Only rows with a
        non-missing, true entry are used.

    method : DemeanerMethodOptions, optional
        The fixed effect solver: "numba" (alternating projections), "lsmr",
        "lsmr_threads" or "lsmr_parallel". Defaults to the `method` option,
        "numba".

    maxiter : int, optional
        Maximum number of iterations of the fixed effect solver. Defaults to
        10,000.

    tol : float, optional
        Tolerance of the fixed effect solver. Defaults to 1e-8 in double and
        1e-6 in single precision.

    drop_singletons : bool, optional
        Whether to drop observations that are alone in their fixed effect
        group. Defaults to True.

    double_precision : bool, optional
        Whether the fixed effect solver computes in float64 (default) or
        float32.

    dof_add : int, optional
        Additional degrees of freedom to subtract from the residual degrees of
        freedom. Defaults to 0.

    save : Union[SaveOptions, str], optional
        Store the residuals ("residuals"), the fixed effects ("fe"), both
        ("all") or nothing ("none", default) in the `augmentdf` of the result.

    collin_tol : float, optional
        Tolerance for the collinearity check, by default 1e-10.

    Returns
    -------
    FixedEffectModel
        An immutable result object.

    Examples
    --------
    ```{python}
    import pyfereg as pr

    data = pr.get_data()

    fit = pr.reg(data, "Y ~ X1 + X2 | f1 + f2", vcov={"CRV1": "group_id"})
    fit.tidy()
    ```

    Two stage least squares, with the Kleibergen-Paap first stage statistic
    stored in `F_kp` and `p_kp`:

    ```{python}
    fit_iv = pr.reg(data, "Y ~ X1 | f1 | X_endo ~ Z1 + Z2", vcov="hetero")
    fit_iv.F_kp, fit_iv.p_kp
    ```

    Fixed effects are only recovered if requested:

    ```{python}
    fit = pr.reg(data, "Y ~ X1 | f1", save="all")
    fit.fixef().head()
    ```
    """
    vcov = options.vcov if vcov is None else vcov
    method = options.method if method is None else method
    maxiter = options.maxiter if maxiter is None else maxiter
    drop_singletons = (
        options.drop_singletons if drop_singletons is None else drop_singletons
    )
    double_precision = (
        options.double_precision if double_precision is None else double_precision
    )
    tol = options.resolve_tol(double_precision) if tol is None else tol
    save = SaveOptions.parse(options.save if save is None else save)
    collin_tol = options.collin_tol if collin_tol is None else collin_tol

    data = _estimation_input_checks(
        data=data,
        vcov=vcov,
        weights=weights,
        method=method,
        maxiter=maxiter,
        tol=tol,
        drop_singletons=drop_singletons,
        double_precision=double_precision,
        dof_add=dof_add,
        collin_tol=collin_tol,
    )

    fml_parsed = parse_formula(fml)
    if len(fml_parsed.dependent) > 1:
        raise InvalidArgumentError(
            f"`reg()` estimates one dependent variable at a time, got {fml_parsed.dependent}."
        )

    estimator = Feiv if fml_parsed.is_iv else Feols
    model = estimator(
        fml=fml_parsed,
        data=data,
        vcov=vcov,
        weights=weights,
        subset=subset,
        method=method,
        maxiter=maxiter,
        tol=tol,
        drop_singletons=drop_singletons,
        double_precision=double_precision,
        dof_add=dof_add,
        save=save,
        collin_tol=collin_tol,
    )

    model.prepare_model_matrix()
    model.demean()
    model.wls_transform()
    model.drop_multicol_vars()
    model.get_fit()
    model.get_vcov()
    model.get_performance()
    model.get_ranktest()

    return model.to_result()


def partial_out(
    data: DataFrameType,  # type: ignore
    fml: str,
    weights: Optional[str] = None,
    add_mean: bool = False,
    method: Optional[DemeanerMethodOptions] = None,
    maxiter: Optional[int] = None,
    tol: Optional[float] = None,
    drop_singletons: bool = False,
    double_precision: Optional[bool] = None,
) -> tuple[pd.DataFrame, np.ndarray, int, bool]:
    """
    Partial out regressors and fixed effects from one or more variables.

    Every variable on the left hand side of `fml` is residualized on the
    right hand side and the fixed effects, i.e. replaced by the residuals of
    a (weighted) regression on them.

    Parameters
    ----------
    data : DataFrameType
        A pandas or polars dataframe.
    fml : str
        A formula "Y1 + Y2 ~ X1 | f1 + f2". Use "Y1 + Y2 ~ 1 | f1" to only
        remove fixed effects. IV parts are not allowed.
    weights : str, optional
        Name of the weights column.
    add_mean : bool
        Whether to add back the (weighted) mean of each variable.
    method : DemeanerMethodOptions, optional
        The fixed effect solver. Defaults to the `method` option.
    maxiter : int, optional
        Maximum number of iterations of the fixed effect solver.
    tol : float, optional
        Tolerance of the fixed effect solver.
    drop_singletons : bool
        Whether to drop singleton observations. False by default.
    double_precision : bool, optional
        Whether the fixed effect solver computes in float64 or float32.

    Returns
    -------
    tuple[pd.DataFrame, np.ndarray, int, bool]
        The residuals, indexed like `data` with NaN outside of the estimation
        sample; the sample mask; the number of iterations of the fixed effect
        solver and whether it converged. Without fixed effects, the solver is
        not run and the last two are 0 and True.
    """
    method = options.method if method is None else method
    maxiter = options.maxiter if maxiter is None else maxiter
    double_precision = (
        options.double_precision if double_precision is None else double_precision
    )
    tol = options.resolve_tol(double_precision) if tol is None else tol

    data = _estimation_input_checks(
        data=data,
        vcov="iid",
        weights=weights,
        method=method,
        maxiter=maxiter,
        tol=tol,
        drop_singletons=drop_singletons,
        double_precision=double_precision,
        dof_add=0,
        collin_tol=options.collin_tol,
    )
    if not isinstance(add_mean, bool):
        raise TypeError("The function argument `add_mean` must be of type bool.")

    fml_parsed = parse_formula(fml)
    if fml_parsed.is_iv:
        raise InvalidArgumentError("`partial_out()` does not support IV formulas.")

    fixed_effects = (
        get_fixed_effects(data, fml_parsed.fixed_effects)
        if fml_parsed.has_fixef
        else []
    )
    esample = build_esample(
        data,
        variables=required_variables(fml_parsed, data),
        weights=weights,
        fixed_effects=fixed_effects,
        drop_singletons_=drop_singletons,
    )
    fixed_effects = [fe.subset(esample) for fe in fixed_effects]
    has_fixef_intercept = any(not fe.has_interaction for fe in fixed_effects)

    data_es = data.loc[esample].reset_index(drop=True)
    mm = model_matrix(fml_parsed, data_es, drop_intercept=has_fixef_intercept)
    Y = mm.Y.to_numpy(dtype=np.float64)
    X = mm.X.to_numpy(dtype=np.float64)
    w = (
        data_es[weights].to_numpy(dtype=np.float64)
        if weights is not None
        else np.ones(Y.shape[0])
    )
    sqrtw = np.sqrt(w)

    iterations, converged = 0, True
    if fixed_effects:
        solver = get_fixed_effect_solver(method, fixed_effects, sqrtw, double_precision)
        res, iterations, converged = solver.residualize(
            np.concatenate([Y, X], axis=1), maxiter, tol
        )
        Y_res, X_res = res[:, : Y.shape[1]], res[:, Y.shape[1] :]
    else:
        Y_res, X_res = Y, X

    Yw = Y_res * sqrtw[:, None]
    Xw = X_res * sqrtw[:, None]
    Xw = getcols(Xw, basecol(Xw, collin_tol=options.collin_tol))
    if Xw.shape[1] > 0:
        _, Yw = project(Xw, Yw)
    Y_res = Yw / sqrtw[:, None]

    if add_mean:
        Y_res = Y_res + np.average(Y, axis=0, weights=w)

    residuals = build_augmentdf(
        data.index, esample, {name: Y_res[:, j] for j, name in enumerate(mm.Y.columns)}
    )
    return residuals, esample, iterations, converged


def _estimation_input_checks(
    data: DataFrameType,
    vcov: Union[str, Mapping[str, str]],
    weights: Optional[str],
    method: str,
    maxiter: int,
    tol: float,
    drop_singletons: bool,
    double_precision: bool,
    dof_add: int,
    collin_tol: float,
) -> pd.DataFrame:
    if not isinstance(data, pd.DataFrame):
        data = _narwhals_to_pandas(data)
    if not isinstance(vcov, (str, Mapping)):
        raise TypeError("vcov must be a string, dictionary, or None")

    if not (isinstance(weights, str) or weights is None):
        raise InvalidArgumentError(
            f"weights must be a string or None but you provided weights = {weights}."
        )

    _validate_literal_argument(method, DemeanerMethodOptions)

    bool_args = {"drop_singletons": drop_singletons, "double_precision": double_precision}
    for name, arg in bool_args.items():
        if not isinstance(arg, bool):
            raise TypeError(f"The function argument `{name}` must be of type bool.")

    if isinstance(maxiter, bool) or not isinstance(maxiter, int):
        raise TypeError("The function argument `maxiter` needs to be of type int.")
    if maxiter <= 0:
        raise ValueError("The function argument `maxiter` needs to be strictly larger than 0.")

    if not isinstance(tol, float):
        raise TypeError("The function argument `tol` needs to be of type float.")
    if not 0 < tol < 1:
        raise ValueError("The function argument `tol` needs to be between 0 and 1.")

    if isinstance(dof_add, bool) or not isinstance(dof_add, int):
        raise TypeError("The function argument `dof_add` needs to be of type int.")
    if dof_add < 0:
        raise ValueError("The function argument `dof_add` must not be negative.")

    if not isinstance(collin_tol, float):
        raise TypeError("collin_tol must be a float")
    if collin_tol <= 0:
        raise ValueError("collin_tol must be greater than zero")
    if collin_tol >= 1:
        raise ValueError("collin_tol must be less than one")

    return data
