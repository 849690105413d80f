import logging
import warnings
from collections.abc import Mapping
from typing import Optional, Union

import numpy as np
import pandas as pd

from pyfereg.errors import NonFiniteValueError
from pyfereg.estimation.collinearity import basecol, getcols
from pyfereg.estimation.demean_ import get_fixed_effect_solver
from pyfereg.estimation.esample_ import build_esample
from pyfereg.estimation.fixed_effects_ import get_fixed_effects
from pyfereg.estimation.formula_parser import FeregFormula
from pyfereg.estimation.literals import DemeanerMethodOptions, SaveOptions
from pyfereg.estimation.model_matrix_ import model_matrix, required_variables
from pyfereg.estimation.results_ import (
    FixedEffectModel,
    build_augmentdf,
    reinsert_dropped,
)
from pyfereg.estimation.solvers import invert_crossprod, solve_ols
from pyfereg.estimation.vcov_ import (
    VcovData,
    dof_absorbed,
    fstat,
    fstat_pvalue,
    get_vcov_estimator,
)

logger = logging.getLogger(__name__)


def _tss(y: np.ndarray, has_intercept: bool, weights: np.ndarray) -> float:
    "Weighted total sum of squares, around the weighted mean if there is an intercept."
    if has_intercept:
        y = y - np.average(y, weights=weights)
    return np.sum(weights * y**2)


class Feols:
    """
    Non user-facing class to estimate a linear regression via OLS.

    Users should not directly instantiate this class, but rather use the
    `reg()` function. The estimation runs in steps, each a method of this
    class: `prepare_model_matrix()`, `demean()`, `wls_transform()`,
    `drop_multicol_vars()`, `get_fit()`, `get_vcov()`, `get_performance()`
    and `get_ranktest()`. `to_result()` collects everything into an
    immutable `FixedEffectModel`.

    Parameters
    ----------
    fml : FeregFormula
        The parsed model formula.
    data : pd.DataFrame
        The data set.
    vcov : Union[str, dict[str, str]]
        Type of covariance matrix: "iid", "hetero", "HC1" or
        `{"CRV1": "clustervar"}`.
    weights : Optional[str]
        Name of the weights column.
    subset : Optional[array-like]
        Rows to include, one entry per row of `data`.
    method : DemeanerMethodOptions
        The fixed effect solver.
    maxiter : int
        Maximum number of iterations of the fixed effect solver.
    tol : float
        Tolerance of the fixed effect solver.
    drop_singletons : bool
        Whether to drop singleton observations.
    double_precision : bool
        Whether the fixed effect solver computes in float64 or float32.
    dof_add : int
        Additional degrees of freedom to subtract from the residual degrees
        of freedom.
    save : SaveOptions
        Which per-observation output to store.
    collin_tol : float
        Tolerance level for collinearity checks.
    """

    # (attribute, label) of each matrix that runs through the pipeline
    _blocks = (("_Y", "dependent variable"), ("_X", "exogenous variables"))

    def __init__(
        self,
        fml: FeregFormula,
        data: pd.DataFrame,
        vcov: Union[str, Mapping[str, str]],
        weights: Optional[str],
        subset,
        method: DemeanerMethodOptions,
        maxiter: int,
        tol: float,
        drop_singletons: bool,
        double_precision: bool,
        dof_add: int,
        save: SaveOptions,
        collin_tol: float,
    ) -> None:
        self._fml = fml
        self._data = data
        self._vcov_input = vcov
        self._weights_name = weights
        self._has_weights = weights is not None
        self._subset = subset
        self._demeaner_method = method
        self._maxiter = maxiter
        self._tol = tol
        self._drop_singletons = drop_singletons
        self._double_precision = double_precision
        self._dof_add = dof_add
        self._save = save
        self._collin_tol = collin_tol

        self._iterations = None
        self._converged = None
        self._r2_within = None
        self._F_kp = None
        self._p_kp = None
        self._collin_vars: list[str] = []

    def prepare_model_matrix(self):
        "Select the estimation sample and build the model matrices."
        fml = self._fml
        data = self._data

        fixed_effects = (
            get_fixed_effects(data, fml.fixed_effects) if fml.has_fixef else []
        )
        vcov_estimator = get_vcov_estimator(self._vcov_input, data)

        self._esample = build_esample(
            data,
            variables=required_variables(fml, data),
            cluster_vars=vcov_estimator.clustervar,
            weights=self._weights_name,
            subset=self._subset,
            fixed_effects=fixed_effects,
            drop_singletons_=self._drop_singletons,
        )
        self._N = int(self._esample.sum())

        self._fixed_effects = [fe.subset(self._esample) for fe in fixed_effects]
        self._has_fixef = len(self._fixed_effects) > 0
        self._has_fixef_intercept = any(
            not fe.has_interaction for fe in self._fixed_effects
        )
        self._vcov_estimator = vcov_estimator.subset(self._esample)

        data_es = data.loc[self._esample].reset_index(drop=True)
        self._weights = (
            data_es[self._weights_name].to_numpy(dtype=np.float64)
            if self._has_weights
            else np.ones(self._N)
        )
        self._sqrtw = np.sqrt(self._weights)
        if not np.isfinite(self._sqrtw).all():
            raise NonFiniteValueError("Some observations for the weights are infinite.")

        mm = model_matrix(fml, data_es, drop_intercept=self._has_fixef_intercept)
        self._depvar = mm.Y.columns[0]
        self._has_intercept = mm.has_intercept
        self._Y = mm.Y.to_numpy(dtype=np.float64)[:, 0]
        self._X = mm.X.to_numpy(dtype=np.float64).reshape((self._N, -1))
        self._coefnames = mm.X.columns.tolist()
        self._endogvar = (
            mm.endogvar.to_numpy(dtype=np.float64) if mm.endogvar is not None else None
        )
        self._Z = mm.Z.to_numpy(dtype=np.float64) if mm.Z is not None else None
        self._coefnames_endog = (
            mm.endogvar.columns.tolist() if mm.endogvar is not None else []
        )
        self._coefnames_z = mm.Z.columns.tolist() if mm.Z is not None else []

        # tss before any demeaning
        self._tss = _tss(
            self._Y, self._has_intercept or self._has_fixef_intercept, self._weights
        )

        self._Y_untransformed = self._Y.copy()
        self._X_untransformed = self._X.copy()
        self._endogvar_untransformed = (
            self._endogvar.copy() if self._endogvar is not None else None
        )

    def demean(self):
        "Residualize all model matrices on the fixed effects."
        if not self._has_fixef:
            return

        self._solver = get_fixed_effect_solver(
            self._demeaner_method,
            self._fixed_effects,
            self._sqrtw,
            self._double_precision,
        )

        mats = [getattr(self, name).reshape((self._N, -1)) for name, _ in self._blocks]
        ncols = np.cumsum([0] + [m.shape[1] for m in mats])
        res, self._iterations, self._converged = self._solver.residualize(
            np.concatenate(mats, axis=1), self._maxiter, self._tol
        )
        logger.debug(
            "Fixed effect solver finished after %d iterations.", self._iterations
        )
        if not self._converged:
            warnings.warn(
                f"Convergence not achieved in {self._iterations} iterations "
                f"with tol={self._tol}; try increasing maxiter or decreasing tol."
            )

        for i, (name, label) in enumerate(self._blocks):
            block = res[:, ncols[i] : ncols[i + 1]]
            if not np.isfinite(block).all():
                raise NonFiniteValueError(
                    f"Some observations for the {label} are infinite after demeaning."
                )
            if name == "_Y":
                block = block[:, 0]
            setattr(self, name, block)

        self._tss_within = _tss(
            self._Y, self._has_intercept or self._has_fixef_intercept, self._weights
        )

    def wls_transform(self):
        "Transform model matrices for WLS Estimation."
        for name, _ in self._blocks:
            mat = getattr(self, name)
            w = self._sqrtw if mat.ndim == 1 else self._sqrtw[:, None]
            setattr(self, name, mat * w)

    def drop_multicol_vars(self):
        "Detect and drop multicollinear variables."
        keep = basecol(self._X, collin_tol=self._collin_tol, names=self._coefnames)
        self._collin_vars = [x for x, k in zip(self._coefnames, keep) if not k]
        self._X = getcols(self._X, keep)
        self._basecoef = keep
        self._k = self._X.shape[1]

    def get_fit(self) -> None:
        """
        Fit an OLS model.

        Returns
        -------
        None
        """
        self._X_hat = self._X
        self._tXX = self._X_hat.T @ self._X_hat
        self._beta_hat = solve_ols(self._tXX, self._X_hat.T @ self._Y)
        self._u_hat = self._Y - self._X @ self._beta_hat

    def get_vcov(self) -> None:
        "Compute degrees of freedom and the covariance matrix."
        self._dof_absorbed = dof_absorbed(self._fixed_effects, self._vcov_estimator)
        self._dof_residual = max(
            1, self._N - self._k - self._dof_absorbed - self._dof_add
        )
        self._tXXinv = invert_crossprod(self._tXX)
        self._vcov_data = VcovData(
            modelmatrix=self._X_hat,
            invcrossmodelmatrix=self._tXXinv,
            residuals=self._u_hat,
            dof_residual=self._dof_residual,
        )
        self._vcov = (
            self._vcov_estimator.vcov(self._vcov_data)
            if self._k > 0
            else np.zeros((0, 0))
        )
        self._df_t = self._vcov_estimator.df_fstat(self._vcov_data)

    def get_performance(self) -> None:
        """
        Get Goodness-of-Fit measures.

        Computes the residual sum of squares, R-squared, adjusted R-squared,
        the within R-squared (for models with fixed effects) and the F-test
        that all slopes are jointly zero.
        """
        has_intercept = self._has_intercept or self._has_fixef_intercept
        self._rss = np.sum(self._u_hat**2)
        # tss is zero for a constant dependent variable
        with np.errstate(divide="ignore", invalid="ignore"):
            self._r2 = float(1 - self._rss / self._tss)
            self._adj_r2 = float(
                1
                - self._rss / self._tss * (self._N - has_intercept) / self._dof_residual
            )
            if self._has_fixef:
                self._r2_within = float(1 - self._rss / self._tss_within)

        coefnames = [x for x, k in zip(self._all_coefnames, self._basecoef) if k]
        test_index = np.array([x != "Intercept" for x in coefnames], dtype=bool)
        self._F = fstat(self._beta_hat, self._vcov, test_index)
        self._p = fstat_pvalue(self._F, int(test_index.sum()), self._df_t)

    def get_ranktest(self) -> None:
        "Weak instrument test; only defined for IV models."
        pass

    @property
    def _all_coefnames(self) -> list[str]:
        return self._coefnames + self._coefnames_endog

    def _X_untransformed_all(self) -> np.ndarray:
        if self._endogvar_untransformed is None:
            return self._X_untransformed
        return np.concatenate([self._X_untransformed, self._endogvar_untransformed], axis=1)

    def get_augmentdf(self) -> pd.DataFrame:
        "Collect residuals and fixed effects requested via `save`."
        columns = {}
        if self._save.residuals:
            columns["residuals"] = self._u_hat / self._sqrtw
        if self._save.fixed_effects and self._has_fixef:
            X = getcols(self._X_untransformed_all(), self._basecoef)
            r = self._Y_untransformed - X @ self._beta_hat
            fe_values, iterations, converged = self._solver.solve_coefficients(
                r, self._maxiter, self._tol
            )
            if not converged:
                warnings.warn(
                    f"Convergence of the fixed effect recovery not achieved in {iterations} iterations."
                )
            for fe, values in zip(self._fixed_effects, fe_values):
                columns[f"fe_{fe.name}"] = values
        return build_augmentdf(self._data.index, self._esample, columns)

    def to_result(self) -> FixedEffectModel:
        "Collect the estimation results into an immutable `FixedEffectModel`."
        coef, vcov = reinsert_dropped(self._beta_hat, self._vcov, self._basecoef)
        return FixedEffectModel(
            coefficients=coef,
            vcov_matrix=vcov,
            coefnames=self._all_coefnames,
            depvar=self._depvar,
            esample=self._esample,
            augmentdf=self.get_augmentdf(),
            nobs=self._N,
            dof_residual=self._dof_residual,
            df_t=self._df_t,
            rss=float(self._rss),
            tss=float(self._tss),
            r2=self._r2,
            adj_r2=self._adj_r2,
            F=self._F,
            p=self._p,
            iterations=self._iterations,
            converged=self._converged,
            r2_within=self._r2_within,
            F_kp=self._F_kp,
            p_kp=self._p_kp,
            fml=self._fml.formula,
            vcov_type=self._vcov_estimator.vcov_type,
            has_intercept=self._has_intercept,
            fixef_names=[fe.name for fe in self._fixed_effects],
            dof_absorbed=self._dof_absorbed,
            collin_vars=self._collin_vars,
        )
