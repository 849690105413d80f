from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from scipy.stats import t


def reinsert_dropped(
    coef: np.ndarray, vcov: np.ndarray, basecoef: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """
    Map estimates of the retained columns back to all original columns.

    Parameters
    ----------
    coef : np.ndarray
        Coefficients of the retained columns.
    vcov : np.ndarray
        Covariance matrix of the retained columns.
    basecoef : np.ndarray
        Boolean array over the original columns, True for retained columns.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        Coefficients with zeros and a covariance matrix with NaN rows and
        columns at the positions of dropped columns.
    """
    if basecoef.sum() != coef.size:
        raise ValueError(
            f"basecoef retains {basecoef.sum()} columns but there are {coef.size} coefficients."
        )
    if basecoef.all():
        return coef, vcov

    K = basecoef.size
    idx = np.flatnonzero(basecoef)
    newcoef = np.zeros(K)
    newcoef[idx] = coef
    newvcov = np.full((K, K), np.nan)
    newvcov[np.ix_(idx, idx)] = vcov
    return newcoef, newvcov


def build_augmentdf(
    index: pd.Index,
    esample: np.ndarray,
    columns: dict[str, np.ndarray],
) -> pd.DataFrame:
    """
    Place per-observation estimation output into a frame aligned with the data.

    Rows outside of the estimation sample are NaN.
    """
    augmentdf = pd.DataFrame(index=index)
    for name, values in columns.items():
        col = np.full(esample.size, np.nan)
        col[esample] = values
        augmentdf[name] = col
    return augmentdf


@dataclass(frozen=True, eq=False)
class FixedEffectModel:
    """
    Results of a linear model with fixed effects and / or instruments.

    Users should not instantiate this class directly but call `reg()`.

    Attributes
    ----------
    coefficients : np.ndarray
        One coefficient per column of the design matrix. Zero for columns
        dropped because of collinearity.
    vcov_matrix : np.ndarray
        Covariance matrix of the coefficients, NaN for dropped columns.
    coefnames : list[str]
        Names of the coefficients.
    depvar : str
        Name of the dependent variable.
    esample : np.ndarray
        Boolean mask over the rows of the data, True for rows used.
    augmentdf : pd.DataFrame
        Residuals and / or fixed effects, aligned with the rows of the data.
        Empty unless requested via `save`.
    nobs : int
        Number of observations.
    dof_residual : int
        Residual degrees of freedom, net of absorbed fixed effects.
    df_t : int
        Degrees of freedom for t- and F-tests. Equals `dof_residual` unless
        the covariance is clustered; then the number of clusters minus one.
    rss, tss : float
        Residual and total sum of squares.
    r2, adj_r2 : float
        R-squared and adjusted R-squared.
    F, p : float
        F-statistic of the joint test that all slopes are zero and its
        p-value.
    iterations : int, optional
        Iterations of the fixed effect solver. None without fixed effects.
    converged : bool, optional
        Whether the fixed effect solver converged. None without fixed effects.
    r2_within : float, optional
        R-squared of the model on the residualized dependent variable.
        None without fixed effects.
    F_kp, p_kp : float, optional
        Kleibergen-Paap first stage F-statistic and p-value. None unless the
        model has instruments.
    """

    coefficients: np.ndarray
    vcov_matrix: np.ndarray
    coefnames: list[str]
    depvar: str
    esample: np.ndarray
    augmentdf: pd.DataFrame
    nobs: int
    dof_residual: int
    df_t: int
    rss: float
    tss: float
    r2: float
    adj_r2: float
    F: float
    p: float
    iterations: Optional[int] = None
    converged: Optional[bool] = None
    r2_within: Optional[float] = None
    F_kp: Optional[float] = None
    p_kp: Optional[float] = None
    fml: str = ""
    vcov_type: str = "iid"
    has_intercept: bool = True
    fixef_names: list[str] = field(default_factory=list)
    dof_absorbed: int = 0
    collin_vars: list[str] = field(default_factory=list)

    @property
    def has_fixef(self) -> bool:
        return len(self.fixef_names) > 0

    @property
    def has_iv(self) -> bool:
        return self.F_kp is not None

    def vcov(self) -> pd.DataFrame:
        "Covariance matrix with coefficient names."
        return pd.DataFrame(
            self.vcov_matrix, index=self.coefnames, columns=self.coefnames
        )

    def tidy(self, alpha: float = 0.05) -> pd.DataFrame:
        """
        Tidy model outputs.

        Return a tidy pd.DataFrame with the point estimates, standard errors,
        t-statistics, p-values and confidence intervals.

        Parameters
        ----------
        alpha: float
            The significance level for the confidence intervals. Defaults to
            0.05, i.e. a 95% confidence interval.

        Returns
        -------
        tidy_df : pd.DataFrame
        """
        ub, lb = 1 - alpha / 2, alpha / 2
        se = np.sqrt(np.diag(self.vcov_matrix))
        with np.errstate(divide="ignore", invalid="ignore"):
            tstat = self.coefficients / se
        pvalue = 2 * t.sf(np.abs(tstat), self.df_t)
        crit_val = np.abs(t.ppf(alpha / 2, self.df_t))

        tidy_df = pd.DataFrame(
            {
                "Coefficient": self.coefnames,
                "Estimate": self.coefficients,
                "Std. Error": se,
                "t value": tstat,
                "Pr(>|t|)": pvalue,
                f"{lb * 100:.1f}%": self.coefficients - crit_val * se,
                f"{ub * 100:.1f}%": self.coefficients + crit_val * se,
            }
        )

        return tidy_df.set_index("Coefficient")

    def coef(self) -> pd.Series:
        "Fitted model coefficents."
        return self.tidy()["Estimate"]

    def se(self) -> pd.Series:
        "Fitted model standard errors."
        return self.tidy()["Std. Error"]

    def tstat(self) -> pd.Series:
        "Fitted model t-statistics."
        return self.tidy()["t value"]

    def pvalue(self) -> pd.Series:
        "Fitted model p-values."
        return self.tidy()["Pr(>|t|)"]

    def confint(self, alpha: float = 0.05) -> pd.DataFrame:
        """
        Fitted model confidence intervals.

        Parameters
        ----------
        alpha : float, optional
            The significance level for confidence intervals. Defaults to 0.05.

        Returns
        -------
        pd.DataFrame
            Lower and upper bounds, one row per coefficient.
        """
        return self.tidy(alpha=alpha).iloc[:, -2:]

    def resid(self) -> pd.Series:
        """
        Fitted model residuals, NaN outside the estimation sample.

        Raises
        ------
        ValueError
            If residuals were not saved during estimation.
        """
        if "residuals" not in self.augmentdf.columns:
            raise ValueError(
                "Residuals were not saved. Use `save='residuals'` or `save='all'`."
            )
        return self.augmentdf["residuals"]

    def fixef(self) -> pd.DataFrame:
        """
        Estimated fixed effects, one column per fixed effect.

        Raises
        ------
        ValueError
            If fixed effects were not saved during estimation.
        """
        cols = [f"fe_{x}" for x in self.fixef_names]
        if not cols or not set(cols).issubset(self.augmentdf.columns):
            raise ValueError(
                "Fixed effects were not saved. Use `save='fe'` or `save='all'`."
            )
        return self.augmentdf[cols]
