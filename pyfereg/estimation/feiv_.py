import logging

import numpy as np

from pyfereg.errors import NotIdentifiedError
from pyfereg.estimation.collinearity import basecol, getcols
from pyfereg.estimation.feols_ import Feols
from pyfereg.estimation.ranktest import ranktest, ranktest_summary
from pyfereg.estimation.solvers import project, solve_ols

logger = logging.getLogger(__name__)


class Feiv(Feols):
    """
    Non user-facing class to estimate an IV model using a 2SLS estimator.

    Inherits from the Feols class. Users should not directly instantiate this
    class, but rather use the `reg()` function with a formula that contains
    an IV part, e.g. `Y ~ X1 | f1 | X_endo ~ Z1 + Z2`.

    On top of the OLS steps, `drop_multicol_vars()` reduces the instruments
    jointly with the regressors, `get_fit()` runs the first and second stage
    and `get_ranktest()` computes the Kleibergen-Paap first stage statistic.
    """

    _blocks = Feols._blocks + (
        ("_endogvar", "endogenous variables"),
        ("_Z", "instrumental variables"),
    )

    def _check_identification(self) -> None:
        K = self._endogvar.shape[1]
        L = self._Z.shape[1]
        if L < K:
            raise NotIdentifiedError(
                "Model not identified. There must be at least as many instruments "
                f"as endogenous variables, got {L} instrument(s) for {K} endogenous variable(s)."
            )

    def drop_multicol_vars(self):
        "Detect and drop multicollinear instruments, regressors and endogenous variables."
        self._check_identification()

        # instruments first: a regressor collinear with the instruments is dropped
        names = self._coefnames_z + self._coefnames + self._coefnames_endog
        keep = basecol(
            self._Z, self._X, self._endogvar, collin_tol=self._collin_tol, names=names
        )
        L, k_exog = self._Z.shape[1], self._X.shape[1]
        keep_z = keep[:L]
        keep_x = keep[L : L + k_exog]
        keep_endog = keep[L + k_exog :]

        self._Z = getcols(self._Z, keep_z)
        self._X = getcols(self._X, keep_x)
        self._endogvar = getcols(self._endogvar, keep_endog)
        self._check_identification()

        self._collin_vars = [x for x, k in zip(names, keep) if not k]
        self._basecoef = np.concatenate([keep_x, keep_endog])
        self._k = self._X.shape[1] + self._endogvar.shape[1]

    def get_fit(self) -> None:
        """
        Fit the first and second stage.

        The endogenous variables are projected on the exogenous regressors and
        the instruments; the second stage regresses the dependent variable on
        the exogenous regressors and the fitted endogenous variables. The
        residuals use the observed endogenous variables.
        """
        newZ = np.concatenate([self._X, self._Z], axis=1)
        self._Pi, self._endogvar_res = project(newZ, self._endogvar)
        self._X_hat = np.concatenate([self._X, newZ @ self._Pi], axis=1)

        self._tXX = self._X_hat.T @ self._X_hat
        self._beta_hat = solve_ols(self._tXX, self._X_hat.T @ self._Y)

        X = np.concatenate([self._X, self._endogvar], axis=1)
        self._u_hat = self._Y - X @ self._beta_hat

        # excluded instruments net of the exogenous regressors
        _, self._Z_res = project(self._X, self._Z)

    def get_ranktest(self) -> None:
        "Kleibergen-Paap rk statistic for weak identification."
        K = self._endogvar.shape[1]
        L = self._Z.shape[1]
        if K == 0:
            self._F_kp, self._p_kp = np.nan, np.nan
            return

        r_kp = ranktest(
            self._endogvar_res,
            self._Z_res,
            self._Pi[-L:, :],
            self._vcov_estimator,
            df_small=self._k,
            df_absorb=self._dof_absorbed,
        )
        self._F_kp, self._p_kp = ranktest_summary(r_kp, K, L)
        logger.debug("Kleibergen-Paap rk statistic: %s", r_kp)
