import numpy as np
from scipy.linalg import cholesky, solve_triangular
from scipy.stats import chi2

from pyfereg.estimation.vcov_ import SimpleVcov, VcovEstimator


def _sqrtm_psd(A: np.ndarray) -> np.ndarray:
    eigval, eigvec = np.linalg.eigh(A)
    return (eigvec * np.sqrt(np.clip(eigval, 0, None))) @ eigvec.T


def ranktest(
    Xendo_res: np.ndarray,
    Z_res: np.ndarray,
    Pi: np.ndarray,
    vcov_estimator: VcovEstimator,
    df_small: int,
    df_absorb: int,
) -> float:
    """
    Kleibergen-Paap rk statistic.

    Tests the null that the L x K matrix of first stage coefficients on the
    excluded instruments has rank K - 1, i.e. that the model is
    underidentified. See Kleibergen and Paap (2006), "Generalized reduced rank
    tests using the singular value decomposition".

    Parameters
    ----------
    Xendo_res : np.ndarray
        n x K residuals of the endogenous variables on all instruments.
    Z_res : np.ndarray
        n x L residuals of the excluded instruments on the exogenous
        regressors.
    Pi : np.ndarray
        L x K first stage coefficients of the excluded instruments.
    vcov_estimator : VcovEstimator
        The covariance estimator of the model.
    df_small : int
        Number of regressors of the model.
    df_absorb : int
        Degrees of freedom absorbed by fixed effects.

    Returns
    -------
    float
        The rk statistic. Under the null, it is chi-squared distributed with
        L - K + 1 degrees of freedom.
    """
    n, K = Xendo_res.shape
    L = Z_res.shape[1]

    try:
        F = cholesky(Z_res.T @ Z_res, lower=False)
        G = cholesky(Xendo_res.T @ Xendo_res, lower=False)
        # theta = F Pi G^{-1}
        theta = F @ solve_triangular(G, Pi.T, trans="T", lower=False).T

        u, _, vt = np.linalg.svd(theta, full_matrices=True)
        v = vt.T
        u12 = u[: K - 1, K - 1 :]
        u22 = u[K - 1 :, K - 1 :]
        v12 = v[: K - 1, K - 1 : K]
        v22 = v[K - 1 :, K - 1 :]

        # zero pivot blocks occur when the singular values of a diagonal
        # theta are not ordered along its diagonal
        a_qq = np.vstack([u12, u22])
        if np.any(u22):
            a_qq = a_qq @ np.linalg.solve(u22, _sqrtm_psd(u22 @ u22.T))
        b_qq = np.vstack([v12, v22]).T
        if np.any(v22):
            b_qq = _sqrtm_psd(v22 @ v22.T) @ np.linalg.solve(v22.T, b_qq)

        kronv = np.kron(b_qq, a_qq.T)
        lambda_ = kronv @ theta.flatten(order="F")

        if isinstance(vcov_estimator, SimpleVcov):
            vlab = kronv @ kronv.T / n
        else:
            S = vcov_estimator.meat(Z_res, Xendo_res, n - df_small - df_absorb)
            kk = np.kron(G, F).T
            vhat = np.linalg.solve(kk, np.linalg.solve(kk, S).T)
            vlab = kronv @ vhat @ kronv.T

        r_kp = lambda_ @ np.linalg.solve(vlab, lambda_)
    except np.linalg.LinAlgError:
        return np.nan
    return float(np.squeeze(r_kp))


def ranktest_summary(r_kp: float, K: int, L: int) -> tuple[float, float]:
    """
    F-equivalent and p-value of the rk statistic.

    Returns
    -------
    tuple[float, float]
        `r_kp / L` and the upper tail probability of a chi-squared
        distribution with `L - K + 1` degrees of freedom.
    """
    return r_kp / L, float(chi2.sf(r_kp, L - K + 1))
