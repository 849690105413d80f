import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from pyfereg.errors import SingularMatrixError


def solve_ols(tZX: np.ndarray, tZY: np.ndarray) -> np.ndarray:
    """
    Solve the normal equations `Z'X b = Z'Y` via a Cholesky factorization.

    Parameters
    ----------
    tZX (array-like): Z'X, symmetric positive definite.
    tZY (array-like): Z'Y, a vector or a matrix.

    Returns
    -------
    array-like: The solution, with the same trailing shape as `tZY`.

    Raises
    ------
    SingularMatrixError: If Z'X is not positive definite.
    """
    if tZX.shape[0] == 0:
        return np.zeros(tZY.shape, dtype=np.float64)
    try:
        factor = cho_factor(tZX, lower=False, check_finite=False)
    except LinAlgError as e:
        raise SingularMatrixError(
            "The cross-product matrix is not positive definite."
        ) from e
    return cho_solve(factor, tZY, check_finite=False)


def invert_crossprod(tXX: np.ndarray) -> np.ndarray:
    "Inverse of a symmetric positive definite cross-product matrix."
    return solve_ols(tXX, np.eye(tXX.shape[0]))


def project(Z: np.ndarray, X: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Least squares projection of the columns of `X` on the columns of `Z`.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        The coefficients `(Z'Z)^{-1} Z'X` and the residuals `X - Z Pi`.
    """
    Pi = solve_ols(Z.T @ Z, Z.T @ X)
    return Pi, X - Z @ Pi
