import logging
from abc import ABC, abstractmethod
from typing import Optional

import numba as nb
import numpy as np
from joblib import Parallel, delayed
from scipy.sparse import csc_matrix, diags, hstack
from scipy.sparse.linalg import lsmr

from pyfereg.estimation.fixed_effects_ import FixedEffect
from pyfereg.estimation.literals import (
    DemeanerMethodOptions,
    _validate_literal_argument,
)

logger = logging.getLogger(__name__)


@nb.njit
def _sad_converged(a: np.ndarray, b: np.ndarray, tol: float) -> bool:
    for i in range(a.size):
        if np.abs(a[i] - b[i]) >= tol:
            return False
    return True


@nb.njit
def _subtract_weighted_group_projection(
    x: np.ndarray,
    sample_weights: np.ndarray,
    group_ids: np.ndarray,
    interaction: np.ndarray,
    group_weights: np.ndarray,
    _group_coefs: np.ndarray,
) -> None:
    # on exit, _group_coefs holds the coefficient of each group
    _group_coefs[:] = 0

    for i in range(x.size):
        g = group_ids[i]
        _group_coefs[g] += sample_weights[i] * interaction[i] * x[i]

    for g in range(_group_coefs.size):
        if group_weights[g] > 0:
            _group_coefs[g] /= group_weights[g]
        else:
            _group_coefs[g] = 0

    for i in range(x.size):
        g = group_ids[i]
        x[i] -= interaction[i] * _group_coefs[g]


@nb.njit
def _calc_group_weights(
    sample_weights: np.ndarray,
    group_ids: np.ndarray,
    interactions: np.ndarray,
    n_groups: int,
):
    n_samples, n_factors = group_ids.shape
    dtype = sample_weights.dtype
    group_weights = np.zeros((n_factors, n_groups), dtype=dtype).T

    for j in range(n_factors):
        for i in range(n_samples):
            g = group_ids[i, j]
            group_weights[g, j] += sample_weights[i] * interactions[i, j] ** 2

    return group_weights


@nb.njit(parallel=True)
def demean(
    x: np.ndarray,
    flist: np.ndarray,
    weights: np.ndarray,
    interactions: np.ndarray,
    tol: float = 1e-08,
    maxiter: int = 100_000,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Demean an array.

    Workhorse for residualizing the columns of `x` on the fixed effects via
    weighted alternating projections. Each fixed effect can be interacted
    with a per-row variable, in which case the projection is on group
    specific slopes instead of group means. Columns are processed in parallel.

    Parameters
    ----------
    x : numpy.ndarray
        Input array of shape (n_samples, n_features). Needs to be of type float.
    flist : numpy.ndarray
        Array of shape (n_samples, n_factors) specifying the fixed effects.
        Needs to already be converted to non-negative integers.
    weights : numpy.ndarray
        Array of shape (n_samples,) specifying the weights.
    interactions : numpy.ndarray
        Array of shape (n_samples, n_factors) with the interaction of each
        fixed effect. A column of ones for pure categorical fixed effects.
    tol : float, optional
        Tolerance criterion for convergence. Defaults to 1e-08.
    maxiter : int, optional
        Maximum number of iterations. Defaults to 100_000.

    Returns
    -------
    tuple[numpy.ndarray, numpy.ndarray, numpy.ndarray]
        The residualized array of shape (n_samples, n_features), the number of
        iterations per column and a boolean array indicating convergence per
        column.
    """
    n_samples, n_features = x.shape
    n_factors = flist.shape[1]

    if x.flags.f_contiguous:
        res = np.empty((n_features, n_samples), dtype=x.dtype).T
    else:
        res = np.empty((n_samples, n_features), dtype=x.dtype)

    n_threads = nb.get_num_threads()

    n_groups = flist.max() + 1
    group_weights = _calc_group_weights(weights, flist, interactions, n_groups)
    _group_coefs = np.empty((n_threads, n_groups), dtype=x.dtype)

    x_curr = np.empty((n_threads, n_samples), dtype=x.dtype)
    x_prev = np.empty((n_threads, n_samples), dtype=x.dtype)

    iterations = np.zeros(n_features, dtype=np.int64)
    converged = np.zeros(n_features, dtype=np.bool_)

    for k in nb.prange(n_features):
        tid = nb.get_thread_id()

        xk_curr = x_curr[tid, :]
        xk_prev = x_prev[tid, :]
        for i in range(n_samples):
            xk_curr[i] = x[i, k]
            xk_prev[i] = x[i, k] - 1.0

        for it in range(maxiter):
            for j in range(n_factors):
                _subtract_weighted_group_projection(
                    xk_curr,
                    weights,
                    flist[:, j],
                    interactions[:, j],
                    group_weights[:, j],
                    _group_coefs[tid, :],
                )
            iterations[k] = it + 1
            if _sad_converged(xk_curr, xk_prev, tol):
                converged[k] = True
                break

            xk_prev[:] = xk_curr[:]

        res[:, k] = xk_curr[:]

    return (res, iterations, converged)


@nb.njit
def _demean_with_coefficients(
    x: np.ndarray,
    flist: np.ndarray,
    weights: np.ndarray,
    interactions: np.ndarray,
    tol: float,
    maxiter: int,
) -> tuple[np.ndarray, int, bool]:
    n_factors = flist.shape[1]
    n_groups = flist.max() + 1
    group_weights = _calc_group_weights(weights, flist, interactions, n_groups)
    _group_coefs = np.empty(n_groups, dtype=x.dtype)
    coefs = np.zeros((n_groups, n_factors), dtype=x.dtype)

    x_curr = x.copy()
    x_prev = x - 1.0
    iterations = 0
    converged = False

    for it in range(maxiter):
        for j in range(n_factors):
            _subtract_weighted_group_projection(
                x_curr,
                weights,
                flist[:, j],
                interactions[:, j],
                group_weights[:, j],
                _group_coefs,
            )
            coefs[:, j] += _group_coefs
        iterations = it + 1
        if _sad_converged(x_curr, x_prev, tol):
            converged = True
            break
        x_prev[:] = x_curr[:]

    return coefs, iterations, converged


class FixedEffectSolver(ABC):
    """
    Residualize variables on a set of fixed effects.

    Parameters
    ----------
    fixed_effects : list[FixedEffect]
        Fixed effects restricted to the estimation sample.
    sqrtw : np.ndarray
        Square root of the observation weights.
    double_precision : bool
        If False, all computations run in float32.
    """

    def __init__(
        self,
        fixed_effects: list[FixedEffect],
        sqrtw: np.ndarray,
        double_precision: bool = True,
    ) -> None:
        self.fixed_effects = fixed_effects
        self.dtype = np.float64 if double_precision else np.float32
        self.sqrtw = np.asarray(sqrtw, dtype=self.dtype)
        self.n_samples = self.sqrtw.shape[0]

    def residualize(
        self, X: np.ndarray, maxiter: int = 10_000, tol: float = 1e-8
    ) -> tuple[np.ndarray, int, bool]:
        """
        Residualize the columns of `X` on the fixed effects.

        Parameters
        ----------
        X : np.ndarray
            A vector or a matrix with one row per observation.
        maxiter : int
            Maximum number of iterations.
        tol : float
            Convergence tolerance.

        Returns
        -------
        tuple[np.ndarray, int, bool]
            The residuals (same shape as `X`, float64), the maximum number of
            iterations over columns and whether all columns converged.
        """
        X = np.asarray(X, dtype=np.float64)
        is_vector = X.ndim == 1
        X2 = X.reshape((X.shape[0], -1))
        if X2.shape[1] == 0:
            return X.copy(), 0, True

        res, iterations, converged = self._residualize(
            X2.astype(self.dtype), maxiter, tol
        )
        res = np.asarray(res, dtype=np.float64)
        if is_vector:
            res = res[:, 0]

        return res, int(np.max(iterations)), bool(np.all(converged))

    @abstractmethod
    def _residualize(
        self, X: np.ndarray, maxiter: int, tol: float
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        pass

    @abstractmethod
    def solve_coefficients(
        self, r: np.ndarray, maxiter: int = 10_000, tol: float = 1e-8
    ) -> tuple[list[np.ndarray], int, bool]:
        """
        Recover the fixed effect values that explain `r`.

        Returns one vector per fixed effect with the (interacted) fixed effect
        value of each observation, the number of iterations and a convergence
        flag.
        """


class AlternatingProjectionsSolver(FixedEffectSolver):
    "Weighted alternating projections, columns in parallel via numba."

    def __init__(
        self,
        fixed_effects: list[FixedEffect],
        sqrtw: np.ndarray,
        double_precision: bool = True,
    ) -> None:
        super().__init__(fixed_effects, sqrtw, double_precision)
        self._flist = np.asfortranarray(
            np.column_stack([fe.refs for fe in fixed_effects]).astype(np.int64)
        )
        self._interactions = np.asfortranarray(
            np.column_stack(
                [
                    fe.interaction
                    if fe.has_interaction
                    else np.ones(self.n_samples)
                    for fe in fixed_effects
                ]
            ).astype(self.dtype)
        )
        self._weights = self.sqrtw**2

    def _residualize(self, X, maxiter, tol):
        return demean(
            np.asfortranarray(X),
            self._flist,
            self._weights,
            self._interactions,
            tol,
            maxiter,
        )

    def solve_coefficients(self, r, maxiter=10_000, tol=1e-8):
        r = np.asarray(r, dtype=self.dtype)
        coefs, iterations, converged = _demean_with_coefficients(
            r, self._flist, self._weights, self._interactions, tol, maxiter
        )
        fe_values = [
            (coefs[self._flist[:, j], j] * self._interactions[:, j]).astype(np.float64)
            for j in range(self._flist.shape[1])
        ]
        return fe_values, int(iterations), bool(converged)


def _build_fixef_design(
    fixed_effects: list[FixedEffect], sqrtw: np.ndarray
) -> tuple[csc_matrix, np.ndarray, np.ndarray]:
    "Sparse weighted dummy design with unit column norms."
    n = sqrtw.shape[0]
    rows = np.arange(n)
    blocks = []
    offsets = []
    offset = 0
    for fe in fixed_effects:
        n_groups = int(fe.refs.max()) + 1
        values = sqrtw * fe.interaction if fe.has_interaction else sqrtw.copy()
        blocks.append(
            csc_matrix((values, (rows, fe.refs)), shape=(n, n_groups), dtype=sqrtw.dtype)
        )
        offsets.append(offset)
        offset += n_groups

    A = hstack(blocks, format="csc")
    norms = np.sqrt(np.asarray(A.multiply(A).sum(axis=0)).ravel())
    scale = np.zeros_like(norms)
    scale[norms > 0] = 1.0 / norms[norms > 0]
    A = (A @ diags(scale)).tocsc()

    return A, scale.astype(sqrtw.dtype), np.array(offsets, dtype=np.int64)


def _lsmr_column(
    A: csc_matrix, b: np.ndarray, maxiter: int, tol: float
) -> tuple[np.ndarray, int, bool]:
    sol, istop, itn = lsmr(A, b, atol=tol, btol=tol, conlim=0, maxiter=maxiter)[:3]
    # istop == 7: iteration limit reached
    return sol, int(itn), istop != 7


class LSMRSolver(FixedEffectSolver):
    """
    Sparse least squares on the fixed effect dummy design.

    Parameters
    ----------
    prefer : {"threads", "processes"}, optional
        If given, columns are dispatched to joblib workers of the given kind.
        Otherwise columns are solved sequentially.
    n_jobs : int
        Number of joblib workers. Defaults to all cores.
    """

    def __init__(
        self,
        fixed_effects: list[FixedEffect],
        sqrtw: np.ndarray,
        double_precision: bool = True,
        prefer: Optional[str] = None,
        n_jobs: int = -1,
    ) -> None:
        super().__init__(fixed_effects, sqrtw, double_precision)
        self.prefer = prefer
        self.n_jobs = n_jobs
        self._A, self._scale, self._offsets = _build_fixef_design(
            fixed_effects, self.sqrtw
        )

    def _solve(self, X: np.ndarray, maxiter: int, tol: float) -> list:
        B = X * self.sqrtw[:, None]
        if self.prefer is None:
            return [_lsmr_column(self._A, B[:, k], maxiter, tol) for k in range(B.shape[1])]
        return Parallel(n_jobs=self.n_jobs, prefer=self.prefer)(
            delayed(_lsmr_column)(self._A, B[:, k], maxiter, tol)
            for k in range(B.shape[1])
        )

    def _residualize(self, X, maxiter, tol):
        results = self._solve(X, maxiter, tol)
        res = np.empty_like(X)
        for k, (sol, _, _) in enumerate(results):
            res[:, k] = X[:, k] - (self._A @ sol) / self.sqrtw
        iterations = np.array([itn for _, itn, _ in results])
        converged = np.array([conv for _, _, conv in results])
        return res, iterations, converged

    def solve_coefficients(self, r, maxiter=10_000, tol=1e-8):
        r = np.asarray(r, dtype=self.dtype).reshape((-1, 1))
        sol, iterations, converged = self._solve(r, maxiter, tol)[0]
        coefs = sol * self._scale
        fe_values = []
        for fe, offset in zip(self.fixed_effects, self._offsets):
            values = coefs[offset + fe.refs]
            if fe.has_interaction:
                values = values * fe.interaction
            fe_values.append(np.asarray(values, dtype=np.float64))
        return fe_values, iterations, converged


def get_fixed_effect_solver(
    method: DemeanerMethodOptions,
    fixed_effects: list[FixedEffect],
    sqrtw: np.ndarray,
    double_precision: bool = True,
) -> FixedEffectSolver:
    """Set the fixed effect solver.

    Parameters
    ----------
    method : Literal["numba", "lsmr", "lsmr_threads", "lsmr_parallel"]
        The numerical method.
        - "numba": alternating projections, columns in parallel numba threads
        - "lsmr": sparse LSMR, columns solved sequentially
        - "lsmr_threads": sparse LSMR, columns dispatched to joblib threads
        - "lsmr_parallel": sparse LSMR, columns dispatched to joblib processes
    fixed_effects : list[FixedEffect]
        Fixed effects restricted to the estimation sample.
    sqrtw : np.ndarray
        Square root of the observation weights.
    double_precision : bool
        Whether to compute in float64 (True) or float32 (False).

    Returns
    -------
    FixedEffectSolver

    Raises
    ------
    ValueError
        If the method is not supported.
    """
    _validate_literal_argument(method, DemeanerMethodOptions)
    logger.debug("Fixed effect solver: %s", method)

    if method == "numba":
        return AlternatingProjectionsSolver(fixed_effects, sqrtw, double_precision)
    elif method == "lsmr":
        return LSMRSolver(fixed_effects, sqrtw, double_precision)
    elif method == "lsmr_threads":
        return LSMRSolver(fixed_effects, sqrtw, double_precision, prefer="threads")
    elif method == "lsmr_parallel":
        return LSMRSolver(fixed_effects, sqrtw, double_precision, prefer="processes")
    else:
        raise ValueError(f"Invalid fixed effect solver: {method}")
