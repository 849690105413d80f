import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Union

import numpy as np
import pandas as pd
from scipy.stats import f

from pyfereg.estimation.fixed_effects_ import FixedEffect
from pyfereg.estimation.numba.nested_fixef_nb import _count_fixef_fully_nested_all
from pyfereg.estimation.vcov_utils import (
    _cluster_intersections,
    _crv1_meat_loop,
    _deparse_vcov_input,
    _factorize_clusters,
    pinvertible,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class VcovData:
    """
    Everything a covariance estimator needs from a fitted model.

    Attributes
    ----------
    modelmatrix : np.ndarray
        The (weighted) hat matrix of the second stage.
    invcrossmodelmatrix : np.ndarray
        Inverse of the cross-product of `modelmatrix`.
    residuals : np.ndarray
        The (weighted) residuals, a vector or a matrix.
    dof_residual : int
        Residual degrees of freedom.
    """

    modelmatrix: np.ndarray
    invcrossmodelmatrix: np.ndarray
    residuals: np.ndarray
    dof_residual: int

    @property
    def nobs(self) -> int:
        return self.modelmatrix.shape[0]


def _get_scores(modelmatrix: np.ndarray, residuals: np.ndarray) -> np.ndarray:
    # for matrix residuals, the score of row i is kron(residuals[i], modelmatrix[i])
    if residuals.ndim == 1:
        return modelmatrix * residuals[:, None]
    n = modelmatrix.shape[0]
    return (residuals[:, :, None] * modelmatrix[:, None, :]).reshape((n, -1))


class VcovEstimator(ABC):
    "Base class of the covariance estimators."

    vcov_type: str

    def vcov(self, data: VcovData) -> np.ndarray:
        "Sandwich covariance matrix of the coefficients."
        bread = data.invcrossmodelmatrix
        meat = self.meat(data.modelmatrix, data.residuals, data.dof_residual)
        vcov = bread @ meat @ bread
        return (vcov + vcov.T) / 2

    @abstractmethod
    def meat(
        self, modelmatrix: np.ndarray, residuals: np.ndarray, dof_residual: int
    ) -> np.ndarray:
        """
        Middle part of the sandwich.

        Parameters
        ----------
        modelmatrix : np.ndarray
            n x k matrix.
        residuals : np.ndarray
            A vector of n residuals or an n x m matrix of residuals. For
            matrix residuals, the meat is computed for the scores
            `kron(residuals[i], modelmatrix[i])` and has size (m k) x (m k).
        dof_residual : int
            Residual degrees of freedom.
        """

    def df_fstat(self, data: VcovData) -> int:
        "Denominator degrees of freedom for F and t tests."
        return data.dof_residual

    def subset(self, esample: np.ndarray) -> "VcovEstimator":
        return self

    @property
    def clustervar(self) -> list[str]:
        return []


class SimpleVcov(VcovEstimator):
    "Covariance under homoskedastic errors."

    vcov_type = "iid"

    def meat(self, modelmatrix, residuals, dof_residual):
        tXX = modelmatrix.T @ modelmatrix
        if residuals.ndim == 1:
            return tXX * (residuals @ residuals) / dof_residual
        return np.kron(residuals.T @ residuals, tXX) / dof_residual


class RobustVcov(VcovEstimator):
    "Heteroskedasticity robust covariance (HC1)."

    vcov_type = "hetero"

    def meat(self, modelmatrix, residuals, dof_residual):
        scores = _get_scores(modelmatrix, residuals)
        n = scores.shape[0]
        return scores.T @ scores * n / dof_residual


class ClusterVcov(VcovEstimator):
    """
    Cluster robust covariance (CRV1), one- or multi-way.

    Multi-way clustering combines the meats of all intersections of cluster
    variables with alternating signs (Cameron, Gelbach and Miller, 2011).

    Parameters
    ----------
    clustervar : list[str]
        Names of the cluster variables.
    cluster_arr : np.ndarray
        Integer cluster codes with one column per cluster variable.
    """

    vcov_type = "CRV"

    def __init__(self, clustervar: list[str], cluster_arr: np.ndarray) -> None:
        self._clustervar = clustervar
        self.cluster_arr = cluster_arr

    @property
    def clustervar(self) -> list[str]:
        return self._clustervar

    @property
    def G(self) -> list[int]:
        "Number of clusters per cluster variable."
        return [int(np.unique(col).size) for col in self.cluster_arr.T]

    def subset(self, esample: np.ndarray) -> "ClusterVcov":
        cluster_arr = np.column_stack(
            [
                np.unique(col, return_inverse=True)[1].reshape(-1)
                for col in self.cluster_arr[esample].T
            ]
        ).astype(np.int64)
        return ClusterVcov(self._clustervar, cluster_arr)

    def meat(self, modelmatrix, residuals, dof_residual):
        scores = _get_scores(modelmatrix, residuals)
        n, k = scores.shape
        meat = np.zeros((k, k))
        for sign, codes in _cluster_intersections(self.cluster_arr):
            meat += sign * _crv1_meat_loop(scores, codes)

        G = np.float64(min(self.G))
        return meat * (n - 1) / dof_residual * G / (G - 1)

    def vcov(self, data: VcovData) -> np.ndarray:
        return pinvertible(super().vcov(data))

    def df_fstat(self, data: VcovData) -> int:
        return min(self.G) - 1


def get_vcov_estimator(
    vcov: Union[str, Mapping[str, str]], data: pd.DataFrame
) -> VcovEstimator:
    """
    Create a covariance estimator from user input.

    Parameters
    ----------
    vcov : Union[str, dict[str, str]]
        "iid", "hetero", "HC1" or `{"CRV1": "clustervar1+clustervar2"}`.
    data : pd.DataFrame
        The full data set, used to look up cluster variables.

    Returns
    -------
    VcovEstimator
    """
    vcov_type, _, clustervar = _deparse_vcov_input(vcov)
    if vcov_type == "iid":
        return SimpleVcov()
    elif vcov_type == "hetero":
        return RobustVcov()

    missing = [x for x in clustervar if x not in data.columns]
    if missing:
        raise KeyError(f"Cluster variables {missing} not found in data.")
    return ClusterVcov(clustervar, _factorize_clusters(data[clustervar]))


def dof_absorbed(
    fixed_effects: list[FixedEffect], vcov_estimator: VcovEstimator
) -> int:
    """
    Degrees of freedom absorbed by the fixed effects.

    Each fixed effect costs its number of realised levels, except when the
    covariance is clustered and the fixed effect is nested in one of the
    cluster variables: then it costs a single degree of freedom.

    Parameters
    ----------
    fixed_effects : list[FixedEffect]
        Fixed effects restricted to the estimation sample.
    vcov_estimator : VcovEstimator
        The covariance estimator, restricted to the estimation sample.

    Returns
    -------
    int
    """
    if not fixed_effects:
        return 0

    nested = np.zeros(len(fixed_effects), dtype=bool)
    if isinstance(vcov_estimator, ClusterVcov):
        fe_data = np.column_stack([fe.refs for fe in fixed_effects]).astype(np.int64)
        nested, _ = _count_fixef_fully_nested_all(vcov_estimator.cluster_arr, fe_data)

    dof = 0
    for fe, is_nested in zip(fixed_effects, nested):
        dof += 1 if is_nested else fe.n_groups
    logger.debug("Degrees of freedom absorbed by fixed effects: %d", dof)
    return dof


def fstat(coef: np.ndarray, vcov: np.ndarray, test_index: np.ndarray) -> float:
    """
    Wald statistic for the joint null that the selected coefficients are zero.

    Parameters
    ----------
    coef : np.ndarray
        Coefficients.
    vcov : np.ndarray
        Covariance matrix of the coefficients.
    test_index : np.ndarray
        Boolean array selecting the tested coefficients.

    Returns
    -------
    float
        `b' V^{-1} b / q`, NaN if no coefficient is tested or V is singular.
    """
    if not test_index.any():
        return np.nan
    b = coef[test_index]
    V = vcov[np.ix_(test_index, test_index)]
    try:
        return float(b @ np.linalg.solve(V, b) / b.size)
    except np.linalg.LinAlgError:
        return np.nan


def fstat_pvalue(F: float, q: int, df: int) -> float:
    "Upper tail probability of the F distribution with (max(q, 1), df) dof."
    return float(f.sf(max(F, 0.0), max(q, 1), df)) if np.isfinite(F) else np.nan
