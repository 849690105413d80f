import logging
from typing import Optional, Union

import numpy as np
import pandas as pd

from pyfereg.errors import (
    EmptySampleError,
    InvalidArgumentError,
    LengthMismatchError,
)
from pyfereg.estimation.detect_singletons_ import drop_singletons
from pyfereg.estimation.fixed_effects_ import FixedEffect

logger = logging.getLogger(__name__)


def _complete_cases(data: pd.DataFrame, variables: list[str]) -> np.ndarray:
    missing = [x for x in variables if x not in data.columns]
    if missing:
        raise KeyError(f"Variables {missing} not found in data.")
    if not variables:
        return np.ones(data.shape[0], dtype=bool)
    return data[variables].notna().all(axis=1).to_numpy(dtype=bool, copy=True)


def _check_subset(
    subset: Union[np.ndarray, pd.Series, list], N: int
) -> np.ndarray:
    subset = pd.Series(np.asarray(subset, dtype=object))
    if subset.shape[0] != N:
        raise LengthMismatchError(
            f"df has {N} rows but the subset vector has {subset.shape[0]} elements."
        )
    keep = subset.notna().to_numpy(dtype=bool, copy=True)
    keep[keep] = subset[keep].astype(bool).to_numpy()
    return keep


def build_esample(
    data: pd.DataFrame,
    variables: list[str],
    cluster_vars: Optional[list[str]] = None,
    weights: Optional[str] = None,
    subset: Optional[Union[np.ndarray, pd.Series, list]] = None,
    fixed_effects: Optional[list[FixedEffect]] = None,
    drop_singletons_: bool = True,
) -> np.ndarray:
    """
    Determine which rows of `data` enter the estimation.

    Parameters
    ----------
    data : pd.DataFrame
        The full data set.
    variables : list[str]
        All variables required by the model: response, regressors, endogenous
        variables, instruments and fixed effect columns.
    cluster_vars : list[str], optional
        Cluster variables of the covariance estimator.
    weights : str, optional
        Name of the weights column. Weights must be non-missing and strictly
        positive.
    subset : array-like, optional
        A vector with one entry per row of `data`. Rows with a non-missing,
        true entry are kept.
    fixed_effects : list[FixedEffect], optional
        Fixed effects on all rows of `data`. Used for singleton detection.
    drop_singletons_ : bool
        Whether to iteratively drop observations that are alone in their fixed
        effect group.

    Returns
    -------
    np.ndarray
        Boolean mask over the rows of `data`.

    Raises
    ------
    LengthMismatchError
        If `subset` does not have one entry per row.
    EmptySampleError
        If no observation is left.
    """
    N = data.shape[0]
    required = list(dict.fromkeys(variables + (cluster_vars or [])))
    esample = _complete_cases(data, required)

    if weights is not None:
        if weights not in data.columns:
            raise InvalidArgumentError(f"The weights column '{weights}' is not in data.")
        w = pd.to_numeric(data[weights], errors="coerce")
        esample &= (w.notna() & (w > 0)).to_numpy(dtype=bool)

    if subset is not None:
        esample &= _check_subset(subset, N)

    for fe in fixed_effects or []:
        esample &= ~fe.is_missing

    if fixed_effects and drop_singletons_:
        esample = drop_singletons(esample, fixed_effects)

    nobs = int(esample.sum())
    if nobs == 0:
        raise EmptySampleError("sample is empty")

    logger.debug("Estimation sample: %d of %d rows.", nobs, N)

    return esample
