"""Multicollinearity detection utilities."""

import logging
from typing import Optional

import numpy as np

from pyfereg.estimation.numba.find_collinear_variables_nb import (
    _find_collinear_variables_nb,
)

logger = logging.getLogger(__name__)


def basecol(
    *matrices: np.ndarray,
    collin_tol: float = 1e-10,
    names: Optional[list[str]] = None,
) -> np.ndarray:
    """
    Find a maximal set of linearly independent columns.

    The matrices are concatenated column-wise and scanned left to right, so
    that columns of earlier matrices are preferred when two columns are
    collinear.

    Parameters
    ----------
    *matrices : np.ndarray
        Matrices with the same number of rows. Vectors count as one column.
    collin_tol : float
        Tolerance of the collinearity check.
    names : list[str], optional
        Column names, only used for logging.

    Returns
    -------
    np.ndarray
        A boolean array with one entry per column, True if the column is kept.
    """
    blocks = [m.reshape((m.shape[0], -1)) for m in matrices]
    X = np.concatenate(blocks, axis=1) if blocks else np.empty((0, 0))
    K = X.shape[1]
    if K == 0:
        return np.ones(0, dtype=bool)

    tXX = X.T @ X
    id_excl, n_excl, _ = _find_collinear_variables_nb(tXX, collin_tol)
    keep = ~id_excl

    if n_excl > 0:
        dropped = (
            np.array(names)[id_excl].tolist()
            if names is not None
            else np.flatnonzero(id_excl).tolist()
        )
        logger.info(
            "%d variable(s) dropped due to multicollinearity: %s", n_excl, dropped
        )

    return keep


def getcols(X: np.ndarray, keep: np.ndarray) -> np.ndarray:
    "Return a copy of `X` restricted to the columns flagged in `keep`."
    if X.ndim == 1:
        return X.copy() if keep.all() else X[:0].copy()
    return X[:, keep].copy()
