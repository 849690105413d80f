import itertools
from collections.abc import Mapping
from typing import Union, get_args

import numba as nb
import numpy as np
import pandas as pd

from pyfereg.errors import VcovTypeNotSupportedError
from pyfereg.estimation.literals import ClusterVcovTypeOptions, VcovTypeOptions


def _deparse_vcov_input(
    vcov: Union[str, Mapping[str, str]],
) -> tuple[str, str, list[str]]:
    """
    Deparse the vcov argument passed to `reg()`.

    Parameters
    ----------
    vcov : Union[str, dict[str, str]]
        Either "iid", "hetero" / "HC1", or a dictionary `{"CRV1": "a+b"}`
        naming one or more cluster variables.

    Returns
    -------
    vcov_type : str
        The type of vcov to be used. Either "iid", "hetero", or "CRV".
    vcov_type_detail : str
        The type of vcov as passed by the user.
    clustervar : list[str]
        The names of the cluster variables, empty unless clustered.
    """
    if isinstance(vcov, Mapping):
        if len(vcov) != 1:
            raise VcovTypeNotSupportedError(
                f"A cluster vcov dictionary needs exactly one key. Got {dict(vcov)}."
            )
        vcov_type_detail = next(iter(vcov.keys()))
        clustervar = [x.strip() for x in str(next(iter(vcov.values()))).split("+")]
        if vcov_type_detail not in get_args(ClusterVcovTypeOptions):
            raise VcovTypeNotSupportedError(
                f"Cluster robust inference supports 'CRV1'. Got '{vcov_type_detail}'."
            )
        if not all(clustervar):
            raise VcovTypeNotSupportedError(f"Invalid cluster specification {dict(vcov)}.")
        return "CRV", vcov_type_detail, clustervar
    elif isinstance(vcov, str) and vcov in get_args(VcovTypeOptions):
        if vcov == "iid":
            return "iid", vcov, []
        return "hetero", vcov, []

    raise VcovTypeNotSupportedError(
        f"vcov type {vcov!r} is not supported. Use 'iid', 'hetero', 'HC1' or {{'CRV1': 'clustervar'}}."
    )


def _factorize_clusters(cluster_df: pd.DataFrame) -> np.ndarray:
    "Integer code the cluster variables, one column per variable."
    return np.column_stack(
        [pd.factorize(cluster_df[col])[0] for col in cluster_df.columns]
    ).astype(np.int64)


def _cluster_intersections(cluster_arr: np.ndarray):
    """
    Yield all non-empty combinations of cluster variables.

    For each combination, yields the sign of its contribution to the
    multi-way cluster robust meat and the integer codes of the intersection
    of the clusters in the combination.
    """
    n_clusters = cluster_arr.shape[1]
    for size in range(1, n_clusters + 1):
        sign = 1 if size % 2 == 1 else -1
        for combination in itertools.combinations(range(n_clusters), size):
            cols = cluster_arr[:, list(combination)]
            if cols.shape[1] == 1:
                codes = cols[:, 0]
            else:
                _, codes = np.unique(cols, axis=0, return_inverse=True)
                codes = codes.reshape(-1)
            yield sign, codes.astype(np.int64)


def pinvertible(A: np.ndarray, tol: float = np.finfo(np.float64).eps) -> np.ndarray:
    """
    Make a symmetric matrix positive semi-definite.

    Eigenvalues below `tol` are set to zero. If there are none, `A` is
    returned unchanged.
    """
    eigval, eigvec = np.linalg.eigh(A)
    small = eigval <= tol
    if not small.any():
        return A
    eigval[small] = 0.0
    return (eigvec * eigval) @ eigvec.T


# CODE from Styfen Schaer (@styfenschaer)
@nb.njit(parallel=False)
def bucket_argsort(arr: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Sorts the input array using the bucket sort algorithm.

    Parameters
    ----------
    arr : array_like
        An array of non-negative integers.

    Returns
    -------
    tuple[array_like, array_like]
        The indices that sort `arr` and the start location of each bucket.
    """
    counts = np.zeros(arr.max() + 1, dtype=np.uint32)
    for i in range(arr.size):
        counts[arr[i]] += 1

    locs = np.empty(counts.size + 1, dtype=np.uint32)
    locs[0] = 0
    pos = np.empty(counts.size, dtype=np.uint32)
    for i in range(counts.size):
        locs[i + 1] = locs[i] + counts[i]
        pos[i] = locs[i]

    args = np.empty(arr.size, dtype=np.uint32)
    for i in range(arr.size):
        e = arr[i]
        args[pos[e]] = i
        pos[e] += 1

    return args, locs


@nb.njit(parallel=False)
def _crv1_meat_loop(
    scores: np.ndarray,
    cluster_col: np.ndarray,
) -> np.ndarray:
    k = scores.shape[1]
    dtype = scores.dtype
    meat = np.zeros((k, k), dtype=dtype)

    g_indices, g_locs = bucket_argsort(cluster_col)

    meat_i = np.empty((k, k), dtype=dtype)

    for g in range(g_locs.size - 1):
        start = g_locs[g]
        end = g_locs[g + 1]
        g_index = g_indices[start:end]
        score_g = scores[g_index, :].sum(axis=0)
        np.outer(score_g, score_g, out=meat_i)
        meat += meat_i

    return meat
