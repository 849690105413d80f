import numba as nb
import numpy as np


@nb.njit(parallel=True)
def _count_fixef_fully_nested_all(
    cluster_data: np.ndarray,
    fe_data: np.ndarray,
) -> tuple[np.ndarray, int]:
    """
    Compute the number of nested fixed effects over all fixed effects.

    Parameters
    ----------
    cluster_data : np.ndarray
        A 2D array with integer coded cluster variables, one column per
        cluster variable.
    fe_data : np.ndarray
        A 2D array with integer coded fixed effects, one column per fixed
        effect.

    Returns
    -------
    k_fe_nested : np.ndarray
        A numpy array with shape (fe_data.shape[1], ) containing boolean values that
        indicate whether a given fixed effect is fully nested within a cluster or not.
    n_fe_fully_nested : int
        The number of fixed effects that are fully nested within a clusters.
    """
    n_fe = fe_data.shape[1]
    k_fe_nested_flag = np.zeros(n_fe, dtype=np.bool_)

    for fi in nb.prange(n_fe):
        for col_j in range(cluster_data.shape[1]):
            if _is_fixef_nested(cluster_data[:, col_j], fe_data[:, fi]):
                k_fe_nested_flag[fi] = True
                break

    n_fe_fully_nested = 0
    for fi in range(n_fe):
        n_fe_fully_nested += k_fe_nested_flag[fi]

    return k_fe_nested_flag, n_fe_fully_nested


@nb.njit
def _is_fixef_nested(clusters: np.ndarray, f: np.ndarray) -> bool:
    """
    Check if a given fixed effect is fully nested within a given cluster.

    A fixed effect is nested if all observations of each of its groups
    belong to the same cluster.

    Parameters
    ----------
    clusters : np.ndarray
        A vector of non-negative integer cluster codes.
    f : np.ndarray
        A vector of non-negative integer fixed effect codes.

    Returns
    -------
    bool
        True if the fixed effect is fully nested within clusters, False otherwise.
    """
    cluster_of_group = np.full(f.max() + 1, -1, dtype=np.int64)
    for i in range(f.size):
        g = f[i]
        if cluster_of_group[g] == -1:
            cluster_of_group[g] = clusters[i]
        elif cluster_of_group[g] != clusters[i]:
            return False
    return True
