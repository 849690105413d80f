import warnings

import numba as nb
import numpy as np
from numba.extending import overload

from pyfereg.estimation.fixed_effects_ import FixedEffect


def _prepare_fixed_effects(ary):
    pass


@overload(_prepare_fixed_effects)
def _ol_preproc_fixed_effects(ary):
    # If array is already an F-array we tolerate
    # any dtype because it saves us a copy
    if ary.layout == "F":
        return lambda ary: ary

    if not isinstance(ary.dtype, nb.types.Integer):
        raise nb.TypingError("Fixed effects must be integers")

    max_nbits = 32
    nbits = min(max_nbits, ary.dtype.bitwidth)
    dtype = nb.types.Integer.from_bitwidth(nbits, signed=False)

    def impl(ary):
        n, m = ary.shape
        out = np.empty((m, n), dtype=dtype).T
        out[:] = ary[:]
        return out

    return impl


@nb.njit
def detect_singletons(ids: np.ndarray) -> np.ndarray:
    """
    Detect singleton fixed effects in a dataset.

    An observation is a singleton if it is the only one in its group in any
    of the fixed effects. Removing a singleton can create new singletons in
    other fixed effects, so the columns are swept until no further
    observation is flagged.

    Parameters
    ----------
    ids : np.ndarray
        A 2D numpy array representing fixed effects, with a shape of (n_samples,
        n_features). Elements should be non-negative integers representing
        fixed effect identifiers.

    Returns
    -------
    numpy.ndarray
        A boolean array of shape (n_samples,), indicating which observations have
        a singleton fixed effect.

    Notes
    -----
    For performance reasons, the input array should be in column-major order.
    Operating on a row-major array can lead to significant performance losses.
    """
    ids = _prepare_fixed_effects(ids)
    n_samples, n_features = ids.shape

    max_fixef = np.max(ids)
    counts = np.empty(max_fixef + 1, dtype=np.uint32)

    n_non_singletons = n_samples
    non_singletons = np.arange(n_non_singletons, dtype=np.uint32)

    while True:
        n_non_singletons_curr = n_non_singletons

        for j in range(n_features):
            col = ids[:, j]

            counts[:] = 0
            n_singletons = 0
            for i in range(n_non_singletons):
                e = col[non_singletons[i]]
                c = counts[e]
                # +1 for a first occurrence, -1 once the group has a second member
                n_singletons += (c == 0) - (c == 1)
                counts[e] += 1

            if not n_singletons:
                continue

            cnt = 0
            for i in range(n_non_singletons):
                e = col[non_singletons[i]]
                if counts[e] != 1:
                    non_singletons[cnt] = non_singletons[i]
                    cnt += 1

            n_non_singletons = cnt

        if n_non_singletons_curr == n_non_singletons:
            break

    is_singleton = np.ones(n_samples, dtype=np.bool_)
    for i in range(n_non_singletons):
        is_singleton[non_singletons[i]] = False

    return is_singleton


def drop_singletons(esample: np.ndarray, fixed_effects: list[FixedEffect]) -> np.ndarray:
    """
    Remove observations that are alone in their fixed effect group.

    Parameters
    ----------
    esample : np.ndarray
        Boolean mask of usable rows.
    fixed_effects : list[FixedEffect]
        Fixed effects defined on all rows of the data.

    Returns
    -------
    np.ndarray
        A new mask without singleton observations. Applying the function to
        its own output returns the same mask.
    """
    esample = esample.copy()
    if not fixed_effects or not esample.any():
        return esample

    ids = np.column_stack([fe.subset(esample).refs for fe in fixed_effects])
    is_singleton = detect_singletons(ids)

    n_singletons = int(is_singleton.sum())
    if n_singletons > 0:
        idx = np.flatnonzero(esample)
        esample[idx[is_singleton]] = False
        warnings.warn(
            f"{n_singletons} singleton fixed effect(s) detected. These observations are dropped from the model."
        )

    return esample
