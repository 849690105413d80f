from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from pyfereg.errors import FormulaSyntaxError


@dataclass(frozen=True, eq=False)
class FixedEffect:
    """
    A categorical grouping absorbed by the fixed effect solver.

    Attributes
    ----------
    name : str
        The name of the fixed effect, e.g. "firm", "firm^year" or "firm&t".
    refs : np.ndarray
        Integer group codes, one per row. Missing groups are coded as -1.
    interaction : np.ndarray, optional
        Per-row weights the group effect is multiplied with (a group-specific
        slope). None if the fixed effect is a pure categorical intercept.
    """

    name: str
    refs: np.ndarray
    interaction: Optional[np.ndarray] = None

    @property
    def has_interaction(self) -> bool:
        return self.interaction is not None

    @property
    def n_groups(self) -> int:
        "Number of realised levels."
        refs = self.refs[self.refs >= 0]
        return int(np.unique(refs).size)

    @property
    def is_missing(self) -> np.ndarray:
        missing = self.refs < 0
        if self.interaction is not None:
            missing |= ~np.isfinite(self.interaction)
        return missing

    def subset(self, mask: np.ndarray) -> "FixedEffect":
        """
        Restrict the fixed effect to the rows selected by `mask`.

        Group codes are re-factorized so that they are compact, i.e. take
        values in 0, ..., G - 1 where G is the number of groups left.
        """
        refs = self.refs[mask]
        _, refs = np.unique(refs, return_inverse=True)
        interaction = self.interaction[mask] if self.interaction is not None else None
        return FixedEffect(
            name=self.name, refs=refs.astype(np.int64), interaction=interaction
        )


def _split_fixef_term(term: str) -> tuple[list[str], Optional[str]]:
    if term.count("&") > 1:
        raise FormulaSyntaxError(
            f"A fixed effect can only be interacted with one variable: {term}"
        )
    groups, _, interaction = term.partition("&")
    groups = [x.strip() for x in groups.split("^")]
    if not all(groups):
        raise FormulaSyntaxError(f"Empty group in fixed effect term: {term}")
    return groups, interaction.strip() or None


def expand_fixef_terms(fixef: list[str]) -> list[str]:
    """
    Expand the `*` shorthand.

    `"a*x"` is equivalent to `"a + a&x"`: a group intercept plus a group
    specific slope on `x`.
    """
    res = []
    for term in fixef:
        term = term.replace(" ", "")
        if "*" in term:
            groups, _, interaction = term.partition("*")
            res.extend([groups, f"{groups}&{interaction}"])
        else:
            res.append(term)
    return res


def fixef_required_variables(fixef: Optional[list[str]]) -> list[str]:
    """Names of all data columns needed to build the fixed effects."""
    if fixef is None:
        return []
    res = []
    for term in expand_fixef_terms(fixef):
        groups, interaction = _split_fixef_term(term)
        res.extend(groups)
        if interaction is not None:
            res.append(interaction)
    return list(dict.fromkeys(res))


def _factorize_groups(data: pd.DataFrame, groups: list[str]) -> np.ndarray:
    codes = np.column_stack([pd.factorize(data[g])[0] for g in groups])
    if codes.shape[1] == 1:
        return codes[:, 0].astype(np.int64)

    refs = np.full(codes.shape[0], -1, dtype=np.int64)
    valid = (codes >= 0).all(axis=1)
    if valid.any():
        _, inverse = np.unique(codes[valid], axis=0, return_inverse=True)
        refs[valid] = inverse.reshape(-1)
    return refs


def get_fixed_effects(data: pd.DataFrame, fixef: list[str]) -> list[FixedEffect]:
    """
    Build `FixedEffect` descriptors from fixed effect terms.

    Parameters
    ----------
    data : pd.DataFrame
        The full data set.
    fixef : list[str]
        Fixed effect terms. `"a"` is a categorical fixed effect, `"a^b"`
        the combination of `a` and `b`, `"a&x"` a group-specific slope on
        the numeric variable `x` and `"a*x"` shorthand for `"a"` and `"a&x"`.

    Returns
    -------
    list[FixedEffect]
    """
    res = []
    for term in expand_fixef_terms(fixef):
        groups, interaction = _split_fixef_term(term)
        missing = [x for x in groups + [interaction] if x and x not in data.columns]
        if missing:
            raise KeyError(f"Fixed effect variables {missing} not found in data.")

        refs = _factorize_groups(data, groups)
        interaction_arr = (
            data[interaction].to_numpy(dtype=np.float64)
            if interaction is not None
            else None
        )
        res.append(FixedEffect(name=term, refs=refs, interaction=interaction_arr))

    return res
