import re
from dataclasses import dataclass
from typing import Optional

from pyfereg.errors import FormulaSyntaxError


@dataclass(frozen=True)
class _Pattern:
    parts: re.Pattern = re.compile(r"\s*\|\s*")
    dependence: re.Pattern = re.compile(r"\s*~\s*")
    variables: re.Pattern = re.compile(r"\s*\+\s*")


@dataclass(frozen=True)
class FeregFormula:
    """
    A parsed model formula.

    The formula has up to three parts separated by `|`:
    `dependent ~ independent | fixed effects | endogenous ~ instruments`.
    The fixed effects and the IV part can be given in either order.

    Attributes
    ----------
    formula: str
        The raw formula string.
    dependent: list[str]
        The dependent variable(s).
    independent: str
        The right-hand side of the main part, passed to formulaic unchanged.
    fixed_effects: Optional[list[str]]
        Fixed effect terms, e.g. `["firm", "year^industry", "firm&t"]`.
    endogenous: Optional[list[str]]
        Endogenous variables.
    instruments: Optional[list[str]]
        Excluded instruments for the endogenous variables.
    """

    formula: str
    dependent: list[str]
    independent: str
    fixed_effects: Optional[list[str]] = None
    endogenous: Optional[list[str]] = None
    instruments: Optional[list[str]] = None

    @property
    def is_iv(self) -> bool:
        return self.endogenous is not None

    @property
    def has_fixef(self) -> bool:
        return self.fixed_effects is not None

    @property
    def fml_exog(self) -> str:
        "Formulaic formula for the response and the exogenous regressors."
        return f"{' + '.join(self.dependent)} ~ {self.independent}"

    @property
    def fml_endog(self) -> Optional[str]:
        if self.endogenous is None:
            return None
        return f"{' + '.join(self.endogenous)} - 1"

    @property
    def fml_instruments(self) -> Optional[str]:
        if self.instruments is None:
            return None
        return f"{' + '.join(self.instruments)} - 1"


def parse_formula(formula: str) -> FeregFormula:
    """
    Parse a model formula.

    Parameters
    ----------
    formula : str
        A formula of the form `Y ~ X1 + X2 | f1 + f2 | X_endo ~ Z1 + Z2`.

    Returns
    -------
    FeregFormula

    Raises
    ------
    FormulaSyntaxError
        If the formula is malformed.
    """
    if not isinstance(formula, str):
        raise FormulaSyntaxError(f"The formula must be a string, received {formula!r}.")

    parts = re.split(_Pattern.parts, formula.strip())
    if len(parts) > 3:
        raise FormulaSyntaxError(
            f"Formula can have at most 3 parts `dependent ~ independent | fixed effects | endogenous ~ instruments`, "
            f"received {len(parts)}: {formula}"
        )

    main_part = parts.pop(0)
    dependent, independent = _parse_dependent_independent(main_part)

    fixed_effects = None
    endogenous = None
    instruments = None
    for part in parts:
        if "~" in part:
            if endogenous is not None:
                raise FormulaSyntaxError(f"Formula has more than one IV part: {formula}")
            endogenous, instruments = _parse_iv(part)
        else:
            if fixed_effects is not None:
                raise FormulaSyntaxError(
                    f"Formula has more than one fixed effects part: {formula}"
                )
            fixed_effects = re.split(_Pattern.variables, part)
            if fixed_effects == ["0"]:
                fixed_effects = None

    if endogenous is not None:
        rhs_vars = re.split(_Pattern.variables, independent)
        overlap = [x for x in endogenous if x in rhs_vars]
        if overlap:
            raise FormulaSyntaxError(
                f"Endogenous variables {overlap} are also specified as covariates."
            )
        overlap = [x for x in instruments if x in rhs_vars]
        if overlap:
            raise FormulaSyntaxError(
                f"Instruments {overlap} are also specified as covariates."
            )

    return FeregFormula(
        formula=formula,
        dependent=dependent,
        independent=independent,
        fixed_effects=fixed_effects,
        endogenous=endogenous,
        instruments=instruments,
    )


def _parse_dependent_independent(part: str) -> tuple[list[str], str]:
    if part.count("~") != 1:
        raise FormulaSyntaxError(
            f"Expect formula of form `dependent ~ independent`, received {part}"
        )
    dependent, independent = re.split(_Pattern.dependence, part)
    if not dependent or not independent:
        raise FormulaSyntaxError(
            f"Expect formula of form `dependent ~ independent`, received {part}"
        )
    return re.split(_Pattern.variables, dependent), independent


def _parse_iv(part: str) -> tuple[list[str], list[str]]:
    endogenous, instruments = _parse_dependent_independent(part)
    return endogenous, re.split(_Pattern.variables, instruments)
