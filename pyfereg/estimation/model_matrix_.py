from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from formulaic import Formula

from pyfereg.errors import NonFiniteValueError
from pyfereg.estimation.fixed_effects_ import fixef_required_variables
from pyfereg.estimation.formula_parser import FeregFormula


@dataclass(frozen=True, eq=False)
class ModelMatrices:
    """
    Design matrices on the estimation sample.

    Attributes
    ----------
    Y : pd.DataFrame
        The dependent variable(s).
    X : pd.DataFrame
        The exogenous regressors.
    endogvar : pd.DataFrame, optional
        The endogenous regressors. None if the model is not an IV model.
    Z : pd.DataFrame, optional
        The excluded instruments. None if the model is not an IV model.
    """

    Y: pd.DataFrame
    X: pd.DataFrame
    endogvar: Optional[pd.DataFrame] = None
    Z: Optional[pd.DataFrame] = None

    @property
    def has_intercept(self) -> bool:
        return "Intercept" in self.X.columns


def required_variables(fml: FeregFormula, data: pd.DataFrame) -> list[str]:
    """
    All data columns a model formula needs.

    Parameters
    ----------
    fml : FeregFormula
        The parsed formula.
    data : pd.DataFrame
        The data set. Variables that formulaic resolves from the evaluation
        namespace (e.g. `np`) are not data columns and are skipped.

    Returns
    -------
    list[str]
    """
    formulas = [fml.fml_exog, fml.fml_endog, fml.fml_instruments]
    variables = []
    for formula in formulas:
        if formula is not None:
            variables.extend(sorted(str(x) for x in Formula(formula).required_variables))
    variables.extend(fixef_required_variables(fml.fixed_effects))
    variables = list(dict.fromkeys(variables))

    undefined = [
        x
        for x in fml.dependent + (fml.endogenous or []) + (fml.instruments or [])
        if x not in data.columns and x.isidentifier()
    ]
    if undefined:
        raise KeyError(f"Variables {undefined} not found in data.")

    return [x for x in variables if x in data.columns]


def _check_finite(df: pd.DataFrame, block: str) -> None:
    arr = df.to_numpy(dtype=np.float64)
    if not np.isfinite(arr).all():
        raise NonFiniteValueError(
            f"Some observations for the {block} are infinite or missing."
        )


def model_matrix(
    fml: FeregFormula, data: pd.DataFrame, drop_intercept: bool
) -> ModelMatrices:
    """
    Build the design matrices with formulaic.

    Parameters
    ----------
    fml : FeregFormula
        The parsed formula.
    data : pd.DataFrame
        The data restricted to the estimation sample. Contrasts of categorical
        variables are built from this sample only.
    drop_intercept : bool
        Whether to remove the intercept from the exogenous regressors, e.g.
        because it is absorbed by a fixed effect. The intercept is dropped
        after the model matrix is built, so that categorical encodings are
        the same with and without fixed effects.

    Returns
    -------
    ModelMatrices

    Raises
    ------
    NonFiniteValueError
        If any block contains infinite or missing values.
    """
    mm = Formula(fml.fml_exog).get_model_matrix(
        data, output="pandas", na_action="ignore"
    )
    Y = mm.lhs
    X = mm.rhs
    if drop_intercept:
        X = X.drop("Intercept", axis=1, errors="ignore")
    _check_finite(Y, "dependent variable")
    _check_finite(X, "exogenous variables")

    endogvar = None
    Z = None
    if fml.is_iv:
        endogvar = Formula(fml.fml_endog).get_model_matrix(
            data, output="pandas", na_action="ignore"
        )
        Z = Formula(fml.fml_instruments).get_model_matrix(
            data, output="pandas", na_action="ignore"
        )
        _check_finite(endogvar, "endogenous variables")
        _check_finite(Z, "instrumental variables")

    return ModelMatrices(Y=Y, X=X, endogvar=endogvar, Z=Z)
