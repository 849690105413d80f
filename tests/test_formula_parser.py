import pytest

from pyfereg.errors import FormulaSyntaxError
from pyfereg.estimation.fixed_effects_ import (
    expand_fixef_terms,
    fixef_required_variables,
)
from pyfereg.estimation.formula_parser import parse_formula


@pytest.mark.parametrize(
    "fml, dependent, independent, fixed_effects, endogenous, instruments",
    [
        ("Y ~ X1", ["Y"], "X1", None, None, None),
        ("Y ~ X1 + X2 | f1", ["Y"], "X1 + X2", ["f1"], None, None),
        ("Y ~ X1 | f1 + f2^f3", ["Y"], "X1", ["f1", "f2^f3"], None, None),
        ("Y ~ X1 | 0", ["Y"], "X1", None, None, None),
        ("Y + Y2 ~ X1", ["Y", "Y2"], "X1", None, None, None),
        ("Y ~ 1 | X_endo ~ Z1", ["Y"], "1", None, ["X_endo"], ["Z1"]),
        (
            "Y ~ X1 | f1 | X_endo ~ Z1 + Z2",
            ["Y"],
            "X1",
            ["f1"],
            ["X_endo"],
            ["Z1", "Z2"],
        ),
        (
            "Y ~ X1 | X_endo ~ Z1 | f1",
            ["Y"],
            "X1",
            ["f1"],
            ["X_endo"],
            ["Z1"],
        ),
    ],
)
def test_parse_formula(fml, dependent, independent, fixed_effects, endogenous, instruments):
    parsed = parse_formula(fml)
    assert parsed.formula == fml
    assert parsed.dependent == dependent
    assert parsed.independent == independent
    assert parsed.fixed_effects == fixed_effects
    assert parsed.endogenous == endogenous
    assert parsed.instruments == instruments
    assert parsed.is_iv == (endogenous is not None)
    assert parsed.has_fixef == (fixed_effects is not None)


def test_formulaic_formulas():
    parsed = parse_formula("Y ~ X1 + np.log(X2) | f1 | X_endo + X3 ~ Z1 + Z2")
    assert parsed.fml_exog == "Y ~ X1 + np.log(X2)"
    assert parsed.fml_endog == "X_endo + X3 - 1"
    assert parsed.fml_instruments == "Z1 + Z2 - 1"

    ols = parse_formula("Y ~ X1")
    assert ols.fml_endog is None
    assert ols.fml_instruments is None


def test_parse_formula_rejects_non_string():
    with pytest.raises(FormulaSyntaxError):
        parse_formula(None)


def test_expand_fixef_terms():
    assert expand_fixef_terms(["f1", "f2 * X1", "f1^f2"]) == [
        "f1",
        "f2",
        "f2&X1",
        "f1^f2",
    ]


def test_fixef_required_variables():
    assert fixef_required_variables(None) == []
    assert fixef_required_variables(["f1^f2", "f3&X1", "f1*X2"]) == [
        "f1",
        "f2",
        "f3",
        "X1",
        "X2",
    ]
    with pytest.raises(FormulaSyntaxError):
        fixef_required_variables(["f1&X1&X2"])
    with pytest.raises(FormulaSyntaxError):
        fixef_required_variables(["f1^"])
