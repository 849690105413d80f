from pyfereg.estimation import literals
from pyfereg.estimation.demean_ import (
    demean,
)
from pyfereg.estimation.detect_singletons_ import (
    detect_singletons,
)
from pyfereg.estimation.estimation import (
    partial_out,
    reg,
)
from pyfereg.estimation.feiv_ import (
    Feiv,
)
from pyfereg.estimation.feols_ import (
    Feols,
)
from pyfereg.estimation.fixed_effects_ import FixedEffect
from pyfereg.estimation.literals import SaveOptions
from pyfereg.estimation.results_ import FixedEffectModel

__all__ = [
    "Feiv",
    "Feols",
    "FixedEffect",
    "FixedEffectModel",
    "SaveOptions",
    "demean",
    "detect_singletons",
    "literals",
    "partial_out",
    "reg",
]
