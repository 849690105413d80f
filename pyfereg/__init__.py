# Import modules
from pyfereg import (
    errors,
    estimation,
    utils,
)

# Import frequently used functions and classes
from pyfereg.estimation import (
    FixedEffectModel,
    SaveOptions,
    partial_out,
    reg,
)
from pyfereg.options import get_option, option_context, set_option
from pyfereg.utils import (
    get_data,
)

__all__ = [
    "FixedEffectModel",
    "SaveOptions",
    "errors",
    "estimation",
    "get_data",
    "get_option",
    "option_context",
    "partial_out",
    "reg",
    "set_option",
    "utils",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyfereg")
except PackageNotFoundError:
    __version__ = "unknown"
