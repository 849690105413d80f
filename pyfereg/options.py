from __future__ import annotations

from collections.abc import Mapping
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Optional, Union

__all__ = ["get_option", "option_context", "options", "set_option"]


@dataclass
class _Options:
    vcov: Union[str, Mapping[str, str]] = "iid"
    method: str = "numba"
    maxiter: int = 10_000
    tol: Optional[float] = None
    double_precision: bool = True
    drop_singletons: bool = True
    collin_tol: float = 1e-10
    save: str = "none"

    # helpers ------------
    def update(self, **kwargs):
        for k, v in kwargs.items():
            if not hasattr(self, k):
                raise KeyError(f"Unknown option '{k}'")
            setattr(self, k, v)

    def to_dict(self):
        return asdict(self)

    def resolve_tol(self, double_precision: Optional[bool] = None) -> float:
        "Tolerance of the fixed effect solver; depends on the floating point precision."
        if self.tol is not None:
            return self.tol
        double_precision = (
            self.double_precision if double_precision is None else double_precision
        )
        return 1e-8 if double_precision else 1e-6


options = _Options()


def set_option(**kwargs):
    """Globally set default options of `reg()` and `partial_out()`."""
    options.update(**kwargs)


def get_option(name: str):
    return getattr(options, name)


@contextmanager
def option_context(**kwargs):
    "Temporarily override options inside a `with` block."
    old = options.to_dict()
    try:
        options.update(**kwargs)
        yield
    finally:
        options.__dict__.update(old)
