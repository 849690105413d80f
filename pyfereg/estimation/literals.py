from enum import Enum
from typing import Any, Literal, Union, get_args

from pyfereg.errors import InvalidArgumentError

VcovTypeOptions = Literal["iid", "hetero", "HC1"]
ClusterVcovTypeOptions = Literal["CRV1"]
DemeanerMethodOptions = Literal["numba", "lsmr", "lsmr_threads", "lsmr_parallel"]


class SaveOptions(Enum):
    """Which by-products of the estimation are stored in the augmented frame."""

    NONE = "none"
    RESIDUALS = "residuals"
    FIXED_EFFECTS = "fe"
    ALL = "all"

    @property
    def residuals(self) -> bool:
        return self in (SaveOptions.RESIDUALS, SaveOptions.ALL)

    @property
    def fixed_effects(self) -> bool:
        return self in (SaveOptions.FIXED_EFFECTS, SaveOptions.ALL)

    @classmethod
    def parse(cls, save: Union["SaveOptions", str]) -> "SaveOptions":
        """
        Convert user input to a `SaveOptions` member.

        Parameters
        ----------
        save : SaveOptions or str
            Either a member of `SaveOptions` or one of its values
            ("none", "residuals", "fe", "all").

        Returns
        -------
        SaveOptions
        """
        if isinstance(save, cls):
            return save
        if isinstance(save, str):
            try:
                return cls(save)
            except ValueError:
                pass
        raise InvalidArgumentError(
            f"The `save` argument must be one of {[x.value for x in cls]}. Got {save!r}."
        )


def _validate_literal_argument(arg: Any, literal: Any) -> None:
    """
    Validate if the given argument matches one of the allowed literal types.

    This function checks whether the provided `arg` is among the valid types
    returned by `get_args(literal)`. If not, it raises a ValueError with an
    appropriate error message.

    Parameters
    ----------
    arg : Any
        The argument to validate.
    literal : Any
        A Literal type that defines the allowed values for `arg`.

    Raises
    ------
    TypeError
        If `literal` does not have valid types.
    ValueError
        If `arg` is not one of the valid types defined by `literal`.
    """
    valid_types = get_args(literal)

    if len(valid_types) < 1:
        raise TypeError(
            f"{literal} must be a Literal[...] type argument with least one type"
        )

    if isinstance(arg, bool) or arg not in valid_types:
        raise ValueError(f"Invalid argument. Expecting one of {valid_types}. Got {arg}")
