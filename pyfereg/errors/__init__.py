class InvalidArgumentError(Exception):  # noqa: D101
    pass


class LengthMismatchError(InvalidArgumentError):  # noqa: D101
    pass


class EmptySampleError(Exception):  # noqa: D101
    pass


class NotIdentifiedError(Exception):  # noqa: D101
    pass


class NonFiniteValueError(Exception):  # noqa: D101
    pass


class SingularMatrixError(Exception):  # noqa: D101
    pass


class VcovTypeNotSupportedError(Exception):  # noqa: D101
    pass


class FormulaSyntaxError(Exception):  # noqa: D101
    pass


__all__ = [
    "EmptySampleError",
    "FormulaSyntaxError",
    "InvalidArgumentError",
    "LengthMismatchError",
    "NonFiniteValueError",
    "NotIdentifiedError",
    "SingularMatrixError",
    "VcovTypeNotSupportedError",
]
