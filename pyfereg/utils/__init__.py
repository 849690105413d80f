from pyfereg.utils.utils import get_data

__all__ = [
    "get_data",
]
