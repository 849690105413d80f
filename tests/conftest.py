"Pytest configuration for pyfereg tests."

import pytest

from pyfereg.utils import get_data


@pytest.fixture(scope="module")
def data():
    return get_data()


@pytest.fixture(scope="module")
def data_complete():
    return get_data().dropna().reset_index(drop=True)
