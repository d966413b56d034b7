import matplotlib
matplotlib.use("Agg")

import pytest

from elep.dataset import load_records
from elep.testing import make_household_frame


@pytest.fixture
def household_frame():
    return make_household_frame()


@pytest.fixture
def household_csv(tmp_path, household_frame):
    path = tmp_path / "housing.csv"
    household_frame.to_csv(path, index=False)
    return path


@pytest.fixture
def household_records(household_csv):
    return load_records(household_csv)
