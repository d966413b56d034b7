from dataclasses import FrozenInstanceError

import numpy as np
import pandas as pd
import pytest

from elep.dataset import (CleaningSpec, DEFAULT_SPEC, HOUSING_TYPE_RULE, HouseholdRecord,
                          clean_frame, load_records, split_records)
from elep.feature_matrix import FeatureMatrixBuilder
from elep.testing import make_household_frame


def test_housing_type_rule():
    assert HOUSING_TYPE_RULE.derive("One-family house detached") == "house"
    assert HOUSING_TYPE_RULE.derive("One-family house attached") == "house"
    assert HOUSING_TYPE_RULE.derive("2 Apartments") == "apt"
    assert HOUSING_TYPE_RULE.derive("50 or more apartments") == "apt"
    assert HOUSING_TYPE_RULE.derive("Mobile home") == "other"
    assert HOUSING_TYPE_RULE.derive(float("nan")) == "other"


def test_house_match_is_case_sensitive_apartment_is_not():
    assert HOUSING_TYPE_RULE.derive("Detached HOUSE") == "other"
    assert HOUSING_TYPE_RULE.derive("APARTMENT BLOCK") == "apt"


def test_excluded_column_cannot_be_a_predictor():
    with pytest.raises(ValueError):
        CleaningSpec(numeric=("NP", "VALP"))
    with pytest.raises(ValueError):
        CleaningSpec(response="SERIALNO")


def test_load_drops_other_housing_and_excluded_columns(household_csv, household_frame):
    records = load_records(household_csv)

    expected = (household_frame["BLD"] != "Mobile home").sum()
    assert len(records) == expected
    assert all(isinstance(r, HouseholdRecord) for r in records)
    assert {r.value("HTYPE") for r in records} == {"house", "apt"}
    assert "VALP" not in records[0].values
    assert "BLD" not in records[0].values
    assert records[0].serialno.startswith("2019HU")


def test_records_are_immutable(household_records):
    record = household_records[0]
    with pytest.raises(FrozenInstanceError):
        record.serialno = "x"
    with pytest.raises(TypeError):
        record.values["ELEP"] = 0.0

    original = record.value("ELEP")
    changed = record.with_values(ELEP=-1.0)
    assert changed.value("ELEP") == -1.0
    assert changed.serialno == record.serialno
    assert record.value("ELEP") == original


def test_unknown_field_lookup(household_records):
    with pytest.raises(KeyError, match="VALP"):
        household_records[0].value("VALP")


def test_narrow_spec_loads_only_its_fields(household_csv):
    spec = CleaningSpec(numeric=("NP", "RMSP"), categorical=("HTYPE",))
    records = load_records(household_csv, spec)

    assert set(records[0].values) == {"ELEP", "NP", "RMSP", "HTYPE"}
    builder = FeatureMatrixBuilder(spec).fit(records)
    assert builder.columns == ["NP", "RMSP", "HTYPE_house"]
    assert builder.transform(records).X.shape == (len(records), 3)


def test_wider_spec_carries_extra_field(household_csv):
    spec = CleaningSpec(numeric=DEFAULT_SPEC.numeric + ("VALP",),
                        exclude=("SERIALNO", "BLD", "ACR", "TYPE"))
    records = load_records(household_csv, spec)

    assert records[0].value("VALP") > 0
    assert "VALP" in FeatureMatrixBuilder(spec).fit(records).columns


def test_rows_with_missing_values_are_dropped(tmp_path):
    frame = make_household_frame(n=50, seed=3)
    frame["BLD"] = "One-family house detached"
    frame.loc[[0, 1], "ELEP"] = np.nan
    frame.loc[2, "HFL"] = np.nan
    path = tmp_path / "missing.csv"
    frame.to_csv(path, index=False)

    records = load_records(path)
    assert len(records) == 47
    assert "2019HU0000000" not in {r.serialno for r in records}


def test_integer_codes_keep_integer_labels(tmp_path):
    frame = make_household_frame(n=30, seed=1)
    frame["BLD"] = "2 Apartments"
    frame["YBL"] = [1, 2, 3] * 10
    frame["YBL"] = frame["YBL"].astype(object)
    frame.loc[0, "YBL"] = None
    path = tmp_path / "codes.csv"
    frame.to_csv(path, index=False)

    records = load_records(path)
    assert len(records) == 29
    assert {r.value("YBL") for r in records} == {"1", "2", "3"}


def test_clean_frame_keeps_ids_and_model_fields(household_frame):
    cleaned = clean_frame(household_frame)
    assert list(cleaned.columns) == list(DEFAULT_SPEC.model_fields) + ["SERIALNO"]
    assert cleaned.index.equals(pd.RangeIndex(len(cleaned)))


def test_missing_required_column_raises(tmp_path):
    frame = make_household_frame(n=20).drop(columns=["GASP"])
    path = tmp_path / "no_gasp.csv"
    frame.to_csv(path, index=False)
    with pytest.raises(KeyError, match="GASP"):
        load_records(path)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_records(tmp_path / "nope.csv")


@pytest.mark.parametrize("n,seed", [(10, 0), (101, 1), (333, 42), (1000, 7)])
def test_split_is_a_partition(n, seed):
    split = split_records(n, 0.2, seed)
    train, valid = set(split.train_indices), set(split.validation_indices)

    assert len(train) + len(valid) == n
    assert train.isdisjoint(valid)
    assert train | valid == set(range(n))
    assert split.n_validation == int(n * 0.2)


def test_split_is_deterministic_for_a_seed():
    a = split_records(500, 0.2, 42)
    b = split_records(500, 0.2, 42)
    c = split_records(500, 0.2, 43)

    np.testing.assert_array_equal(a.train_indices, b.train_indices)
    np.testing.assert_array_equal(a.validation_indices, b.validation_indices)
    assert not np.array_equal(a.validation_indices, c.validation_indices)


def test_split_rejects_bad_fraction():
    with pytest.raises(ValueError):
        split_records(10, 1.0, 0)


def test_split_apply(household_records):
    split = split_records(len(household_records), 0.25, 5)
    train, valid = split.apply(household_records)
    assert len(train) == split.n_train
    assert {r.serialno for r in train}.isdisjoint({r.serialno for r in valid})
