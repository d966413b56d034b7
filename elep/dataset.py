"""
dataset.py
==========
Household survey loading, declarative cleaning and train/validation split.

Cleaning is described once by a CleaningSpec (derivation rules + exclusion
list) and applied in a fixed order:

1. Read CSV
2. Apply derivation rules (e.g. HTYPE from BLD), dropping rows whose derived
   value is listed in the rule's drop_values
3. Drop excluded columns (id, raw detail, collinear acreage/value fields)
4. Drop rows with missing values in any modelling field
5. Build immutable HouseholdRecord objects
"""

import re
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HouseholdRecord:
    """
    One household observation.

    `values` maps field codes (e.g. 'ELEP', 'NP', 'HFL') to cleaned values.
    Which codes are present is decided by the CleaningSpec that loaded it.
    """
    values: Mapping[str, object]
    serialno: str = ""

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def value(self, name: str):
        """Look up a field by its code"""
        try:
            return self.values[name]
        except KeyError:
            raise KeyError(f"Record has no field {name!r}") from None

    def with_values(self, **changes) -> "HouseholdRecord":
        """Copy of this record with some field values replaced"""
        values = dict(self.values)
        values.update(changes)
        return HouseholdRecord(values, self.serialno)


@dataclass(frozen=True)
class DerivationRule:
    """
    Derive a categorical field from a raw text field.

    The first matching pattern wins; unmatched values get `default`.
    Each pattern is (label, regex, case_sensitive).
    """
    target: str
    source: str
    patterns: Tuple[Tuple[str, str, bool], ...]
    default: str = "other"
    drop_values: Tuple[str, ...] = ("other",)

    def derive(self, raw) -> str:
        if raw is None or (isinstance(raw, float) and np.isnan(raw)):
            return self.default
        text = str(raw)
        for label, pattern, case_sensitive in self.patterns:
            flags = 0 if case_sensitive else re.IGNORECASE
            if re.search(pattern, text, flags):
                return label
        return self.default


HOUSING_TYPE_RULE = DerivationRule(
    target="HTYPE",
    source="BLD",
    patterns=(
        ("house", r"house", True),
        ("apt", r"apartment", False),
    ),
)


@dataclass(frozen=True)
class CleaningSpec:
    """Declarative description of the columns that reach the model"""
    response: str = "ELEP"
    numeric: Tuple[str, ...] = ("NP", "BDSP", "RMSP", "R18", "R60", "FULP", "GASP")
    categorical: Tuple[str, ...] = ("HFL", "TEN", "YBL", "HTYPE")
    derivations: Tuple[DerivationRule, ...] = (HOUSING_TYPE_RULE,)
    # Unique id, raw housing detail (duplicated by HTYPE), acreage,
    # property type and property value
    exclude: Tuple[str, ...] = ("SERIALNO", "BLD", "ACR", "TYPE", "VALP")
    id_column: str = "SERIALNO"

    def __post_init__(self):
        overlap = set(self.predictors) & set(self.exclude)
        if overlap:
            raise ValueError(f"Excluded columns cannot be predictors: {sorted(overlap)}")
        if self.response in self.exclude:
            raise ValueError(f"Response {self.response} is in the exclusion list")

    @property
    def predictors(self) -> Tuple[str, ...]:
        return tuple(self.numeric) + tuple(self.categorical)

    @property
    def model_fields(self) -> Tuple[str, ...]:
        return (self.response,) + self.predictors


DEFAULT_SPEC = CleaningSpec()


def clean_frame(raw: pd.DataFrame, spec: CleaningSpec = DEFAULT_SPEC) -> pd.DataFrame:
    """Apply derivations, exclusions and missing-value filtering to a raw frame"""
    df = raw.copy()
    n_raw = len(df)

    # Derivations
    for rule in spec.derivations:
        if rule.source not in df.columns:
            raise KeyError(f"Derivation source column missing: {rule.source}")
        df[rule.target] = df[rule.source].map(rule.derive)
        drop_mask = df[rule.target].isin(rule.drop_values)
        if drop_mask.any():
            logger.info(f"  {rule.target}: dropping {int(drop_mask.sum()):,} rows "
                        f"with value(s) {list(rule.drop_values)}")
        df = df.loc[~drop_mask]

    # Keep the id for traceability before the exclusion pass removes it
    ids = df[spec.id_column].astype(str) if spec.id_column in df.columns else None

    excluded = [c for c in spec.exclude if c in df.columns]
    df = df.drop(columns=excluded)
    logger.info(f"  Excluded columns: {excluded}")

    missing_cols = [c for c in spec.model_fields if c not in df.columns]
    if missing_cols:
        raise KeyError(f"Required columns missing from dataset: {missing_cols}")

    df = df[list(spec.model_fields)]
    for col in (spec.response,) + tuple(spec.numeric):
        df[col] = pd.to_numeric(df[col], errors="coerce")
    na_mask = df.isna().any(axis=1)
    if na_mask.any():
        logger.info(f"  Dropping {int(na_mask.sum()):,} rows with missing values")
    df = df.loc[~na_mask]

    if ids is not None:
        df = df.assign(**{spec.id_column: ids.loc[df.index]})

    logger.info(f"  Rows: {n_raw:,} raw -> {len(df):,} usable")
    return df.reset_index(drop=True)


def _level_label(value) -> str:
    # Integer codes in a column with gaps are read as floats (1.0); keep "1"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def records_from_frame(df: pd.DataFrame, spec: CleaningSpec = DEFAULT_SPEC) -> List[HouseholdRecord]:
    records = []
    for row in df.to_dict(orient="records"):
        values: Dict[str, object] = {spec.response: float(row[spec.response])}
        for name in spec.numeric:
            values[name] = float(row[name])
        for name in spec.categorical:
            values[name] = _level_label(row[name])
        serialno = str(row[spec.id_column]) if spec.id_column in row else ""
        records.append(HouseholdRecord(values, serialno))
    return records


def load_records(input_path: Union[str, Path],
                 spec: CleaningSpec = DEFAULT_SPEC) -> List[HouseholdRecord]:
    """Load and clean the household CSV at `input_path`"""
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    logger.info(f"Loading data from {input_path}")
    raw = pd.read_csv(input_path)
    logger.info(f"Found {len(raw):,} rows, {len(raw.columns)} columns")

    df = clean_frame(raw, spec)
    records = records_from_frame(df, spec)

    if not records:
        logger.error("No records loaded!")
    return records


@dataclass(frozen=True)
class Split:
    """Disjoint train/validation index partition of a dataset"""
    train_indices: np.ndarray
    validation_indices: np.ndarray

    @property
    def n_train(self) -> int:
        return len(self.train_indices)

    @property
    def n_validation(self) -> int:
        return len(self.validation_indices)

    def apply(self, items: list) -> Tuple[list, list]:
        return ([items[i] for i in self.train_indices],
                [items[i] for i in self.validation_indices])


def split_records(n_records: int, test_size: float = 0.2, seed: int = 42) -> Split:
    """
    Seeded draw without replacement of int(n * test_size) validation rows.

    Same (n_records, test_size, seed) always gives the same partition.
    """
    if not 0.0 < test_size < 1.0:
        raise ValueError(f"test_size must be in (0, 1), got {test_size}")

    rng = np.random.RandomState(seed)
    indices = rng.permutation(n_records)
    n_test = int(n_records * test_size)

    return Split(train_indices=np.sort(indices[n_test:]),
                 validation_indices=np.sort(indices[:n_test]))
