"""
feature_matrix.py
=================
Explicit categorical expansion for ELEP models.

Each categorical field expands into one 0/1 indicator per non-reference
level (reference = first level in sorted order). Levels are learned from
training records only; the builder keeps the map from expanded column back
to its logical predictor so model size can be reported in logical terms.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from elep.dataset import CleaningSpec, DEFAULT_SPEC, HouseholdRecord
from elep.errors import UnseenLevelError

logger = logging.getLogger(__name__)

UNSEEN_POLICIES = ("raise", "reference")


@dataclass
class FeatureMatrix:
    """Design matrix (no intercept) plus rows carrying unseen levels"""
    X: np.ndarray
    columns: List[str]
    unseen: Dict[str, np.ndarray] = field(default_factory=dict)
    unseen_levels: Dict[str, List[str]] = field(default_factory=dict)

    def column_index(self, names: Sequence[str]) -> List[int]:
        lookup = {name: i for i, name in enumerate(self.columns)}
        return [lookup[name] for name in names]

    def select(self, names: Sequence[str]) -> np.ndarray:
        return self.X[:, self.column_index(names)]

    def unseen_rows(self, fields: Sequence[str]) -> np.ndarray:
        mask = np.zeros(self.X.shape[0], dtype=bool)
        for name in fields:
            if name in self.unseen:
                mask |= self.unseen[name]
        return mask


class FeatureMatrixBuilder:
    """
    Learn categorical levels on training data, then expand any record set.

    Usage:
        builder = FeatureMatrixBuilder(spec).fit(train_records)
        train = builder.transform(train_records)
        valid = builder.transform(valid_records, unseen="reference")
    """

    def __init__(self, spec: CleaningSpec = DEFAULT_SPEC,
                 numeric: Optional[Sequence[str]] = None,
                 categorical: Optional[Sequence[str]] = None):
        self.spec = spec
        self.numeric = list(spec.numeric if numeric is None else numeric)
        self.categorical = list(spec.categorical if categorical is None else categorical)

        self.levels: Dict[str, List[str]] = {}
        self.reference: Dict[str, str] = {}
        self.columns: List[str] = []
        self._column_to_field: Dict[str, str] = {}
        self._column_to_level: Dict[str, Tuple[str, str]] = {}

    @property
    def is_fitted(self) -> bool:
        return bool(self.columns)

    def fit(self, records: Sequence[HouseholdRecord]) -> "FeatureMatrixBuilder":
        if not records:
            raise ValueError("Cannot learn levels from an empty record set")

        self.levels = {}
        self.reference = {}
        self.columns = []
        self._column_to_field = {}
        self._column_to_level = {}

        for name in self.numeric:
            self._add_column(name, name)

        for name in self.categorical:
            levels = sorted({str(r.value(name)) for r in records})
            self.levels[name] = levels
            self.reference[name] = levels[0]
            for level in levels[1:]:
                column = f"{name}_{level}"
                self._add_column(column, name)
                self._column_to_level[column] = (name, level)

        logger.info(f"Expanded {len(self.numeric) + len(self.categorical)} logical predictors "
                    f"into {len(self.columns)} columns")
        for name in self.categorical:
            logger.info(f"  {name}: {len(self.levels[name])} levels "
                        f"(reference: {self.reference[name]})")
        return self

    def _add_column(self, column: str, logical: str) -> None:
        if column in self._column_to_field:
            raise ValueError(f"Duplicate expanded column name: {column}")
        self.columns.append(column)
        self._column_to_field[column] = logical

    def transform(self, records: Sequence[HouseholdRecord],
                  unseen: str = "raise") -> FeatureMatrix:
        """
        Build the expanded design matrix.

        unseen="raise": an unseen level raises UnseenLevelError.
        unseen="reference": the row keeps all-zero indicators for that field
        (reference-level prediction) and is flagged in FeatureMatrix.unseen.
        """
        if not self.is_fitted:
            raise ValueError("Must call fit() before transform()")
        if unseen not in UNSEEN_POLICIES:
            raise ValueError(f"unseen must be one of {UNSEEN_POLICIES}, got {unseen!r}")

        n = len(records)
        X = np.zeros((n, len(self.columns)), dtype=float)
        index = {column: j for j, column in enumerate(self.columns)}

        for j, name in enumerate(self.numeric):
            X[:, j] = [float(r.value(name)) for r in records]

        unseen_masks: Dict[str, np.ndarray] = {}
        unseen_levels: Dict[str, List[str]] = {}
        for name in self.categorical:
            known = set(self.levels[name])
            values = [str(r.value(name)) for r in records]
            mask = np.array([v not in known for v in values], dtype=bool)

            if mask.any():
                first = values[int(np.argmax(mask))]
                if unseen == "raise":
                    raise UnseenLevelError(name, first, int(mask.sum()))
                logger.warning(f"{name}: {int(mask.sum())} row(s) with unseen level(s) "
                               f"(e.g. {first!r}) predicted at reference level "
                               f"{self.reference[name]!r}")
            unseen_masks[name] = mask
            if mask.any():
                unseen_levels[name] = sorted({v for v, m in zip(values, mask) if m})

            for i, value in enumerate(values):
                column = f"{name}_{value}"
                if not mask[i] and value != self.reference[name]:
                    X[i, index[column]] = 1.0

        return FeatureMatrix(X=X, columns=list(self.columns), unseen=unseen_masks,
                             unseen_levels=unseen_levels)

    def response(self, records: Sequence[HouseholdRecord]) -> np.ndarray:
        return np.array([float(r.value(self.spec.response)) for r in records])

    # ------------------------------------------------------------------
    # Expanded column <-> logical predictor map
    # ------------------------------------------------------------------

    def logical_predictor(self, column: str) -> str:
        try:
            return self._column_to_field[column]
        except KeyError:
            raise KeyError(f"Unknown expanded column: {column}") from None

    def columns_for(self, logical: str) -> List[str]:
        return [c for c in self.columns if self._column_to_field[c] == logical]

    def logical_predictors(self, columns: Sequence[str]) -> List[str]:
        """Distinct logical predictors behind `columns`, in schema order"""
        used = {self.logical_predictor(c) for c in columns}
        return [name for name in self.numeric + self.categorical if name in used]

    def level_of(self, column: str) -> Optional[Tuple[str, str]]:
        return self._column_to_level.get(column)
