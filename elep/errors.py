"""
errors.py
=========
Exceptions raised by the ELEP fitting and scoring pipeline.

None of these are retried: every computation is deterministic, so the caller
must change its inputs (usually the candidate predictor set) instead.
"""

from typing import Optional


class ElepModelError(Exception):
    """Base class for ELEP modelling failures"""


class SingularMatrixError(ElepModelError):
    """Design matrix is not full column rank (perfect collinearity)"""

    def __init__(self, rank: int, n_columns: int, columns: Optional[list] = None):
        self.rank = rank
        self.n_columns = n_columns
        self.columns = list(columns) if columns is not None else []
        super().__init__(
            f"Design matrix is rank deficient: rank {rank} < {n_columns} columns "
            f"(intercept included). Remove collinear predictors before fitting."
        )


class InsufficientDataError(ElepModelError):
    """Fewer rows than the fit requires"""

    def __init__(self, n_rows: int, n_required: int):
        self.n_rows = n_rows
        self.n_required = n_required
        super().__init__(f"Need at least {n_required} rows to fit, got {n_rows}")


class UnseenLevelError(ElepModelError):
    """Categorical level present at prediction time but absent from training"""

    def __init__(self, field: str, level: str, n_rows: int = 1):
        self.field = field
        self.level = level
        self.n_rows = n_rows
        super().__init__(
            f"Level {level!r} of {field} was not seen in training "
            f"({n_rows} row(s)); no indicator column exists for it"
        )
