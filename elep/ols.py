"""
ols.py
======
Ordinary least squares with explicit rank and sample-size preconditions.

fit_ols() refuses to fit rather than letting statsmodels fall back to a
pseudo-inverse solution: a rank-deficient design means the candidate
predictor set must be fixed upstream.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm

from elep.errors import InsufficientDataError, SingularMatrixError

INTERCEPT = "Intercept"


def _with_intercept(X: np.ndarray) -> np.ndarray:
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    return np.column_stack([np.ones(X.shape[0]), X])


def check_design(X_const: np.ndarray, columns: Optional[Sequence[str]] = None) -> None:
    """Raise if the intercept-augmented design cannot be fitted uniquely"""
    n_rows, n_cols = X_const.shape
    if n_rows < n_cols:
        raise InsufficientDataError(n_rows, n_cols)
    rank = int(np.linalg.matrix_rank(X_const))
    if rank < n_cols:
        raise SingularMatrixError(rank, n_cols, columns)


def residual_sum_of_squares(X: np.ndarray, y: np.ndarray) -> float:
    """
    RSS of y on [1, X] via least squares, with the same preconditions as
    fit_ols(). Used inside subset search where full results are not needed.
    """
    X_const = _with_intercept(X)
    check_design(X_const)
    beta, _, _, _ = np.linalg.lstsq(X_const, y, rcond=None)
    resid = y - X_const @ beta
    return float(resid @ resid)


class FittedModel:
    """OLS fit of ELEP on one feature subset"""

    def __init__(self, columns: Sequence[str], results):
        self.columns: List[str] = list(columns)
        self.results = results
        params = np.asarray(results.params)
        self.coefficients: Dict[str, float] = {
            name: float(value) for name, value in zip([INTERCEPT] + self.columns, params)
        }

    @property
    def n_obs(self) -> int:
        return int(self.results.nobs)

    @property
    def residuals(self) -> np.ndarray:
        return np.asarray(self.results.resid)

    @property
    def fitted_values(self) -> np.ndarray:
        return np.asarray(self.results.fittedvalues)

    @property
    def rss(self) -> float:
        return float(self.results.ssr)

    @property
    def rsquared(self) -> float:
        return float(self.results.rsquared)

    @property
    def rsquared_adj(self) -> float:
        return float(self.results.rsquared_adj)

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Fitted values for rows of X (columns ordered as self.columns)"""
        X = np.asarray(X, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.shape[1] != len(self.columns):
            raise ValueError(f"Expected {len(self.columns)} columns, got {X.shape[1]}")
        beta = np.array([self.coefficients[INTERCEPT]] +
                        [self.coefficients[c] for c in self.columns])
        return _with_intercept(X) @ beta

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        ci = np.asarray(self.results.conf_int(alpha=alpha))
        return pd.DataFrame(ci, index=[INTERCEPT] + self.columns, columns=["lower", "upper"])

    def summary_frame(self, alpha: float = 0.05) -> pd.DataFrame:
        """Coefficient table: estimate, SE, t, p and CI bounds"""
        ci = self.conf_int(alpha)
        level = int(round((1 - alpha) * 100))
        return pd.DataFrame({
            "coefficient": pd.Series(self.coefficients),
            "std_error": np.asarray(self.results.bse),
            "t_value": np.asarray(self.results.tvalues),
            "p_value": np.asarray(self.results.pvalues),
            f"ci_{level}_lower": ci["lower"].values,
            f"ci_{level}_upper": ci["upper"].values,
        }, index=ci.index)

    def feature_stats(self) -> List[Dict[str, float]]:
        """Per-column stats in the shape BaseElepModel.log_coefficients expects"""
        return [
            {
                "name": name,
                "coefficient": self.coefficients[name],
                "std_error": float(se),
                "p_value": float(p),
            }
            for name, se, p in zip(self.columns,
                                   np.asarray(self.results.bse)[1:],
                                   np.asarray(self.results.pvalues)[1:])
        ]


def fit_ols(X: np.ndarray, y: np.ndarray, columns: Sequence[str]) -> FittedModel:
    """
    Fit y = b0 + X b by OLS.

    Raises:
        InsufficientDataError: fewer rows than coefficients (columns + intercept)
        SingularMatrixError: design with intercept is not full column rank
    """
    X_const = _with_intercept(X)
    y = np.asarray(y, dtype=float)
    if X_const.shape[1] != len(columns) + 1:
        raise ValueError(f"Got {len(columns)} column names for {X_const.shape[1] - 1} columns")

    check_design(X_const, columns)

    results = sm.OLS(y, X_const).fit()
    return FittedModel(columns, results)
