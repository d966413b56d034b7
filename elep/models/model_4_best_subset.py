"""
Model 4: Best-Subset Selection
==============================
Best subset of expanded columns per size k = 1..K on the training rows,
validation MSE per size on the held-out rows, and k* = argmin (smallest k on
ties). Optionally, k-fold CV over the training rows gives a second opinion
on the size.

Methodology:
- Subset search: exhaustive for small K, forward stepwise otherwise
- Sizes that cannot be fitted or scored are marked missing, not zero
- Complexity reported as distinct logical predictors, not expanded columns
"""

from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from elep.best_subset import (BestModelSelector, CrossValidationResult, Selection,
                              SubsetCandidate, SubsetEnumerator, ValidationScorer,
                              cross_validate_subset_sizes)
from elep.models.base_model import BaseElepModel


def _fmt(value, width: int) -> str:
    if value is None or pd.isna(value):
        return f"{'missing':>{width}s}"
    return f"{value:>{width},.2f}"


class Model4BestSubset(BaseElepModel):
    """Model 4: validation-selected best subset"""

    def __init__(self, search_method: str = "auto", max_exhaustive: int = 15,
                 model_name: str = "Best-Subset Selection", **kwargs):
        super().__init__(
            model_id=4,
            model_name=model_name,
            **kwargs
        )
        self.enumerator = SubsetEnumerator(search_method, max_exhaustive)

        self.candidates: List[SubsetCandidate] = []
        self.validation_scores: List[Optional[float]] = []
        self.selection: Optional[Selection] = None
        self.size_cv: Optional[CrossValidationResult] = None
        self._selected_index: List[int] = []

        self.logger.info(f"  - Search method: {search_method} (exhaustive up to K={max_exhaustive})")

    def build_features(self) -> None:
        # Validation levels are checked per subset by the scorer, so the
        # matrix is always built; unseen rows are flagged, not fatal here
        policy = self.unseen_policy
        self.unseen_policy = "reference"
        try:
            super().build_features()
        finally:
            self.unseen_policy = policy

    def perform_cross_validation(self, n_splits: int = 10) -> Dict[str, Any]:
        """k-fold CV error for every subset size"""
        self.log_section(f"{n_splits}-FOLD CROSS-VALIDATION OVER SUBSET SIZES")

        self.size_cv = cross_validate_subset_sizes(
            self.train_records, self.spec, n_folds=n_splits, seed=self.random_seed,
            method=self.enumerator.method, max_exhaustive=self.enumerator.max_exhaustive,
            unseen=self.unseen_policy)

        for k, mse in enumerate(self.size_cv.mean_errors, 1):
            shown = "missing" if mse is None else f"{mse:,.2f}"
            self.logger.info(f"  k={k:2d}: CV MSE = {shown}")
        self.logger.info(f"CV-selected size: k={self.size_cv.best_size}")

        self.metrics['cv_best_size'] = self.size_cv.best_size
        return {
            'cv_best_size': self.size_cv.best_size,
            'cv_mean_errors': self.size_cv.mean_errors,
        }

    def _fit_core(self, X: np.ndarray, y: np.ndarray) -> None:
        self.log_section("SUBSET ENUMERATION")
        self.candidates = self.enumerator.enumerate(X, y, self.feature_names)

        self.log_section("VALIDATION SCORING")
        scorer = ValidationScorer(self.builder, unseen=self.unseen_policy)
        self.validation_scores = scorer.score_all(self.candidates, self.test_matrix, self.y_test)
        for k, mse in enumerate(self.validation_scores, 1):
            shown = "missing" if mse is None else f"{mse:,.2f}"
            self.logger.info(f"  k={k:2d}: validation MSE = {shown}")

        self.log_section("MODEL SELECTION")
        self.selection = BestModelSelector(self.builder).select(self.candidates, self.validation_scores)
        self.model = self.selection.model
        self._selected_index = [self.feature_names.index(c) for c in self.selection.columns]

        self.diagnostic_predictors = [c for c in self.selection.columns if c in self.spec.numeric][:3]
        self.logger.info(f"Selected columns ({len(self.selection.columns)}): "
                         f"{', '.join(self.selection.columns)}")
        self.logger.info(f"Logical predictors ({self.selection.n_logical_predictors}): "
                         f"{', '.join(self.selection.logical_predictors)}")

    def _predict_core(self, X: np.ndarray) -> np.ndarray:
        return self.selection.model.predict(X[:, self._selected_index])

    def calculate_metrics(self) -> Dict[str, Any]:
        metrics = super().calculate_metrics()
        metrics.update({
            'search_method': self.enumerator.method_used,
            'n_candidate_columns': len(self.feature_names),
            'selected_size': self.selection.size,
            'selected_columns': list(self.selection.columns),
            'n_logical_predictors': self.selection.n_logical_predictors,
            'logical_predictors': self.selection.logical_predictors,
            'validation_mse': self.selection.score,
            'missing_sizes': [c.size for c, s in zip(self.candidates, self.validation_scores)
                              if s is None],
        })
        # Only the selected subset's columns enter the model
        metrics['n_features'] = len(self.selection.columns)
        return metrics

    def subset_error_table(self) -> pd.DataFrame:
        cv_errors = self.size_cv.mean_errors if self.size_cv is not None else []
        rows = []
        for candidate, mse in zip(self.candidates, self.validation_scores):
            k = candidate.size
            cv_mse = cv_errors[k - 1] if k - 1 < len(cv_errors) else None
            rows.append({
                'size': k,
                'rss_train': candidate.rss,
                'validation_mse': mse,
                'validation_rmse': float(np.sqrt(mse)) if mse is not None else None,
                'cv_mse': cv_mse,
                'columns': ";".join(candidate.columns) if candidate.columns else "",
            })
        return pd.DataFrame(rows)

    def save_results(self) -> None:
        super().save_results()
        if self.candidates:
            path = self.output_dir / "subset_errors.csv"
            self.subset_error_table().to_csv(path, index=False)
            self.logger.info(f"  - Subset errors CSV: {path}")

    def report_lines(self) -> List[str]:
        lines = super().report_lines()
        if self.selection is None:
            return lines

        lines += ["",
                  f"  Search: {self.enumerator.method_used} over K={len(self.feature_names)} columns",
                  "",
                  f"  {'k':>3s} {'Train RSS':>16s} {'Valid MSE':>14s} {'Valid RMSE':>11s} {'CV MSE':>14s}"]
        for _, row in self.subset_error_table().iterrows():
            marker = " *" if int(row['size']) == self.selection.size else ""
            lines.append(f"  {int(row['size']):3d} {_fmt(row['rss_train'], 16)} "
                         f"{_fmt(row['validation_mse'], 14)} {_fmt(row['validation_rmse'], 11)} "
                         f"{_fmt(row['cv_mse'], 14)}{marker}")

        lines += ["",
                  f"  Selected size k* = {self.selection.size} "
                  f"(validation RMSE {self.selection.rmse:,.4f})",
                  f"  Columns: {', '.join(self.selection.columns)}",
                  f"  Logical predictors ({self.selection.n_logical_predictors}): "
                  f"{', '.join(self.selection.logical_predictors)}"]
        if self.size_cv is not None:
            lines.append(f"  {len(self.size_cv.fold_errors)}-fold CV size: k = {self.size_cv.best_size}")
        return lines
