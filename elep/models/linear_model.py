"""
linear_model.py
===============
OLS model shared by the inference models (Models 1-3).

Adds coefficient tables with confidence intervals on top of the base
pipeline. Children only choose the design (make_builder / prepare_features).
"""

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from elep.dataset import DEFAULT_SPEC
from elep.feature_matrix import FeatureMatrixBuilder
from elep.models.base_model import BaseElepModel
from elep.ols import FittedModel, fit_ols


class LinearElepModel(BaseElepModel):
    """OLS of ELEP on a chosen set of logical predictors"""

    def __init__(self, model_id: int, model_name: str,
                 predictors: Optional[Sequence[str]] = None,
                 ci_level: float = 0.95,
                 **kwargs):
        spec = kwargs.get('spec', DEFAULT_SPEC)
        predictors = list(predictors) if predictors is not None else list(spec.predictors)
        # Checked before the base class opens the model's log files
        unknown = [p for p in predictors if p not in spec.predictors]
        if unknown:
            raise ValueError(f"Predictors not in cleaned schema: {unknown}")

        super().__init__(model_id=model_id, model_name=model_name, **kwargs)
        self.predictors = predictors

        self.ci_level = ci_level
        self.ols_model: Optional[FittedModel] = None
        self.coefficient_table: Optional[pd.DataFrame] = None

        self.logger.info(f"  - Predictors ({len(self.predictors)}): {', '.join(self.predictors)}")
        self.logger.info(f"  - CI level: {ci_level:.0%}")

    @property
    def alpha(self) -> float:
        return 1.0 - self.ci_level

    def make_builder(self) -> FeatureMatrixBuilder:
        return FeatureMatrixBuilder(
            self.spec,
            numeric=[p for p in self.spec.numeric if p in self.predictors],
            categorical=[p for p in self.spec.categorical if p in self.predictors],
        )

    def _fit_core(self, X: np.ndarray, y: np.ndarray) -> None:
        self.ols_model = fit_ols(X, y, self.feature_names)
        self.model = self.ols_model

    def _predict_core(self, X: np.ndarray) -> np.ndarray:
        return self.ols_model.predict(X)

    def fit(self, X: np.ndarray, y: np.ndarray) -> None:
        super().fit(X, y)

        self.coefficient_table = self.ols_model.summary_frame(alpha=self.alpha)
        self.metrics['rsquared'] = self.ols_model.rsquared
        self.metrics['rsquared_adj'] = self.ols_model.rsquared_adj
        self.metrics['rss_train'] = self.ols_model.rss

        self.logger.info(f"R-squared: {self.ols_model.rsquared:.4f} "
                         f"(adjusted {self.ols_model.rsquared_adj:.4f})")
        self.logger.info(f"Intercept: {self.ols_model.coefficients['Intercept']:.4f}")
        self.log_coefficients(self.ols_model.feature_stats(), model_type="OLS")

    def save_results(self) -> None:
        super().save_results()
        if self.coefficient_table is not None:
            path = self.output_dir / "coefficients.csv"
            self.coefficient_table.to_csv(path, index_label="term")
            self.logger.info(f"  - Coefficients CSV: {path}")

    def coefficient_lines(self) -> List[str]:
        if self.coefficient_table is None:
            return []
        level = int(round(self.ci_level * 100))
        lower, upper = f"ci_{level}_lower", f"ci_{level}_upper"
        lines = [f"  {'Term':24s} {'Estimate':>12s} {'SE':>10s} {'p':>8s}   {level}% CI",
                 f"  {'-' * 24} {'-' * 12} {'-' * 10} {'-' * 8}   {'-' * 25}"]
        for term, row in self.coefficient_table.iterrows():
            p = "<0.0001" if row['p_value'] < 0.0001 else f"{row['p_value']:.4f}"
            lines.append(f"  {term:24s} {row['coefficient']:12.4f} {row['std_error']:10.4f} "
                         f"{p:>8s}   [{row[lower]:.4f}, {row[upper]:.4f}]")
        return lines

    def report_lines(self) -> List[str]:
        return super().report_lines() + [""] + self.coefficient_lines()
