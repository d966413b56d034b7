"""
Model 3: Interaction Model
==========================
Model 2 plus one numeric x numeric interaction, tested against Model 2 with
a nested-model ANOVA F-test. Both fits are reported; which one to interpret
is left to the reader of the report.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np
from statsmodels.stats.anova import anova_lm

from elep.dataset import DEFAULT_SPEC
from elep.models.linear_model import LinearElepModel
from elep.ols import FittedModel, fit_ols

DEFAULT_INTERACTION = ("NP", "RMSP")


class Model3Interaction(LinearElepModel):
    """
    Model 3: main effects + interaction term

    The interaction column is named "A:B" and is the elementwise product of
    the two numeric predictors.
    """

    def __init__(self, interaction: Optional[Sequence[str]] = None,
                 predictors: Optional[Sequence[str]] = None,
                 model_name: str = "Interaction Model", **kwargs):
        spec = kwargs.get('spec', DEFAULT_SPEC)
        pair = tuple(interaction) if interaction is not None else DEFAULT_INTERACTION
        if len(pair) != 2:
            raise ValueError(f"Interaction needs exactly two predictors, got {pair}")
        allowed = spec.predictors if predictors is None else predictors
        for name in pair:
            if name not in spec.numeric or name not in allowed:
                raise ValueError(f"Interaction predictor {name} must be a numeric model predictor")

        super().__init__(
            model_id=3,
            model_name=model_name,
            predictors=predictors,
            **kwargs
        )
        self.interaction: Tuple[str, str] = pair
        self.interaction_name = f"{pair[0]}:{pair[1]}"

        self.restricted_model: Optional[FittedModel] = None
        self.anova_table = None
        self.diagnostic_predictors = list(pair)

        self.logger.info(f"  - Interaction: {self.interaction_name}")

    def prepare_features(self, records, unseen: str = "raise"):
        X, columns = super().prepare_features(records, unseen=unseen)
        a, b = (columns.index(name) for name in self.interaction)
        X = np.column_stack([X, X[:, a] * X[:, b]])
        return X, columns + [self.interaction_name]

    def fit(self, X: np.ndarray, y: np.ndarray) -> None:
        super().fit(X, y)
        self.compare_to_main_effects(X, y)

    def compare_to_main_effects(self, X: np.ndarray, y: np.ndarray) -> None:
        """ANOVA F-test of the interaction column against the additive model"""
        self.log_section("NESTED MODEL F-TEST")

        self.restricted_model = fit_ols(X[:, :-1], y, self.feature_names[:-1])
        self.anova_table = anova_lm(self.restricted_model.results, self.ols_model.results)

        f_stat = float(self.anova_table['F'].iloc[1])
        p_value = float(self.anova_table['Pr(>F)'].iloc[1])
        coef = self.ols_model.coefficients[self.interaction_name]
        ci = self.ols_model.conf_int(self.alpha).loc[self.interaction_name]

        self.metrics.update({
            'interaction': self.interaction_name,
            'interaction_coefficient': coef,
            'interaction_ci_lower': float(ci['lower']),
            'interaction_ci_upper': float(ci['upper']),
            'anova_f': f_stat,
            'anova_p': p_value,
            'rss_main_effects': self.restricted_model.rss,
        })

        self.logger.info(f"RSS without interaction: {self.restricted_model.rss:,.2f}")
        self.logger.info(f"RSS with interaction:    {self.ols_model.rss:,.2f}")
        self.logger.info(f"F = {f_stat:.4f}, p = {p_value:.6f}")
        self.logger.info(f"{self.interaction_name} coefficient: {coef:.6f} "
                         f"[{ci['lower']:.6f}, {ci['upper']:.6f}]")

    def report_lines(self) -> List[str]:
        lines = super().report_lines()
        if 'anova_f' in self.metrics:
            level = int(round(self.ci_level * 100))
            lines += [
                "",
                f"  ANOVA vs main-effects model ({self.interaction_name}):",
                f"    F = {self.metrics['anova_f']:.4f}, p = {self.metrics['anova_p']:.6f}",
                f"    Interaction coefficient = {self.metrics['interaction_coefficient']:.6f} "
                f"({level}% CI [{self.metrics['interaction_ci_lower']:.6f}, "
                f"{self.metrics['interaction_ci_upper']:.6f}])",
            ]
        return lines
