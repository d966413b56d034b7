"""
Model 2: No-Interaction Model
=============================
Additive OLS of ELEP on every cleaned predictor. This is the inference model:
the report lists each coefficient with its 95% confidence interval.
"""

from typing import Optional, Sequence

from elep.models.linear_model import LinearElepModel


class Model2NoInteraction(LinearElepModel):
    """Model 2: all predictors, main effects only"""

    def __init__(self, predictors: Optional[Sequence[str]] = None,
                 model_name: str = "No-Interaction Model", **kwargs):
        super().__init__(
            model_id=2,
            model_name=model_name,
            predictors=predictors,
            **kwargs
        )
        self.diagnostic_predictors = [p for p in self.predictors if p in self.spec.numeric][:3]
