"""
Model 1: Simple Model
=====================
OLS of ELEP on three household-size predictors, with residual plots against
each of them to check the linear form before adding the remaining fields.
"""

from typing import Optional, Sequence

from elep.models.linear_model import LinearElepModel

DEFAULT_SIMPLE_PREDICTORS = ("NP", "BDSP", "RMSP")


class Model1Simple(LinearElepModel):
    """
    Model 1: three-predictor baseline

    Defaults to persons (NP), bedrooms (BDSP) and rooms (RMSP).
    """

    def __init__(self, predictors: Optional[Sequence[str]] = None,
                 model_name: str = "Simple Model", **kwargs):
        super().__init__(
            model_id=1,
            model_name=model_name,
            predictors=predictors if predictors is not None else DEFAULT_SIMPLE_PREDICTORS,
            **kwargs
        )
        self.diagnostic_predictors = list(self.predictors)
