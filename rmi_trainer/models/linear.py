"""
===============================================================================
LINEAR-FAMILY MODELS
===============================================================================
    linear         least-squares line, key -> position
    robust_linear  least squares after trimming the extreme tails
    linear_spline  line through the first and last training pair
    loglinear      least squares in log-position space

All four represent a constant by zeroing the slope.
===============================================================================
"""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from rmi_trainer.data.training_data import TrainingData, keys_as_float
from rmi_trainer.models.base import Model, ModelParam
from rmi_trainer.models.regression import fit_line

# fraction of points dropped at each end by robust_linear
ROBUST_TRIM_FRACTION = 0.0001


class LinearModel(Model):
    """pos ≈ slope * key + intercept"""

    model_name = "linear"

    def __init__(self, branching_factor=None):
        super().__init__(branching_factor)
        self.intercept = 0.0
        self.slope = 0.0

    def _fit(self, data: TrainingData) -> None:
        self.intercept, self.slope = fit_line(data.as_float(), data.positions_as_float())

    def _predict(self, keys: np.ndarray) -> np.ndarray:
        return self.slope * keys_as_float(keys) + self.intercept

    def params(self) -> List[ModelParam]:
        return [ModelParam.from_float(self.intercept), ModelParam.from_float(self.slope)]

    @classmethod
    def from_params(cls, params: Sequence[ModelParam]) -> "LinearModel":
        model = cls()
        model.intercept, model.slope = float(params[0].value), float(params[1].value)
        return model

    def set_to_constant_model(self, value: int) -> bool:
        self.intercept = float(value)
        self.slope = 0.0
        return True

    def code(self) -> str:
        return (
            f"inline double {self.function_name()}(double alpha, double beta, double inp) {{\n"
            "    return std::fma(beta, inp, alpha);\n"
            "}"
        )


class RobustLinearModel(LinearModel):
    """Least squares that ignores the outermost tails of the range."""

    model_name = "robust_linear"

    def _fit(self, data: TrainingData) -> None:
        trim = int(len(data) * ROBUST_TRIM_FRACTION)
        if len(data) - 2 * trim >= 2:
            data = data.window(trim, len(data) - trim)
        super()._fit(data)


class LinearSplineModel(LinearModel):
    """Line through the first and last pair of the range."""

    model_name = "linear_spline"

    def _fit(self, data: TrainingData) -> None:
        x0, x1 = float(data.as_float()[0]), float(data.as_float()[-1])
        y0, y1 = float(data.positions[0]), float(data.positions[-1])
        if x1 == x0:
            self.intercept = float(data.positions.mean())
            self.slope = 0.0
            return
        self.slope = (y1 - y0) / (x1 - x0)
        self.intercept = y0 - self.slope * x0


class LogLinearModel(LinearModel):
    """pos ≈ exp(slope * key + intercept) - 1"""

    model_name = "loglinear"

    def _fit(self, data: TrainingData) -> None:
        targets = np.log1p(np.maximum(data.positions_as_float(), 0.0))
        self.intercept, self.slope = fit_line(data.as_float(), targets)

    def _predict(self, keys: np.ndarray) -> np.ndarray:
        with np.errstate(over="ignore"):
            return np.expm1(self.slope * keys_as_float(keys) + self.intercept)

    def set_to_constant_model(self, value: int) -> bool:
        # centred on value + 0.5 so floor() lands on value despite rounding
        self.intercept = float(np.log1p(max(0, value) + 0.5))
        self.slope = 0.0
        return True

    def code(self) -> str:
        return (
            f"inline double {self.function_name()}(double alpha, double beta, double inp) {{\n"
            "    return std::expm1(std::fma(beta, inp, alpha));\n"
            "}"
        )
