"""Cubic polynomial model over a normalised key."""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from rmi_trainer.data.training_data import TrainingData, keys_as_float
from rmi_trainer.models.base import Model, ModelParam


class CubicModel(Model):
    """pos ≈ a*t^3 + b*t^2 + c*t + d with t = (key - offset) * inv_scale.

    Keys are mapped onto [0, 1] before fitting so large integer keys do not
    wreck the conditioning of the cubic. When the cubic is no better than the
    straight line between the range endpoints, the line is kept instead.
    """

    model_name = "cubic"

    def __init__(self, branching_factor=None):
        super().__init__(branching_factor)
        self.a = self.b = self.c = self.d = 0.0
        self.offset = 0.0
        self.inv_scale = 0.0

    def _fit(self, data: TrainingData) -> None:
        xs = data.as_float()
        ys = data.positions_as_float()
        self.offset = float(xs[0])
        span = float(xs[-1]) - self.offset
        if span <= 0.0 or not np.isfinite(span):
            self.set_to_constant_model(0)
            self.d = float(ys.mean())
            return

        self.inv_scale = 1.0 / span
        ts = (xs - self.offset) * self.inv_scale

        # straight line through the endpoints, expressed in t
        spline = np.array([0.0, 0.0, float(ys[-1] - ys[0]), float(ys[0])])
        best = spline
        distinct = 1 + int(np.count_nonzero(np.diff(ts)))
        if distinct >= 4:
            cubic = np.polyfit(ts, ys, 3)
            if _max_error(cubic, ts, ys) < _max_error(spline, ts, ys):
                best = cubic

        self.a, self.b, self.c, self.d = (float(v) for v in best)

    def _predict(self, keys: np.ndarray) -> np.ndarray:
        ts = (keys_as_float(keys) - self.offset) * self.inv_scale
        return ((self.a * ts + self.b) * ts + self.c) * ts + self.d

    def params(self) -> List[ModelParam]:
        return [
            ModelParam.from_float(v)
            for v in (self.a, self.b, self.c, self.d, self.offset, self.inv_scale)
        ]

    @classmethod
    def from_params(cls, params: Sequence[ModelParam]) -> "CubicModel":
        model = cls()
        model.a, model.b, model.c, model.d, model.offset, model.inv_scale = (
            float(p.value) for p in params
        )
        return model

    def set_to_constant_model(self, value: int) -> bool:
        self.a = self.b = self.c = 0.0
        self.d = float(value)
        self.offset = 0.0
        self.inv_scale = 0.0
        return True

    def code(self) -> str:
        return (
            f"inline double {self.function_name()}(double a, double b, double c, double d, "
            "double offset, double inv_scale, double inp) {\n"
            "    double t = (inp - offset) * inv_scale;\n"
            "    return std::fma(std::fma(std::fma(a, t, b), t, c), t, d);\n"
            "}"
        )


def _max_error(coeffs: np.ndarray, ts: np.ndarray, ys: np.ndarray) -> float:
    return float(np.max(np.abs(np.polyval(coeffs, ts) - ys)))
