"""Equal-width key histogram mapping each bin to its first observed position."""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from rmi_trainer.data.training_data import TrainingData, keys_as_float
from rmi_trainer.models.base import Model, ModelParam, ParamKind

DEFAULT_HISTOGRAM_BINS = 256
MAX_HISTOGRAM_BINS = 1 << 16


class HistogramModel(Model):
    model_name = "histogram"

    def __init__(self, branching_factor=None):
        super().__init__(branching_factor)
        bins = branching_factor if branching_factor and branching_factor > 1 else DEFAULT_HISTOGRAM_BINS
        self.num_bins = int(min(bins, MAX_HISTOGRAM_BINS))
        self.min_key = 0.0
        self.inv_width = 0.0
        self.starts = np.zeros(1, dtype=np.uint64)

    def _fit(self, data: TrainingData) -> None:
        xs = data.as_float()
        self.min_key = float(xs[0])
        span = float(xs[-1]) - self.min_key
        if span <= 0.0 or not np.isfinite(span):
            self.set_to_constant_model(int(data.positions[0]))
            return

        self.inv_width = self.num_bins / span
        bins = self._bins(xs)
        first = np.searchsorted(bins, np.arange(self.num_bins), side="left")
        hi = data.position_range()[1]
        padded = np.append(data.positions, hi + 1)
        self.starts = padded[first].astype(np.uint64)

    def _bins(self, xs: np.ndarray) -> np.ndarray:
        raw = np.floor((xs - self.min_key) * self.inv_width)
        return np.clip(np.nan_to_num(raw, nan=0.0), 0, self.num_bins - 1).astype(np.int64)

    def _predict(self, keys: np.ndarray) -> np.ndarray:
        if self.starts.shape[0] == 1:
            return np.full(keys.shape[0], float(self.starts[0]))
        return self.starts[self._bins(keys_as_float(keys))].astype(np.float64)

    def params(self) -> List[ModelParam]:
        return [
            ModelParam.from_float(self.min_key),
            ModelParam.from_float(self.inv_width),
            ModelParam.from_array(ParamKind.INT_ARRAY, self.starts),
        ]

    @classmethod
    def from_params(cls, params: Sequence[ModelParam]) -> "HistogramModel":
        starts = np.asarray(params[2].value, dtype=np.uint64)
        model = cls(max(2, starts.shape[0]))
        model.num_bins = int(starts.shape[0])
        model.min_key, model.inv_width = float(params[0].value), float(params[1].value)
        model.starts = starts
        return model

    def set_to_constant_model(self, value: int) -> bool:
        self.min_key = 0.0
        self.inv_width = 0.0
        self.starts = np.array([max(0, int(value))], dtype=np.uint64)
        return True

    def code(self) -> str:
        return (
            f"inline double {self.function_name()}(double min_key, double inv_width, "
            "const uint64_t starts[], uint64_t num_bins, double inp) {\n"
            "    double b = std::floor((inp - min_key) * inv_width);\n"
            "    if (!(b > 0.0)) b = 0.0;\n"
            "    if (b > (double)(num_bins - 1)) b = (double)(num_bins - 1);\n"
            "    return (double)starts[(uint64_t)b];\n"
            "}"
        )
