"""
===============================================================================
OPTIMAL PIECEWISE-LINEAR MODEL (PLA)
===============================================================================
Greedy error-bounded segmentation of the training pairs.

Build:
  1) Open a segment at the first unclosed pair.
  2) Try to extend it by one pair. The pair is admitted only if
       - the segment's current line (once it holds two or more pairs)
         predicts the new pair within MAX_SEGMENT_ABS_ERROR, and
       - the least-squares line refitted with the pair still keeps every
         residual in the segment within MAX_SEGMENT_ABS_ERROR.
     The refit folds the pair into a RunningRegression accumulator, so no
     earlier pair is fitted twice.
  3) On the first rejected pair, close the segment: record its intercept,
     slope and boundary (uint projection of the LAST key it contains).
  4) Repeat until the pairs are exhausted.

Predict(key):
  -Find the first boundary >= key (a key equal to segment i's boundary is
   segment i's own last key, so it evaluates segment i).
  -Clamp past-the-end indexes to the last segment.
  -Return slope * key + intercept.

An empty range yields one catch-all segment (0, 0, u64::MAX).
===============================================================================
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Set, Tuple

import numpy as np

from rmi_trainer.data.training_data import TrainingData, keys_as_float, keys_as_uint
from rmi_trainer.models.base import Model, ModelParam, ParamKind, StdFunction
from rmi_trainer.models.regression import RunningRegression

logger = logging.getLogger(__name__)

MAX_SEGMENT_ABS_ERROR = 1.0
U64_MAX = int(np.iinfo(np.uint64).max)


def segment_error(xs: np.ndarray, ys: np.ndarray, line: Tuple[float, float]) -> float:
    """Largest absolute residual of ``line`` (intercept, slope) over the points."""
    intercept, slope = line
    return float(np.max(np.abs(slope * xs + intercept - ys)))


def build_segments(
    data: TrainingData,
    max_error: float = MAX_SEGMENT_ABS_ERROR,
) -> Tuple[List[float], List[float], List[int]]:
    """Greedy segmentation; returns (intercepts, slopes, boundaries)."""
    n = len(data)
    if n == 0:
        return [0.0], [0.0], [U64_MAX]

    xs = data.as_float()
    ys = data.positions_as_float()
    ukeys = data.as_uint()
    x_list, y_list = xs.tolist(), ys.tolist()

    intercepts: List[float] = []
    slopes: List[float] = []
    boundaries: List[int] = []

    start = 0
    while start < n:
        acc = RunningRegression()
        acc.push(x_list[start], y_list[start])
        best = acc.line()
        best_err = 0.0
        end = start + 1

        while end < n:
            x, y = x_list[end], y_list[end]
            if acc.n >= 2 and abs(best[1] * x + best[0] - y) > max_error:
                break

            candidate = acc.copy()
            candidate.push(x, y)
            line = candidate.line()
            err = segment_error(xs[start:end + 1], ys[start:end + 1], line)
            if err > max_error:
                break

            acc, best, best_err = candidate, line, err
            end += 1

        logger.debug("PLA segment %d:%d err %.4f", start, end, best_err)
        intercepts.append(best[0])
        slopes.append(best[1])
        boundaries.append(int(ukeys[end - 1]))
        start = end

    return intercepts, slopes, boundaries


class OptimalPLAModel(Model):
    model_name = "optimal_pla"

    def __init__(self, branching_factor=None):
        super().__init__(branching_factor)
        self.intercepts = np.zeros(1, dtype=np.float64)
        self.slopes = np.zeros(1, dtype=np.float64)
        self.boundaries = np.array([U64_MAX], dtype=np.uint64)

    @property
    def num_segments(self) -> int:
        return int(self.boundaries.shape[0])

    def _fit(self, data: TrainingData) -> None:
        intercepts, slopes, boundaries = build_segments(data)
        self.intercepts = np.array(intercepts, dtype=np.float64)
        self.slopes = np.array(slopes, dtype=np.float64)
        self.boundaries = np.array(boundaries, dtype=np.uint64)

    def segment_index(self, keys) -> np.ndarray:
        """Segment each key evaluates, already clamped to a valid index."""
        ukeys = keys_as_uint(np.asarray(keys, dtype=self.key_type.dtype).reshape(-1))
        idx = np.searchsorted(self.boundaries, ukeys, side="left")
        return np.minimum(idx, self.num_segments - 1)

    def _predict(self, keys: np.ndarray) -> np.ndarray:
        idx = self.segment_index(keys)
        return self.slopes[idx] * keys_as_float(keys) + self.intercepts[idx]

    def params(self) -> List[ModelParam]:
        return [
            ModelParam.from_int(self.num_segments),
            ModelParam.from_array(ParamKind.FLOAT_ARRAY, self.intercepts),
            ModelParam.from_array(ParamKind.FLOAT_ARRAY, self.slopes),
            ModelParam.from_array(ParamKind.INT_ARRAY, self.boundaries),
        ]

    @classmethod
    def from_params(cls, params: Sequence[ModelParam]) -> "OptimalPLAModel":
        model = cls()
        model.intercepts = np.asarray(params[1].value, dtype=np.float64)
        model.slopes = np.asarray(params[2].value, dtype=np.float64)
        model.boundaries = np.asarray(params[3].value, dtype=np.uint64)
        return model

    def error_bound(self) -> int:
        # floor() of a prediction within 1.0 of an integer target stays within 1
        return int(MAX_SEGMENT_ABS_ERROR)

    def needs_bounds_check(self) -> bool:
        return False

    def set_to_constant_model(self, value: int) -> bool:
        self.intercepts = np.array([float(value)])
        self.slopes = np.zeros(1, dtype=np.float64)
        self.boundaries = np.array([U64_MAX], dtype=np.uint64)
        return True

    def standard_functions(self) -> Set[StdFunction]:
        return {StdFunction.BINARY_SEARCH}

    def code(self) -> str:
        return (
            f"inline double {self.function_name()}(uint64_t length, const double intercepts[], "
            "const double slopes[], const uint64_t boundaries[], uint64_t key, double inp) {\n"
            "    uint64_t idx = bs_lower_bound(boundaries, length, key);\n"
            "    if (idx >= length) { idx = length - 1; }\n"
            "    return std::fma(slopes[idx], inp, intercepts[idx]);\n"
            "}"
        )
