"""
===============================================================================
ROUTING
===============================================================================
How an internal layer's float predictions become bucket indexes for the next
layer, and how the training pairs are split along those buckets.

Routing modes (RoutingPolicy.mode):
    proportional   bucket = floor(pred / N * branching_factor)
                   (models predict global positions in [0, N))
    direct         bucket = floor(pred)
                   (the prediction already is a bucket number)

Whatever the mode, the result is clamped into [0, branching_factor) and NaN
routes to bucket 0, so extrapolating models can never address a bucket that
does not exist.
===============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

import numpy as np

from rmi_trainer.data.training_data import TrainingData
from rmi_trainer.errors import ConfigurationError
from rmi_trainer.models.base import Model

ROUTING_MODES = ("proportional", "direct")


@dataclass(frozen=True)
class RoutingPolicy:
    mode: str = "proportional"

    def __post_init__(self):
        if self.mode not in ROUTING_MODES:
            raise ConfigurationError(
                f"unknown routing mode '{self.mode}' (expected one of {', '.join(ROUTING_MODES)})"
            )

    def route(self, predictions: np.ndarray, num_positions: int, branching_factor: int) -> np.ndarray:
        """Bucket index in ``[0, branching_factor)`` for every prediction."""
        predictions = np.asarray(predictions, dtype=np.float64)
        if self.mode == "proportional":
            scaled = predictions / float(max(1, num_positions)) * branching_factor
        else:
            scaled = predictions
        top = float(branching_factor - 1)
        scaled = np.nan_to_num(scaled, nan=0.0, posinf=top, neginf=0.0)
        return np.clip(np.floor(scaled), 0.0, top).astype(np.int64)


def partition(data: TrainingData, buckets: np.ndarray, num_buckets: int) -> Tuple[List[TrainingData], np.ndarray]:
    """Split ``data`` into one sorted sub-container per bucket.

    Monotone routing (the common case for sorted keys) yields contiguous
    slice views of ``data``; otherwise rows are gathered with a stable sort so
    each bucket keeps ascending key order.
    """
    counts = np.bincount(buckets, minlength=num_buckets).astype(np.int64)
    bounds = np.concatenate(([0], np.cumsum(counts)))

    if buckets.shape[0] < 2 or bool(np.all(buckets[1:] >= buckets[:-1])):
        parts = [data[int(bounds[b]):int(bounds[b + 1])] for b in range(num_buckets)]
        return parts, counts

    order = np.argsort(buckets, kind="stable")
    parts = [data.take(order[int(bounds[b]):int(bounds[b + 1])]) for b in range(num_buckets)]
    return parts, counts


def _grouped(models: Sequence[Model], keys: np.ndarray, assign: np.ndarray,
             fn: Callable[[Model, np.ndarray], np.ndarray], dtype) -> np.ndarray:
    out = np.empty(keys.shape[0], dtype=dtype)
    if keys.shape[0] == 0:
        return out
    if len(models) == 1:
        out[:] = fn(models[0], keys)
        return out

    order = np.argsort(assign, kind="stable")
    sorted_assign = assign[order]
    model_ids, starts = np.unique(sorted_assign, return_index=True)
    ends = np.append(starts[1:], sorted_assign.shape[0])
    for model_id, lo, hi in zip(model_ids.tolist(), starts.tolist(), ends.tolist()):
        rows = order[lo:hi]
        out[rows] = fn(models[model_id], keys[rows])
    return out


def predict_layer(models: Sequence[Model], keys: np.ndarray, assign: np.ndarray) -> np.ndarray:
    """Float prediction of each key by the model it is assigned to."""
    return _grouped(models, keys, assign, lambda m, k: m.predict_batch(k), np.float64)


def predict_layer_positions(models: Sequence[Model], keys: np.ndarray, assign: np.ndarray,
                            num_positions: int) -> np.ndarray:
    """Integer position predictions; models that can extrapolate are clamped
    into ``[0, num_positions)``."""
    upper = max(0, num_positions - 1)

    def _positions(model: Model, k: np.ndarray) -> np.ndarray:
        preds = model.predict_to_int_batch(k)
        if model.needs_bounds_check():
            preds = np.minimum(preds, upper)
        return preds

    return _grouped(models, keys, assign, _positions, np.int64)
