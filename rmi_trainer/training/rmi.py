"""
===============================================================================
TRAINED RECURSIVE MODEL INDEX (RMI)
===============================================================================
The immutable result of a training run:

  -Layer 0: a single model that sees every key.
  -Layers 1..L-1: ``branching_factor`` models each; a key reaches the model
   its parent's prediction routes it to.
  -The last layer predicts the final position; its error statistics were
   measured over every training pair.

Lookup(key):
  -Walk the layers, routing with the same policy used in training.
  -The leaf predicts a position; the error window is the leaf's certified
   bound when the last layer reports its own error, otherwise the leaf's
   observed max training error.

Search(keys, key):
  -Binary-search only within [pred - window, pred + window], then fall back to
   a full binary search if the key is not inside the window.
===============================================================================
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from rmi_trainer.data.training_data import KeyType
from rmi_trainer.models.base import Model
from rmi_trainer.training.routing import RoutingPolicy, predict_layer, predict_layer_positions

# bytes stored per leaf model for its error window
LEAF_ERROR_BYTES = 8


@dataclass(frozen=True, eq=False)
class Layer:
    """One depth of the hierarchy: models of a single declared type."""

    index: int
    model_type: str
    models: Tuple[Model, ...]

    @property
    def num_models(self) -> int:
        return len(self.models)

    @property
    def params_per_model(self) -> int:
        return len(self.models[0].params()) if self.models else 0

    def size_bytes(self) -> int:
        return sum(m.size_bytes() for m in self.models)


@dataclass(frozen=True, eq=False)
class TrainedRMI:
    model_types: Tuple[str, ...]
    branching_factor: int
    key_type: KeyType
    build_time_ns: int
    num_rmi_rows: int
    num_data_rows: int
    model_avg_error: float
    model_avg_l2_error: float
    model_avg_log2_error: float
    model_max_error: int
    model_max_error_idx: int
    model_max_log2_error: float
    last_layer_reports_error: bool
    layers: Tuple[Layer, ...]
    leaf_max_errors: Optional[np.ndarray] = None
    routing: RoutingPolicy = field(default_factory=RoutingPolicy)

    @property
    def models(self) -> str:
        """Comma-separated model type per layer, e.g. ``"radix,linear"``."""
        return ",".join(self.model_types)

    @property
    def num_layers(self) -> int:
        return len(self.layers)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------
    def leaf_index(self, keys) -> np.ndarray:
        """Index of the leaf model each key is routed to."""
        keys = np.asarray(keys, dtype=self.key_type.dtype).reshape(-1)
        assign = np.zeros(keys.shape[0], dtype=np.int64)
        for layer in self.layers[:-1]:
            preds = predict_layer(layer.models, keys, assign)
            assign = self.routing.route(preds, self.num_data_rows, self.branching_factor)
        return assign

    def predict_positions(self, keys) -> np.ndarray:
        keys = np.asarray(keys, dtype=self.key_type.dtype).reshape(-1)
        assign = self.leaf_index(keys)
        return predict_layer_positions(self.layers[-1].models, keys, assign, self.num_data_rows)

    def error_window(self, leaf: int) -> Optional[int]:
        if self.last_layer_reports_error:
            return self.layers[-1].models[leaf].error_bound()
        if self.leaf_max_errors is not None:
            return int(self.leaf_max_errors[leaf])
        return None

    def lookup(self, key) -> Tuple[int, Optional[int]]:
        """(predicted position, error window or None if unbounded)."""
        keys = np.asarray([key], dtype=self.key_type.dtype)
        leaf = int(self.leaf_index(keys)[0])
        pos = int(predict_layer_positions(self.layers[-1].models, keys, np.array([leaf]), self.num_data_rows)[0])
        return pos, self.error_window(leaf)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    def search(self, sorted_keys: np.ndarray, key, safety: int = 0) -> Optional[int]:
        """Position of ``key`` in ``sorted_keys`` or None if absent.

        Args:
            sorted_keys: the dataset this index was trained on.
            key: query key.
            safety: extra slack (indices) added on both sides of the window.
        """
        n = len(sorted_keys)
        if n == 0:
            return None

        pred, window = self.lookup(key)
        pred = max(0, min(n - 1, pred))
        if window is not None:
            w = window + max(0, int(safety))
            left = max(0, pred - w)
            right = min(n, pred + w + 1)
            idx = left + bisect.bisect_left(sorted_keys[left:right], key)
            if idx < n and sorted_keys[idx] == key and (idx == 0 or sorted_keys[idx - 1] != key):
                return idx

        # fall back to full search
        idx = bisect.bisect_left(sorted_keys, key)
        if idx < n and sorted_keys[idx] == key:
            return idx
        return None

    # ------------------------------------------------------------------
    # Size
    # ------------------------------------------------------------------
    def size_bytes(self) -> int:
        return rmi_size(self)


def rmi_size(rmi: TrainedRMI) -> int:
    """Serialized size in bytes: every model parameter plus the per-leaf
    error windows when they are stored."""
    total = sum(layer.size_bytes() for layer in rmi.layers)
    if rmi.leaf_max_errors is not None:
        total += LEAF_ERROR_BYTES * rmi.layers[-1].num_models
    return int(total)
