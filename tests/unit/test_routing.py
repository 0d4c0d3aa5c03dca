from __future__ import annotations

import numpy as np
import pytest

from rmi_trainer.data.training_data import TrainingData
from rmi_trainer.errors import ConfigurationError
from rmi_trainer.models.linear import LinearModel
from rmi_trainer.training.routing import RoutingPolicy, partition, predict_layer, predict_layer_positions


def test_proportional_routing_clamps_extrapolation() -> None:
    policy = RoutingPolicy()
    preds = np.array([-5.0, np.nan, 1e30, 50.0, 99.9, np.inf, -np.inf])
    assert policy.route(preds, 100, 4).tolist() == [0, 0, 3, 2, 3, 3, 0]


def test_direct_routing() -> None:
    policy = RoutingPolicy("direct")
    assert policy.route(np.array([0.2, 2.9, 7.0, -1.0]), 1000, 4).tolist() == [0, 2, 3, 0]


def test_unknown_routing_mode() -> None:
    with pytest.raises(ConfigurationError, match="unknown routing mode"):
        RoutingPolicy("modulo")


def test_monotone_partition_returns_views(sequential_data: TrainingData) -> None:
    buckets = np.repeat(np.array([0, 0, 2, 3]), 250)
    parts, counts = partition(sequential_data, buckets, 4)
    assert counts.tolist() == [500, 0, 250, 250]
    assert [len(p) for p in parts] == [500, 0, 250, 250]
    assert np.shares_memory(parts[2].keys, sequential_data.keys)
    assert parts[3].positions[0] == 750


def test_non_monotone_partition_keeps_key_order() -> None:
    data = TrainingData.from_keys(np.arange(6, dtype=np.uint64))
    parts, counts = partition(data, np.array([1, 0, 1, 0, 1, 0]), 2)
    assert counts.tolist() == [3, 3]
    assert parts[0].keys.tolist() == [1, 3, 5]
    assert parts[1].keys.tolist() == [0, 2, 4]


def test_layer_prediction_dispatches_per_model() -> None:
    low, high = LinearModel(), LinearModel()
    low.set_to_constant_model(5)
    high.set_to_constant_model(500)
    keys = np.array([1, 2, 3, 4], dtype=np.uint64)
    assign = np.array([1, 0, 1, 0])
    assert predict_layer([low, high], keys, assign).tolist() == [500.0, 5.0, 500.0, 5.0]
    assert predict_layer_positions([low, high], keys, assign, 100).tolist() == [99, 5, 99, 5]
