"""Shared fixtures for the RMI trainer tests."""

from __future__ import annotations

import numpy as np
import pytest

from rmi_trainer.data.training_data import TrainingData


@pytest.fixture
def sequential_data() -> TrainingData:
    return TrainingData.from_keys(np.arange(1000, dtype=np.uint64))


@pytest.fixture
def uniform_data() -> TrainingData:
    rng = np.random.default_rng(7)
    keys = np.unique(rng.integers(0, 1_000_000_000, 5000, dtype=np.uint64))
    return TrainingData.from_keys(keys)


@pytest.fixture
def two_cluster_data() -> TrainingData:
    keys = np.concatenate([np.arange(10), np.arange(1_000_000, 1_000_010)]).astype(np.uint64)
    return TrainingData.from_keys(keys)
