from __future__ import annotations

import numpy as np
import pytest

from rmi_trainer.data.training_data import KeyType, TrainingData, keys_as_uint
from rmi_trainer.errors import ConfigurationError


def test_from_keys_assigns_dense_positions() -> None:
    data = TrainingData.from_keys(np.array([3, 5, 5, 9], dtype=np.uint64))
    assert len(data) == 4
    assert data.key_type is KeyType.U64
    assert data.positions.tolist() == [0, 1, 2, 3]
    assert data[2] == (5, 2)
    assert list(data.iter_pairs()) == [(3, 0), (5, 1), (5, 2), (9, 3)]


def test_unsorted_keys_are_rejected() -> None:
    with pytest.raises(ValueError, match="sorted"):
        TrainingData.from_keys(np.array([2, 1], dtype=np.uint64))


def test_length_mismatch_is_rejected() -> None:
    with pytest.raises(ValueError, match="differ in length"):
        TrainingData(np.arange(3, dtype=np.uint64), np.arange(2))


def test_slice_is_a_view(sequential_data: TrainingData) -> None:
    head = sequential_data[10:20]
    assert len(head) == 10
    assert head.get_key(0) == 10
    assert np.shares_memory(head.keys, sequential_data.keys)
    assert np.shares_memory(head.positions, sequential_data.positions)


def test_strided_slice_requires_sample(sequential_data: TrainingData) -> None:
    with pytest.raises(ValueError, match="sample"):
        sequential_data[::2]

    sampled = sequential_data.sample(100)
    assert len(sampled) == 10
    assert sampled.positions.tolist() == list(range(0, 1000, 100))
    with pytest.raises(ValueError):
        sequential_data.sample(0)


def test_window_clamps_to_bounds(sequential_data: TrainingData) -> None:
    assert len(sequential_data.window(-5, 3)) == 3
    assert len(sequential_data.window(995, 2000)) == 5
    assert len(sequential_data.window(10, 5)) == 0


def test_take_gathers_rows(sequential_data: TrainingData) -> None:
    picked = sequential_data.take(np.array([1, 4, 9]))
    assert picked.keys.tolist() == [1, 4, 9]
    assert not np.shares_memory(picked.keys, sequential_data.keys)


def test_position_range() -> None:
    assert TrainingData.empty().position_range() == (0, 0)
    data = TrainingData.from_pairs([(1, 7), (2, 9), (4, 8)])
    assert data.position_range() == (7, 9)


def test_from_pairs_uses_requested_key_type() -> None:
    data = TrainingData.from_pairs([(-3, 0), (0, 1), (2, 2)], key_type=KeyType.I64)
    assert data.key_type is KeyType.I64
    assert data.keys.dtype == np.int64


def test_uint_projection_preserves_order() -> None:
    signed = np.array([-(2**62), -1, 0, 1, 2**62], dtype=np.int64)
    projected = keys_as_uint(signed)
    assert np.all(projected[1:] > projected[:-1])

    floats = np.array([-1e300, -2.5, -0.0, 0.5, 3.0, np.inf])
    projected = keys_as_uint(floats)
    assert np.all(projected[1:] > projected[:-1])

    unsigned = np.array([0, 2**63, 2**64 - 1], dtype=np.uint64)
    assert keys_as_uint(unsigned).tolist() == unsigned.tolist()


def test_key_type_names() -> None:
    assert KeyType.from_name("F64") is KeyType.F64
    assert KeyType.U32.as_str() == "uint32_t"
    assert not KeyType.F64.is_integer
    assert KeyType.from_dtype(np.uint32) is KeyType.U32
    with pytest.raises(ConfigurationError, match="unknown key type"):
        KeyType.from_name("u128")
