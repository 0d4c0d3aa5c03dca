from __future__ import annotations

import numpy as np

from rmi_trainer.data.training_data import KeyType, TrainingData
from rmi_trainer.models.base import ParamKind, StdFunction
from rmi_trainer.models.optimal_pla import MAX_SEGMENT_ABS_ERROR, U64_MAX, OptimalPLAModel, build_segments


def _fit(pairs, key_type=KeyType.U64) -> OptimalPLAModel:
    return OptimalPLAModel().fit(TrainingData.from_pairs(pairs, key_type))


def test_exact_line_is_one_segment() -> None:
    model = _fit([(i, 2 * i) for i in range(50)])
    assert model.num_segments == 1
    assert model.predict_to_int(10) == 20
    assert model.predict_to_int(49) == 98


def test_jump_splits_segments() -> None:
    model = _fit([(0, 0), (1, 1), (2, 2), (100, 120), (101, 121), (102, 122)])
    assert model.num_segments >= 2
    assert model.predict_to_int(0) == 0
    assert model.predict_to_int(101) == 121


def test_every_training_key_within_segment_error(uniform_data: TrainingData) -> None:
    data = uniform_data[:800]
    model = OptimalPLAModel().fit(data)
    errors = np.abs(model.predict_batch(data.keys) - data.positions)
    assert errors.max() <= MAX_SEGMENT_ABS_ERROR + 1e-9
    int_errors = np.abs(model.predict_to_int_batch(data.keys) - data.positions)
    assert int_errors.max() <= model.error_bound()


def test_boundaries_are_last_segment_keys() -> None:
    intercepts, slopes, boundaries = build_segments(
        TrainingData.from_pairs([(0, 0), (1, 1), (2, 2), (100, 120), (101, 121), (102, 122)])
    )
    assert boundaries == [2, 102]
    assert len(intercepts) == len(slopes) == 2


def test_boundary_key_evaluates_its_own_segment() -> None:
    model = _fit([(0, 0), (1, 1), (2, 2), (100, 120), (101, 121), (102, 122)])
    assert model.segment_index([2]).tolist() == [0]
    assert model.segment_index([3]).tolist() == [1]
    assert model.predict_to_int(2) == 2
    # past the last boundary clamps to the last segment
    assert model.segment_index([10**6]).tolist() == [model.num_segments - 1]
    assert model.predict_to_int(103) == 123


def test_empty_range_is_catch_all_constant() -> None:
    model = OptimalPLAModel().fit(TrainingData.empty())
    assert model.num_segments == 1
    assert model.boundaries.tolist() == [U64_MAX]
    assert model.predict_to_int(12345) == 0
    assert build_segments(TrainingData.empty()) == ([0.0], [0.0], [U64_MAX])


def test_single_pair_is_constant() -> None:
    model = _fit([(40, 7)])
    assert model.predict_to_int(0) == 7
    assert model.predict_to_int(10**12) == 7


def test_signed_keys_use_order_preserving_boundaries() -> None:
    pairs = [(-50, 0), (-49, 1), (-48, 2), (0, 40), (1, 41), (2, 42)]
    model = _fit(pairs, KeyType.I64)
    assert model.num_segments == 2
    for key, pos in pairs:
        assert model.predict_to_int(key) == pos


def test_params_round_trip() -> None:
    model = _fit([(0, 0), (1, 1), (2, 2), (100, 120), (101, 121), (102, 122)])
    params = model.params()
    assert [p.kind for p in params] == [
        ParamKind.INT, ParamKind.FLOAT_ARRAY, ParamKind.FLOAT_ARRAY, ParamKind.INT_ARRAY,
    ]
    assert params[0].value == model.num_segments
    assert model.size_bytes() == 8 + 3 * 8 * model.num_segments

    clone = OptimalPLAModel.from_params(params)
    keys = [0, 1, 2, 50, 100, 101, 102]
    assert clone.predict_batch(keys).tolist() == model.predict_batch(keys).tolist()


def test_model_contract() -> None:
    model = OptimalPLAModel()
    assert model.error_bound() == 1
    assert not model.needs_bounds_check()
    assert model.standard_functions() == {StdFunction.BINARY_SEARCH}
    assert model.set_to_constant_model(9)
    assert model.predict_to_int(0) == 9
