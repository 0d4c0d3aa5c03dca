from __future__ import annotations

import numpy as np
import pytest

from rmi_trainer.data.training_data import KeyType, TrainingData
from rmi_trainer.errors import ConfigurationError
from rmi_trainer.models.base import ModelParam, ParamKind
from rmi_trainer.models.cubic import CubicModel
from rmi_trainer.models.histogram import HistogramModel
from rmi_trainer.models.linear import LinearModel, LinearSplineModel, LogLinearModel, RobustLinearModel
from rmi_trainer.models.radix import BalancedRadixModel, RadixModel, common_prefix_length
from rmi_trainer.models.registry import (
    check_key_type,
    create_model,
    model_names,
    parse_model_spec,
    supports_constant,
)
from rmi_trainer.models.regression import RunningRegression, fit_line


def test_model_param_sizes_and_equality() -> None:
    ints = ModelParam.from_array(ParamKind.INT32_ARRAY, [1, 2, 3])
    assert len(ints) == 3
    assert ints.size_bytes() == 12
    assert ints.is_array()
    assert ints.c_type() == "uint32_t"
    assert ints == ModelParam.from_array(ParamKind.INT32_ARRAY, np.array([1, 2, 3]))
    assert ints != ModelParam.from_array(ParamKind.INT_ARRAY, [1, 2, 3])

    scalar = ModelParam.from_float(2.5)
    assert len(scalar) == 1
    assert scalar.size_bytes() == 8
    assert scalar.as_array().tolist() == [2.5]
    assert ModelParam.from_array(ParamKind.SHORT_ARRAY, [1, 2]).size_bytes() == 4
    with pytest.raises(ValueError):
        ModelParam.from_array(ParamKind.INT, [1])


def test_running_regression_matches_batch_fit() -> None:
    rng = np.random.default_rng(3)
    xs = np.sort(rng.uniform(0, 1000, 200))
    ys = 3.0 * xs + rng.normal(0, 5, 200)
    acc = RunningRegression()
    for x, y in zip(xs.tolist(), ys.tolist()):
        acc.push(x, y)
    intercept, slope = acc.line()
    ref_intercept, ref_slope = fit_line(xs, ys)
    assert slope == pytest.approx(ref_slope, rel=1e-9)
    assert intercept == pytest.approx(ref_intercept, rel=1e-6, abs=1e-6)


def test_regression_degenerate_cases() -> None:
    assert RunningRegression().line() == (0.0, 0.0)
    acc = RunningRegression()
    acc.push(5.0, 2.0)
    acc.push(5.0, 4.0)
    assert acc.line() == (3.0, 0.0)


def test_linear_fits_exact_line() -> None:
    data = TrainingData(np.arange(0, 200, 2, dtype=np.uint64))
    model = LinearModel().fit(data)
    assert model.slope == pytest.approx(0.5)
    assert model.predict_to_int(100) == 50
    assert model.error_bound() is None
    assert model.needs_bounds_check()


def test_fit_on_degenerate_ranges(sequential_data: TrainingData) -> None:
    empty = LinearModel().fit(sequential_data, 10, 10)
    assert empty.predict(123) == 0.0

    single = LinearModel().fit(sequential_data, 42, 43)
    assert single.predict_to_int(0) == 42
    assert single.predict_to_int(999) == 42


def test_predict_to_int_saturates_at_zero() -> None:
    model = LinearModel()
    model.intercept, model.slope = -50.0, 1.0
    assert model.predict_to_int(10) == 0
    model.intercept = float("nan")
    assert model.predict_to_int(10) == 0


def test_linear_round_trips_through_params() -> None:
    model = LinearModel().fit(TrainingData.from_keys(np.array([1, 3, 7, 20], dtype=np.uint64)))
    clone = LinearModel.from_params(model.params())
    assert clone.params() == model.params()
    assert clone.size_bytes() == 16


def test_robust_linear_ignores_outliers() -> None:
    keys = np.concatenate([np.arange(100_000), [10**12]]).astype(np.uint64)
    data = TrainingData.from_keys(keys)
    robust = RobustLinearModel().fit(data)
    plain = LinearModel().fit(data)
    assert abs(robust.predict(50_000) - 50_000) < abs(plain.predict(50_000) - 50_000)


def test_linear_spline_passes_through_endpoints() -> None:
    data = TrainingData.from_keys(np.array([10, 11, 50, 110], dtype=np.uint64))
    model = LinearSplineModel().fit(data)
    assert model.predict(10) == pytest.approx(0.0)
    assert model.predict(110) == pytest.approx(3.0)


def test_loglinear_constant_floors_to_value() -> None:
    model = LogLinearModel()
    assert model.set_to_constant_model(17)
    assert model.predict_to_int(0) == 17
    assert model.predict_to_int(10**9) == 17


def test_loglinear_tracks_exponential_positions() -> None:
    keys = np.arange(1, 15, dtype=np.uint64)
    positions = np.round(np.expm1(keys.astype(np.float64) * 0.5)).astype(np.int64)
    data = TrainingData(keys, positions)
    model = LogLinearModel().fit(data)
    assert model.slope == pytest.approx(0.5, rel=0.05)


def test_cubic_beats_line_on_curved_data() -> None:
    keys = np.arange(1000, dtype=np.uint64)
    positions = (keys.astype(np.float64) ** 3 / 1e6).astype(np.int64)
    positions = np.maximum.accumulate(positions)
    data = TrainingData(keys, positions)
    cubic = CubicModel().fit(data)
    linear = LinearModel().fit(data)
    cubic_err = np.abs(cubic.predict_batch(keys) - positions).max()
    linear_err = np.abs(linear.predict_batch(keys) - positions).max()
    assert cubic_err < linear_err

    clone = CubicModel.from_params(cubic.params())
    assert np.allclose(clone.predict_batch(keys), cubic.predict_batch(keys))


def test_cubic_with_single_distinct_key_predicts_mean() -> None:
    data = TrainingData(np.array([5, 5, 5], dtype=np.uint64), np.array([3, 4, 5]))
    assert CubicModel().fit(data).predict(5) == pytest.approx(4.0)


def test_radix_reads_bits_after_common_prefix() -> None:
    assert common_prefix_length(0, 255) == 56
    assert common_prefix_length(7, 7) == 64

    data = TrainingData.from_keys(np.arange(256, dtype=np.uint64))
    model = RadixModel(256).fit(data)
    assert model.bits == 8
    assert model.prefix == 56
    assert model.predict(0) == 0.0
    assert model.predict(200) == 200.0
    assert not model.set_to_constant_model(3)
    assert not supports_constant("radix")


def test_balanced_radix_maps_buckets_to_first_position() -> None:
    keys = np.array([0, 1, 2, 3, 128, 129, 255], dtype=np.uint64)
    model = BalancedRadixModel(4).fit(TrainingData.from_keys(keys))
    assert model.bits == 2
    assert model.predict(1) == 0.0
    assert model.predict(130) == 4.0
    assert model.predict(255) == 6.0
    assert model.params()[2].kind is ParamKind.INT32_ARRAY

    clone = BalancedRadixModel.from_params(model.params())
    assert clone.predict_batch(keys).tolist() == model.predict_batch(keys).tolist()


def test_histogram_bins() -> None:
    data = TrainingData.from_keys(np.arange(1000, dtype=np.uint64))
    model = HistogramModel(10).fit(data)
    assert model.predict_to_int(0) == 0
    assert model.predict_to_int(150) == 100
    assert model.predict_to_int(10**9) == 900

    assert model.set_to_constant_model(12)
    assert model.predict_to_int(500) == 12

    fitted = HistogramModel(10).fit(data)
    clone = HistogramModel.from_params(fitted.params())
    assert clone.predict_batch([0, 150, 999]).tolist() == fitted.predict_batch([0, 150, 999]).tolist()


def test_registry_lookup_and_errors() -> None:
    assert "optimal_pla" in model_names()
    assert create_model("cubic").model_name == "cubic"
    assert create_model(" linear ").model_name == "linear"
    assert parse_model_spec("radix, linear") == ["radix", "linear"]
    assert parse_model_spec(("cubic", "linear")) == ["cubic", "linear"]

    with pytest.raises(ConfigurationError, match="unknown model type"):
        create_model("quartic")
    with pytest.raises(ConfigurationError, match="malformed"):
        parse_model_spec("linear,,cubic")
    with pytest.raises(ConfigurationError, match="requires integer keys"):
        check_key_type(["bradix", "linear"], KeyType.F64)
    check_key_type(["bradix", "linear"], KeyType.U32)


def test_generated_code_names_the_function() -> None:
    for name in model_names():
        model = create_model(name, 16)
        assert model.function_name() in model.code()
