"""
===============================================================================
RECURSIVE TRAINER
===============================================================================
Builds a TrainedRMI layer by layer.

Build:
  1) Validate the configuration (model names, key type, branching factor,
     layer count, starvation of constant-incapable models) before any work.
  2) Layer 0: one model fitted on the whole container.
  3) For each internal layer: route every pair through its model's float
     prediction into one of ``branching_factor`` buckets, split the pairs per
     bucket (views where routing is monotone) and fit one model per bucket of
     the next layer. Buckets are fitted concurrently on a thread pool.
     Empty buckets get a constant model; a model type that cannot hold a
     constant fails the configuration with StarvedBucketError.
  4) Leaf layer: predict every training pair's position, reduce the error
     statistics in parallel and decide whether the leaf layer may report its
     own error bound.

Usage:
    from rmi_trainer.training.trainer import train

    rmi = train(data, "linear,linear", branching_factor=1024)
    print(rmi.model_avg_log2_error, rmi.size_bytes())
===============================================================================
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from rmi_trainer.data.training_data import TrainingData
from rmi_trainer.errors import ConfigurationError, StarvedBucketError
from rmi_trainer.models.base import Model
from rmi_trainer.models.registry import check_key_type, create_model, parse_model_spec, supports_constant
from rmi_trainer.training.rmi import Layer, TrainedRMI, rmi_size
from rmi_trainer.training.routing import RoutingPolicy, partition, predict_layer, predict_layer_positions
from rmi_trainer.training.statistics import leaf_max_errors, summarize_errors

logger = logging.getLogger(__name__)

MAX_SEARCH_BRANCHING_FACTOR = 1 << 24


@dataclass
class TrainerConfig:
    """Knobs of a training run.

    Attributes:
        max_workers: thread pool size for per-bucket fits and the statistics
            reduction; 1 trains sequentially.
        routing: how internal predictions map to buckets.
        certified_error_limit: largest declared leaf bound the trainer will
            certify as the lookup window.
        store_leaf_errors: keep each leaf's observed max error (counted in
            ``rmi_size``).
        stats_chunk_size: rows per chunk of the statistics reduction.
        max_layers: deepest hierarchy accepted.
    """

    max_workers: Optional[int] = None
    routing: RoutingPolicy = field(default_factory=RoutingPolicy)
    certified_error_limit: int = 64
    store_leaf_errors: bool = True
    stats_chunk_size: int = 1 << 16
    max_layers: int = 8

    def __post_init__(self):
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError("max_workers must be >= 1")
        if self.certified_error_limit < 0:
            raise ConfigurationError("certified_error_limit must be >= 0")
        if self.stats_chunk_size < 1:
            raise ConfigurationError("stats_chunk_size must be >= 1")
        if self.max_layers < 1:
            raise ConfigurationError("max_layers must be >= 1")


def validate_configuration(data: TrainingData, models, branching_factor: int,
                           config: TrainerConfig) -> List[str]:
    """Reject malformed configurations before any training work is done."""
    names = parse_model_spec(models)
    if len(names) > config.max_layers:
        raise ConfigurationError(f"{len(names)} layers requested, at most {config.max_layers} supported")
    if isinstance(branching_factor, bool) or not isinstance(branching_factor, (int, np.integer)):
        raise ConfigurationError(f"branching factor must be an integer, got {branching_factor!r}")
    if branching_factor < 1:
        raise ConfigurationError(f"branching factor must be positive, got {branching_factor}")
    check_key_type(names, data.key_type)

    for depth, name in enumerate(names):
        if supports_constant(name):
            continue
        num_models = 1 if depth == 0 else int(branching_factor)
        if num_models > len(data):
            raise ConfigurationError(
                f"layer {depth}: {num_models} '{name}' models over {len(data)} rows; "
                "some must be empty and the type cannot be set to a constant"
            )
    return names


# -----------------------------------------------------------------------------
# Layer fitting
# -----------------------------------------------------------------------------
def _empty_bucket_constants(parts: Sequence[TrainingData], num_positions: int) -> List[int]:
    """Position each empty bucket should predict: the first position that
    follows it, clamped to the last valid row."""
    upper = max(0, num_positions - 1)
    constants = [0] * len(parts)
    following = num_positions
    for b in range(len(parts) - 1, -1, -1):
        if len(parts[b]):
            following = int(parts[b].positions[0])
        constants[b] = min(following, upper)
    return constants


def _fit_layer(depth: int, name: str, parts: Sequence[TrainingData], num_positions: int,
               hint: Optional[int], executor: Optional[Executor]) -> List[Model]:
    models = [create_model(name, hint) for _ in parts]
    constants = _empty_bucket_constants(parts, num_positions)

    pending = []
    for bucket, (model, part) in enumerate(zip(models, parts)):
        if len(part) == 0:
            model.key_type = part.key_type
            if not model.set_to_constant_model(constants[bucket]):
                raise StarvedBucketError(depth, bucket, name)
        else:
            pending.append((model, part))

    if executor is None or len(pending) < 2:
        for model, part in pending:
            model.fit(part)
    else:
        for future in [executor.submit(model.fit, part) for model, part in pending]:
            future.result()
    return models


def _certify_leaf_layer(models: Sequence[Model], observed: np.ndarray, counts: np.ndarray, limit: int) -> bool:
    """True when every non-empty leaf declares a bound no larger than
    ``limit`` and its observed max error stays within that bound."""
    certified_any = False
    for model, err, count in zip(models, observed.tolist(), counts.tolist()):
        if count == 0:
            continue
        bound = model.error_bound()
        if bound is None or bound > limit or err > bound:
            return False
        certified_any = True
    return certified_any


# -----------------------------------------------------------------------------
# Training entry points
# -----------------------------------------------------------------------------
def train(data: TrainingData, models, branching_factor: int,
          config: Optional[TrainerConfig] = None) -> TrainedRMI:
    """Train an RMI over ``data``.

    Args:
        data: sorted training pairs.
        models: ``"a,b,..."`` or a sequence of model type names, one per layer.
        branching_factor: models in every layer below the root.
        config: optional TrainerConfig.
    """
    config = config or TrainerConfig()
    names = validate_configuration(data, models, branching_factor, config)
    branching_factor = int(branching_factor)

    start_ns = time.perf_counter_ns()
    n = len(data)
    num_positions = data.position_range()[1] + 1 if n else 0
    keys = data.keys
    assign = np.zeros(n, dtype=np.int64)
    parts: List[TrainingData] = [data]
    counts = np.array([n], dtype=np.int64)
    layers: List[Layer] = []
    last = len(names) - 1

    executor = ThreadPoolExecutor(max_workers=config.max_workers) if config.max_workers != 1 else None
    try:
        for depth, name in enumerate(names):
            hint = branching_factor if depth < last else None
            layer_models = _fit_layer(depth, name, parts, num_positions, hint, executor)
            layers.append(Layer(depth, name, tuple(layer_models)))
            logger.debug("layer %d: %d x %s", depth, len(layer_models), name)

            if depth < last:
                preds = predict_layer(layer_models, keys, assign)
                assign = config.routing.route(preds, num_positions, branching_factor)
                parts, counts = partition(data, assign, branching_factor)

        leaf_models = layers[-1].models
        predicted = predict_layer_positions(leaf_models, keys, assign, num_positions)
        stats = summarize_errors(
            predicted, data.positions, chunk_size=config.stats_chunk_size, executor=executor
        )
    finally:
        if executor is not None:
            executor.shutdown(wait=True)

    observed = leaf_max_errors(predicted, data.positions, assign, len(leaf_models))
    reports_error = _certify_leaf_layer(leaf_models, observed, counts, config.certified_error_limit)
    build_time_ns = time.perf_counter_ns() - start_ns

    rmi = TrainedRMI(
        model_types=tuple(names),
        branching_factor=branching_factor,
        key_type=data.key_type,
        build_time_ns=build_time_ns,
        num_rmi_rows=n,
        num_data_rows=num_positions,
        model_avg_error=stats.avg_error,
        model_avg_l2_error=stats.avg_l2_error,
        model_avg_log2_error=stats.avg_log2_error,
        model_max_error=stats.max_error,
        model_max_error_idx=stats.max_error_idx,
        model_max_log2_error=stats.max_log2_error,
        last_layer_reports_error=reports_error,
        layers=tuple(layers),
        leaf_max_errors=observed if config.store_leaf_errors else None,
        routing=config.routing,
    )
    logger.info(
        "trained %s bf=%d on %d rows in %.2f ms: avg log2 err %.4f, max err %d, size %d bytes",
        rmi.models, branching_factor, n, build_time_ns / 1e6,
        stats.avg_log2_error, stats.max_error, rmi_size(rmi),
    )
    return rmi


def _power_of_two_factors(data: TrainingData, limit: int):
    bf = 2
    cap = max(2, min(limit, len(data)))
    while bf <= cap:
        yield bf
        bf <<= 1


def train_for_size(data: TrainingData, models, max_size_bytes: int,
                   config: Optional[TrainerConfig] = None,
                   max_branching_factor: int = MAX_SEARCH_BRANCHING_FACTOR) -> TrainedRMI:
    """Largest power-of-two branching factor whose RMI fits ``max_size_bytes``."""
    config = config or TrainerConfig()
    best: Optional[TrainedRMI] = None
    for bf in _power_of_two_factors(data, max_branching_factor):
        rmi = train(data, models, bf, config)
        if rmi_size(rmi) > max_size_bytes:
            break
        best = rmi
    if best is None:
        raise ConfigurationError(f"no branching factor of {models!r} fits in {max_size_bytes} bytes")
    logger.info("train_for_size: picked bf=%d (%d bytes)", best.branching_factor, rmi_size(best))
    return best


def train_bounded(data: TrainingData, models, max_error: int,
                  config: Optional[TrainerConfig] = None,
                  max_branching_factor: int = MAX_SEARCH_BRANCHING_FACTOR) -> TrainedRMI:
    """Smallest power-of-two branching factor with ``model_max_error <= max_error``.

    If no branching factor reaches the bound, the most accurate RMI found is
    returned and a warning is logged.
    """
    config = config or TrainerConfig()
    best: Optional[TrainedRMI] = None
    for bf in _power_of_two_factors(data, max_branching_factor):
        rmi = train(data, models, bf, config)
        if best is None or rmi.model_max_error < best.model_max_error:
            best = rmi
        if rmi.model_max_error <= max_error:
            return rmi
    if best is None:
        best = train(data, models, 1, config)
        if best.model_max_error <= max_error:
            return best
    logger.warning(
        "train_bounded: %s never reached max error %d (best %d at bf=%d)",
        parse_model_spec(models), max_error, best.model_max_error, best.branching_factor,
    )
    return best


# Quick self-test
if __name__ == "__main__":
    rng = np.random.default_rng(0)
    # Build a moderately large sorted key array with some skew
    u = np.sort(rng.lognormal(0.0, 1.5, 40_000) * 1e6).astype(np.uint64)
    data = TrainingData.from_keys(u)
    rmi = train(data, "cubic,linear", 128)

    # Hit rate on in-distribution queries
    queries = np.concatenate([
        rng.choice(u, 5_000, replace=True),
        rng.integers(int(u.min()), int(u.max()), 5_000, dtype=np.uint64),
    ])
    hits = 0
    for q in queries:
        hits += rmi.search(u, q) is not None
    print("Sample accuracy:", hits, "/", queries.size)
    print("Avg log2 error:", round(rmi.model_avg_log2_error, 4), "| Max error:", rmi.model_max_error,
          "| Size:", rmi_size(rmi), "bytes")
