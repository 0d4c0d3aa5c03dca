from __future__ import annotations

import logging

import numpy as np

from rmi_trainer.benchmarks.benchmark_runner import Benchmark
from rmi_trainer.data.training_data import TrainingData
from rmi_trainer.utils.logging import configure_logging


def test_configure_logging_attaches_one_handler() -> None:
    logger = configure_logging(logging.DEBUG, name="rmi_trainer_test_logging", extra_loggers=["rmi_trainer_test_extra"])
    configure_logging(logging.DEBUG, name="rmi_trainer_test_logging")
    assert logger.level == logging.DEBUG
    assert not logger.propagate
    assert len(logger.handlers) == 1
    assert len(logging.getLogger("rmi_trainer_test_extra").handlers) == 1


def test_benchmark_measurements() -> None:
    keys = np.arange(0, 20_000, 2, dtype=np.uint64)
    rmi, build_ms = Benchmark.measure_build_time(TrainingData.from_keys(keys), "linear,linear", 16)
    assert build_ms > 0
    lookup_ns, hits = Benchmark.measure_lookup_time(rmi, keys, np.array([0, 2, 3, 19_998], dtype=np.uint64))
    assert lookup_ns > 0
    assert hits == 3
