"""
===============================================================================
PARETO OPTIMIZER
===============================================================================
Trains many (model-type sequence x branching factor) configurations and keeps
the ones no other configuration beats on both axes:

    size   serialized bytes of the trained RMI (rmi_size)
    error  average log2 error, i.e. the expected number of binary-search steps
           left after the model's prediction

Worker threads train configurations and put the outcome on a queue; the
calling thread is the only one that touches the frontier. Time and
configuration budgets are checked before each new submission, never while a
configuration is training.

Usage:
    from rmi_trainer.optimizer.pareto import find_pareto_efficient_configs

    for cand in find_pareto_efficient_configs(data, max_configs=50):
        print(cand.config, cand.size_bytes, cand.error)
===============================================================================
"""

from __future__ import annotations

import itertools
import logging
import math
import os
import queue
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from rmi_trainer.data.training_data import KeyType, TrainingData
from rmi_trainer.errors import ConfigurationError, TrainingError
from rmi_trainer.models.registry import parse_model_spec, requires_integer_keys
from rmi_trainer.training.rmi import rmi_size
from rmi_trainer.training.trainer import TrainerConfig, train

logger = logging.getLogger(__name__)

DEFAULT_TOP_MODELS = ("linear", "robust_linear", "cubic", "linear_spline", "loglinear", "radix", "radix18", "bradix")
DEFAULT_LEAF_MODELS = ("linear", "cubic", "linear_spline", "loglinear")
MIN_SEARCH_LOG2_BRANCHING = 6
MAX_SEARCH_LOG2_BRANCHING = 22


@dataclass(frozen=True)
class SearchSpace:
    """Model choices per layer crossed with branching factors."""

    layer_choices: Tuple[Tuple[str, ...], ...]
    branching_factors: Tuple[int, ...]

    def __post_init__(self):
        layers = tuple(tuple(parse_model_spec(choices)) for choices in self.layer_choices)
        if not layers:
            raise ConfigurationError("search space needs at least one layer")
        factors = tuple(int(bf) for bf in self.branching_factors)
        if not factors or any(bf < 1 for bf in factors):
            raise ConfigurationError(f"invalid branching factors {self.branching_factors!r}")
        object.__setattr__(self, "layer_choices", layers)
        object.__setattr__(self, "branching_factors", factors)

    def configurations(self) -> Iterator[Tuple[Tuple[str, ...], int]]:
        for models in itertools.product(*self.layer_choices):
            for bf in self.branching_factors:
                yield models, bf

    def __len__(self) -> int:
        return math.prod(len(c) for c in self.layer_choices) * len(self.branching_factors)

    @classmethod
    def default(cls, num_rows: int, key_type: KeyType = KeyType.U64) -> "SearchSpace":
        top = tuple(m for m in DEFAULT_TOP_MODELS if key_type.is_integer or not requires_integer_keys(m))
        hi = max(MIN_SEARCH_LOG2_BRANCHING, min(MAX_SEARCH_LOG2_BRANCHING, int(math.log2(max(2, num_rows)))))
        factors = tuple(1 << k for k in range(MIN_SEARCH_LOG2_BRANCHING, hi + 1))
        return cls((top, DEFAULT_LEAF_MODELS), factors)


@dataclass(frozen=True)
class ParetoCandidate:
    models: Tuple[str, ...]
    branching_factor: int
    size_bytes: int
    error: float
    max_error: int = 0
    build_time_ns: int = 0
    order: int = 0

    @property
    def config(self) -> str:
        return f"{','.join(self.models)}:{self.branching_factor}"

    def dominates(self, other: "ParetoCandidate") -> bool:
        return (
            self.size_bytes <= other.size_bytes
            and self.error <= other.error
            and (self.size_bytes < other.size_bytes or self.error < other.error)
        )


class ParetoFrontier:
    """Candidates not dominated on (size, error)."""

    def __init__(self):
        self._candidates: List[ParetoCandidate] = []

    def insert(self, candidate: ParetoCandidate) -> bool:
        """Add ``candidate`` unless it is dominated; drop what it dominates."""
        if any(existing.dominates(candidate) for existing in self._candidates):
            return False
        self._candidates = [c for c in self._candidates if not candidate.dominates(c)]
        self._candidates.append(candidate)
        return True

    def candidates(self) -> List[ParetoCandidate]:
        return sorted(self._candidates, key=lambda c: (c.size_bytes, c.error, c.order))

    def __len__(self) -> int:
        return len(self._candidates)

    def __iter__(self):
        return iter(self.candidates())


def spread(candidates: Sequence[ParetoCandidate], count: int) -> List[ParetoCandidate]:
    """``count`` evenly spaced picks from a size-sorted frontier (ends included)."""
    if count >= len(candidates):
        return list(candidates)
    if count <= 1:
        return list(candidates[:max(0, count)])
    step = (len(candidates) - 1) / (count - 1)
    picks = sorted({round(i * step) for i in range(count)})
    return [candidates[i] for i in picks]


def _evaluate(results: "queue.Queue", order: int, data: TrainingData, models: Tuple[str, ...],
              branching_factor: int, config: TrainerConfig) -> None:
    try:
        rmi = train(data, models, branching_factor, config)
    except (ConfigurationError, TrainingError) as exc:
        results.put((order, None, exc, False))
    except Exception as exc:
        results.put((order, None, exc, True))
    else:
        candidate = ParetoCandidate(
            models=tuple(models),
            branching_factor=branching_factor,
            size_bytes=rmi_size(rmi),
            error=rmi.model_avg_log2_error,
            max_error=rmi.model_max_error,
            build_time_ns=rmi.build_time_ns,
            order=order,
        )
        results.put((order, candidate, None, False))


def find_pareto_efficient_configs(
    data: TrainingData,
    search_space: Optional[SearchSpace] = None,
    *,
    max_workers: Optional[int] = None,
    time_budget_s: Optional[float] = None,
    max_configs: Optional[int] = None,
    restrict: Optional[int] = None,
    sample_step: int = 1,
    trainer_config: Optional[TrainerConfig] = None,
) -> List[ParetoCandidate]:
    """Train every configuration in the search space (within budget) and
    return the Pareto-efficient ones sorted by size, then error.

    Args:
        data: sorted training pairs.
        search_space: defaults to ``SearchSpace.default(len(data), key_type)``.
        max_workers: configurations trained concurrently.
        time_budget_s: stop submitting new configurations after this long.
        max_configs: stop after submitting this many configurations.
        restrict: return at most this many evenly spaced frontier entries.
        sample_step: train on every ``sample_step``-th pair only.
        trainer_config: per-configuration trainer settings (sequential by
            default, since configurations already run in parallel).
    """
    space = search_space or SearchSpace.default(len(data), data.key_type)
    train_data = data.sample(sample_step) if sample_step > 1 else data
    config = trainer_config or TrainerConfig(max_workers=1)
    workers = max_workers or min(32, (os.cpu_count() or 1) + 4)

    deadline = time.monotonic() + time_budget_s if time_budget_s is not None else None
    pending = enumerate(space.configurations())
    results: "queue.Queue" = queue.Queue()
    frontier = ParetoFrontier()
    submitted = discarded = 0

    logger.info("searching %d configurations on %d rows with %d workers", len(space), len(train_data), workers)

    with ThreadPoolExecutor(max_workers=workers) as pool:

        def submit_next() -> bool:
            nonlocal submitted
            if max_configs is not None and submitted >= max_configs:
                return False
            if deadline is not None and time.monotonic() >= deadline:
                return False
            nxt = next(pending, None)
            if nxt is None:
                return False
            order, (models, bf) = nxt
            pool.submit(_evaluate, results, order, train_data, models, bf, config)
            submitted += 1
            return True

        in_flight = 0
        while in_flight < workers and submit_next():
            in_flight += 1

        while in_flight:
            order, candidate, exc, fatal = results.get()
            in_flight -= 1
            if fatal:
                raise exc
            if exc is not None:
                discarded += 1
                logger.info("configuration #%d discarded: %s", order, exc)
            elif frontier.insert(candidate):
                logger.debug("frontier += %s (%d bytes, err %.4f)", candidate.config,
                             candidate.size_bytes, candidate.error)
            if submit_next():
                in_flight += 1

    front = frontier.candidates()
    logger.info("evaluated %d configurations (%d discarded), %d on the frontier",
                submitted, discarded, len(front))
    if restrict is not None:
        front = spread(front, restrict)
    return front
