"""Leaf-layer error statistics, computed as a chunked parallel reduction."""

from __future__ import annotations

import math
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import List, Optional

import numpy as np


@dataclass(frozen=True)
class ErrorStatistics:
    avg_error: float
    avg_l2_error: float
    avg_log2_error: float
    max_error: int
    max_error_idx: int
    max_log2_error: float

    @classmethod
    def empty(cls) -> "ErrorStatistics":
        return cls(0.0, 0.0, 0.0, 0, 0, 0.0)


@dataclass(frozen=True)
class _Partial:
    count: int
    sum_abs: float
    sum_l2: float
    sum_log2: float
    max_error: int
    max_idx: int


def _summarize_chunk(predicted: np.ndarray, actual: np.ndarray, offset: int) -> _Partial:
    err = np.abs(predicted - actual)
    errf = err.astype(np.float64)
    # argmax returns the first maximum, i.e. the lowest index on ties
    local = int(np.argmax(err))
    return _Partial(
        count=int(err.shape[0]),
        sum_abs=float(errf.sum()),
        sum_l2=float(np.dot(errf, errf)),
        sum_log2=float(np.log2(errf + 1.0).sum()),
        max_error=int(err[local]),
        max_idx=offset + local,
    )


def _combine(parts: List[_Partial]) -> ErrorStatistics:
    count = sum(p.count for p in parts)
    best = parts[0]
    for part in parts[1:]:
        if part.max_error > best.max_error or (
            part.max_error == best.max_error and part.max_idx < best.max_idx
        ):
            best = part
    return ErrorStatistics(
        avg_error=sum(p.sum_abs for p in parts) / count,
        avg_l2_error=sum(p.sum_l2 for p in parts) / count,
        avg_log2_error=sum(p.sum_log2 for p in parts) / count,
        max_error=best.max_error,
        max_error_idx=best.max_idx,
        max_log2_error=math.log2(best.max_error + 1.0),
    )


def summarize_errors(
    predicted: np.ndarray,
    actual: np.ndarray,
    *,
    chunk_size: int = 1 << 16,
    executor: Optional[Executor] = None,
) -> ErrorStatistics:
    """Mean absolute / L2 / log2 error and the (lowest-index) maximum.

    Chunks are mapped on ``executor`` when given; the reduction itself is
    order-independent apart from the max tie-break, which always prefers the
    lowest index.
    """
    predicted = np.asarray(predicted, dtype=np.int64)
    actual = np.asarray(actual, dtype=np.int64)
    n = predicted.shape[0]
    if n == 0:
        return ErrorStatistics.empty()

    chunk_size = max(1, int(chunk_size))
    offsets = range(0, n, chunk_size)
    if executor is None or n <= chunk_size:
        parts = [_summarize_chunk(predicted[o:o + chunk_size], actual[o:o + chunk_size], o) for o in offsets]
    else:
        futures = [
            executor.submit(_summarize_chunk, predicted[o:o + chunk_size], actual[o:o + chunk_size], o)
            for o in offsets
        ]
        parts = [f.result() for f in futures]
    return _combine(parts)


def leaf_max_errors(predicted: np.ndarray, actual: np.ndarray, assign: np.ndarray, num_leaves: int) -> np.ndarray:
    """Observed max absolute error per leaf model (0 for leaves with no rows)."""
    out = np.zeros(num_leaves, dtype=np.int64)
    if predicted.shape[0]:
        np.maximum.at(out, assign, np.abs(np.asarray(predicted, dtype=np.int64) - actual))
    return out
