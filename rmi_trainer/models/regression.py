"""Single-pass least-squares accumulator shared by the linear-family models."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple

import numpy as np


@dataclass
class RunningRegression:
    """Welford-style running means and co-moments for a simple linear fit.

    ``push`` folds one (x, y) point in without revisiting earlier points, so a
    segment can grow one point at a time while its fit stays current.
    """

    n: int = 0
    mean_x: float = 0.0
    mean_y: float = 0.0
    c: float = 0.0
    m2: float = 0.0

    def push(self, x: float, y: float) -> None:
        self.n += 1
        dx = x - self.mean_x
        self.mean_x += dx / self.n
        self.mean_y += (y - self.mean_y) / self.n
        self.c += dx * (y - self.mean_y)
        self.m2 += dx * (x - self.mean_x)

    def copy(self) -> "RunningRegression":
        return replace(self)

    def line(self) -> Tuple[float, float]:
        """(intercept, slope) of the least-squares line over the points so far."""
        if self.n == 0:
            return 0.0, 0.0
        if self.n == 1:
            return self.mean_y, 0.0

        cov = self.c / (self.n - 1)
        var = self.m2 / (self.n - 1)
        if var == 0.0:
            return self.mean_y, 0.0

        slope = cov / var
        return self.mean_y - slope * self.mean_x, slope


def fit_line(xs: np.ndarray, ys: np.ndarray) -> Tuple[float, float]:
    """Vectorised least squares on centred data, same degenerate-case policy
    as ``RunningRegression.line``."""
    n = xs.shape[0]
    if n == 0:
        return 0.0, 0.0
    mean_x = float(xs.mean())
    mean_y = float(ys.mean())
    if n == 1:
        return mean_y, 0.0

    dx = xs - mean_x
    var = float(np.dot(dx, dx))
    if var == 0.0 or not np.isfinite(var):
        return mean_y, 0.0

    slope = float(np.dot(dx, ys - mean_y)) / var
    return mean_y - slope * mean_x, slope
