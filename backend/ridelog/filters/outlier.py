"""
Statistical outlier rejection.
"""

import numpy as np
from numpy.typing import NDArray

from ridelog.filters.base import FilterStage, RingBuffer


class OutlierFilter(FilterStage):
    """
    Replaces samples further than ``sigma`` standard deviations from the
    running mean with the average of the recent history.

    Mean and standard deviation are refreshed from the history every
    ``stats_interval`` samples, so nothing is rejected before the first
    refresh. Each axis is judged on its own.
    """

    name = "outlier"
    window_size = 1

    def __init__(self, sigma: float = 3.0, history: int = 5, stats_interval: int = 50):
        super().__init__()
        if sigma <= 0:
            raise ValueError(f"sigma must be positive, got {sigma}")
        if stats_interval < 1:
            raise ValueError("stats_interval must be positive")
        self.sigma = sigma
        self.history = history
        self.stats_interval = stats_interval
        self.outlier_count = 0
        self._buffer = RingBuffer(history)
        self._mean = np.zeros(1)
        self._std = np.zeros(1)
        self._since_update = 0

    def _initialize(self, width: int) -> None:
        self._buffer = RingBuffer(self.history, width)
        self._mean = np.zeros(width)
        self._std = np.zeros(width)
        self._since_update = 0

    def _apply(self, vector: NDArray[np.float64]) -> NDArray[np.float64]:
        outliers = (self._std > 0.0) & (np.abs(vector - self._mean) > self.sigma * self._std)
        if outliers.any() and len(self._buffer) > 0:
            output = np.where(outliers, self._buffer.values().mean(axis=0), vector)
            self.outlier_count += int(outliers.sum())
        else:
            output = vector.copy()

        # Replaced values go into the history, not the rejected ones
        self._buffer.push(output)
        self._since_update += 1
        if self._since_update >= self.stats_interval:
            self._refresh_statistics()
        return output

    def _refresh_statistics(self) -> None:
        self._since_update = 0
        if len(self._buffer) > 1:
            history = self._buffer.values()
            self._mean = history.mean(axis=0)
            self._std = history.std(axis=0, ddof=1)

    def reset(self) -> None:
        super().reset()
        self._buffer.clear()
        self._since_update = 0
        self.outlier_count = 0

    def describe(self) -> str:
        return f"Outlier({self.sigma:g}σ/{self.history})"
