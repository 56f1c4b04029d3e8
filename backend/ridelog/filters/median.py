"""
Median-of-N spike filter.
"""

import numpy as np
from numpy.typing import NDArray

from ridelog.filters.base import FilterStage, RingBuffer


MIN_MEDIAN_SAMPLES = 3


class MedianFilter(FilterStage):
    """
    Removes single-sample spikes (GPS jumps, vibration hits).

    Passes samples through unchanged until three have been seen.
    """

    name = "median"

    def __init__(self, window_size: int = 5):
        super().__init__()
        window_size = max(window_size, MIN_MEDIAN_SAMPLES)
        if window_size % 2 == 0:
            window_size += 1
        self.window_size = window_size
        self._buffer = RingBuffer(window_size)

    def _initialize(self, width: int) -> None:
        self._buffer = RingBuffer(self.window_size, width)

    def _apply(self, vector: NDArray[np.float64]) -> NDArray[np.float64]:
        self._buffer.push(vector)
        if len(self._buffer) < MIN_MEDIAN_SAMPLES:
            return vector.copy()
        return np.median(self._buffer.values(), axis=0)

    def reset(self) -> None:
        super().reset()
        self._buffer.clear()

    def describe(self) -> str:
        return f"Median({self.window_size})"
