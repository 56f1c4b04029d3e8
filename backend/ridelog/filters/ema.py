"""
Exponential moving average.
"""

import numpy as np
from numpy.typing import NDArray

from ridelog.filters.base import FilterStage


class EmaFilter(FilterStage):
    """``y = alpha * x + (1 - alpha) * y_prev``, seeded with the first sample."""

    name = "ema"
    window_size = 1

    def __init__(self, alpha: float = 0.3):
        super().__init__()
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self._state = np.zeros(1)

    def _initialize(self, width: int) -> None:
        self._state = np.zeros(width)

    def _apply(self, vector: NDArray[np.float64]) -> NDArray[np.float64]:
        if self._count == 0:
            self._state = vector.copy()
        else:
            self._state = self.alpha * vector + (1.0 - self.alpha) * self._state
        return self._state.copy()

    def describe(self) -> str:
        return f"EMA({self.alpha:g})"
