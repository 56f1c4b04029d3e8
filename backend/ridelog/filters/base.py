"""
Building blocks shared by all filter stages.
"""

import time
from abc import ABC, abstractmethod
from typing import Optional, Union

import numpy as np
from numpy.typing import NDArray


FilterInput = Union[float, NDArray[np.float64]]


class RingBuffer:
    """
    Fixed-capacity sample history.

    Backed by one preallocated (capacity, width) array, a write index and a
    fill count; pushing never allocates.
    """

    def __init__(self, capacity: int, width: int = 1):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._data = np.zeros((capacity, width), dtype=np.float64)
        self._index = 0
        self._count = 0

    @property
    def capacity(self) -> int:
        return self._data.shape[0]

    @property
    def is_full(self) -> bool:
        return self._count == self.capacity

    def __len__(self) -> int:
        return self._count

    def push(self, values: NDArray[np.float64]) -> None:
        self._data[self._index] = values
        self._index = (self._index + 1) % self.capacity
        self._count = min(self._count + 1, self.capacity)

    def values(self) -> NDArray[np.float64]:
        """Filled rows, in storage order."""
        if self.is_full:
            return self._data
        return self._data[:self._count]

    def clear(self) -> None:
        self._index = 0
        self._count = 0


class FilterStage(ABC):
    """
    One stateful filter stage.

    Accepts a scalar or a vector; the vector width is fixed by the first
    sample after construction or ``reset``. Non-finite input is passed
    through without touching the state.
    """

    name = "filter"
    window_size = 1  # samples needed before the output is meaningful

    def __init__(self):
        self._width: Optional[int] = None
        self._count = 0
        self.last_latency_ns = 0
        self._total_latency_ns = 0

    def filter(self, value: FilterInput, timestamp: Optional[int] = None) -> FilterInput:
        started = time.perf_counter_ns()
        vector = np.atleast_1d(np.asarray(value, dtype=np.float64))
        if not np.all(np.isfinite(vector)):
            return value

        if self._width != vector.shape[0]:
            self.reset()
            self._width = vector.shape[0]
            self._initialize(self._width)

        output = self._apply(vector)
        self._count += 1

        self.last_latency_ns = time.perf_counter_ns() - started
        self._total_latency_ns += self.last_latency_ns

        if np.ndim(value) == 0:
            return float(output[0])
        return output

    def reset(self) -> None:
        self._width = None
        self._count = 0
        self.last_latency_ns = 0
        self._total_latency_ns = 0

    def is_ready(self) -> bool:
        return self._count >= self.window_size

    @property
    def sample_count(self) -> int:
        return self._count

    @property
    def average_latency_ns(self) -> float:
        if self._count == 0:
            return 0.0
        return self._total_latency_ns / self._count

    def describe(self) -> str:
        return self.name

    @abstractmethod
    def _initialize(self, width: int) -> None:
        """Allocate state for vectors of ``width`` values."""

    @abstractmethod
    def _apply(self, vector: NDArray[np.float64]) -> NDArray[np.float64]:
        """Filter one finite sample."""
