"""
Second-order Butterworth low-pass.

Coefficients come from ``scipy.signal.butter``; samples are filtered one at a
time with the direct-form difference equation

    y[n] = b0*x[n] + b1*x[n-1] + b2*x[n-2] - a1*y[n-1] - a2*y[n-2]
"""

import logging

import numpy as np
from numpy.typing import NDArray
from scipy.signal import butter

from ridelog.filters.base import FilterStage


logger = logging.getLogger(__name__)

FILTER_ORDER = 2
MAX_CUTOFF_RATIO = 0.45  # of the sample rate, keeps fc below Nyquist


def butterworth_coefficients(
    cutoff_hz: float,
    sample_rate_hz: float,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Return (b, a) with ``a[0] == 1``."""
    b, a = butter(FILTER_ORDER, cutoff_hz, btype="low", fs=sample_rate_hz)
    return b / a[0], a / a[0]


class LowPassFilter(FilterStage):
    """
    Fixed-cutoff low-pass for vibration removal.

    The delay line is primed with the first sample, so a constant input comes
    straight through without a start-up transient (unit DC gain).
    """

    name = "lowpass"
    window_size = FILTER_ORDER

    def __init__(self, cutoff_hz: float, sample_rate_hz: float):
        super().__init__()
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be positive")
        limit = sample_rate_hz * MAX_CUTOFF_RATIO
        if cutoff_hz >= limit:
            logger.debug(f"Cutoff {cutoff_hz} Hz clamped to {limit:.1f} Hz at {sample_rate_hz:.1f} Hz")
            cutoff_hz = limit
        self.cutoff_hz = cutoff_hz
        self.sample_rate_hz = sample_rate_hz
        self.b, self.a = butterworth_coefficients(cutoff_hz, sample_rate_hz)
        self._x = self._y = np.zeros((FILTER_ORDER, 1))

    def _initialize(self, width: int) -> None:
        self._x = np.zeros((FILTER_ORDER, width))
        self._y = np.zeros((FILTER_ORDER, width))

    def _apply(self, vector: NDArray[np.float64]) -> NDArray[np.float64]:
        if self._count == 0:
            self._x = np.tile(vector, (FILTER_ORDER, 1))
            self._y = np.tile(vector, (FILTER_ORDER, 1))
            return vector.copy()

        # Row 0 of each delay line holds the previous sample
        output = self.b[0] * vector + self.b[1:] @ self._x - self.a[1:] @ self._y
        self._x = np.vstack([vector, self._x[:-1]])
        self._y = np.vstack([output, self._y[:-1]])
        return output

    def describe(self) -> str:
        return f"Butterworth2({self.cutoff_hz:g}Hz@{self.sample_rate_hz:g}Hz)"
