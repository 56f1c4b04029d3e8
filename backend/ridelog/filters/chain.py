"""
Filter chains and the per-sensor presets.

A chain runs its stages in order. Presets trade smoothing for latency:
logging/analysis chains smooth heavily, display chains use one fast EMA.
"""

from enum import Enum
from typing import Optional

from ridelog.filters.base import FilterInput, FilterStage
from ridelog.filters.ema import EmaFilter
from ridelog.filters.lowpass import LowPassFilter
from ridelog.filters.median import MedianFilter
from ridelog.filters.outlier import OutlierFilter
from ridelog.models.config import FilterSettings


class FilterChain:
    """Ordered list of filter stages with no state shared between chains."""

    def __init__(self, stages: list[FilterStage], name: str = "chain"):
        self.stages = stages
        self.name = name

    def filter(self, value: FilterInput, timestamp: Optional[int] = None) -> FilterInput:
        for stage in self.stages:
            value = stage.filter(value, timestamp)
        return value

    def reset(self) -> None:
        for stage in self.stages:
            stage.reset()

    def is_ready(self) -> bool:
        return all(stage.is_ready() for stage in self.stages)

    @property
    def total_window(self) -> int:
        """Samples after which a constant input is guaranteed to come through unchanged."""
        return sum(stage.window_size for stage in self.stages)

    @property
    def last_latency_ns(self) -> int:
        return sum(stage.last_latency_ns for stage in self.stages)

    @property
    def average_latency_ns(self) -> float:
        return sum(stage.average_latency_ns for stage in self.stages)

    def describe(self) -> str:
        return f"{self.name}: " + " -> ".join(stage.describe() for stage in self.stages)

    def __len__(self) -> int:
        return len(self.stages)


# ============================================================================
# Presets
# ============================================================================

def for_imu_logging(sample_rate_hz: float, settings: Optional[FilterSettings] = None) -> FilterChain:
    """
    Accelerometer: median spike removal, vibration low-pass, then heavy EMA.

    With ``imu_outlier_sigma`` set, an outlier rejection stage runs first.
    """
    settings = settings or FilterSettings()
    stages: list[FilterStage] = []
    if settings.imu_outlier_sigma > 0:
        stages.append(OutlierFilter(settings.imu_outlier_sigma, settings.imu_outlier_history))
    stages += [
        MedianFilter(settings.imu_median_window),
        LowPassFilter(settings.imu_cutoff_hz, sample_rate_hz),
        EmaFilter(settings.imu_ema_alpha),
    ]
    return FilterChain(stages, name="imu_logging")


def for_gyro(sample_rate_hz: float, settings: Optional[FilterSettings] = None) -> FilterChain:
    """Gyroscope: lighter smoothing so rotation onsets stay sharp."""
    settings = settings or FilterSettings()
    return FilterChain(
        [
            LowPassFilter(settings.gyro_cutoff_hz, sample_rate_hz),
            EmaFilter(settings.gyro_ema_alpha),
        ],
        name="gyro",
    )


def for_magnetometer(settings: Optional[FilterSettings] = None) -> FilterChain:
    settings = settings or FilterSettings()
    return FilterChain(
        [MedianFilter(settings.mag_median_window), EmaFilter(settings.mag_ema_alpha)],
        name="magnetometer",
    )


def for_barometer(settings: Optional[FilterSettings] = None) -> FilterChain:
    settings = settings or FilterSettings()
    return FilterChain([EmaFilter(settings.baro_ema_alpha)], name="barometer")


def for_telemetry_display(settings: Optional[FilterSettings] = None) -> FilterChain:
    """Live display: a single fast EMA."""
    settings = settings or FilterSettings()
    return FilterChain([EmaFilter(settings.display_ema_alpha)], name="display")


def for_gps(settings: Optional[FilterSettings] = None) -> FilterChain:
    """Latitude/longitude for display: median drops position jumps, EMA smooths."""
    settings = settings or FilterSettings()
    return FilterChain(
        [MedianFilter(settings.gps_median_window), EmaFilter(settings.gps_ema_alpha)],
        name="gps",
    )


# ============================================================================
# Latency-budgeted chains
# ============================================================================

class SmoothLevel(Enum):
    MINIMAL = "MINIMAL"
    MODERATE = "MODERATE"
    AGGRESSIVE = "AGGRESSIVE"


def for_performance(max_latency_ms: float, smoothness: SmoothLevel, sample_rate_hz: float) -> FilterChain:
    """
    Build the smoothest chain that fits a per-sample latency budget.

    Args:
        max_latency_ms: Budget per sample; stages are only added when it allows
        smoothness: How much smoothing to aim for
        sample_rate_hz: Rate of the input, sets the low-pass cutoff

    Returns:
        A chain that always ends in an EMA stage
    """
    stages: list[FilterStage] = []
    if smoothness is SmoothLevel.MINIMAL:
        stages.append(EmaFilter(0.5))
    elif smoothness is SmoothLevel.MODERATE:
        if max_latency_ms > 3.0:
            stages.append(LowPassFilter(min(sample_rate_hz / 4.0, 25.0), sample_rate_hz))
        stages.append(EmaFilter(0.3))
    else:
        if max_latency_ms > 2.0:
            stages.append(MedianFilter(3))
        if max_latency_ms > 4.0:
            stages.append(LowPassFilter(min(sample_rate_hz / 5.0, 20.0), sample_rate_hz))
        stages.append(EmaFilter(0.2))
    return FilterChain(stages, name=f"performance_{smoothness.value.lower()}")
