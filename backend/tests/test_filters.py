"""
Tests for filter stages, chains and the filtering stage.
"""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy.signal import lfilter, lfilter_zi

from ridelog.filters.base import RingBuffer
from ridelog.filters.chain import (
    FilterChain,
    SmoothLevel,
    for_barometer,
    for_gps,
    for_gyro,
    for_imu_logging,
    for_magnetometer,
    for_performance,
    for_telemetry_display,
)
from ridelog.filters.ema import EmaFilter
from ridelog.filters.lowpass import LowPassFilter, butterworth_coefficients
from ridelog.filters.median import MedianFilter
from ridelog.filters.outlier import OutlierFilter
from ridelog.models.config import FilterSettings
from ridelog.models.events import BaroEvent, GpsEvent, ImuEvent, SensorType, empty_streams
from ridelog.services.filtering import estimate_sample_rate, filter_sensor_streams


ALL_PRESETS = [
    lambda: for_imu_logging(100.0),
    lambda: for_gyro(100.0),
    lambda: for_magnetometer(),
    lambda: for_barometer(),
    lambda: for_telemetry_display(),
    lambda: for_gps(),
    lambda: for_imu_logging(100.0, FilterSettings(imu_outlier_sigma=3.0)),
    lambda: for_performance(5.0, SmoothLevel.MODERATE, 100.0),
    lambda: for_performance(10.0, SmoothLevel.AGGRESSIVE, 100.0),
]


class TestRingBuffer:
    def test_wraps_around(self):
        buffer = RingBuffer(3)
        for value in (1.0, 2.0, 3.0, 4.0):
            buffer.push(np.array([value]))

        assert len(buffer) == 3
        assert buffer.is_full
        assert sorted(buffer.values().ravel()) == [2.0, 3.0, 4.0]

    def test_partial_fill(self):
        buffer = RingBuffer(5, width=2)
        buffer.push(np.array([1.0, 2.0]))

        assert buffer.values().shape == (1, 2)

    def test_clear(self):
        buffer = RingBuffer(2)
        buffer.push(np.array([1.0]))
        buffer.clear()

        assert len(buffer) == 0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RingBuffer(0)


class TestMedianFilter:
    def test_removes_spike(self):
        median = MedianFilter(5)
        outputs = [median.filter(v) for v in (1.0, 1.0, 1.0, 50.0, 1.0)]

        assert outputs[3] == 1.0

    def test_passthrough_until_three_samples(self):
        median = MedianFilter(5)

        assert median.filter(4.0) == 4.0
        assert median.filter(8.0) == 8.0
        assert median.filter(6.0) == 6.0

    def test_even_window_made_odd(self):
        assert MedianFilter(4).window_size == 5

    def test_vector_input(self):
        median = MedianFilter(3)
        for vector in ([1.0, 10.0], [2.0, 30.0], [3.0, 20.0]):
            output = median.filter(np.array(vector))

        assert_allclose(output, [2.0, 20.0])


class TestLowPassFilter:
    def test_unit_dc_gain(self):
        b, a = butterworth_coefficients(10.0, 100.0)

        assert a[0] == 1.0
        assert_allclose(b.sum() / a.sum(), 1.0)

    def test_matches_primed_lfilter(self):
        """Per-sample output equals a block filter started in steady state at the first sample."""
        rng = np.random.default_rng(11)
        signal = 9.81 + rng.normal(0.0, 0.4, 200)
        lowpass = LowPassFilter(10.0, 100.0)

        output = np.array([lowpass.filter(v) for v in signal])

        b, a = butterworth_coefficients(10.0, 100.0)
        expected, _ = lfilter(b, a, signal, zi=lfilter_zi(b, a) * signal[0])
        assert_allclose(output, expected, rtol=1e-9)

    def test_attenuates_high_frequency(self):
        """A tone well above the cutoff comes out much smaller."""
        lowpass = LowPassFilter(5.0, 100.0)
        t = np.arange(400) / 100.0
        signal = np.sin(2 * np.pi * 40.0 * t)

        output = np.array([lowpass.filter(v) for v in signal])

        assert np.abs(output[200:]).max() < 0.1

    def test_passes_low_frequency(self):
        lowpass = LowPassFilter(20.0, 100.0)
        t = np.arange(400) / 100.0
        signal = np.sin(2 * np.pi * 1.0 * t)

        output = np.array([lowpass.filter(v) for v in signal])

        assert np.abs(output[200:]).max() > 0.9

    def test_cutoff_clamped_below_nyquist(self):
        lowpass = LowPassFilter(80.0, 100.0)

        assert lowpass.cutoff_hz == pytest.approx(45.0)

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            LowPassFilter(10.0, 0.0)


class TestOutlierFilter:
    @staticmethod
    def _warm_up(outlier, width=None):
        """Feed one statistics interval of values alternating 1.0 and 1.2."""
        for i in range(outlier.stats_interval):
            value = 1.0 if i % 2 == 0 else 1.2
            outlier.filter(value if width is None else np.full(width, value))

    def test_spike_replaced_with_recent_average(self):
        outlier = OutlierFilter(sigma=3.0, history=5)
        self._warm_up(outlier)

        assert outlier.filter(50.0) == pytest.approx(1.12)
        assert outlier.outlier_count == 1
        assert outlier.filter(1.0) == 1.0

    def test_nothing_rejected_before_statistics(self):
        outlier = OutlierFilter()
        for value in (1.0, 1.2, 1.0):
            outlier.filter(value)

        assert outlier.filter(50.0) == 50.0
        assert outlier.outlier_count == 0

    def test_axes_judged_separately(self):
        outlier = OutlierFilter(history=5)
        for i in range(outlier.stats_interval):
            outlier.filter(np.array([1.0 if i % 2 == 0 else 1.2, 5.0]))

        output = outlier.filter(np.array([50.0, 9.0]))

        assert_allclose(output, [1.12, 9.0])

    def test_reset(self):
        outlier = OutlierFilter(history=5)
        self._warm_up(outlier)
        outlier.filter(50.0)
        outlier.reset()

        assert outlier.outlier_count == 0
        assert outlier.filter(50.0) == 50.0

    def test_invalid_sigma(self):
        with pytest.raises(ValueError):
            OutlierFilter(sigma=0.0)


class TestEmaFilter:
    def test_seeded_with_first_sample(self):
        ema = EmaFilter(0.5)

        assert ema.filter(10.0) == 10.0
        assert ema.filter(20.0) == 15.0
        assert ema.filter(20.0) == 17.5

    def test_alpha_bounds(self):
        with pytest.raises(ValueError):
            EmaFilter(0.0)
        with pytest.raises(ValueError):
            EmaFilter(1.5)


class TestFilterChain:
    """Tests for chains and presets."""

    @pytest.mark.parametrize("make_chain", ALL_PRESETS)
    def test_constant_converges_within_window(self, make_chain):
        """A constant input comes through unchanged after the chain's total window."""
        chain = make_chain()
        output = None
        for _ in range(chain.total_window):
            output = chain.filter(np.array([3.5, -1.25, 9.81]))

        assert_allclose(output, [3.5, -1.25, 9.81], atol=1e-9)
        assert chain.is_ready()

    @pytest.mark.parametrize("make_chain", ALL_PRESETS)
    def test_converges_after_reset(self, make_chain):
        chain = make_chain()
        for value in (100.0, -50.0, 7.0):
            chain.filter(value)
        chain.reset()

        output = None
        for _ in range(chain.total_window):
            output = chain.filter(2.0)

        assert output == pytest.approx(2.0)

    def test_total_window(self):
        chain = for_imu_logging(100.0, FilterSettings(imu_median_window=5))

        assert chain.total_window == 5 + 2 + 1
        assert len(chain) == 3

    def test_non_finite_passthrough(self):
        """NaN input is returned as is and leaves the state alone."""
        chain = for_telemetry_display()
        chain.filter(1.0)

        assert math.isnan(chain.filter(float("nan")))
        assert chain.filter(1.0) == 1.0

    def test_latency_tracked(self):
        chain = for_imu_logging(100.0)
        for _ in range(10):
            chain.filter(np.array([0.0, 0.0, 9.81]))

        assert chain.average_latency_ns > 0
        assert chain.last_latency_ns >= 0

    def test_describe(self):
        chain = FilterChain([MedianFilter(3), EmaFilter(0.2)], name="test")

        assert chain.describe() == "test: Median(3) -> EMA(0.2)"

    def test_outlier_stage_opt_in(self):
        plain = for_imu_logging(100.0)
        guarded = for_imu_logging(100.0, FilterSettings(imu_outlier_sigma=3.0))

        assert not any(isinstance(stage, OutlierFilter) for stage in plain.stages)
        assert isinstance(guarded.stages[0], OutlierFilter)
        assert len(guarded) == len(plain) + 1

    def test_gps_chain_drops_position_jump(self):
        chain = for_gps()
        track = [(45.0, 7.0), (45.0, 7.0), (45.0, 7.0), (45.5, 7.5), (45.0, 7.0)]

        outputs = [chain.filter(np.array(point)) for point in track]

        assert_allclose(outputs[3], [45.0, 7.0])
        assert chain.describe() == "gps: Median(3) -> EMA(0.4)"


class TestPerformanceChain:
    """Tests for latency-budgeted chains."""

    @staticmethod
    def _stage_types(chain):
        return [type(stage) for stage in chain.stages]

    def test_minimal(self):
        chain = for_performance(1.0, SmoothLevel.MINIMAL, 100.0)

        assert self._stage_types(chain) == [EmaFilter]
        assert chain.stages[0].alpha == 0.5

    def test_moderate_adds_lowpass_with_budget(self):
        tight = for_performance(3.0, SmoothLevel.MODERATE, 100.0)
        roomy = for_performance(5.0, SmoothLevel.MODERATE, 100.0)

        assert self._stage_types(tight) == [EmaFilter]
        assert self._stage_types(roomy) == [LowPassFilter, EmaFilter]
        assert roomy.stages[0].cutoff_hz == 25.0

    def test_moderate_cutoff_follows_rate(self):
        chain = for_performance(5.0, SmoothLevel.MODERATE, 50.0)

        assert chain.stages[0].cutoff_hz == pytest.approx(12.5)

    @pytest.mark.parametrize("budget, expected", [
        (2.0, [EmaFilter]),
        (3.0, [MedianFilter, EmaFilter]),
        (10.0, [MedianFilter, LowPassFilter, EmaFilter]),
    ])
    def test_aggressive_stages_by_budget(self, budget, expected):
        chain = for_performance(budget, SmoothLevel.AGGRESSIVE, 100.0)

        assert self._stage_types(chain) == expected
        assert chain.stages[-1].alpha == 0.2


class TestFilteringStage:
    """Tests for filter_sensor_streams."""

    @pytest.fixture
    def noisy_streams(self):
        rng = np.random.default_rng(3)
        streams = empty_streams()
        streams[SensorType.IMU] = [
            ImuEvent(1000 + i * 10, *(rng.normal(0.0, 0.5, 3) + (0.0, 0.0, 9.81)), 0.0, 0.0, 0.0)
            for i in range(300)
        ]
        streams[SensorType.GPS] = [GpsEvent(1000, 45.0, 7.0, accuracy=3.0)]
        streams[SensorType.BARO] = [BaroEvent(1000 + i * 100, 200.0 + i, 1000.0) for i in range(5)]
        return streams

    def test_sample_rate(self):
        assert estimate_sample_rate([0, 10, 20, 30]) == pytest.approx(100.0)
        assert estimate_sample_rate([5]) is None
        assert estimate_sample_rate([5, 5]) is None

    def test_imu_noise_reduced(self, noisy_streams):
        filtered = filter_sensor_streams(noisy_streams)

        raw = np.array([e.accel_z for e in noisy_streams[SensorType.IMU]])
        smooth = np.array([e.accel_z for e in filtered[SensorType.IMU]])
        assert smooth.std() < raw.std() / 2
        assert len(smooth) == len(raw)

    def test_input_untouched_and_gps_copied(self, noisy_streams):
        first = noisy_streams[SensorType.IMU][5]

        filtered = filter_sensor_streams(noisy_streams)

        assert noisy_streams[SensorType.IMU][5] is first
        assert filtered[SensorType.GPS] == noisy_streams[SensorType.GPS]
        assert filtered[SensorType.GPS] is not noisy_streams[SensorType.GPS]

    def test_barometer_smoothed(self, noisy_streams):
        filtered = filter_sensor_streams(noisy_streams)

        altitudes = [e.altitude for e in filtered[SensorType.BARO]]
        assert altitudes[0] == 200.0
        assert altitudes[-1] < 204.0

    def test_disabled(self, noisy_streams):
        filtered = filter_sensor_streams(noisy_streams, FilterSettings(enabled=False))

        assert filtered[SensorType.IMU] == noisy_streams[SensorType.IMU]
