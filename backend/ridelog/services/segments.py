"""
Ride segment detection.

The session is cut into fixed activity windows. Each window is classified
from the share of "moving" windows around it, runs of equal classification
become segments, and segments shorter than the minimum are folded into a
neighbour so the segments always cover the whole session.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ridelog.models.config import GRAVITY, SegmentSettings
from ridelog.models.events import SensorStreams
from ridelog.models.metrics import DerivedMetrics
from ridelog.models.ride import RideSegment, SegmentStatistics, SegmentType
from ridelog.services.progress import ProcessingContext, ProcessingStage
from ridelog.utils.geo import path_length
from ridelog.utils.series import SessionArrays, time_slice


logger = logging.getLogger(__name__)

Span = tuple[int, int, SegmentType]


@dataclass(frozen=True)
class ActivityWindow:
    start_time: int
    end_time: int
    activity: float  # 0-100
    is_moving: bool


class RideSegmentDetector:
    """Partitions a session into ACTIVE_RIDING / PAUSE / STOP segments."""

    def __init__(self, settings: Optional[SegmentSettings] = None):
        self.settings = settings or SegmentSettings()

    def detect(
        self,
        events: SensorStreams,
        derived: DerivedMetrics,
        start_time: int,
        end_time: int,
        context: Optional[ProcessingContext] = None,
        arrays: Optional[SessionArrays] = None,
    ) -> list[RideSegment]:
        """
        Split a session into contiguous riding, pause and stop segments.

        Args:
            events: Sensor events per sensor type
            derived: Derived metrics of the same session
            start_time: Session start, ms
            end_time: Session end, ms
            context: Progress and cancellation for the running pipeline, if any
            arrays: Column arrays already built from events and derived

        Returns:
            Segments in time order covering [start_time, end_time] without gaps;
            empty when the session spans no time
        """
        arrays = arrays or SessionArrays.from_streams(events, derived)

        windows = self.build_windows(arrays, start_time, end_time)
        if not windows:
            return []
        if context is not None:
            context.report(ProcessingStage.SEGMENTATION, 0.3, f"{len(windows)} activity windows")

        types = self.classify_windows(windows)
        spans = self._windows_to_spans(windows, types, start_time, end_time)
        spans = self._merge_short_spans(spans)

        segments = []
        for index, (start, end, segment_type) in enumerate(spans):
            is_last = index == len(spans) - 1
            segments.append(RideSegment(
                start_time=start,
                end_time=end,
                segment_type=segment_type,
                statistics=self.segment_statistics(arrays, start, end, inclusive_end=is_last),
            ))

        logger.info(
            f"Detected {len(segments)} segments: "
            + ", ".join(f"{s.segment_type.value} {s.duration_ms / 1000:.0f}s" for s in segments)
        )
        return segments

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def build_windows(self, arrays: SessionArrays, start_time: int, end_time: int) -> list[ActivityWindow]:
        settings = self.settings
        accurate = arrays.accuracy < settings.gps_accuracy_ceiling
        imu_moving = np.abs(arrays.accel_magnitude - GRAVITY) > settings.imu_motion_threshold

        windows = []
        window_start = start_time
        while window_start < end_time:
            window_end = window_start + settings.window_ms

            gps = time_slice(arrays.gps_time, window_start, window_end)
            speeds = arrays.speed[gps][accurate[gps]]
            gps_activity = 0.0
            if len(speeds):
                gps_activity = (float(speeds.mean()) + float(speeds.max())) / 2.0

            imu = time_slice(arrays.imu_time, window_start, window_end)
            imu_activity = 0.0
            if imu.stop - imu.start > 1:
                imu_activity = (
                    float(arrays.accel_magnitude[imu].std()) + float(arrays.gyro_magnitude[imu].std())
                ) * 10.0

            is_moving = bool(np.any(speeds > settings.moving_speed_threshold)) or bool(
                np.any(imu_moving[imu])
            )
            windows.append(ActivityWindow(
                start_time=window_start,
                end_time=window_end,
                activity=min(gps_activity + imu_activity, settings.max_activity),
                is_moving=is_moving,
            ))
            window_start = window_end

        return windows

    def classify_windows(self, windows: list[ActivityWindow]) -> list[SegmentType]:
        """Classify each window from the moving ratio of its neighbourhood."""
        settings = self.settings
        moving = np.array([window.is_moving for window in windows], dtype=np.float64)
        radius = settings.neighborhood

        types = []
        for index, window in enumerate(windows):
            neighbours = moving[max(0, index - radius):index + radius + 1]
            ratio = float(neighbours.mean())
            if ratio >= settings.riding_ratio and window.activity >= settings.min_riding_activity:
                types.append(SegmentType.ACTIVE_RIDING)
            elif ratio <= settings.stop_ratio and window.activity < settings.stop_activity:
                types.append(SegmentType.STOP)
            else:
                types.append(SegmentType.PAUSE)
        return types

    # ------------------------------------------------------------------
    # Spans
    # ------------------------------------------------------------------

    def _windows_to_spans(
        self,
        windows: list[ActivityWindow],
        types: list[SegmentType],
        start_time: int,
        end_time: int,
    ) -> list[Span]:
        spans = []
        span_start = start_time
        for index in range(1, len(windows)):
            if types[index] != types[index - 1]:
                boundary = windows[index].start_time
                spans.append((span_start, boundary, types[index - 1]))
                span_start = boundary
        spans.append((span_start, end_time, types[-1]))
        return spans

    def _merge_short_spans(self, spans: list[Span]) -> list[Span]:
        """Fold spans shorter than the minimum into the previous span (or the next one when first)."""
        spans = _coalesce(spans)
        while len(spans) > 1:
            index = next(
                (i for i, (start, end, _) in enumerate(spans) if end - start < self.settings.min_segment_ms),
                None,
            )
            if index is None:
                break
            start, end, _ = spans[index]
            if index == 0:
                _, next_end, next_type = spans[1]
                spans[1] = (start, next_end, next_type)
            else:
                previous_start, _, previous_type = spans[index - 1]
                spans[index - 1] = (previous_start, end, previous_type)
            del spans[index]
            spans = _coalesce(spans)
        return spans

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def segment_statistics(
        self,
        arrays: SessionArrays,
        start: int,
        end: int,
        inclusive_end: bool = False,
    ) -> SegmentStatistics:
        gps = time_slice(arrays.gps_time, start, end, inclusive_end)
        accurate = arrays.accuracy[gps] < self.settings.gps_accuracy_ceiling
        lat = arrays.latitude[gps][accurate]
        lon = arrays.longitude[gps][accurate]
        alt = arrays.altitude[gps][accurate]
        speeds = arrays.speed[gps][accurate]

        lean = arrays.lean_roll[time_slice(arrays.lean_time, start, end, inclusive_end)]
        g_total = arrays.g_total[time_slice(arrays.g_time, start, end, inclusive_end)]

        counts = {}
        for sensor_type, timestamps in arrays.sensor_timestamps.items():
            bounds = time_slice(timestamps, start, end, inclusive_end)
            counts[sensor_type] = bounds.stop - bounds.start

        return SegmentStatistics(
            distance=path_length(lat, lon),
            max_speed=float(speeds.max()) if len(speeds) else 0.0,
            avg_speed=float(speeds.mean()) if len(speeds) else 0.0,
            max_lean_angle=float(np.abs(lean).max()) if len(lean) else 0.0,
            max_g_force=float(g_total.max()) if len(g_total) else 0.0,
            elevation_change=float(alt[-1] - alt[0]) if len(alt) > 1 else 0.0,
            sample_counts=counts,
        )


def _coalesce(spans: list[Span]) -> list[Span]:
    """Join neighbouring spans of the same type."""
    merged: list[Span] = []
    for start, end, segment_type in spans:
        if merged and merged[-1][2] == segment_type:
            merged[-1] = (merged[-1][0], end, segment_type)
        else:
            merged.append((start, end, segment_type))
    return merged
