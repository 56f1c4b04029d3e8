"""
JSON export of a processed session.

Time series are down-sampled by even index selection so charts stay light,
and NaN / infinite values are written as null.
"""

import json
import logging
import math
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence

import numpy as np

from ridelog.filters.chain import FilterChain, SmoothLevel, for_gps, for_performance
from ridelog.models.ride import GeoPoint, ProcessedSession
from ridelog.services.filtering import DEFAULT_IMU_RATE_HZ, estimate_sample_rate


logger = logging.getLogger(__name__)

# Per-sample budget for display smoothing chains
DISPLAY_LATENCY_MS = 5.0


def to_jsonable(value: Any) -> Any:
    """Make a value JSON-safe: enums to values, non-finite floats to None."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (np.floating, np.integer)):
        return to_jsonable(value.item())
    if isinstance(value, dict):
        return {to_jsonable(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    return value


def downsample(items: Sequence, max_points: int) -> list:
    """Evenly spaced selection of at most ``max_points`` items, keeping both ends."""
    if max_points <= 0 or len(items) <= max_points:
        return list(items)
    indices = np.unique(np.linspace(0, len(items) - 1, max_points).round().astype(int))
    return [items[i] for i in indices]


def _location(point: Optional[GeoPoint]) -> Optional[dict]:
    return asdict(point) if point is not None else None


def _series(
    samples: Sequence,
    fields: tuple[str, ...],
    max_points: int,
    chain: Optional[FilterChain] = None,
    smoothed: tuple[str, ...] = (),
) -> list[dict]:
    """
    One dict per sample with its timestamp and ``fields``.

    With a chain, the ``smoothed`` fields run through it over the full series
    before down-sampling.
    """
    if chain is None:
        samples = downsample(samples, max_points)
    rows = []
    for sample in samples:
        row = {"timestamp": sample.timestamp}
        row.update((name, getattr(sample, name)) for name in fields)
        if chain is not None:
            values = chain.filter(np.array([row[name] for name in smoothed], dtype=np.float64), sample.timestamp)
            row.update(zip(smoothed, (float(v) for v in values)))
        rows.append(row)
    return rows if chain is None else downsample(rows, max_points)


def _display_chain(samples: Sequence, smoothing: SmoothLevel) -> FilterChain:
    rate = estimate_sample_rate([sample.timestamp for sample in samples]) or DEFAULT_IMU_RATE_HZ
    return for_performance(DISPLAY_LATENCY_MS, smoothing, rate)


def build_export(
    session: ProcessedSession,
    max_points: int = 1000,
    smoothing: Optional[SmoothLevel] = None,
) -> dict:
    """
    Build the JSON-safe export of a processed session.

    Args:
        session: The processed session
        max_points: Maximum entries per time series
        smoothing: Display smoothing for the GPS track, lean angle and
            g-force series; None exports the computed values

    Returns:
        Dict with ride_info, summary_stats, time_series, segments, events,
        errors and data_quality sections
    """
    info = session.info
    stats = session.statistics
    derived = session.derived

    track_chain = lean_chain = g_chain = None
    if smoothing is not None:
        track_chain = for_gps()
        lean_chain = _display_chain(derived.lean_angles, smoothing)
        g_chain = _display_chain(derived.g_forces, smoothing)

    export = {
        "ride_info": {
            "id": info.id,
            "file_name": info.file_name,
            "device": info.device,
            "format_version": info.format_version,
            "recorded_at": info.recorded_at,
            "start_time": info.start_time,
            "end_time": info.end_time,
            "duration_ms": info.duration_ms,
            "is_calibrated": info.is_calibrated,
            "calibration_quality": info.calibration_quality,
            "processing_time_ms": session.processing_time_ms,
            "sample_counts": {k.value: v for k, v in session.sample_counts.items()},
        },
        "summary_stats": {
            "total_distance": stats.total_distance,
            "total_duration_ms": stats.total_duration_ms,
            "riding_duration_ms": stats.riding_duration_ms,
            "max_speed": stats.max_speed,
            "avg_speed": stats.avg_speed,
            "max_lean_angle": stats.max_lean_angle,
            "max_g_force": stats.max_g_force,
            "max_acceleration": stats.max_acceleration,
            "max_deceleration": stats.max_deceleration,
            "elevation_gain": stats.elevation_gain,
            "elevation_loss": stats.elevation_loss,
            "segment_count": stats.segment_count,
            "event_count": len(stats.events),
            "start_location": _location(stats.start_location),
            "end_location": _location(stats.end_location),
        },
        "time_series": {
            "gps": _series(
                session.gps_track,
                ("latitude", "longitude", "altitude", "accuracy"),
                max_points,
                track_chain,
                smoothed=("latitude", "longitude"),
            ),
            "lean_angles": _series(
                derived.lean_angles,
                ("roll", "pitch", "confidence"),
                max_points,
                lean_chain,
                smoothed=("roll", "pitch"),
            ),
            "speeds": _series(derived.velocities, ("speed", "acceleration", "source"), max_points),
            "g_forces": _series(
                derived.g_forces,
                ("longitudinal", "lateral", "total"),
                max_points,
                g_chain,
                smoothed=("longitudinal", "lateral", "total"),
            ),
        },
        "segments": [
            {
                "start_time": segment.start_time,
                "end_time": segment.end_time,
                "duration_ms": segment.duration_ms,
                "type": segment.segment_type,
                "distance": segment.statistics.distance,
                "max_speed": segment.statistics.max_speed,
                "avg_speed": segment.statistics.avg_speed,
                "max_lean_angle": segment.statistics.max_lean_angle,
                "max_g_force": segment.statistics.max_g_force,
                "elevation_change": segment.statistics.elevation_change,
            }
            for segment in session.segments
        ],
        "events": [
            {
                "timestamp": event.timestamp,
                "type": event.event_type,
                "magnitude": event.magnitude,
                "duration_ms": event.duration_ms,
                "description": event.description,
            }
            for event in stats.events
        ],
        "errors": [
            {
                "type": error.error_type,
                "severity": error.severity,
                "message": error.message,
                "timestamp": error.timestamp,
                "line_number": error.line_number,
            }
            for error in session.errors
        ],
        "data_quality": {
            "score": session.data_quality.score,
            "sample_rates_hz": {k.value: v for k, v in session.data_quality.sample_rates_hz.items()},
            "accurate_gps_ratio": session.data_quality.accurate_gps_ratio,
            "dropouts": [
                {
                    "sensor_type": dropout.sensor_type,
                    "start_time": dropout.start_time,
                    "end_time": dropout.end_time,
                    "gap_ms": dropout.gap_ms,
                }
                for dropout in session.data_quality.dropouts
            ],
            "issues": list(session.data_quality.issues),
        },
    }
    return to_jsonable(export)


def write_export(
    session: ProcessedSession,
    path: Path,
    max_points: int = 1000,
    smoothing: Optional[SmoothLevel] = None,
) -> Path:
    path = Path(path)
    payload = build_export(session, max_points, smoothing)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, allow_nan=False)
    logger.info(f"Exported {session.info.file_name} to {path}")
    return path
