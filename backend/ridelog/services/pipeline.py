"""
Session processing pipeline.

Runs one log file through parsing, validation, calibration, filtering,
derived metrics, segmentation and statistics, reporting progress and
honouring cancellation between stages. The ProcessedSession is only
assembled after the last stage has finished.
"""

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, Optional

import numpy as np

from ridelog.models.calibration import CalibrationRecord
from ridelog.models.config import ProcessingConfig
from ridelog.models.errors import ErrorCollector, ErrorType, SessionProcessingError
from ridelog.models.events import SensorStreams, SensorType
from ridelog.models.ride import DataQuality, ProcessedSession, SensorDropout, SessionInfo
from ridelog.services.calibration import CalibrationEngine, describe_calibration, select_calibration_window
from ridelog.services.derived_metrics import DerivedMetricsCalculator
from ridelog.services.filtering import estimate_sample_rate, filter_sensor_streams
from ridelog.services.log_parser import ParseResult, SessionLogParser
from ridelog.services.progress import (
    CancellationToken,
    ProcessingContext,
    ProcessingStage,
    ProgressCallback,
)
from ridelog.services.segments import RideSegmentDetector
from ridelog.services.statistics import RideStatisticsGenerator
from ridelog.utils.series import SessionArrays


logger = logging.getLogger(__name__)

# Nominal rates used to judge coverage in the quality score
EXPECTED_RATES_HZ = {
    SensorType.GPS: 1.0,
    SensorType.IMU: 50.0,
}


def session_id_for(filepath: Path) -> str:
    """Stable id from file name, size and modification time."""
    stat = filepath.stat()
    id_string = f"{filepath.name}_{stat.st_size}_{stat.st_mtime}"
    return hashlib.sha256(id_string.encode()).hexdigest()[:16]


class SessionProcessor:
    """Processes session logs with one immutable configuration."""

    def __init__(self, config: Optional[ProcessingConfig] = None):
        self.config = config or ProcessingConfig()

    def process_file(
        self,
        filepath: Path,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ProcessedSession:
        """
        Process a session log.

        Raises a SessionProcessingError subclass when the file cannot be
        processed, the job is cancelled or it exceeds its time budget.
        """
        filepath = Path(filepath)
        config = self.config
        context = ProcessingContext(
            progress_callback=progress_callback,
            cancel_token=cancel_token,
            timeout_s=config.pipeline.processing_timeout_s,
        )
        context.report(ProcessingStage.PARSING, 0.0, f"Reading {filepath.name}")

        parser = SessionLogParser(
            chunk_lines=config.pipeline.parse_chunk_lines,
            max_recorded_errors=config.pipeline.max_recorded_errors,
        )
        parsed = parser.parse_file(filepath, context)
        errors = ErrorCollector(config.pipeline.max_recorded_errors)
        errors.extend(parsed.errors)
        logger.debug(f"{filepath.name}: {streams_summary(parsed.events)}")

        context.report(ProcessingStage.VALIDATION, 0.0, "Checking data quality")
        data_quality = self.assess_quality(parsed)
        for dropout in data_quality.dropouts:
            errors.add(
                ErrorType.SENSOR_DROPOUT,
                f"{dropout.sensor_type.value} silent for {dropout.gap_ms / 1000:.1f}s",
                timestamp=dropout.start_time,
            )

        context.report(ProcessingStage.CALIBRATION, 0.0, "Resolving calibration")
        calibration = self.resolve_calibration(parsed)
        if calibration is None:
            errors.add(
                ErrorType.MISSING_CALIBRATION,
                "Session is uncalibrated; angles are in the device frame",
            )
        logger.info(f"{filepath.name}: calibration {describe_calibration(calibration)}")

        context.report(ProcessingStage.FILTERING, 0.0, "Filtering sensor noise")
        filtered = filter_sensor_streams(
            parsed.events,
            config.filters,
            context,
            config.pipeline.yield_interval,
        )

        context.report(ProcessingStage.METRICS, 0.0, "Deriving metrics")
        calculator = DerivedMetricsCalculator(
            settings=config.metrics,
            calibration=calibration,
            yield_interval=config.pipeline.yield_interval,
        )
        derived = calculator.calculate(filtered, context)

        context.report(ProcessingStage.SEGMENTATION, 0.0, "Detecting segments")
        arrays = SessionArrays.from_streams(filtered, derived)
        segments = RideSegmentDetector(config.segments).detect(
            filtered, derived, parsed.start_time, parsed.end_time, context, arrays
        )

        context.report(ProcessingStage.STATISTICS, 0.0, "Computing statistics")
        statistics = RideStatisticsGenerator(
            config.events, config.segments.gps_accuracy_ceiling
        ).generate(filtered, derived, segments, parsed.start_time, parsed.end_time, arrays)
        context.checkpoint()

        stat = filepath.stat()
        info = SessionInfo(
            id=session_id_for(filepath),
            file_name=filepath.name,
            source_file=filepath,
            file_size=stat.st_size,
            start_time=parsed.start_time,
            end_time=parsed.end_time,
            device=parsed.header.device,
            format_version=parsed.header.format_version,
            recorded_at=parsed.header.recorded_at,
            is_calibrated=calibration is not None,
            calibration_quality=calibration.quality.value if calibration is not None else None,
        )
        session = ProcessedSession(
            info=info,
            calibration=calibration,
            derived=derived,
            segments=segments,
            statistics=statistics,
            data_quality=data_quality,
            sample_counts=parsed.sample_counts,
            gps_track=filtered[SensorType.GPS],
            errors=errors.errors,
            processing_time_ms=context.elapsed_ms,
        )
        context.report(ProcessingStage.COMPLETE, 1.0, "Done")
        logger.info(
            f"Processed {filepath.name} in {session.processing_time_ms:.0f} ms: "
            f"{len(segments)} segments, {len(session.events)} events, {len(session.errors)} issues"
        )
        return session

    def process_files(
        self,
        filepaths: Iterable[Path],
        max_workers: int = 4,
    ) -> list[ProcessedSession]:
        """Process independent sessions in parallel. Failed files are logged and skipped."""
        filepaths = [Path(p) for p in filepaths]
        results: dict[Path, ProcessedSession] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self.process_file, path): path for path in filepaths}
            for future in as_completed(futures):
                path = futures[future]
                try:
                    results[path] = future.result()
                except (SessionProcessingError, OSError) as e:
                    logger.error(f"Failed to process {path}: {e}")
        return [results[path] for path in filepaths if path in results]

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def resolve_calibration(self, parsed: ParseResult) -> Optional[CalibrationRecord]:
        """Header calibration, or one computed from the session start when enabled."""
        if parsed.calibration is not None:
            return parsed.calibration
        settings = self.config.calibration
        if not settings.auto_calibrate:
            return None
        imu, mag = select_calibration_window(
            parsed.events[SensorType.IMU],
            parsed.events[SensorType.MAG],
            settings.duration_ms,
        )
        return CalibrationEngine(settings).calibrate(imu, mag)

    def assess_quality(self, parsed: ParseResult) -> DataQuality:
        gap_ms = self.config.pipeline.dropout_gap_ms
        quality = DataQuality(sample_counts=parsed.sample_counts)

        for sensor_type, events in parsed.events.items():
            if not events:
                continue
            timestamps = np.fromiter((e.timestamp for e in events), dtype=np.int64, count=len(events))
            rate = estimate_sample_rate(timestamps)
            if rate is not None:
                quality.sample_rates_hz[sensor_type] = rate
            for index in np.flatnonzero(np.diff(timestamps) > gap_ms):
                quality.dropouts.append(SensorDropout(
                    sensor_type=sensor_type,
                    start_time=int(timestamps[index]),
                    end_time=int(timestamps[index + 1]),
                ))

        gps = parsed.events[SensorType.GPS]
        ceiling = self.config.segments.gps_accuracy_ceiling
        if gps:
            quality.accurate_gps_ratio = sum(1 for fix in gps if fix.accuracy < ceiling) / len(gps)

        score = 100.0
        if not gps:
            quality.issues.append("No GPS data")
            score -= 30.0
        elif quality.accurate_gps_ratio < 0.5:
            quality.issues.append(f"Only {quality.accurate_gps_ratio:.0%} of GPS fixes are accurate")
            score -= 15.0
        if not parsed.events[SensorType.IMU]:
            quality.issues.append("No IMU data")
            score -= 30.0
        for sensor_type, expected in EXPECTED_RATES_HZ.items():
            rate = quality.sample_rates_hz.get(sensor_type)
            if rate is not None and rate < expected / 2.0:
                quality.issues.append(f"{sensor_type.value} rate {rate:.1f} Hz is low")
                score -= 10.0
        if quality.dropouts:
            quality.issues.append(f"{len(quality.dropouts)} sensor dropouts")
            score -= min(5.0 * len(quality.dropouts), 20.0)
        if parsed.errors:
            score -= min(len(parsed.errors) / 10.0, 10.0)

        quality.score = max(score, 0.0)
        return quality


def process_session_log(
    filepath: Path,
    config: Optional[ProcessingConfig] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> ProcessedSession:
    """Process one session log with the given (or default) configuration."""
    return SessionProcessor(config).process_file(filepath, progress_callback, cancel_token)


def streams_summary(events: SensorStreams) -> str:
    return ", ".join(f"{sensor_type.value}={len(stream)}" for sensor_type, stream in events.items())
