"""
Noise filtering stage: runs each sensor stream through its filter chain.

GPS fixes are left as they are; distance and speed are computed from the raw
fixes and GPS is too sparse for the sample-rate based chains.
"""

import logging
from dataclasses import replace
from typing import Optional, Sequence

import numpy as np

from ridelog.filters.chain import FilterChain, for_barometer, for_gyro, for_imu_logging, for_magnetometer
from ridelog.models.config import FilterSettings
from ridelog.models.events import SensorStreams, SensorType
from ridelog.services.progress import ProcessingContext, ProcessingStage


logger = logging.getLogger(__name__)

DEFAULT_IMU_RATE_HZ = 100.0

ACCEL_FIELDS = ("accel_x", "accel_y", "accel_z")
GYRO_FIELDS = ("gyro_x", "gyro_y", "gyro_z")
MAG_FIELDS = ("mag_x", "mag_y", "mag_z")
BARO_FIELDS = ("altitude", "pressure")


def estimate_sample_rate(timestamps: Sequence[int]) -> Optional[float]:
    """Median sample rate in Hz, or None with fewer than two distinct timestamps."""
    if len(timestamps) < 2:
        return None
    deltas = np.diff(np.asarray(timestamps, dtype=np.int64))
    deltas = deltas[deltas > 0]
    if len(deltas) == 0:
        return None
    return 1000.0 / float(np.median(deltas))


def filter_sensor_streams(
    events: SensorStreams,
    settings: Optional[FilterSettings] = None,
    context: Optional[ProcessingContext] = None,
    yield_interval: int = 2000,
) -> SensorStreams:
    """Return new, filtered event lists. The input lists are not modified."""
    settings = settings or FilterSettings()
    filtered = {sensor_type: list(stream) for sensor_type, stream in events.items()}
    if not settings.enabled:
        return filtered

    imu = events.get(SensorType.IMU) or []
    if imu:
        rate = estimate_sample_rate([event.timestamp for event in imu]) or DEFAULT_IMU_RATE_HZ
        accel_chain = for_imu_logging(rate, settings)
        gyro_chain = for_gyro(rate, settings)
        smoothed = _apply_chain(imu, accel_chain, ACCEL_FIELDS, context, yield_interval)
        filtered[SensorType.IMU] = _apply_chain(smoothed, gyro_chain, GYRO_FIELDS, context, yield_interval)
        _log_chain(accel_chain)
        _log_chain(gyro_chain)

    mag = events.get(SensorType.MAG) or []
    if mag:
        chain = for_magnetometer(settings)
        filtered[SensorType.MAG] = _apply_chain(mag, chain, MAG_FIELDS, context, yield_interval)
        _log_chain(chain)

    baro = events.get(SensorType.BARO) or []
    if baro:
        chain = for_barometer(settings)
        filtered[SensorType.BARO] = _apply_chain(baro, chain, BARO_FIELDS, context, yield_interval)
        _log_chain(chain)

    return filtered


def _apply_chain(
    events: list,
    chain: FilterChain,
    fields: tuple[str, ...],
    context: Optional[ProcessingContext],
    yield_interval: int,
) -> list:
    output = []
    total = len(events)
    for index, event in enumerate(events):
        values = chain.filter(
            np.array([getattr(event, name) for name in fields], dtype=np.float64),
            event.timestamp,
        )
        output.append(replace(event, **{name: float(v) for name, v in zip(fields, values)}))

        if context is not None and index % yield_interval == 0:
            context.report(ProcessingStage.FILTERING, index / total, f"Filtering {chain.name}")
    return output


def _log_chain(chain: FilterChain) -> None:
    logger.debug(f"{chain.describe()} avg {chain.average_latency_ns / 1000:.1f} us/sample")
