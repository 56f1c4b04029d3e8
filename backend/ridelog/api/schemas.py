"""
API schemas (Pydantic models) for request/response validation.
"""

from typing import Optional
from pydantic import BaseModel


# ============================================================================
# Session Schemas
# ============================================================================

class SessionSummaryResponse(BaseModel):
    """Summary of a processed session for listing."""
    id: str
    file_name: str
    recorded_at: Optional[str] = None
    device: Optional[str] = None
    duration_s: float
    total_distance_m: float
    max_speed: float
    segment_count: int
    event_count: int
    is_calibrated: bool
    has_gps: bool
    has_imu: bool


class CalibrationResponse(BaseModel):
    """Reference orientation used for the session."""
    quality: str
    score: Optional[float] = None
    reference_pitch: float
    reference_roll: float
    reference_azimuth: Optional[float] = None
    rotation_matrix: list[float]
    sample_count: int


class LocationResponse(BaseModel):
    latitude: float
    longitude: float
    altitude: float


class RideStatisticsResponse(BaseModel):
    """Whole-session aggregates."""
    total_distance: float
    total_duration_ms: int
    riding_duration_ms: int
    max_speed: float
    avg_speed: float
    max_lean_angle: float
    max_g_force: float
    max_acceleration: float
    max_deceleration: float
    elevation_gain: float
    elevation_loss: float
    segment_count: int
    start_location: Optional[LocationResponse] = None
    end_location: Optional[LocationResponse] = None


class DataQualityResponse(BaseModel):
    """Coverage summary of the raw data."""
    score: float
    sample_counts: dict[str, int]
    sample_rates_hz: dict[str, float]
    accurate_gps_ratio: float
    dropout_count: int
    issues: list[str]


class SessionDetailResponse(BaseModel):
    """Full metadata and statistics for a session."""
    id: str
    file_name: str
    source_file: str
    file_size: int
    device: Optional[str] = None
    format_version: Optional[str] = None
    recorded_at: Optional[str] = None
    start_time: int
    end_time: int
    duration_s: float
    processing_time_ms: float
    calibration: Optional[CalibrationResponse] = None
    statistics: RideStatisticsResponse
    data_quality: DataQualityResponse
    error_count: int


# ============================================================================
# Segment / Event / Error Schemas
# ============================================================================

class SegmentResponse(BaseModel):
    """A contiguous ride segment."""
    start_time: int
    end_time: int
    duration_ms: int
    segment_type: str
    distance: float
    max_speed: float
    avg_speed: float
    max_lean_angle: float
    max_g_force: float
    elevation_change: float


class EventResponse(BaseModel):
    """A detected riding maneuver."""
    timestamp: int
    event_type: str
    magnitude: float
    duration_ms: int
    description: str


class ProcessingErrorResponse(BaseModel):
    """A non-fatal problem found during processing."""
    error_type: str
    severity: str
    message: str
    timestamp: Optional[int] = None
    line_number: Optional[int] = None


# ============================================================================
# Folder Management Schemas
# ============================================================================

class SetFolderRequest(BaseModel):
    """Request to set the data folder."""
    path: str


class FolderInfoResponse(BaseModel):
    """Information about the current data folder."""
    path: Optional[str]
    session_count: int


# ============================================================================
# Error Schemas
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    code: Optional[str] = None
