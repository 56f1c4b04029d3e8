"""
API routes for processed ride sessions.
"""

import math
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from ridelog.api.schemas import (
    CalibrationResponse,
    DataQualityResponse,
    ErrorResponse,
    EventResponse,
    FolderInfoResponse,
    LocationResponse,
    ProcessingErrorResponse,
    RideStatisticsResponse,
    SegmentResponse,
    SessionDetailResponse,
    SessionSummaryResponse,
    SetFolderRequest,
)
from ridelog.filters.chain import SmoothLevel
from ridelog.models.ride import GeoPoint, ProcessedSession
from ridelog.services.export import build_export
from ridelog.services.repository import SessionLoadError, get_repository


router = APIRouter(prefix="/sessions", tags=["sessions"])

PROCESSING_FAILED = {422: {"model": ErrorResponse, "description": "Session log could not be processed"}}


def _finite(value: float) -> float:
    """Non-finite aggregates are reported as 0 so responses stay valid JSON."""
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


def _load_session(session_id: str) -> ProcessedSession:
    """Fetch a processed session, mapping lookup and processing failures to HTTP errors."""
    repo = get_repository()
    try:
        session = repo.get_session(session_id)
    except SessionLoadError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return session


def _location(point: Optional[GeoPoint]) -> Optional[LocationResponse]:
    if point is None:
        return None
    return LocationResponse(latitude=point.latitude, longitude=point.longitude, altitude=point.altitude)


def _build_summary(session: ProcessedSession) -> SessionSummaryResponse:
    return SessionSummaryResponse(
        id=session.info.id,
        file_name=session.info.file_name,
        recorded_at=session.info.recorded_at,
        device=session.info.device,
        duration_s=session.info.duration_ms / 1000.0,
        total_distance_m=_finite(session.statistics.total_distance),
        max_speed=_finite(session.statistics.max_speed),
        segment_count=len(session.segments),
        event_count=len(session.events),
        is_calibrated=session.info.is_calibrated,
        has_gps=session.has_gps,
        has_imu=session.has_imu,
    )


def _build_detail(session: ProcessedSession) -> SessionDetailResponse:
    """Build detail response from a ProcessedSession."""
    info = session.info
    stats = session.statistics
    quality = session.data_quality

    calibration = None
    if session.calibration is not None:
        record = session.calibration
        calibration = CalibrationResponse(
            quality=record.quality.value,
            score=record.score,
            reference_pitch=record.reference_pitch,
            reference_roll=record.reference_roll,
            reference_azimuth=record.reference_azimuth,
            rotation_matrix=list(record.rotation_matrix),
            sample_count=record.sample_count,
        )

    return SessionDetailResponse(
        id=info.id,
        file_name=info.file_name,
        source_file=str(info.source_file),
        file_size=info.file_size,
        device=info.device,
        format_version=info.format_version,
        recorded_at=info.recorded_at,
        start_time=info.start_time,
        end_time=info.end_time,
        duration_s=info.duration_ms / 1000.0,
        processing_time_ms=session.processing_time_ms,
        calibration=calibration,
        statistics=RideStatisticsResponse(
            total_distance=_finite(stats.total_distance),
            total_duration_ms=stats.total_duration_ms,
            riding_duration_ms=stats.riding_duration_ms,
            max_speed=_finite(stats.max_speed),
            avg_speed=_finite(stats.avg_speed),
            max_lean_angle=_finite(stats.max_lean_angle),
            max_g_force=_finite(stats.max_g_force),
            max_acceleration=_finite(stats.max_acceleration),
            max_deceleration=_finite(stats.max_deceleration),
            elevation_gain=_finite(stats.elevation_gain),
            elevation_loss=_finite(stats.elevation_loss),
            segment_count=stats.segment_count,
            start_location=_location(stats.start_location),
            end_location=_location(stats.end_location),
        ),
        data_quality=DataQualityResponse(
            score=quality.score,
            sample_counts={k.value: v for k, v in quality.sample_counts.items()},
            sample_rates_hz={k.value: v for k, v in quality.sample_rates_hz.items()},
            accurate_gps_ratio=quality.accurate_gps_ratio,
            dropout_count=len(quality.dropouts),
            issues=list(quality.issues),
        ),
        error_count=len(session.errors),
    )


@router.get("", response_model=list[SessionSummaryResponse])
async def list_sessions():
    """
    List all processed sessions.

    Logs that fail to process are left out of the listing.
    """
    repo = get_repository()
    return [_build_summary(session) for session in repo.list_sessions()]


@router.get("/{session_id}", response_model=SessionDetailResponse, responses=PROCESSING_FAILED)
async def get_session(session_id: str):
    """Get metadata, calibration and statistics for a session."""
    return _build_detail(_load_session(session_id))


@router.get("/{session_id}/segments", response_model=list[SegmentResponse], responses=PROCESSING_FAILED)
async def get_segments(session_id: str):
    """Get the ride segments of a session in time order."""
    session = _load_session(session_id)
    return [
        SegmentResponse(
            start_time=segment.start_time,
            end_time=segment.end_time,
            duration_ms=segment.duration_ms,
            segment_type=segment.segment_type.value,
            distance=_finite(segment.statistics.distance),
            max_speed=_finite(segment.statistics.max_speed),
            avg_speed=_finite(segment.statistics.avg_speed),
            max_lean_angle=_finite(segment.statistics.max_lean_angle),
            max_g_force=_finite(segment.statistics.max_g_force),
            elevation_change=_finite(segment.statistics.elevation_change),
        )
        for segment in session.segments
    ]


@router.get("/{session_id}/events", response_model=list[EventResponse], responses=PROCESSING_FAILED)
async def get_events(session_id: str):
    """Get detected maneuvers, sorted by start time."""
    session = _load_session(session_id)
    return [
        EventResponse(
            timestamp=event.timestamp,
            event_type=event.event_type.value,
            magnitude=_finite(event.magnitude),
            duration_ms=event.duration_ms,
            description=event.description,
        )
        for event in session.events
    ]


@router.get("/{session_id}/errors", response_model=list[ProcessingErrorResponse], responses=PROCESSING_FAILED)
async def get_errors(session_id: str):
    """Get the non-fatal problems recorded while processing a session."""
    session = _load_session(session_id)
    return [
        ProcessingErrorResponse(
            error_type=error.error_type.value,
            severity=error.severity.value,
            message=error.message,
            timestamp=error.timestamp,
            line_number=error.line_number,
        )
        for error in session.errors
    ]


@router.get("/{session_id}/export", responses=PROCESSING_FAILED)
async def export_session(
    session_id: str,
    max_points: int = Query(1000, ge=10, le=100000, description="Maximum points per time series"),
    smoothing: Optional[SmoothLevel] = Query(None, description="Display smoothing for track, lean and g-force series"),
):
    """
    Get the full JSON export of a session.

    Time series are down-sampled to at most ``max_points`` entries each.
    """
    return build_export(_load_session(session_id), max_points, smoothing)


@router.post("/{session_id}/reprocess", response_model=SessionDetailResponse, responses=PROCESSING_FAILED)
async def reprocess_session(session_id: str):
    """Discard the cached result and process the log again."""
    repo = get_repository()
    try:
        session = repo.reprocess_session(session_id)
    except SessionLoadError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return _build_detail(session)


# ============================================================================
# Folder Management Routes
# ============================================================================

folder_router = APIRouter(prefix="/folder", tags=["folder"])


@folder_router.get("", response_model=FolderInfoResponse)
async def get_folder_info():
    """Get information about the current data folder."""
    repo = get_repository()

    return FolderInfoResponse(
        path=str(repo.data_folder) if repo.data_folder else None,
        session_count=len(repo.session_ids()),
    )


@folder_router.post("", response_model=FolderInfoResponse)
async def set_folder(request: SetFolderRequest):
    """
    Set the data folder to scan for session logs.

    This will clear the current cache and re-scan.
    """
    repo = get_repository()

    path = Path(request.path)
    if not path.exists():
        raise HTTPException(status_code=400, detail=f"Folder does not exist: {request.path}")
    if not path.is_dir():
        raise HTTPException(status_code=400, detail=f"Path is not a directory: {request.path}")

    count = repo.set_data_folder(path)

    return FolderInfoResponse(
        path=str(path),
        session_count=count,
    )


@folder_router.post("/rescan", response_model=FolderInfoResponse)
async def rescan_folder():
    """
    Rescan the current data folder for new session logs.
    """
    repo = get_repository()

    if repo.data_folder is None:
        raise HTTPException(status_code=400, detail="No data folder set")

    repo.clear_cache()
    count = repo.scan_folder(repo.data_folder)

    return FolderInfoResponse(
        path=str(repo.data_folder),
        session_count=count,
    )
