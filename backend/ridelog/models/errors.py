"""
Processing error taxonomy.

Non-fatal problems are recorded as ``ProcessingError`` values on the result.
Fatal ones are raised as ``SessionProcessingError`` subclasses and abort the
session without producing output.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorType(Enum):
    CORRUPTED_DATA = "CORRUPTED_DATA"
    MISSING_CALIBRATION = "MISSING_CALIBRATION"
    INVALID_GPS = "INVALID_GPS"
    SENSOR_DROPOUT = "SENSOR_DROPOUT"
    PROCESSING_TIMEOUT = "PROCESSING_TIMEOUT"
    UNKNOWN_FORMAT = "UNKNOWN_FORMAT"


class ErrorSeverity(Enum):
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class ProcessingError:
    """A non-fatal problem found while processing a session."""

    error_type: ErrorType
    message: str
    severity: ErrorSeverity = ErrorSeverity.WARNING
    timestamp: Optional[int] = None    # device ms, when tied to a sample
    line_number: Optional[int] = None  # 1-based, when tied to a log line


class ErrorCollector:
    """
    Accumulates non-fatal errors for one session.

    Per-row problems in a badly damaged log can number in the hundreds of
    thousands, so only the first ``limit`` are kept and the rest are counted.
    """

    def __init__(self, limit: int = 500):
        self.limit = limit
        self._errors: list[ProcessingError] = []
        self._dropped = 0

    def add(
        self,
        error_type: ErrorType,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.WARNING,
        timestamp: Optional[int] = None,
        line_number: Optional[int] = None,
    ) -> None:
        if len(self._errors) >= self.limit:
            self._dropped += 1
            return
        self._errors.append(ProcessingError(
            error_type=error_type,
            message=message,
            severity=severity,
            timestamp=timestamp,
            line_number=line_number,
        ))

    def extend(self, errors: list[ProcessingError]) -> None:
        for error in errors:
            self.add(error.error_type, error.message, error.severity, error.timestamp, error.line_number)

    @property
    def errors(self) -> list[ProcessingError]:
        if not self._dropped:
            return list(self._errors)
        return self._errors + [ProcessingError(
            error_type=ErrorType.CORRUPTED_DATA,
            message=f"{self._dropped} further errors not recorded",
            severity=ErrorSeverity.WARNING,
        )]

    def __len__(self) -> int:
        return len(self._errors) + self._dropped


class SessionProcessingError(Exception):
    """Base class for errors that abort processing of a session."""

    error_type = ErrorType.CORRUPTED_DATA

    def to_record(self) -> ProcessingError:
        return ProcessingError(
            error_type=self.error_type,
            message=str(self),
            severity=ErrorSeverity.CRITICAL,
        )


class CorruptedDataError(SessionProcessingError):
    """The log file is unreadable, empty or holds no usable rows."""


class NoValidDataError(CorruptedDataError):
    """Every sensor stream came out empty."""


class InvalidTimeRangeError(CorruptedDataError):
    """No data row carried a valid timestamp."""


class ProcessingTimeoutError(SessionProcessingError):
    """Processing exceeded its time budget."""

    error_type = ErrorType.PROCESSING_TIMEOUT


class ProcessingCancelledError(SessionProcessingError):
    """Processing was cancelled by the caller."""
