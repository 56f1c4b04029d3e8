"""
Session log parser.

Parses the sparse multi-sensor CSV written by the logger into per-sensor,
timestamp-sorted event lists plus the optional calibration record.

Layout of a log:

    # Moto Sensor Log v1.1
    # Device: ...
    # Calibration: { ...JSON spread over comment lines... }
    timestamp,sensor_type,data1,data2,data3,data4,data5,data6
    1000,GPS,37.0,-122.0,10.0,5.0,90.0,3.0
    1010,IMU,0.1,0.2,9.8,0.0,0.0,0.0
    1020,BARO,120.5,1013.2
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from operator import attrgetter
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from ridelog.models.calibration import CalibrationRecord
from ridelog.models.errors import (
    CorruptedDataError,
    ErrorCollector,
    ErrorSeverity,
    ErrorType,
    InvalidTimeRangeError,
    NoValidDataError,
    ProcessingError,
)
from ridelog.models.events import (
    EVENT_FIELDS,
    EVENT_TYPES,
    REQUIRED_FIELD_COUNT,
    SensorStreams,
    SensorType,
    empty_streams,
)
from ridelog.services.calibration import calibration_from_header
from ridelog.services.progress import ProcessingContext, ProcessingStage


logger = logging.getLogger(__name__)


DATA_COLUMNS = [
    "timestamp", "sensor_type",
    "data1", "data2", "data3", "data4", "data5", "data6",
]
HEADER_LINE = ",".join(DATA_COLUMNS)

# Defaults for the optional trailing GPS columns
GPS_DEFAULTS = {
    "altitude": 0.0,
    "speed": 0.0,
    "bearing": 0.0,
    "accuracy": float("inf"),
}

_CALIBRATION_COMMENT = re.compile(r"^calibration\s*:\s*(.*)$", re.IGNORECASE)
_VERSION_COMMENT = re.compile(r"sensor log\s+v?([\w.]+)", re.IGNORECASE)
_INTEGER = re.compile(r"^-?\d+$")
# Timestamps must fit a signed 64-bit millisecond count
MAX_TIMESTAMP = 2 ** 63
_JSON_STRING = re.compile(r'"(?:\\.|[^"\\])*"')


@dataclass
class LogHeader:
    """Metadata found in the comment block."""

    format_version: Optional[str] = None
    device: Optional[str] = None
    recorded_at: Optional[str] = None
    has_calibration_block: bool = False


@dataclass
class ParseResult:
    events: SensorStreams
    calibration: Optional[CalibrationRecord]
    start_time: int
    end_time: int
    header: LogHeader = field(default_factory=LogHeader)
    errors: list[ProcessingError] = field(default_factory=list)
    rows_read: int = 0

    @property
    def sample_counts(self) -> dict[SensorType, int]:
        return {sensor_type: len(events) for sensor_type, events in self.events.items()}

    @property
    def rows_accepted(self) -> int:
        return sum(self.sample_counts.values())


class SessionLogParser:
    """Parser for session logs."""

    def __init__(self, chunk_lines: int = 5000, max_recorded_errors: int = 500):
        self.chunk_lines = chunk_lines
        self.max_recorded_errors = max_recorded_errors

    def parse_file(self, filepath: Path, context: Optional[ProcessingContext] = None) -> ParseResult:
        lines = self._read_lines(filepath)
        errors = ErrorCollector(self.max_recorded_errors)

        header, calibration, data_start = self._parse_header(lines, errors)

        streams = empty_streams()
        unknown_tokens: Counter = Counter()
        saw_timestamp = False
        rows_read = 0
        total = max(len(lines) - data_start, 1)

        for chunk_start in range(data_start, len(lines), self.chunk_lines):
            chunk = lines[chunk_start:chunk_start + self.chunk_lines]
            chunk_streams, chunk_rows, chunk_saw_timestamp = self._parse_rows(
                chunk, chunk_start + 1, errors, unknown_tokens
            )
            for sensor_type, events in chunk_streams.items():
                streams[sensor_type].extend(events)
            rows_read += chunk_rows
            saw_timestamp = saw_timestamp or chunk_saw_timestamp

            if context is not None:
                done = chunk_start + len(chunk) - data_start
                context.report(ProcessingStage.PARSING, done / total, f"Parsed {done} lines")

        for token, count in sorted(unknown_tokens.items()):
            errors.add(
                ErrorType.CORRUPTED_DATA,
                f"Skipped {count} rows with unknown sensor type '{token}'",
            )

        if not saw_timestamp:
            raise InvalidTimeRangeError(f"No valid timestamps in {filepath}")

        for events in streams.values():
            events.sort(key=attrgetter("timestamp"))

        non_empty = [events for events in streams.values() if events]
        if not non_empty:
            raise NoValidDataError(f"No valid sensor rows in {filepath}")

        start_time = min(events[0].timestamp for events in non_empty)
        end_time = max(events[-1].timestamp for events in non_empty)

        result = ParseResult(
            events=streams,
            calibration=calibration,
            start_time=start_time,
            end_time=end_time,
            header=header,
            errors=errors.errors,
            rows_read=rows_read,
        )
        logger.info(
            f"Parsed {filepath.name}: {result.rows_accepted}/{rows_read} rows accepted, "
            f"{len(errors)} issues"
        )
        return result

    def _read_lines(self, filepath: Path) -> list[str]:
        try:
            with open(filepath, "r", encoding="utf-8-sig") as f:
                lines = f.read().splitlines()
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptedDataError(f"Cannot read log file {filepath}: {e}") from e

        if not any(line.strip() for line in lines):
            raise CorruptedDataError(f"Log file is empty: {filepath}")
        return lines

    # ------------------------------------------------------------------
    # Header block
    # ------------------------------------------------------------------

    def _parse_header(
        self,
        lines: list[str],
        errors: ErrorCollector,
    ) -> tuple[LogHeader, Optional[CalibrationRecord], int]:
        """Read comment lines up to the column header; return where data starts."""
        header = LogHeader()
        calibration = None

        i = 0
        while i < len(lines):
            stripped = lines[i].strip()
            if not stripped:
                i += 1
                continue

            if stripped.startswith("#"):
                body = stripped.lstrip("#").strip()
                match = _CALIBRATION_COMMENT.match(body)
                if match is None:
                    self._read_header_comment(body, header)
                    i += 1
                    continue

                block, next_line = self._collect_block(lines, i, match.group(1))
                if header.has_calibration_block:
                    errors.add(
                        ErrorType.UNKNOWN_FORMAT,
                        "Additional calibration block ignored",
                        line_number=i + 1,
                    )
                else:
                    header.has_calibration_block = True
                    calibration = self._parse_calibration(block, errors, i + 1)
                i = next_line
                continue

            if self._is_header_line(stripped):
                return header, calibration, i + 1

            first_cell = stripped.split(",")[0].strip()
            if _INTEGER.match(first_cell):
                errors.add(
                    ErrorType.UNKNOWN_FORMAT,
                    "Column header line missing, reading rows directly",
                    line_number=i + 1,
                )
                return header, calibration, i

            errors.add(
                ErrorType.UNKNOWN_FORMAT,
                f"Unrecognized schema line: {stripped[:80]}",
                line_number=i + 1,
            )
            return header, calibration, i + 1

        return header, calibration, len(lines)

    def _is_header_line(self, line: str) -> bool:
        return line.replace(" ", "").lower() == HEADER_LINE

    def _read_header_comment(self, body: str, header: LogHeader) -> None:
        lowered = body.lower()
        if lowered.startswith("device:"):
            header.device = body.split(":", 1)[1].strip() or None
        elif lowered.startswith("date:"):
            header.recorded_at = body.split(":", 1)[1].strip() or None
        elif header.format_version is None:
            match = _VERSION_COMMENT.search(body)
            if match:
                header.format_version = match.group(1)

    def _collect_block(self, lines: list[str], start: int, first: str) -> tuple[str, int]:
        """
        Gather a calibration block.

        A JSON block continues over following comment lines until its braces
        balance; a key/value block is a single line.
        """
        if not first.startswith("{"):
            return first, start + 1

        parts = [first]
        depth = self._brace_depth(first)
        i = start + 1
        while depth > 0 and i < len(lines):
            stripped = lines[i].strip()
            if not stripped.startswith("#"):
                break
            content = stripped[1:]
            parts.append(content)
            depth += self._brace_depth(content)
            i += 1
        return "\n".join(parts), i

    def _brace_depth(self, text: str) -> int:
        text = _JSON_STRING.sub("", text)
        return text.count("{") - text.count("}")

    def _parse_calibration(
        self,
        block: str,
        errors: ErrorCollector,
        line_number: int,
    ) -> Optional[CalibrationRecord]:
        try:
            calibration = calibration_from_header(block)
        except (ValueError, TypeError) as e:
            logger.warning(f"Calibration block rejected: {e}")
            errors.add(
                ErrorType.MISSING_CALIBRATION,
                f"Calibration block rejected: {e}",
                severity=ErrorSeverity.ERROR,
                line_number=line_number,
            )
            return None

        if calibration is not None:
            logger.debug(f"Calibration block found: {calibration.quality.value}")
        return calibration

    # ------------------------------------------------------------------
    # Data rows
    # ------------------------------------------------------------------

    def _parse_rows(
        self,
        lines: list[str],
        first_line_number: int,
        errors: ErrorCollector,
        unknown_tokens: Counter,
    ) -> tuple[SensorStreams, int, bool]:
        numbers = []
        texts = []
        for offset, line in enumerate(lines):
            stripped = line.strip()
            if stripped and not stripped.startswith("#"):
                numbers.append(first_line_number + offset)
                texts.append(stripped)
        if not texts:
            return {}, 0, False

        rows = pd.Series(texts, index=numbers, dtype=object)
        n_fields = rows.str.count(",") + 1

        frame = rows.str.split(",", expand=True).fillna("")
        frame = frame.apply(lambda column: column.astype(str).str.strip())
        if frame.shape[1] > len(DATA_COLUMNS):
            overflow = (frame.iloc[:, len(DATA_COLUMNS):] != "").any(axis=1)
        else:
            overflow = pd.Series(False, index=frame.index)
        frame = frame.reindex(columns=range(len(DATA_COLUMNS)), fill_value="")
        frame.columns = DATA_COLUMNS

        is_integer = frame["timestamp"].str.fullmatch(r"-?\d+")
        timestamps = pd.to_numeric(frame["timestamp"].where(is_integer), errors="coerce")
        valid_timestamp = ((timestamps > 0) & (timestamps < MAX_TIMESTAMP)).fillna(False)
        enough_fields = n_fields >= 2

        self._record_rows(errors, ~enough_fields, ErrorType.CORRUPTED_DATA, "Row has too few fields")
        self._record_rows(
            errors, enough_fields & ~valid_timestamp, ErrorType.CORRUPTED_DATA, "Invalid timestamp"
        )
        self._record_rows(
            errors,
            enough_fields & valid_timestamp & overflow,
            ErrorType.CORRUPTED_DATA,
            "Row has more than 8 fields",
        )

        usable = enough_fields & valid_timestamp & ~overflow
        tokens = frame["sensor_type"].str.upper()
        known = tokens.isin([sensor_type.value for sensor_type in SensorType])
        for token, count in tokens[usable & ~known].value_counts().items():
            unknown_tokens[token] += int(count)

        streams: SensorStreams = {}
        for sensor_type in SensorType:
            mask = usable & (tokens == sensor_type.value)
            if mask.any():
                streams[sensor_type] = self._build_events(
                    sensor_type, frame[mask], timestamps[mask], errors
                )

        return streams, len(texts), bool(valid_timestamp.any())

    def _build_events(
        self,
        sensor_type: SensorType,
        frame: pd.DataFrame,
        timestamps: pd.Series,
        errors: ErrorCollector,
    ) -> list:
        names = EVENT_FIELDS[sensor_type]
        raw = frame[DATA_COLUMNS[2:2 + len(names)]]
        values = raw.apply(pd.to_numeric, errors="coerce").to_numpy(dtype=np.float64, copy=True)
        present = (raw != "").to_numpy()
        finite = np.isfinite(values)

        n_required = REQUIRED_FIELD_COUNT[sensor_type]
        missing = ~present[:, :n_required].all(axis=1)
        malformed = ~missing & (present & ~finite).any(axis=1)
        self._record_rows(
            errors,
            pd.Series(missing, index=frame.index),
            ErrorType.CORRUPTED_DATA,
            f"Too few fields for {sensor_type.value} row",
        )
        self._record_rows(
            errors,
            pd.Series(malformed, index=frame.index),
            ErrorType.CORRUPTED_DATA,
            f"Non-numeric value in {sensor_type.value} row",
        )
        ok = ~missing & ~malformed

        if sensor_type is SensorType.GPS:
            lat, lon, accuracy = values[:, 0], values[:, 1], values[:, 5]
            with np.errstate(invalid="ignore"):
                out_of_range = ok & (
                    (np.abs(lat) > 90.0)
                    | (np.abs(lon) > 180.0)
                    | (present[:, 5] & (accuracy < 0.0))
                )
            self._record_rows(
                errors,
                pd.Series(out_of_range, index=frame.index),
                ErrorType.INVALID_GPS,
                "GPS fix out of range",
            )
            ok &= ~out_of_range
            for column, name in enumerate(names):
                default = GPS_DEFAULTS.get(name)
                if default is not None:
                    values[:, column] = np.where(present[:, column], values[:, column], default)

        event_class = EVENT_TYPES[sensor_type]
        kept_timestamps = timestamps.to_numpy()[ok].astype(np.int64).tolist()
        columns = [values[ok, column].tolist() for column in range(len(names))]
        return list(map(event_class, kept_timestamps, *columns))

    def _record_rows(
        self,
        errors: ErrorCollector,
        mask: pd.Series,
        error_type: ErrorType,
        message: str,
    ) -> None:
        for line_number in mask.index[mask.to_numpy(dtype=bool)]:
            errors.add(error_type, message, line_number=int(line_number))


def parse_session_log(
    filepath: Path,
    context: Optional[ProcessingContext] = None,
    chunk_lines: int = 5000,
    max_recorded_errors: int = 500,
) -> ParseResult:
    """
    Parse a session log file.
    """
    parser = SessionLogParser(chunk_lines=chunk_lines, max_recorded_errors=max_recorded_errors)
    return parser.parse_file(Path(filepath), context)
