"""
Cooperative progress reporting, cancellation and time budget for a job.

Long-running stages call ``ProcessingContext.checkpoint`` every few thousand
samples. That is the only place a job can be interrupted, so a cancelled job
simply never reaches the point where its result object is assembled.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ridelog.models.errors import ProcessingCancelledError, ProcessingTimeoutError


logger = logging.getLogger(__name__)


class ProcessingStage(Enum):
    PARSING = "PARSING"
    VALIDATION = "VALIDATION"
    CALIBRATION = "CALIBRATION"
    FILTERING = "FILTERING"
    METRICS = "METRICS"
    SEGMENTATION = "SEGMENTATION"
    STATISTICS = "STATISTICS"
    COMPLETE = "COMPLETE"


# Share of overall progress at which each stage starts
STAGE_START: dict[ProcessingStage, float] = {
    ProcessingStage.PARSING: 0.0,
    ProcessingStage.VALIDATION: 0.30,
    ProcessingStage.CALIBRATION: 0.35,
    ProcessingStage.FILTERING: 0.40,
    ProcessingStage.METRICS: 0.50,
    ProcessingStage.SEGMENTATION: 0.75,
    ProcessingStage.STATISTICS: 0.85,
    ProcessingStage.COMPLETE: 1.0,
}

_STAGE_ORDER = list(STAGE_START)


@dataclass(frozen=True)
class ProcessingProgress:
    stage: ProcessingStage
    fraction: float  # overall, 0-1
    message: str = ""


ProgressCallback = Callable[[ProcessingProgress], None]


class CancellationToken:
    """Thread-safe flag a host sets to stop a running job."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ProcessingContext:
    """Carries the progress callback, cancel token and deadline through a job."""

    def __init__(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        timeout_s: Optional[float] = None,
    ):
        self._callback = progress_callback
        self.cancel_token = cancel_token or CancellationToken()
        self._started = time.monotonic()
        self._deadline = self._started + timeout_s if timeout_s else None
        self._last_fraction = 0.0

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000.0

    def checkpoint(self) -> None:
        """Yield point: stop here if cancelled or over budget."""
        if self.cancel_token.cancelled:
            raise ProcessingCancelledError("Processing cancelled")
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise ProcessingTimeoutError(
                f"Processing exceeded its time budget after {self.elapsed_ms:.0f} ms"
            )

    def report(self, stage: ProcessingStage, stage_fraction: float = 0.0, message: str = "") -> None:
        """Report progress within a stage, then checkpoint."""
        start = STAGE_START[stage]
        index = _STAGE_ORDER.index(stage)
        end = STAGE_START[_STAGE_ORDER[index + 1]] if index + 1 < len(_STAGE_ORDER) else 1.0
        fraction = start + (end - start) * min(max(stage_fraction, 0.0), 1.0)
        # Never step backwards
        fraction = max(fraction, self._last_fraction)
        self._last_fraction = fraction

        if self._callback is not None:
            self._callback(ProcessingProgress(stage=stage, fraction=fraction, message=message))
        self.checkpoint()
