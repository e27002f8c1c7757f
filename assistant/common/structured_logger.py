"""
Structured JSON logger for pipeline stage events.

Emits JSON lines for:
- Stage start/complete/error/skip tracking
- Degrade-and-continue warnings
- Pipeline start/complete (terminal status)

Usage:
    logger = StructuredLogger(run_id="abc123")
    with StageContext(logger, "classify") as ctx:
        ...
        ctx.add_metadata("page_type", "detail")
"""

import json
import sys
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TextIO

from assistant.common.errors import PipelineStopped


class EventType(str, Enum):
    """Standard pipeline event types."""
    STAGE_START = "stage_start"
    STAGE_COMPLETE = "stage_complete"
    STAGE_ERROR = "stage_error"
    STAGE_SKIP = "stage_skip"
    STAGE_WARNING = "stage_warning"
    PIPELINE_START = "pipeline_start"
    PIPELINE_COMPLETE = "pipeline_complete"


class StageStatus(str, Enum):
    """Stage execution status."""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"
    DEGRADED = "degraded"
    STOPPED = "stopped"


@dataclass
class LogEvent:
    """Structured log event with all optional fields."""
    timestamp: str
    event: str
    run_id: str
    stage: Optional[str] = None
    status: Optional[str] = None
    duration_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Dictionary form, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        """Convert to JSON string, excluding None values."""
        return json.dumps(self.to_dict(), default=str)


class StructuredLogger:
    """
    Structured JSON logger for one run.

    Emits JSON lines to a stream (stdout by default) and keeps an in-memory
    history that the controller attaches to the run's artifacts.
    """

    # Ordinal of each stage, used only for display ordering
    STAGE_ORDER = {
        "browser": 1,
        "acquire": 2,
        "classify": 3,
        "human_wait": 4,
        "resolve": 5,
        "focus": 6,
        "extract": 7,
        "company_identity": 8,
        "dossier": 9,
    }

    def __init__(
        self,
        run_id: str,
        enabled: bool = True,
        stream: Optional[TextIO] = None,
        listener: Optional[Callable[[LogEvent], None]] = None,
    ):
        """
        Initialize structured logger.

        Args:
            run_id: Run ID for correlation
            enabled: Whether to emit events to the stream (history is always kept)
            stream: Output stream (defaults to sys.stdout)
            listener: Optional callback invoked with every event
        """
        self.run_id = run_id
        self.enabled = enabled
        self.stream = stream
        self.listener = listener
        self.history: List[LogEvent] = []
        self._stage_start_times: Dict[str, float] = {}

    def _emit(self, event: LogEvent) -> None:
        self.history.append(event)
        if self.listener is not None:
            self.listener(event)
        if self.enabled:
            print(event.to_json(), file=self.stream or sys.stdout, flush=True)

    def _now(self) -> str:
        """Get current UTC timestamp in ISO format."""
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def _elapsed_ms(self, stage: str) -> Optional[int]:
        started = self._stage_start_times.pop(stage, None)
        if started is None:
            return None
        return int((time.time() - started) * 1000)

    def emit(
        self,
        event: str,
        stage: Optional[str] = None,
        status: Optional[str] = None,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Emit a custom log event.

        Args:
            event: Event type name
            stage: Stage name
            status: Execution status
            duration_ms: Duration in milliseconds
            metadata: Additional event metadata
            error: Error message if applicable
        """
        self._emit(LogEvent(
            timestamp=self._now(),
            event=event,
            run_id=self.run_id,
            stage=stage,
            status=status,
            duration_ms=duration_ms,
            metadata=metadata,
            error=error,
        ))

    # ===== Convenience Methods =====

    def stage_start(self, stage: str) -> None:
        """Log stage start and remember the start time."""
        self._stage_start_times[stage] = time.time()
        self.emit(EventType.STAGE_START.value, stage=stage)

    def stage_complete(
        self,
        stage: str,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: StageStatus = StageStatus.SUCCESS,
    ) -> None:
        """Log stage completion (duration auto-calculated when stage_start was called)."""
        if duration_ms is None:
            duration_ms = self._elapsed_ms(stage)
        self.emit(
            EventType.STAGE_COMPLETE.value,
            stage=stage,
            status=status.value,
            duration_ms=duration_ms,
            metadata=metadata,
        )

    def stage_error(
        self,
        stage: str,
        error: str,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: StageStatus = StageStatus.ERROR,
    ) -> None:
        """Log stage failure."""
        if duration_ms is None:
            duration_ms = self._elapsed_ms(stage)
        self.emit(
            EventType.STAGE_ERROR.value,
            stage=stage,
            status=status.value,
            duration_ms=duration_ms,
            error=error,
            metadata=metadata,
        )

    def stage_skip(self, stage: str, reason: str) -> None:
        """Log a skipped stage."""
        self.emit(
            EventType.STAGE_SKIP.value,
            stage=stage,
            status=StageStatus.SKIPPED.value,
            metadata={"reason": reason},
        )

    def stage_warning(self, stage: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Log a degrade-and-continue condition."""
        data = {"message": message}
        if metadata:
            data.update(metadata)
        self.emit(
            EventType.STAGE_WARNING.value,
            stage=stage,
            status=StageStatus.DEGRADED.value,
            metadata=data,
        )

    def pipeline_start(self, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Log pipeline execution start."""
        self.emit(EventType.PIPELINE_START.value, metadata=metadata)

    def pipeline_complete(
        self,
        status: str = "done",
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Log pipeline execution complete.

        Args:
            status: Terminal run status ("done" or "error")
            duration_ms: Total duration
            metadata: Summary metadata
            error: Last error message, if any
        """
        self.emit(
            EventType.PIPELINE_COMPLETE.value,
            status=status,
            duration_ms=duration_ms,
            metadata=metadata,
            error=error,
        )

    def as_dicts(self) -> List[Dict[str, Any]]:
        """History as plain dicts (for artifact persistence)."""
        return [e.to_dict() for e in self.history]


# ===== Context Manager for Stage Timing =====

class StageContext:
    """
    Context manager for automatic stage timing.

    A PipelineStopped exception is logged with status "stopped" instead of
    "error" so consumers can tell cancellation apart from a defect.

    Usage:
        with StageContext(logger, "extract") as ctx:
            ...
            ctx.add_metadata("strategy", "json_ld")
    """

    def __init__(self, logger: StructuredLogger, stage: str):
        self.logger = logger
        self.stage = stage
        self.metadata: Dict[str, Any] = {}
        self.status = StageStatus.SUCCESS
        self._start_time: float = 0

    def __enter__(self) -> "StageContext":
        self._start_time = time.time()
        self.logger.stage_start(self.stage)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        duration_ms = int((time.time() - self._start_time) * 1000)

        if exc_type is not None:
            status = StageStatus.STOPPED if issubclass(exc_type, PipelineStopped) else StageStatus.ERROR
            self.logger.stage_error(
                self.stage,
                str(exc_val),
                duration_ms,
                self.metadata or None,
                status=status,
            )
            return False  # Re-raise exception

        self.logger.stage_complete(
            self.stage,
            duration_ms,
            self.metadata or None,
            status=self.status,
        )
        return False

    def add_metadata(self, key: str, value: Any) -> None:
        """Add metadata to be included in completion event."""
        self.metadata[key] = value

    def mark_degraded(self, reason: str) -> None:
        """Complete this stage with status 'degraded' instead of 'success'."""
        self.status = StageStatus.DEGRADED
        self.metadata["degraded_reason"] = reason
