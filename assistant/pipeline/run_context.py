"""
Run state shared by every pipeline stage.

- CancellationToken: one token per run, fired by a user stop or by the
  deadline timer. Stages call ``raise_if_cancelled()`` at each checkpoint.
- RunDeadline: a single timer with a one-time extension, a hard cap and a
  wrap-up window.
- PipelineRun: the state object exposed to the CLI and UI consumers.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from assistant.common.config import Config
from assistant.common.error_handling import ErrorCollector
from assistant.common.errors import STOPPED_MARKER, PipelineStopped

logger = logging.getLogger(__name__)

DEADLINE_REASON = "Run deadline exceeded"


# ===== CANCELLATION =====

class CancellationToken:
    """
    Cancellation signal for one run.

    The first ``cancel()`` wins: its reason is kept and later calls are no-ops.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = STOPPED_MARKER) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.info(f"Run cancelled: {reason}")

    def raise_if_cancelled(self) -> None:
        """Raise PipelineStopped if the token has fired."""
        if self._event.is_set():
            raise PipelineStopped(self._reason or STOPPED_MARKER)

    async def wait(self) -> None:
        await self._event.wait()


# ===== DEADLINE =====

class RunDeadline:
    """
    Wall-clock budget for a run.

    Args:
        base_minutes: Initial budget
        extension_minutes: One-time extension (``extend_once``)
        max_minutes: Hard cap measured from start
        wrap_up_seconds: Window before the deadline in which optional work stops
        on_expire: Called once when the deadline passes
        clock: Monotonic clock (tests)
    """

    def __init__(
        self,
        base_minutes: float = Config.RUN_DEADLINE_MINUTES,
        extension_minutes: float = Config.DEADLINE_EXTENSION_MINUTES,
        max_minutes: float = Config.MAX_RUN_MINUTES,
        wrap_up_seconds: float = Config.WRAP_UP_SECONDS,
        on_expire: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_seconds = base_minutes * 60
        self.extension_seconds = extension_minutes * 60
        self.max_seconds = max_minutes * 60
        self.wrap_up_seconds = wrap_up_seconds
        self.on_expire = on_expire
        self._clock = clock
        self._started_at: Optional[float] = None
        self._deadline_at: Optional[float] = None
        self._paused_at: Optional[float] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self.extended = False

    @property
    def started(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        """Start the clock and arm the timer (requires a running event loop)."""
        self._started_at = self._clock()
        self._deadline_at = self._started_at + self.base_seconds
        self._arm()

    def _arm(self) -> None:
        self._disarm()
        if self.on_expire is None or self._deadline_at is None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(self._deadline_at - self._clock(), 0), self._expire)

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _expire(self) -> None:
        self._timer = None
        logger.warning("Run deadline reached")
        if self.on_expire is not None:
            self.on_expire()

    def cancel_timer(self) -> None:
        self._disarm()

    def extend_once(self) -> bool:
        """
        Add the extension once, capped at ``max_minutes`` from start.

        Returns:
            True if the deadline moved
        """
        if self.extended or self._deadline_at is None:
            return False
        self.extended = True
        cap = self._started_at + self.max_seconds
        new_deadline = min(self._deadline_at + self.extension_seconds, cap)
        if new_deadline <= self._deadline_at:
            return False
        self._deadline_at = new_deadline
        if self._timer is not None:
            self._arm()
        logger.info(f"Run deadline extended; {self.remaining():.0f}s remaining")
        return True

    def pause(self) -> None:
        """Stop the clock (operator waits do not count against the run)."""
        if self._paused_at is None and self._deadline_at is not None:
            self._paused_at = self._clock()
            self._disarm()

    def resume(self) -> None:
        if self._paused_at is None:
            return
        paused_for = self._clock() - self._paused_at
        self._paused_at = None
        self._started_at += paused_for
        self._deadline_at += paused_for
        if self.on_expire is not None:
            self._arm()

    def remaining(self) -> float:
        """Seconds left (never negative); the full base budget before start."""
        if self._deadline_at is None:
            return self.base_seconds
        now = self._paused_at if self._paused_at is not None else self._clock()
        return max(self._deadline_at - now, 0.0)

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        now = self._paused_at if self._paused_at is not None else self._clock()
        return now - self._started_at

    def in_wrap_up(self) -> bool:
        return self.started and self.remaining() <= self.wrap_up_seconds

    @property
    def expired(self) -> bool:
        return self.started and self.remaining() <= 0

    def bound_timeout(self, timeout_ms: int) -> int:
        """Clip a per-call timeout to the time left."""
        return int(min(timeout_ms, self.remaining() * 1000))


# ===== RUN STATE =====

class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING_LOGIN = "waiting_login"
    WAITING_CAPTCHA = "waiting_captcha"
    DONE = "done"
    ERROR = "error"


class PipelineStep(str, Enum):
    OPEN_BROWSER = "open_browser"
    ACQUIRE = "acquire"
    CLASSIFY = "classify"
    LOGIN = "login"
    CAPTCHA = "captcha"
    RESOLVE = "resolve"
    FOCUS = "focus"
    EXTRACT = "extract"
    COMPANY = "company"
    DOSSIER = "dossier"
    DONE = "done"


@dataclass
class RunEvent:
    timestamp: str
    stage: str
    level: str  # info | success | warn | error
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "stage": self.stage, "level": self.level, "message": self.message}


@dataclass
class PipelineRun:
    """State of one application-assistant run."""

    url: str
    user_name: Optional[str] = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    step: PipelineStep = PipelineStep.OPEN_BROWSER
    status: RunStatus = RunStatus.PENDING
    cancel: CancellationToken = field(default_factory=CancellationToken)
    deadline: Optional[RunDeadline] = None
    timings: Dict[str, int] = field(default_factory=dict)
    events: List[RunEvent] = field(default_factory=list)
    errors: ErrorCollector = field(default_factory=ErrorCollector)
    waiting_for: Optional[str] = None
    last_error: Optional[str] = None
    final_url: Optional[str] = None
    page_type: Optional[str] = None
    job: Any = None
    company: Any = None
    dossier: Any = None
    artifacts_path: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def add_event(self, stage: str, level: str, message: str) -> None:
        """Event sink for PipelineLogger."""
        self.events.append(RunEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            stage=stage,
            level=level,
            message=message,
        ))

    def set_step(self, step: PipelineStep) -> None:
        self.step = step

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.DONE, RunStatus.ERROR)

    def finish(self, status: RunStatus, error: Optional[str] = None) -> None:
        self.status = status
        self.waiting_for = None
        if error is not None:
            self.last_error = error
        self.finished_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "url": self.url,
            "final_url": self.final_url,
            "step": self.step.value,
            "status": self.status.value,
            "page_type": self.page_type,
            "waiting_for": self.waiting_for,
            "last_error": self.last_error,
            "timings": dict(self.timings),
            "job": self.job.model_dump() if hasattr(self.job, "model_dump") else self.job,
            "company": getattr(self.company, "canonical_name", None),
            "artifacts_path": self.artifacts_path,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "events": [e.to_dict() for e in self.events],
            "errors": [e.to_dict() for e in self.errors.errors],
        }
