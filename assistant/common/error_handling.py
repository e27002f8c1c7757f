"""
Centralized error handling for the application assistant pipeline.

Provides a per-run collector for degrade-and-continue failures and a decorator
for stage-local operations whose failure must never abort the run.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class PipelineError:
    """
    Structured error information for one stage failure.

    Severity is one of "critical", "high", "medium", "low". Hard stops are
    recorded as critical and non-recoverable.
    """

    stage: str  # e.g., "focus", "dossier"
    operation: str  # e.g., "embed_chunks", "deep_research"
    severity: str
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    recoverable: bool = True
    exception_type: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "stage": self.stage,
            "operation": self.operation,
            "severity": self.severity,
            "message": self.message,
            "timestamp": self.timestamp,
            "recoverable": self.recoverable,
            "exception_type": self.exception_type,
        }


class ErrorCollector:
    """Collects stage errors during one run."""

    def __init__(self):
        self.errors: List[PipelineError] = []

    def add_error(
        self,
        stage: str,
        operation: str,
        message: str,
        severity: str = "medium",
        recoverable: bool = True,
        exception: Optional[BaseException] = None,
    ) -> PipelineError:
        """Record an error and return it."""
        error = PipelineError(
            stage=stage,
            operation=operation,
            message=message,
            severity=severity,
            recoverable=recoverable,
            exception_type=type(exception).__name__ if exception else None,
        )
        self.errors.append(error)
        return error

    def has_critical_errors(self) -> bool:
        """Check if any critical (non-recoverable) errors occurred."""
        return any(e.severity == "critical" and not e.recoverable for e in self.errors)

    def get_error_messages(self) -> List[str]:
        return [e.message for e in self.errors]

    def summary(self) -> dict:
        """Get error summary statistics."""
        by_severity = {"critical": 0, "high": 0, "medium": 0, "low": 0}
        for error in self.errors:
            if error.severity in by_severity:
                by_severity[error.severity] += 1
        return {
            "total": len(self.errors),
            "by_severity": by_severity,
            "recoverable": sum(1 for e in self.errors if e.recoverable),
            "non_recoverable": sum(1 for e in self.errors if not e.recoverable),
        }


def pipeline_operation(
    operation_name: str,
    stage: str = "unknown",
    critical: bool = False,
    log_success: bool = False,
    fallback_value: Any = None,
    reraise: bool = False,
    passthrough: tuple = (),
):
    """
    Decorator for stage-local operations with consistent error handling.

    Works on both plain and ``async def`` functions. Exceptions listed in
    ``passthrough`` (typically PipelineStopped) always propagate.

    Args:
        operation_name: Human-readable operation name (e.g., "Dossier upsert")
        stage: Stage identifier (e.g., "dossier")
        critical: If True, logs at ERROR level with stack trace; if False, WARNING
        log_success: If True, logs successful completion at INFO level
        fallback_value: Value to return on failure (default: None)
        reraise: If True, re-raises the exception after logging
        passthrough: Exception types that are never caught

    Usage:
        @pipeline_operation("Artifact write", stage="artifacts")
        def write_json(self, name, data):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        logger = logging.getLogger(func.__module__)

        def _on_failure(e: Exception) -> Any:
            log_level = logging.ERROR if critical else logging.WARNING
            logger.log(
                log_level,
                f"[{stage}] [{operation_name}] ✗ Failed: {e}",
                exc_info=critical,
            )
            if reraise:
                raise e
            return fallback_value

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    result = await func(*args, **kwargs)
                except passthrough:
                    raise
                except Exception as e:
                    return _on_failure(e)
                if log_success:
                    logger.info(f"[{stage}] [{operation_name}] ✓ Completed successfully")
                return result

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            try:
                result = func(*args, **kwargs)
            except passthrough:
                raise
            except Exception as e:
                return _on_failure(e)
            if log_success:
                logger.info(f"[{stage}] [{operation_name}] ✓ Completed successfully")
            return result

        return wrapper

    return decorator
