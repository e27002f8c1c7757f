"""
Centralized logging configuration for the application assistant pipeline.

Provides run-scoped logging with run_id and stage tagging. A PipelineLogger can
also mirror each line into a sink (the run's event list) so that UI consumers
see the same human-readable progress lines as the console.
"""

import logging
import os
import sys
from typing import Callable, Optional


# Global debug mode flag - can be set via environment or CLI --debug
_GLOBAL_DEBUG_MODE = os.getenv("DEBUG_MODE", "false").lower() == "true"

# Sink signature: (stage, level, message)
EventSink = Callable[[str, str, str], None]


def set_global_debug_mode(enabled: bool) -> None:
    """Set global debug mode (used by the CLI --debug flag)."""
    global _GLOBAL_DEBUG_MODE
    _GLOBAL_DEBUG_MODE = enabled


def is_debug_mode() -> bool:
    """Check if debug mode is enabled globally."""
    return _GLOBAL_DEBUG_MODE


class PipelineLogger:
    """
    Run-scoped logger for one pipeline execution.

    Prefixes messages with ``[run:xxxxxxxx] [Stage]`` and forwards every
    message to an optional event sink.
    """

    def __init__(
        self,
        name: str,
        run_id: Optional[str] = None,
        layer: Optional[str] = None,
        debug_mode: Optional[bool] = None,
        sink: Optional[EventSink] = None,
    ):
        """
        Initialize pipeline logger.

        Args:
            name: Logger name (usually __name__)
            run_id: Optional run identifier for correlation
            layer: Optional stage name (e.g., "Classifier", "Resolver")
            debug_mode: If True, enables DEBUG level for this logger.
                       If None, uses global debug mode setting.
            sink: Optional callable receiving (stage, level, message)
        """
        self.logger = logging.getLogger(name)
        self.run_id = run_id
        self.layer = layer
        self.sink = sink

        self._debug_mode = debug_mode if debug_mode is not None else is_debug_mode()
        if self._debug_mode:
            self.logger.setLevel(logging.DEBUG)

    @property
    def level(self) -> int:
        """Get current logging level."""
        return self.logger.level

    def bind(self, layer: str) -> "PipelineLogger":
        """Return a logger for another stage of the same run, sharing the sink."""
        return PipelineLogger(
            self.logger.name,
            run_id=self.run_id,
            layer=layer,
            debug_mode=self._debug_mode,
            sink=self.sink,
        )

    def _format_message(self, message: str) -> str:
        """Add contextual prefix to message."""
        prefix_parts = []
        if self.run_id:
            prefix_parts.append(f"[run:{self.run_id[:8]}]")
        if self.layer:
            prefix_parts.append(f"[{self.layer}]")

        if prefix_parts:
            return f"{' '.join(prefix_parts)} {message}"
        return message

    def _forward(self, level: str, message: str) -> None:
        if self.sink is not None:
            self.sink(self.layer or "Pipeline", level, message)

    def debug(self, message: str, **kwargs):
        """Log debug message (never forwarded to the sink)."""
        self.logger.debug(self._format_message(message), **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self.logger.info(self._format_message(message), **kwargs)
        self._forward("info", message)

    def success(self, message: str, **kwargs):
        """Log a completed step; INFO on the console, 'success' in the sink."""
        self.logger.info(self._format_message(message), **kwargs)
        self._forward("success", message)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self.logger.warning(self._format_message(message), **kwargs)
        self._forward("warn", message)

    def error(self, message: str, **kwargs):
        """Log error message."""
        self.logger.error(self._format_message(message), **kwargs)
        self._forward("error", message)

    def exception(self, message: str, **kwargs):
        """Log exception with traceback."""
        self.logger.exception(self._format_message(message), **kwargs)
        self._forward("error", message)


def setup_logging(level: str = "INFO", format: str = "simple") -> None:
    """
    Configure global logging settings.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format: Log format ("simple" or "json")
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # stderr keeps stdout free for structured JSON events
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    if format == "json":
        formatter = logging.Formatter(
            '{"time": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # Third-party chatter
    for noisy in ("httpx", "openai", "urllib3"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))


def get_logger(
    name: str,
    run_id: Optional[str] = None,
    layer: Optional[str] = None,
    debug_mode: Optional[bool] = None,
    sink: Optional[EventSink] = None,
) -> PipelineLogger:
    """
    Get a pipeline logger instance.

    Args:
        name: Logger name (usually __name__)
        run_id: Optional run identifier
        layer: Optional stage name
        debug_mode: If True, enables DEBUG level. If None, uses global setting.
        sink: Optional event sink

    Returns:
        PipelineLogger instance
    """
    return PipelineLogger(name, run_id, layer, debug_mode, sink)
