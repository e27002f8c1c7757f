"""
Exception hierarchy for the application assistant pipeline.

Only run-level conditions are exceptions. Expected fallback outcomes inside
a stage (a strategy finding nothing, an unparseable model reply) are returned
as data by the stage itself.
"""

# Message recorded as the run's last error when a run is stopped rather than failed
STOPPED_MARKER = "Stopped by user"


class AssistantError(Exception):
    """Base exception for application assistant errors."""
    pass


class PipelineStopped(AssistantError):
    """Raised when the run's cancellation token fires (user stop or deadline)."""

    def __init__(self, reason: str = STOPPED_MARKER):
        super().__init__(reason)
        self.reason = reason


class PipelineHardStop(AssistantError):
    """Raised for conditions that end the run in error without retry."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage
        self.message = message


class HumanWaitTimeout(AssistantError):
    """Raised when an operator does not complete a login/captcha step in time."""

    def __init__(self, kind: str, timeout_seconds: float):
        super().__init__(f"No operator response for {kind} within {timeout_seconds:.0f}s")
        self.kind = kind
        self.timeout_seconds = timeout_seconds


class LLMError(AssistantError):
    """Raised when a completion call fails or times out."""
    pass


class LLMTimeoutError(LLMError):
    """Raised when a completion call exceeds its timeout."""
    pass


class EmbeddingError(AssistantError):
    """Raised when the embedding service fails (including unknown model)."""
    pass


class NavigationError(AssistantError):
    """Raised when the browser cannot load a URL."""
    pass
