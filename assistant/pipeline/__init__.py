"""
Pipeline: run state, browser session, human-in-the-loop waits, artifacts and
the controller that runs one URL end to end.
"""

from .controller import ApplicationAssistantController
from .human_loop import HumanSignal
from .run_context import CancellationToken, PipelineRun, RunDeadline

__all__ = [
    "ApplicationAssistantController",
    "HumanSignal",
    "CancellationToken",
    "PipelineRun",
    "RunDeadline",
]
