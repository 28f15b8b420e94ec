"""Goal decomposition and subgoal retry across execution units."""

from worldseed.supervisor.completion import (
    Completion,
    CompletionDetector,
    JsonResultDetector,
    MarkerDetector,
)
from worldseed.supervisor.service import Supervisor, SupervisorState

__all__ = [
    "Completion",
    "CompletionDetector",
    "JsonResultDetector",
    "MarkerDetector",
    "Supervisor",
    "SupervisorState",
]
