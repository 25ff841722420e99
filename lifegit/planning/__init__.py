"""Task-plan generation, failure handling, editing and progress."""

from lifegit.planning.editor import TaskPlanEditor
from lifegit.planning.failure_policy import AIFailurePolicy, FailureKind, PlanOutcome
from lifegit.planning.generator import TaskPlanGenerator
from lifegit.planning.progress import ProgressTracker

__all__ = [
    "AIFailurePolicy",
    "FailureKind",
    "PlanOutcome",
    "ProgressTracker",
    "TaskPlanEditor",
    "TaskPlanGenerator",
]
