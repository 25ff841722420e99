"""Progress figures derived from a task plan."""

from __future__ import annotations

from typing import Optional

from lifegit.core.models import PlanProgress, TaskPlan


class ProgressTracker:
    """Stateless calculator; a None plan counts as an empty one."""

    def progress(self, plan: Optional[TaskPlan]) -> float:
        if plan is None or not plan.tasks:
            return 0.0
        return plan.completed_tasks_count / len(plan.tasks)

    def remaining_duration(self, plan: Optional[TaskPlan]) -> int:
        if plan is None:
            return 0
        return sum(t.estimated_duration for t in plan.tasks if not t.is_completed)

    def summary(self, plan: Optional[TaskPlan]) -> PlanProgress:
        if plan is None:
            return PlanProgress(
                total_tasks=0,
                completed_tasks=0,
                progress=0.0,
                total_estimated_duration=0,
                completed_duration=0,
                remaining_duration=0,
            )
        completed_duration = sum(t.estimated_duration for t in plan.tasks if t.is_completed)
        return PlanProgress(
            total_tasks=len(plan.tasks),
            completed_tasks=plan.completed_tasks_count,
            progress=self.progress(plan),
            total_estimated_duration=plan.total_estimated_duration,
            completed_duration=completed_duration,
            remaining_duration=self.remaining_duration(plan),
        )

    @staticmethod
    def format_duration(minutes: int) -> str:
        """45 -> "45m", 120 -> "2h", 90 -> "1h 30m"."""
        if minutes < 60:
            return f"{minutes}m"
        hours, rest = divmod(minutes, 60)
        if rest == 0:
            return f"{hours}h"
        return f"{hours}h {rest}m"
