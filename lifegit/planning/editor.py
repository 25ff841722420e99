"""Manual edits to a stored task plan.

Every operation takes the plan as the caller last saw it, reloads the
stored copy by id, applies the change and writes it back together with
the owning branch's cached progress. The returned plan is the stored one.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Optional

from lifegit.commits.ledger import CommitLedger
from lifegit.core.events import EventBus, EventType
from lifegit.core.exceptions import EntityNotFoundError, ValidationError
from lifegit.core.models import CommitType, TaskItem, TaskPlan, TaskTimeScope
from lifegit.db.store import Store
from lifegit.planning.progress import ProgressTracker

logger = logging.getLogger("lifegit.planning.editor")

TASK_COMPLETE_MARKER = "✅ Task completed:"


def task_completion_message(task_title: str) -> str:
    return f"{TASK_COMPLETE_MARKER} {task_title}"


def _validate_task_fields(title: str, description: str, estimated_duration: int) -> None:
    if not title.strip():
        raise ValidationError("Task title must not be empty")
    if not description.strip():
        raise ValidationError("Task description must not be empty")
    if estimated_duration <= 0:
        raise ValidationError("Task estimated duration must be positive")


class TaskPlanEditor:
    """User-driven changes to a branch's plan.

    Injected dependencies:
        store: Persistence for plans and branches.
        ledger: Used to record task-completion commits.
        tracker: Recomputes the branch progress cache after each edit.
        events: Optional bus notified of every edit.
    """

    def __init__(
        self,
        store: Store,
        ledger: CommitLedger,
        tracker: Optional[ProgressTracker] = None,
        events: Optional[EventBus] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.tracker = tracker or ProgressTracker()
        self.events = events or EventBus()

    # -------------------------------------------------------------------
    # Plan-level edits
    # -------------------------------------------------------------------

    def update_total_duration(self, plan: TaskPlan, total_duration: str) -> TaskPlan:
        total_duration = total_duration.strip()
        if not total_duration:
            raise ValidationError("Total duration must not be empty")
        current = self._reload(plan)
        current.total_duration = total_duration
        return self._save(current, "total_duration")

    def add_task(
        self,
        plan: TaskPlan,
        title: str,
        description: str,
        estimated_duration: int,
        time_scope: TaskTimeScope = TaskTimeScope.DAILY,
        execution_tips: Optional[str] = None,
    ) -> TaskPlan:
        _validate_task_fields(title, description, estimated_duration)
        current = self._reload(plan)
        current.tasks.append(
            TaskItem(
                title=title.strip(),
                description=description.strip(),
                estimated_duration=estimated_duration,
                time_scope=time_scope,
                order_index=max((t.order_index for t in current.tasks), default=-1) + 1,
                is_ai_generated=False,
                execution_tips=execution_tips,
            )
        )
        return self._save(current, "add_task")

    def update_task(
        self,
        plan: TaskPlan,
        task_id: uuid.UUID,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        estimated_duration: Optional[int] = None,
        time_scope: Optional[TaskTimeScope] = None,
        execution_tips: Optional[str] = None,
    ) -> TaskPlan:
        """Change the given fields of one task; None leaves a field as is."""
        current = self._reload(plan)
        task = self._find(current, task_id)

        new_title = task.title if title is None else title
        new_description = task.description if description is None else description
        new_duration = task.estimated_duration if estimated_duration is None else estimated_duration
        _validate_task_fields(new_title, new_description, new_duration)

        task.title = new_title.strip()
        task.description = new_description.strip()
        task.estimated_duration = new_duration
        if time_scope is not None:
            task.time_scope = time_scope
        if execution_tips is not None:
            task.execution_tips = execution_tips
        task.last_modified_at = datetime.now(UTC)
        return self._save(current, "update_task")

    def remove_task(self, plan: TaskPlan, task_id: uuid.UUID) -> TaskPlan:
        current = self._reload(plan)
        task = self._find(current, task_id)
        current.tasks = [t for t in current.ordered_tasks() if t.id != task.id]
        for index, remaining in enumerate(current.tasks):
            remaining.order_index = index
        return self._save(current, "remove_task")

    def reorder_tasks(self, plan: TaskPlan, task_ids: list[uuid.UUID]) -> TaskPlan:
        """Assign order_index by position in ``task_ids``."""
        current = self._reload(plan)
        if len(task_ids) != len(current.tasks) or set(task_ids) != {t.id for t in current.tasks}:
            raise ValidationError("Reorder must list every task of the plan exactly once")

        by_id = {t.id: t for t in current.tasks}
        current.tasks = [by_id[task_id] for task_id in task_ids]
        for index, task in enumerate(current.tasks):
            task.order_index = index
        return self._save(current, "reorder_tasks")

    # -------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------

    def toggle_task(
        self,
        plan: TaskPlan,
        task_id: uuid.UUID,
        record_commit: bool = True,
    ) -> TaskPlan:
        """Flip a task's completion.

        Completing a task with ``record_commit`` also appends a TASK_COMPLETE
        commit to the owning branch; the plan update and the commit are
        written in one transaction.
        """
        current = self._reload(plan)
        task = self._find(current, task_id)
        now = datetime.now(UTC)

        task.is_completed = not task.is_completed
        task.completed_at = now if task.is_completed else None
        task.last_modified_at = now

        with self.store.transaction():
            stored = self._write(current)
            if task.is_completed and record_commit:
                self.ledger.record(
                    task_completion_message(task.title),
                    CommitType.TASK_COMPLETE,
                    current.branch_id,
                    related_task_id=task.id,
                )

        logger.info(
            "Task '%s' marked %s", task.title, "complete" if task.is_completed else "incomplete"
        )
        self._emit(current, "toggle_task")
        return stored

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _reload(self, plan: TaskPlan) -> TaskPlan:
        current = self.store.get_task_plan(plan.id)
        if current is None:
            raise EntityNotFoundError("TaskPlan", plan.id)
        return current

    @staticmethod
    def _find(plan: TaskPlan, task_id: uuid.UUID) -> TaskItem:
        task = plan.find_task(task_id)
        if task is None:
            raise EntityNotFoundError("TaskItem", task_id)
        return task

    def _write(self, plan: TaskPlan) -> TaskPlan:
        plan.last_modified_at = datetime.now(UTC)
        with self.store.transaction():
            stored = self.store.update_task_plan(plan)
            branch = self.store.get_branch(plan.branch_id)
            if branch is not None:
                self.store.update_branch(
                    branch.model_copy(update={"progress": self.tracker.progress(stored)})
                )
        return stored

    def _emit(self, plan: TaskPlan, action: str) -> None:
        logger.debug("Plan %s edited (%s)", plan.id, action)
        self.events.emit(
            EventType.PLAN_EDITED,
            plan_id=str(plan.id),
            branch_id=str(plan.branch_id),
            action=action,
        )

    def _save(self, plan: TaskPlan, action: str) -> TaskPlan:
        stored = self._write(plan)
        self._emit(plan, action)
        return stored
