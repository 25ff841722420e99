"""Goal-branch lifecycle.

State machine over Branch.status, with ``merged_at`` as a terminal flag:

    (new) --create--> ACTIVE --complete--> COMPLETED --merge--> merged
                        ^  |
             reactivate |  | abandon
                        |  v
                      ABANDONED

The master branch (status MASTER) takes no transitions and is the only
merge target. A status change and its milestone commit are written in one
store transaction, so either both land or neither does. A merge that
scores high enough also appends a life version record to master inside
the same transaction (see lifegit.lifecycle.versioning).

Every operation reloads the branch from the store and returns a fresh
model; the Branch passed in is never mutated.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Optional

from lifegit.commits.ledger import CommitLedger
from lifegit.core.config import LifecycleConfig
from lifegit.core.events import EventBus, EventType
from lifegit.core.exceptions import (
    EntityNotFoundError,
    InvalidStateError,
    MasterNotFoundError,
    NoTaskPlanError,
    ValidationError,
)
from lifegit.core.models import (
    Branch,
    BranchCreation,
    BranchStatistics,
    BranchStatus,
    CommitType,
    NoPlan,
    PlanAttached,
    PlanState,
    TaskPlan,
    VersionRecord,
)
from lifegit.db.store import Store
from lifegit.lifecycle.versioning import VersionEvaluator
from lifegit.planning.failure_policy import AIFailurePolicy
from lifegit.planning.generator import TaskPlanGenerator
from lifegit.planning.progress import ProgressTracker

logger = logging.getLogger("lifegit.lifecycle")

COMPLETION_MARKER = "🎉 Goal completed:"
MERGE_MARKER = "🔀 Merged goal:"


def completion_message(branch_name: str) -> str:
    return f"{COMPLETION_MARKER} {branch_name}"


def merge_message(branch_name: str, achievements: int) -> str:
    noun = "achievement" if achievements == 1 else "achievements"
    return f"{MERGE_MARKER} {branch_name} ({achievements} {noun})"


class BranchLifecycleManager:
    """Owns branch transitions and plan (re)generation.

    Injected dependencies:
        store: Persistence for branches, plans and commits.
        generator: AI task-plan generator.
        policy: Retry/fallback policy wrapped around the generator.
        ledger: Commit log used for milestone commits and statistics.
        tracker: Progress calculator.
        config: Name/description limits and regeneration behaviour.
        events: Optional bus notified after each successful transition.
        versioning: Scores merged branches for life version upgrades.
    """

    def __init__(
        self,
        store: Store,
        generator: TaskPlanGenerator,
        policy: AIFailurePolicy,
        ledger: CommitLedger,
        tracker: Optional[ProgressTracker] = None,
        config: Optional[LifecycleConfig] = None,
        events: Optional[EventBus] = None,
        versioning: Optional[VersionEvaluator] = None,
    ):
        self.store = store
        self.generator = generator
        self.policy = policy
        self.ledger = ledger
        self.tracker = tracker or ProgressTracker()
        self.config = config or LifecycleConfig()
        self.events = events or EventBus()
        self.versioning = versioning or VersionEvaluator()

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def get_branch(self, branch_id: uuid.UUID) -> Branch:
        branch = self.store.get_branch(branch_id)
        if branch is None:
            raise EntityNotFoundError("Branch", branch_id)
        return branch

    def list_branches(self, status: Optional[BranchStatus] = None) -> list[Branch]:
        return self.store.list_branches(status)

    def plan_state(self, branch: Branch) -> PlanState:
        plan = self.store.get_task_plan_for_branch(branch.id)
        if plan is None:
            return NoPlan(branch_id=branch.id)
        return PlanAttached(plan=plan)

    def get_statistics(self, branch: Branch) -> BranchStatistics:
        state = self.plan_state(branch)
        plan = state.plan if isinstance(state, PlanAttached) else None
        summary = self.tracker.summary(plan)
        return BranchStatistics(
            commit_count=self.ledger.count(branch.id),
            total_tasks=summary.total_tasks,
            completed_tasks=summary.completed_tasks,
            progress=summary.progress,
            remaining_estimated_duration=summary.remaining_duration,
        )

    def version_history(self) -> list[VersionRecord]:
        """Life version records, newest first."""
        master = self.store.get_master_branch()
        if master is None:
            return []
        return list(reversed(self.store.list_version_records_for_branch(master.id)))

    def current_version(self) -> str:
        history = self.version_history()
        if history:
            return history[0].version
        return self.versioning.config.initial_version

    # -------------------------------------------------------------------
    # Master
    # -------------------------------------------------------------------

    def ensure_master_branch(self) -> Branch:
        master = self.store.get_master_branch()
        if master is not None:
            return master
        master = Branch(
            name=self.config.master_branch_name,
            description="Life timeline",
            status=BranchStatus.MASTER,
        )
        created = self.store.create_branch(master)
        logger.info("Created master branch %s", created.id)
        return created

    # -------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------

    async def create_branch(
        self,
        name: str,
        description: str = "",
        timeframe: Optional[str] = None,
    ) -> BranchCreation:
        """Create an ACTIVE branch with an AI plan, or the manual plan if AI fails.

        AI failures never escape; a persistence failure rolls back both the
        branch and its plan and raises RepositoryError.
        """
        name = self._validate_name(name)
        description = self._validate_description(description)

        master = self.store.get_master_branch()
        branch = Branch(
            name=name,
            description=description,
            status=BranchStatus.ACTIVE,
            parent_branch_id=master.id if master else None,
        )

        outcome = await self.policy.generate_or_fallback(
            lambda: self.generator.generate_plan(branch.id, name, description, timeframe),
            branch_id=branch.id,
            goal_title=name,
            goal_description=description,
        )

        with self.store.transaction():
            stored_branch = self.store.create_branch(branch)
            stored_plan = self.store.create_task_plan(outcome.plan)

        logger.info(
            "Created branch '%s' (%s) with %s plan of %d tasks",
            name, stored_branch.id,
            "manual" if outcome.used_fallback else "AI",
            len(stored_plan.tasks),
        )
        self.events.emit(
            EventType.BRANCH_CREATED,
            branch_id=str(stored_branch.id),
            name=name,
        )
        if outcome.used_fallback:
            self.events.emit(
                EventType.PLAN_FALLBACK,
                branch_id=str(stored_branch.id),
                failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
                attempts=outcome.attempts,
            )
        else:
            self.events.emit(
                EventType.PLAN_GENERATED,
                branch_id=str(stored_branch.id),
                tasks=len(stored_plan.tasks),
                attempts=outcome.attempts,
            )
        return BranchCreation(
            branch=stored_branch,
            plan=stored_plan,
            used_fallback=outcome.used_fallback,
        )

    def _validate_name(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Branch name must not be empty")
        if len(name) > self.config.max_name_length:
            raise ValidationError(
                f"Branch name must be at most {self.config.max_name_length} characters"
            )
        return name

    def _validate_description(self, description: str) -> str:
        description = (description or "").strip()
        if len(description) > self.config.max_description_length:
            raise ValidationError(
                f"Branch description must be at most {self.config.max_description_length} characters"
            )
        return description

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------

    def complete_branch(self, branch: Branch) -> Branch:
        current = self.get_branch(branch.id)
        if current.status != BranchStatus.ACTIVE:
            raise InvalidStateError(
                f"Only active branches can be completed (branch is {current.status.value})",
                current_state=current.status.value,
            )

        updated = current.model_copy(
            update={"status": BranchStatus.COMPLETED, "completed_at": datetime.now(UTC)}
        )
        with self.store.transaction():
            self.store.update_branch(updated)
            commit = self.ledger.record(
                completion_message(current.name), CommitType.MILESTONE, current.id
            )

        logger.info("Branch '%s' completed", current.name)
        self.events.emit(
            EventType.BRANCH_COMPLETED,
            branch_id=str(current.id),
            commit_id=str(commit.id),
        )
        return updated

    def abandon_branch(self, branch: Branch) -> Branch:
        current = self.get_branch(branch.id)
        if current.is_master:
            raise InvalidStateError("The master branch cannot be abandoned", current_state="master")
        if current.status != BranchStatus.ACTIVE:
            raise InvalidStateError(
                f"Only active branches can be abandoned (branch is {current.status.value})",
                current_state=current.status.value,
            )

        updated = current.model_copy(
            update={"status": BranchStatus.ABANDONED, "abandoned_at": datetime.now(UTC)}
        )
        self.store.update_branch(updated)

        logger.info("Branch '%s' abandoned", current.name)
        self.events.emit(EventType.BRANCH_ABANDONED, branch_id=str(current.id))
        return updated

    def reactivate_branch(self, branch: Branch) -> Branch:
        current = self.get_branch(branch.id)
        if current.status != BranchStatus.ABANDONED:
            raise InvalidStateError(
                f"Only abandoned branches can be reactivated (branch is {current.status.value})",
                current_state=current.status.value,
            )

        updated = current.model_copy(
            update={"status": BranchStatus.ACTIVE, "abandoned_at": None}
        )
        self.store.update_branch(updated)

        logger.info("Branch '%s' reactivated", current.name)
        self.events.emit(EventType.BRANCH_REACTIVATED, branch_id=str(current.id))
        return updated

    def merge_branch(self, branch: Branch) -> Branch:
        current = self.get_branch(branch.id)
        if current.is_master:
            raise InvalidStateError("The master branch cannot be merged", current_state="master")
        if current.status != BranchStatus.COMPLETED:
            raise InvalidStateError(
                f"Branch must be completed before merging (branch is {current.status.value})",
                current_state=current.status.value,
            )
        if current.is_merged:
            raise InvalidStateError("Branch has already been merged", current_state="merged")

        master = self.store.get_master_branch()
        if master is None:
            raise MasterNotFoundError("Master branch not found")

        state = self.plan_state(current)
        plan = state.plan if isinstance(state, PlanAttached) else None
        achievements = plan.completed_tasks_count if plan is not None else 0

        updated = current.model_copy(update={"merged_at": datetime.now(UTC)})
        with self.store.transaction():
            self.store.update_branch(updated)
            commit = self.ledger.record(
                merge_message(current.name, achievements), CommitType.MILESTONE, master.id
            )
            record = self._record_version_upgrade(current, master, plan)

        logger.info("Merged branch '%s' into master (%d achievements)", current.name, achievements)
        self.events.emit(
            EventType.BRANCH_MERGED,
            branch_id=str(current.id),
            master_id=str(master.id),
            commit_id=str(commit.id),
        )
        if record is not None:
            self.events.emit(
                EventType.VERSION_UPGRADED,
                branch_id=str(current.id),
                version=record.version,
                major=record.is_important_milestone,
            )
        return updated

    def _record_version_upgrade(
        self,
        branch: Branch,
        master: Branch,
        plan: Optional[TaskPlan],
    ) -> Optional[VersionRecord]:
        """Score the merged branch and append a VersionRecord when it earns an upgrade."""
        if not self.versioning.config.enabled:
            return None

        decision = self.versioning.evaluate(
            branch,
            self.current_version(),
            commit_count=self.ledger.count(branch.id),
            completion_rate=self.tracker.progress(plan),
        )
        if not decision.should_upgrade:
            return None

        record = self.store.create_version_record(
            VersionRecord(
                branch_id=master.id,
                version=decision.suggested_version,
                trigger_branch_name=branch.name,
                description=decision.reason,
                is_important_milestone=decision.is_important_milestone,
                achievement_count=len(self.store.list_branches(BranchStatus.COMPLETED)),
                total_commits_at_upgrade=len(self.store.list_commits()),
            )
        )
        logger.info(
            "Life version upgraded to %s by '%s' (score %d)",
            record.version, branch.name, decision.score,
        )
        return record

    def delete_branch(self, branch: Branch) -> None:
        """Delete a branch with its plan and commits."""
        current = self.get_branch(branch.id)
        if current.is_master:
            raise InvalidStateError("The master branch cannot be deleted", current_state="master")
        self.store.delete_branch(current.id)
        logger.info("Deleted branch '%s'", current.name)
        self.events.emit(EventType.BRANCH_DELETED, branch_id=str(current.id))

    # -------------------------------------------------------------------
    # Plan regeneration
    # -------------------------------------------------------------------

    async def regenerate_task_plan(self, branch: Branch) -> TaskPlan:
        """Replace the branch's plan with a freshly generated one.

        The old plan stays in place until the new one is parsed, validated
        and stored. Every failure, including cancellation, propagates and
        leaves the old plan untouched. Manually added tasks are not carried
        over.
        """
        current = self.get_branch(branch.id)
        state = self.plan_state(current)
        if isinstance(state, NoPlan):
            raise NoTaskPlanError(f"Branch '{current.name}' has no task plan to regenerate")

        async def _generate() -> TaskPlan:
            return await self.generator.generate_plan(current.id, current.name, current.description)

        if self.config.retry_on_regenerate:
            new_plan = await self.policy.retry(_generate)
        else:
            new_plan = await _generate()

        with self.store.transaction():
            existing = self.store.get_task_plan_for_branch(current.id)
            if existing is not None:
                self.store.delete_task_plan(existing.id)
            stored = self.store.create_task_plan(new_plan)
            # Re-read: a transition may have landed while the request was in flight.
            fresh = self.get_branch(current.id)
            self.store.update_branch(
                fresh.model_copy(update={"progress": self.tracker.progress(stored)})
            )

        logger.info(
            "Regenerated plan for '%s': %d tasks replace %d",
            current.name, len(stored.tasks), len(state.plan.tasks),
        )
        self.events.emit(
            EventType.PLAN_REGENERATED,
            branch_id=str(current.id),
            old_plan_id=str(state.plan.id),
            new_plan_id=str(stored.id),
        )
        return stored
