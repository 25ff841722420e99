"""All Pydantic data models for LifeGit.

Defines the entities the lifecycle core reads and writes (branches, task
plans, task items, commits) and the result types its operations return.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


def _new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class BranchStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    MASTER = "master"


class TaskTimeScope(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: Optional[str]) -> "TaskTimeScope":
        """Map a free-form scope string onto a member; unknown values become DAILY."""
        if value:
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.DAILY


class CommitType(str, enum.Enum):
    TASK_COMPLETE = "task_complete"
    LEARNING = "learning"
    REFLECTION = "reflection"
    MILESTONE = "milestone"
    HABIT = "habit"
    EXERCISE = "exercise"
    READING = "reading"
    CREATIVITY = "creativity"
    SOCIAL = "social"
    HEALTH = "health"
    FINANCE = "finance"
    CAREER = "career"
    RELATIONSHIP = "relationship"
    TRAVEL = "travel"
    SKILL = "skill"
    PROJECT = "project"
    IDEA = "idea"
    CHALLENGE = "challenge"
    GRATITUDE = "gratitude"
    CUSTOM = "custom"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

class Branch(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    name: str
    description: str = ""
    status: BranchStatus = BranchStatus.ACTIVE
    progress: float = Field(default=0.0, ge=0.0, le=1.0)  # cache, see ProgressTracker
    parent_branch_id: Optional[uuid.UUID] = None
    expected_completion_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_now)
    completed_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None

    @property
    def is_master(self) -> bool:
        return self.status == BranchStatus.MASTER

    @property
    def is_merged(self) -> bool:
        return self.merged_at is not None


class TaskItem(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    title: str
    description: str
    estimated_duration: int  # minutes
    time_scope: TaskTimeScope = TaskTimeScope.DAILY
    order_index: int = 0
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    is_ai_generated: bool = False
    execution_tips: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    last_modified_at: Optional[datetime] = None


class TaskPlan(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    branch_id: uuid.UUID
    total_duration: str
    is_ai_generated: bool = False
    tasks: list[TaskItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    last_modified_at: Optional[datetime] = None

    @property
    def completed_tasks_count(self) -> int:
        return sum(1 for t in self.tasks if t.is_completed)

    @property
    def total_estimated_duration(self) -> int:
        return sum(t.estimated_duration for t in self.tasks)

    def ordered_tasks(self) -> list[TaskItem]:
        # sorted() is stable, so equal order_index keeps insertion order
        return sorted(self.tasks, key=lambda t: t.order_index)

    def find_task(self, task_id: uuid.UUID) -> Optional[TaskItem]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


class Commit(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    message: str
    type: CommitType
    branch_id: uuid.UUID
    related_task_id: Optional[uuid.UUID] = None
    timestamp: datetime = Field(default_factory=_now)
    sequence: int = 0  # assigned by the store on append


class VersionRecord(BaseModel):
    """One step in the life version history kept on the master timeline."""

    id: uuid.UUID = Field(default_factory=_new_uuid)
    branch_id: uuid.UUID  # the master branch the history belongs to
    version: str
    upgraded_at: datetime = Field(default_factory=_now)
    trigger_branch_name: str
    description: str = ""
    is_important_milestone: bool = False
    achievement_count: int = 0  # completed goals when this version was reached
    total_commits_at_upgrade: int = 0
    sequence: int = 0  # assigned by the store on append

    @property
    def major_version(self) -> int:
        parts = self.version.replace("v", "").split(".")
        return int(parts[0]) if parts[0].isdigit() else 1

    @property
    def minor_version(self) -> int:
        parts = self.version.replace("v", "").split(".")
        return int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else 0


# ---------------------------------------------------------------------------
# Plan state (tagged)
# ---------------------------------------------------------------------------

class NoPlan(BaseModel):
    kind: Literal["none"] = "none"
    branch_id: uuid.UUID


class PlanAttached(BaseModel):
    kind: Literal["attached"] = "attached"
    plan: TaskPlan


PlanState = Annotated[Union[NoPlan, PlanAttached], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

class BranchCreation(BaseModel):
    """Output of BranchLifecycleManager.create_branch."""
    branch: Branch
    plan: TaskPlan
    used_fallback: bool = False


class VersionDecision(BaseModel):
    """Outcome of scoring a merged branch for a life version upgrade."""
    should_upgrade: bool
    suggested_version: str
    reason: str
    is_important_milestone: bool
    score: int


class BranchStatistics(BaseModel):
    commit_count: int
    total_tasks: int
    completed_tasks: int
    progress: float
    remaining_estimated_duration: int


class PlanProgress(BaseModel):
    total_tasks: int
    completed_tasks: int
    progress: float
    total_estimated_duration: int
    completed_duration: int
    remaining_duration: int


class CommitStatistics(BaseModel):
    total_commits: int
    counts_by_type: dict[str, int] = Field(default_factory=dict)
    commit_frequency: float = 0.0  # commits/day over the trailing 30 days
    most_active_weekday: Optional[int] = None  # 0 = Monday
    first_commit_at: Optional[datetime] = None
    last_commit_at: Optional[datetime] = None
