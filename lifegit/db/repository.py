"""PostgreSQL data access layer for LifeGit.

All SQL queries live here. The lifecycle core never writes raw SQL; it
calls Repository methods that return Pydantic models, through the Store
protocol shared with InMemoryStore.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Iterator, Optional

from lifegit.core.exceptions import EntityNotFoundError
from lifegit.core.models import (
    Branch,
    BranchStatus,
    Commit,
    CommitType,
    TaskItem,
    TaskPlan,
    TaskTimeScope,
    VersionRecord,
)
from lifegit.db.engine import DatabaseEngine


class Repository:
    """Data access layer wrapping DatabaseEngine with typed methods."""

    def __init__(self, engine: DatabaseEngine):
        self.engine = engine

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self.engine.transaction():
            yield

    def close(self) -> None:
        self.engine.close()

    # -------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------

    def create_branch(self, branch: Branch) -> Branch:
        self.engine.execute(
            """INSERT INTO branches (id, name, description, status, progress, parent_branch_id,
                                     expected_completion_date, created_at, completed_at,
                                     abandoned_at, merged_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                str(branch.id),
                branch.name,
                branch.description,
                branch.status.value,
                branch.progress,
                str(branch.parent_branch_id) if branch.parent_branch_id else None,
                branch.expected_completion_date,
                branch.created_at,
                branch.completed_at,
                branch.abandoned_at,
                branch.merged_at,
            ],
        )
        return branch

    def update_branch(self, branch: Branch) -> Branch:
        count = self.engine.execute(
            """UPDATE branches
               SET name = %s, description = %s, status = %s, progress = %s,
                   parent_branch_id = %s, expected_completion_date = %s,
                   completed_at = %s, abandoned_at = %s, merged_at = %s
               WHERE id = %s""",
            [
                branch.name,
                branch.description,
                branch.status.value,
                branch.progress,
                str(branch.parent_branch_id) if branch.parent_branch_id else None,
                branch.expected_completion_date,
                branch.completed_at,
                branch.abandoned_at,
                branch.merged_at,
                str(branch.id),
            ],
        )
        if count == 0:
            raise EntityNotFoundError("Branch", branch.id)
        return branch

    def delete_branch(self, branch_id: uuid.UUID) -> None:
        # task_plans, task_items and commits cascade
        count = self.engine.execute("DELETE FROM branches WHERE id = %s", [str(branch_id)])
        if count == 0:
            raise EntityNotFoundError("Branch", branch_id)

    def get_branch(self, branch_id: uuid.UUID) -> Optional[Branch]:
        row = self.engine.fetch_one("SELECT * FROM branches WHERE id = %s", [str(branch_id)])
        if row is None:
            return None
        return _row_to_branch(row)

    def list_branches(self, status: Optional[BranchStatus] = None) -> list[Branch]:
        if status is None:
            rows = self.engine.fetch_all("SELECT * FROM branches ORDER BY created_at ASC")
        else:
            rows = self.engine.fetch_all(
                "SELECT * FROM branches WHERE status = %s ORDER BY created_at ASC",
                [status.value],
            )
        return [_row_to_branch(r) for r in rows]

    def get_master_branch(self) -> Optional[Branch]:
        row = self.engine.fetch_one(
            "SELECT * FROM branches WHERE status = %s LIMIT 1",
            [BranchStatus.MASTER.value],
        )
        if row is None:
            return None
        return _row_to_branch(row)

    # -------------------------------------------------------------------
    # Task plans
    # -------------------------------------------------------------------

    def create_task_plan(self, plan: TaskPlan) -> TaskPlan:
        with self.engine.transaction():
            self.engine.execute(
                """INSERT INTO task_plans (id, branch_id, total_duration, is_ai_generated,
                                           created_at, last_modified_at)
                   VALUES (%s, %s, %s, %s, %s, %s)""",
                [
                    str(plan.id),
                    str(plan.branch_id),
                    plan.total_duration,
                    plan.is_ai_generated,
                    plan.created_at,
                    plan.last_modified_at,
                ],
            )
            self._insert_items(plan)
        return plan

    def update_task_plan(self, plan: TaskPlan) -> TaskPlan:
        with self.engine.transaction():
            count = self.engine.execute(
                """UPDATE task_plans
                   SET total_duration = %s, is_ai_generated = %s, last_modified_at = %s
                   WHERE id = %s""",
                [plan.total_duration, plan.is_ai_generated, plan.last_modified_at, str(plan.id)],
            )
            if count == 0:
                raise EntityNotFoundError("TaskPlan", plan.id)
            self.engine.execute("DELETE FROM task_items WHERE plan_id = %s", [str(plan.id)])
            self._insert_items(plan)
        return plan

    def delete_task_plan(self, plan_id: uuid.UUID) -> None:
        count = self.engine.execute("DELETE FROM task_plans WHERE id = %s", [str(plan_id)])
        if count == 0:
            raise EntityNotFoundError("TaskPlan", plan_id)

    def get_task_plan(self, plan_id: uuid.UUID) -> Optional[TaskPlan]:
        row = self.engine.fetch_one("SELECT * FROM task_plans WHERE id = %s", [str(plan_id)])
        if row is None:
            return None
        return self._hydrate_plan(row)

    def list_task_plans(self) -> list[TaskPlan]:
        rows = self.engine.fetch_all("SELECT * FROM task_plans ORDER BY created_at ASC")
        return [self._hydrate_plan(r) for r in rows]

    def get_task_plan_for_branch(self, branch_id: uuid.UUID) -> Optional[TaskPlan]:
        row = self.engine.fetch_one(
            "SELECT * FROM task_plans WHERE branch_id = %s", [str(branch_id)]
        )
        if row is None:
            return None
        return self._hydrate_plan(row)

    def _insert_items(self, plan: TaskPlan) -> None:
        for position, item in enumerate(plan.tasks):
            self.engine.execute(
                """INSERT INTO task_items (id, plan_id, position, title, description,
                                           estimated_duration, time_scope, order_index,
                                           is_completed, completed_at, is_ai_generated,
                                           execution_tips, created_at, last_modified_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
                [
                    str(item.id),
                    str(plan.id),
                    position,
                    item.title,
                    item.description,
                    item.estimated_duration,
                    item.time_scope.value,
                    item.order_index,
                    item.is_completed,
                    item.completed_at,
                    item.is_ai_generated,
                    item.execution_tips,
                    item.created_at,
                    item.last_modified_at,
                ],
            )

    def _hydrate_plan(self, row: dict) -> TaskPlan:
        items = self.engine.fetch_all(
            "SELECT * FROM task_items WHERE plan_id = %s ORDER BY position ASC",
            [str(row["id"])],
        )
        return _row_to_task_plan(row, [_row_to_task_item(i) for i in items])

    # -------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------

    def create_commit(self, commit: Commit) -> Commit:
        row = self.engine.fetch_one(
            """INSERT INTO commits (id, message, type, branch_id, related_task_id, timestamp)
               VALUES (%s, %s, %s, %s, %s, %s)
               RETURNING seq""",
            [
                str(commit.id),
                commit.message,
                commit.type.value,
                str(commit.branch_id),
                str(commit.related_task_id) if commit.related_task_id else None,
                commit.timestamp,
            ],
        )
        sequence = int(row["seq"]) if row else 0
        return commit.model_copy(update={"sequence": sequence})

    def get_commit(self, commit_id: uuid.UUID) -> Optional[Commit]:
        row = self.engine.fetch_one("SELECT * FROM commits WHERE id = %s", [str(commit_id)])
        if row is None:
            return None
        return _row_to_commit(row)

    def list_commits(self) -> list[Commit]:
        rows = self.engine.fetch_all("SELECT * FROM commits ORDER BY timestamp ASC, seq ASC")
        return [_row_to_commit(r) for r in rows]

    def list_commits_for_branch(self, branch_id: uuid.UUID) -> list[Commit]:
        rows = self.engine.fetch_all(
            "SELECT * FROM commits WHERE branch_id = %s ORDER BY timestamp ASC, seq ASC",
            [str(branch_id)],
        )
        return [_row_to_commit(r) for r in rows]

    def count_commits_for_branch(self, branch_id: uuid.UUID) -> int:
        row = self.engine.fetch_one(
            "SELECT COUNT(*) AS cnt FROM commits WHERE branch_id = %s", [str(branch_id)]
        )
        return int(row["cnt"]) if row else 0

    # -------------------------------------------------------------------
    # Version records
    # -------------------------------------------------------------------

    def create_version_record(self, record: VersionRecord) -> VersionRecord:
        row = self.engine.fetch_one(
            """INSERT INTO version_records (id, branch_id, version, upgraded_at, trigger_branch_name,
                                            description, is_important_milestone, achievement_count,
                                            total_commits_at_upgrade)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
               RETURNING seq""",
            [
                str(record.id),
                str(record.branch_id),
                record.version,
                record.upgraded_at,
                record.trigger_branch_name,
                record.description,
                record.is_important_milestone,
                record.achievement_count,
                record.total_commits_at_upgrade,
            ],
        )
        sequence = int(row["seq"]) if row else 0
        return record.model_copy(update={"sequence": sequence})

    def get_version_record(self, record_id: uuid.UUID) -> Optional[VersionRecord]:
        row = self.engine.fetch_one("SELECT * FROM version_records WHERE id = %s", [str(record_id)])
        if row is None:
            return None
        return _row_to_version_record(row)

    def list_version_records_for_branch(self, branch_id: uuid.UUID) -> list[VersionRecord]:
        rows = self.engine.fetch_all(
            "SELECT * FROM version_records WHERE branch_id = %s ORDER BY upgraded_at ASC, seq ASC",
            [str(branch_id)],
        )
        return [_row_to_version_record(r) for r in rows]


# ---------------------------------------------------------------------------
# Row-to-model converters
# ---------------------------------------------------------------------------

def _optional_uuid(value) -> Optional[uuid.UUID]:
    return uuid.UUID(str(value)) if value else None


def _row_to_branch(row: dict) -> Branch:
    return Branch(
        id=uuid.UUID(str(row["id"])),
        name=row["name"],
        description=row.get("description") or "",
        status=BranchStatus(row["status"]),
        progress=row.get("progress") or 0.0,
        parent_branch_id=_optional_uuid(row.get("parent_branch_id")),
        expected_completion_date=row.get("expected_completion_date"),
        created_at=row.get("created_at", datetime.now(UTC)),
        completed_at=row.get("completed_at"),
        abandoned_at=row.get("abandoned_at"),
        merged_at=row.get("merged_at"),
    )


def _row_to_task_item(row: dict) -> TaskItem:
    return TaskItem(
        id=uuid.UUID(str(row["id"])),
        title=row["title"],
        description=row["description"],
        estimated_duration=row["estimated_duration"],
        time_scope=TaskTimeScope.parse(row.get("time_scope")),
        order_index=row.get("order_index", 0),
        is_completed=bool(row.get("is_completed")),
        completed_at=row.get("completed_at"),
        is_ai_generated=bool(row.get("is_ai_generated")),
        execution_tips=row.get("execution_tips"),
        created_at=row.get("created_at", datetime.now(UTC)),
        last_modified_at=row.get("last_modified_at"),
    )


def _row_to_task_plan(row: dict, items: list[TaskItem]) -> TaskPlan:
    return TaskPlan(
        id=uuid.UUID(str(row["id"])),
        branch_id=uuid.UUID(str(row["branch_id"])),
        total_duration=row["total_duration"],
        is_ai_generated=bool(row.get("is_ai_generated")),
        tasks=items,
        created_at=row.get("created_at", datetime.now(UTC)),
        last_modified_at=row.get("last_modified_at"),
    )


def _row_to_commit(row: dict) -> Commit:
    return Commit(
        id=uuid.UUID(str(row["id"])),
        message=row["message"],
        type=CommitType(row["type"]),
        branch_id=uuid.UUID(str(row["branch_id"])),
        related_task_id=_optional_uuid(row.get("related_task_id")),
        timestamp=row.get("timestamp", datetime.now(UTC)),
        sequence=int(row.get("seq") or 0),
    )


def _row_to_version_record(row: dict) -> VersionRecord:
    return VersionRecord(
        id=uuid.UUID(str(row["id"])),
        branch_id=uuid.UUID(str(row["branch_id"])),
        version=row["version"],
        upgraded_at=row.get("upgraded_at", datetime.now(UTC)),
        trigger_branch_name=row["trigger_branch_name"],
        description=row.get("description") or "",
        is_important_milestone=bool(row.get("is_important_milestone")),
        achievement_count=int(row.get("achievement_count") or 0),
        total_commits_at_upgrade=int(row.get("total_commits_at_upgrade") or 0),
        sequence=int(row.get("seq") or 0),
    )
