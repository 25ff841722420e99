"""Persistence contract the lifecycle core is written against.

Both InMemoryStore and the PostgreSQL Repository satisfy this protocol.
Every method is atomic on its own; ``transaction()`` groups several calls
into one all-or-nothing unit. Backend failures surface as RepositoryError.
"""

from __future__ import annotations

import uuid
from contextlib import AbstractContextManager
from typing import Optional, Protocol, runtime_checkable

from lifegit.core.models import Branch, BranchStatus, Commit, TaskPlan, VersionRecord


@runtime_checkable
class Store(Protocol):
    # Branches
    def create_branch(self, branch: Branch) -> Branch: ...
    def update_branch(self, branch: Branch) -> Branch: ...
    def delete_branch(self, branch_id: uuid.UUID) -> None: ...
    def get_branch(self, branch_id: uuid.UUID) -> Optional[Branch]: ...
    def list_branches(self, status: Optional[BranchStatus] = None) -> list[Branch]: ...
    def get_master_branch(self) -> Optional[Branch]: ...

    # Task plans (items are stored with their plan)
    def create_task_plan(self, plan: TaskPlan) -> TaskPlan: ...
    def update_task_plan(self, plan: TaskPlan) -> TaskPlan: ...
    def delete_task_plan(self, plan_id: uuid.UUID) -> None: ...
    def get_task_plan(self, plan_id: uuid.UUID) -> Optional[TaskPlan]: ...
    def list_task_plans(self) -> list[TaskPlan]: ...
    def get_task_plan_for_branch(self, branch_id: uuid.UUID) -> Optional[TaskPlan]: ...

    # Commits (append-only)
    def create_commit(self, commit: Commit) -> Commit: ...
    def get_commit(self, commit_id: uuid.UUID) -> Optional[Commit]: ...
    def list_commits(self) -> list[Commit]: ...
    def list_commits_for_branch(self, branch_id: uuid.UUID) -> list[Commit]: ...
    def count_commits_for_branch(self, branch_id: uuid.UUID) -> int: ...

    # Life version history (append-only, kept on the master branch)
    def create_version_record(self, record: VersionRecord) -> VersionRecord: ...
    def get_version_record(self, record_id: uuid.UUID) -> Optional[VersionRecord]: ...
    def list_version_records_for_branch(self, branch_id: uuid.UUID) -> list[VersionRecord]: ...

    def transaction(self) -> AbstractContextManager[None]: ...
    def close(self) -> None: ...
