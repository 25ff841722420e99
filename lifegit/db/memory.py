"""In-process Store implementation.

Keeps deep copies of every entity so callers never alias stored state.
Transactions keep an undo journal and replay it in reverse on failure.
"""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from lifegit.core.exceptions import EntityNotFoundError, RepositoryError
from lifegit.core.models import Branch, BranchStatus, Commit, TaskPlan, VersionRecord

logger = logging.getLogger("lifegit.db.memory")


class InMemoryStore:
    """Dict-backed store satisfying the Store protocol."""

    def __init__(self) -> None:
        self._branches: dict[uuid.UUID, Branch] = {}
        self._plans: dict[uuid.UUID, TaskPlan] = {}
        self._commits: dict[uuid.UUID, Commit] = {}
        self._versions: dict[uuid.UUID, VersionRecord] = {}
        self._sequence = itertools.count(1)
        self._lock = threading.RLock()
        self._journal: Optional[list[Callable[[], None]]] = None

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._journal is not None:
                # Nested: the outermost block owns commit/rollback.
                yield
                return

            self._journal = []
            try:
                yield
            except BaseException:
                logger.debug("Rolling back %d in-memory writes", len(self._journal))
                for undo in reversed(self._journal):
                    undo()
                raise
            finally:
                self._journal = None

    def _record(self, undo: Callable[[], None]) -> None:
        if self._journal is not None:
            self._journal.append(undo)

    def _put(self, table: dict, key: uuid.UUID, value) -> None:
        previous = table.get(key)
        table[key] = value
        if previous is None:
            self._record(lambda: table.pop(key, None))
        else:
            self._record(lambda: table.__setitem__(key, previous))

    def _pop(self, table: dict, key: uuid.UUID) -> None:
        previous = table.pop(key, None)
        if previous is not None:
            self._record(lambda: table.__setitem__(key, previous))

    # -------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------

    def create_branch(self, branch: Branch) -> Branch:
        with self._lock:
            if branch.id in self._branches:
                raise RepositoryError(f"Branch already exists: {branch.id}")
            if branch.is_master and self._find_master() is not None:
                raise RepositoryError("A master branch already exists")
            self._put(self._branches, branch.id, branch.model_copy(deep=True))
            return branch.model_copy(deep=True)

    def update_branch(self, branch: Branch) -> Branch:
        with self._lock:
            if branch.id not in self._branches:
                raise EntityNotFoundError("Branch", branch.id)
            self._put(self._branches, branch.id, branch.model_copy(deep=True))
            return branch.model_copy(deep=True)

    def delete_branch(self, branch_id: uuid.UUID) -> None:
        with self._lock:
            if branch_id not in self._branches:
                raise EntityNotFoundError("Branch", branch_id)
            for plan in [p for p in self._plans.values() if p.branch_id == branch_id]:
                self._pop(self._plans, plan.id)
            for commit in [c for c in self._commits.values() if c.branch_id == branch_id]:
                self._pop(self._commits, commit.id)
            for record in [r for r in self._versions.values() if r.branch_id == branch_id]:
                self._pop(self._versions, record.id)
            self._pop(self._branches, branch_id)

    def get_branch(self, branch_id: uuid.UUID) -> Optional[Branch]:
        with self._lock:
            branch = self._branches.get(branch_id)
            return branch.model_copy(deep=True) if branch else None

    def list_branches(self, status: Optional[BranchStatus] = None) -> list[Branch]:
        with self._lock:
            rows = [
                b for b in self._branches.values()
                if status is None or b.status == status
            ]
            rows.sort(key=lambda b: b.created_at)
            return [b.model_copy(deep=True) for b in rows]

    def get_master_branch(self) -> Optional[Branch]:
        with self._lock:
            master = self._find_master()
            return master.model_copy(deep=True) if master else None

    def _find_master(self) -> Optional[Branch]:
        for branch in self._branches.values():
            if branch.is_master:
                return branch
        return None

    # -------------------------------------------------------------------
    # Task plans
    # -------------------------------------------------------------------

    def create_task_plan(self, plan: TaskPlan) -> TaskPlan:
        with self._lock:
            if plan.branch_id not in self._branches:
                raise EntityNotFoundError("Branch", plan.branch_id)
            if any(p.branch_id == plan.branch_id for p in self._plans.values()):
                raise RepositoryError(f"Branch {plan.branch_id} already has a task plan")
            self._put(self._plans, plan.id, plan.model_copy(deep=True))
            return plan.model_copy(deep=True)

    def update_task_plan(self, plan: TaskPlan) -> TaskPlan:
        with self._lock:
            if plan.id not in self._plans:
                raise EntityNotFoundError("TaskPlan", plan.id)
            self._put(self._plans, plan.id, plan.model_copy(deep=True))
            return plan.model_copy(deep=True)

    def delete_task_plan(self, plan_id: uuid.UUID) -> None:
        with self._lock:
            if plan_id not in self._plans:
                raise EntityNotFoundError("TaskPlan", plan_id)
            self._pop(self._plans, plan_id)

    def get_task_plan(self, plan_id: uuid.UUID) -> Optional[TaskPlan]:
        with self._lock:
            plan = self._plans.get(plan_id)
            return plan.model_copy(deep=True) if plan else None

    def list_task_plans(self) -> list[TaskPlan]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._plans.values()]

    def get_task_plan_for_branch(self, branch_id: uuid.UUID) -> Optional[TaskPlan]:
        with self._lock:
            for plan in self._plans.values():
                if plan.branch_id == branch_id:
                    return plan.model_copy(deep=True)
            return None

    # -------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------

    def create_commit(self, commit: Commit) -> Commit:
        with self._lock:
            if commit.branch_id not in self._branches:
                raise EntityNotFoundError("Branch", commit.branch_id)
            if commit.id in self._commits:
                raise RepositoryError(f"Commit already exists: {commit.id}")
            stored = commit.model_copy(update={"sequence": next(self._sequence)}, deep=True)
            self._put(self._commits, stored.id, stored)
            return stored.model_copy(deep=True)

    def get_commit(self, commit_id: uuid.UUID) -> Optional[Commit]:
        with self._lock:
            commit = self._commits.get(commit_id)
            return commit.model_copy(deep=True) if commit else None

    def list_commits(self) -> list[Commit]:
        with self._lock:
            rows = sorted(self._commits.values(), key=lambda c: (c.timestamp, c.sequence))
            return [c.model_copy(deep=True) for c in rows]

    def list_commits_for_branch(self, branch_id: uuid.UUID) -> list[Commit]:
        with self._lock:
            rows = [c for c in self._commits.values() if c.branch_id == branch_id]
            rows.sort(key=lambda c: (c.timestamp, c.sequence))
            return [c.model_copy(deep=True) for c in rows]

    def count_commits_for_branch(self, branch_id: uuid.UUID) -> int:
        with self._lock:
            return sum(1 for c in self._commits.values() if c.branch_id == branch_id)

    # -------------------------------------------------------------------
    # Version records
    # -------------------------------------------------------------------

    def create_version_record(self, record: VersionRecord) -> VersionRecord:
        with self._lock:
            if record.branch_id not in self._branches:
                raise EntityNotFoundError("Branch", record.branch_id)
            if record.id in self._versions:
                raise RepositoryError(f"Version record already exists: {record.id}")
            stored = record.model_copy(update={"sequence": next(self._sequence)}, deep=True)
            self._put(self._versions, stored.id, stored)
            return stored.model_copy(deep=True)

    def get_version_record(self, record_id: uuid.UUID) -> Optional[VersionRecord]:
        with self._lock:
            record = self._versions.get(record_id)
            return record.model_copy(deep=True) if record else None

    def list_version_records_for_branch(self, branch_id: uuid.UUID) -> list[VersionRecord]:
        with self._lock:
            rows = [r for r in self._versions.values() if r.branch_id == branch_id]
            rows.sort(key=lambda r: (r.upgraded_at, r.sequence))
            return [r.model_copy(deep=True) for r in rows]

    def close(self) -> None:
        with self._lock:
            self._branches.clear()
            self._plans.clear()
            self._commits.clear()
            self._versions.clear()
