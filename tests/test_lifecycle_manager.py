"""Tests for lifegit/lifecycle/manager.py — branch creation, transitions, merge, regeneration.

Runs the fully wired in-memory bundle; the completion API is the
CompletionServer from conftest, so retries and fallbacks go through the
real client, generator and failure policy.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from lifegit.core.events import EventType, LifecycleEvent
from lifegit.core.exceptions import (
    EntityNotFoundError,
    InvalidStateError,
    MasterNotFoundError,
    NoTaskPlanError,
    RepositoryError,
    ServerError,
    ValidationError,
)
from lifegit.core.models import BranchStatus, CommitType, NoPlan, PlanAttached
from lifegit.lifecycle.manager import (
    COMPLETION_MARKER,
    MERGE_MARKER,
    completion_message,
    merge_message,
)
from lifegit.planning.failure_policy import FailureKind, MANUAL_PLAN_MARKER

from tests.conftest import plan_json


@pytest.fixture
def manager(bundle):
    return bundle.manager


@pytest.fixture
def master(manager):
    return manager.ensure_master_branch()


@pytest.fixture
def seen(bundle) -> list[LifecycleEvent]:
    events: list[LifecycleEvent] = []
    bundle.events.subscribe(events.append)
    return events


async def _active(manager, server, name="Learn Go", *titles):
    server.reply(plan_json(*titles))
    return (await manager.create_branch(name, "CLI tools")).branch


def _complete_all_tasks(bundle, branch):
    plan = bundle.store.get_task_plan_for_branch(branch.id)
    for task in plan.tasks:
        plan = bundle.editor.toggle_task(plan, task.id)
    return plan


class TestMessages:
    def test_completion(self):
        assert completion_message("Learn Go") == f"{COMPLETION_MARKER} Learn Go"

    @pytest.mark.parametrize("count,text", [(0, "0 achievements"), (1, "1 achievement"), (5, "5 achievements")])
    def test_merge(self, count, text):
        message = merge_message("Learn Go", count)
        assert message.startswith(f"{MERGE_MARKER} Learn Go")
        assert text in message


class TestMaster:
    def test_ensure_is_idempotent(self, manager, bundle):
        first = manager.ensure_master_branch()
        second = manager.ensure_master_branch()
        assert first.id == second.id
        assert first.status is BranchStatus.MASTER
        assert first.name == "master"
        assert len(bundle.store.list_branches()) == 1


class TestCreateBranch:
    @pytest.mark.asyncio
    async def test_ai_plan(self, manager, server, master, sleeper):
        server.reply(plan_json("Tour", "Build", "Review"))

        creation = await manager.create_branch("Learn Go", "Build CLI tools", "3 weeks")

        assert creation.used_fallback is False
        assert creation.branch.status is BranchStatus.ACTIVE
        assert creation.branch.parent_branch_id == master.id
        assert creation.plan.branch_id == creation.branch.id
        assert creation.plan.is_ai_generated is True
        assert [t.title for t in creation.plan.ordered_tasks()] == ["Tour", "Build", "Review"]
        assert sleeper.delays == []
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_persists_branch_and_plan(self, manager, server, master, bundle):
        creation = await _active(manager, server)
        assert manager.get_branch(creation.id).name == "Learn Go"
        assert isinstance(manager.plan_state(creation), PlanAttached)

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, manager, server, master, sleeper):
        server.fail(503).drop().reply(plan_json())

        creation = await manager.create_branch("Learn Go")

        assert creation.used_fallback is False
        assert sleeper.delays == [1.0, 2.0]
        assert len(server.requests) == 3

    @pytest.mark.asyncio
    async def test_fallback_after_retries_exhausted(self, manager, server, master, sleeper, seen):
        for _ in range(4):
            server.fail(500)

        creation = await manager.create_branch("Learn Go", "Build CLI tools")

        assert creation.used_fallback is True
        assert sleeper.delays == [1.0, 2.0, 4.0]
        assert len(server.requests) == 4
        assert creation.plan.is_ai_generated is False
        assert creation.plan.total_duration == MANUAL_PLAN_MARKER
        assert len(creation.plan.tasks) == 1
        assert "Learn Go" in creation.plan.tasks[0].title

        fallback = [e for e in seen if e.event_type is EventType.PLAN_FALLBACK]
        assert fallback[0].payload["failure_kind"] == FailureKind.SERVER_ERROR.value
        assert fallback[0].payload["attempts"] == 4

    @pytest.mark.asyncio
    async def test_non_retryable_falls_back_immediately(self, manager, server, master, sleeper):
        server.fail(401, "bad key")

        creation = await manager.create_branch("Learn Go")

        assert creation.used_fallback is True
        assert sleeper.delays == []
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_unparseable_answer_falls_back(self, manager, server, master, sleeper):
        server.reply("I cannot help with that")
        creation = await manager.create_branch("Learn Go")
        assert creation.used_fallback is True
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_without_master(self, manager, server):
        branch = await _active(manager, server)
        assert branch.parent_branch_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,description,message", [
        ("", "", "must not be empty"),
        ("   ", "", "must not be empty"),
        ("x" * 101, "", "at most 100"),
        ("Learn Go", "d" * 1001, "at most 1000"),
    ])
    async def test_validation(self, manager, server, name, description, message, bundle):
        with pytest.raises(ValidationError, match=message):
            await manager.create_branch(name, description)
        assert server.requests == []
        assert bundle.store.list_branches() == []

    @pytest.mark.asyncio
    async def test_name_is_trimmed(self, manager, server):
        branch = await _active(manager, server, "  Learn Go  ")
        assert branch.name == "Learn Go"

    @pytest.mark.asyncio
    async def test_persistence_failure_leaves_no_orphan(self, manager, server, master, bundle, monkeypatch):
        def broken(plan):
            raise RepositoryError("disk full")

        monkeypatch.setattr(bundle.store, "create_task_plan", broken)
        server.reply(plan_json())

        with pytest.raises(RepositoryError):
            await manager.create_branch("Learn Go")
        assert [b.id for b in bundle.store.list_branches()] == [master.id]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, manager, master, bundle, monkeypatch):
        async def cancelled(*args, **kwargs):
            raise asyncio.CancelledError()

        monkeypatch.setattr(bundle.generator, "generate_plan", cancelled)
        with pytest.raises(asyncio.CancelledError):
            await manager.create_branch("Learn Go")
        assert [b.id for b in bundle.store.list_branches()] == [master.id]

    @pytest.mark.asyncio
    async def test_events(self, manager, server, master, seen):
        branch = await _active(manager, server)
        types = [e.event_type for e in seen]
        assert types[0] is EventType.BRANCH_CREATED
        assert EventType.PLAN_GENERATED in types
        assert seen[0].payload["branch_id"] == str(branch.id)


class TestTransitions:
    @pytest.mark.asyncio
    async def test_complete_writes_milestone(self, manager, server, master, bundle):
        branch = await _active(manager, server)

        completed = manager.complete_branch(branch)

        assert completed.status is BranchStatus.COMPLETED
        assert completed.completed_at is not None
        assert branch.status is BranchStatus.ACTIVE
        history = bundle.ledger.history(branch.id)
        assert [(c.type, c.message) for c in history] == [
            (CommitType.MILESTONE, completion_message("Learn Go"))
        ]

    @pytest.mark.asyncio
    async def test_complete_twice(self, manager, server, master):
        branch = await _active(manager, server)
        manager.complete_branch(branch)
        with pytest.raises(InvalidStateError) as exc_info:
            manager.complete_branch(branch)
        assert exc_info.value.current_state == "completed"

    @pytest.mark.asyncio
    async def test_complete_rolls_back_when_commit_fails(self, manager, server, master, bundle, monkeypatch):
        branch = await _active(manager, server)

        def broken(commit):
            raise RepositoryError("disk full")

        monkeypatch.setattr(bundle.store, "create_commit", broken)
        with pytest.raises(RepositoryError):
            manager.complete_branch(branch)

        stored = manager.get_branch(branch.id)
        assert stored.status is BranchStatus.ACTIVE
        assert stored.completed_at is None

    @pytest.mark.asyncio
    async def test_abandon_and_reactivate(self, manager, server, master):
        branch = await _active(manager, server)

        abandoned = manager.abandon_branch(branch)
        assert abandoned.status is BranchStatus.ABANDONED
        assert abandoned.abandoned_at is not None

        with pytest.raises(InvalidStateError):
            manager.complete_branch(abandoned)

        reactivated = manager.reactivate_branch(abandoned)
        assert reactivated.status is BranchStatus.ACTIVE
        assert reactivated.abandoned_at is None

    @pytest.mark.asyncio
    async def test_reactivate_requires_abandoned(self, manager, server, master):
        branch = await _active(manager, server)
        with pytest.raises(InvalidStateError):
            manager.reactivate_branch(branch)

    @pytest.mark.asyncio
    async def test_abandon_completed(self, manager, server, master):
        branch = await _active(manager, server)
        manager.complete_branch(branch)
        with pytest.raises(InvalidStateError):
            manager.abandon_branch(branch)

    @pytest.mark.asyncio
    async def test_transition_events(self, manager, server, master, seen):
        branch = await _active(manager, server)
        manager.abandon_branch(branch)
        manager.reactivate_branch(branch)
        manager.complete_branch(branch)
        manager.merge_branch(branch)

        transitions = [
            e.event_type for e in seen
            if e.event_type in (EventType.BRANCH_ABANDONED, EventType.BRANCH_REACTIVATED,
                                EventType.BRANCH_COMPLETED, EventType.BRANCH_MERGED)
        ]
        assert transitions == [
            EventType.BRANCH_ABANDONED,
            EventType.BRANCH_REACTIVATED,
            EventType.BRANCH_COMPLETED,
            EventType.BRANCH_MERGED,
        ]
        assert all(e.payload["branch_id"] == str(branch.id) for e in seen
                   if e.event_type in transitions)

    @pytest.mark.parametrize("operation", ["complete_branch", "abandon_branch", "reactivate_branch",
                                           "merge_branch", "delete_branch"])
    def test_master_takes_no_transitions(self, manager, master, operation):
        with pytest.raises(InvalidStateError):
            getattr(manager, operation)(master)
        assert manager.get_branch(master.id).status is BranchStatus.MASTER

    @pytest.mark.asyncio
    async def test_delete_cascades(self, manager, server, master, bundle):
        branch = await _active(manager, server)
        bundle.ledger.record("note", CommitType.IDEA, branch.id)

        manager.delete_branch(branch)

        with pytest.raises(EntityNotFoundError):
            manager.get_branch(branch.id)
        assert bundle.store.get_task_plan_for_branch(branch.id) is None
        assert bundle.ledger.count(branch.id) == 0


class TestMerge:
    @pytest.mark.asyncio
    async def test_merge_writes_milestone_on_master(self, manager, server, master, bundle):
        branch = await _active(manager, server)
        plan = bundle.store.get_task_plan_for_branch(branch.id)
        bundle.editor.toggle_task(plan, plan.tasks[0].id)
        manager.complete_branch(branch)

        merged = manager.merge_branch(branch)

        assert merged.is_merged
        assert merged.status is BranchStatus.COMPLETED
        master_history = bundle.ledger.history(master.id)
        assert len(master_history) == 1
        assert master_history[0].type is CommitType.MILESTONE
        assert master_history[0].message == merge_message("Learn Go", 1)

    @pytest.mark.asyncio
    async def test_requires_completed(self, manager, server, master):
        branch = await _active(manager, server)
        with pytest.raises(InvalidStateError, match="completed"):
            manager.merge_branch(branch)

    @pytest.mark.asyncio
    async def test_merge_twice(self, manager, server, master, bundle):
        branch = await _active(manager, server)
        manager.complete_branch(branch)
        manager.merge_branch(branch)

        with pytest.raises(InvalidStateError, match="already been merged"):
            manager.merge_branch(branch)
        assert bundle.ledger.count(master.id) == 1

    @pytest.mark.asyncio
    async def test_master_missing(self, manager, server, master, bundle):
        branch = await _active(manager, server)
        manager.complete_branch(branch)
        bundle.store.delete_branch(master.id)

        with pytest.raises(MasterNotFoundError):
            manager.merge_branch(branch)
        assert not manager.get_branch(branch.id).is_merged

    @pytest.mark.asyncio
    async def test_rolls_back_when_commit_fails(self, manager, server, master, bundle, monkeypatch):
        branch = await _active(manager, server)
        manager.complete_branch(branch)

        def broken(commit):
            raise RepositoryError("disk full")

        monkeypatch.setattr(bundle.store, "create_commit", broken)
        with pytest.raises(RepositoryError):
            manager.merge_branch(branch)
        assert manager.get_branch(branch.id).merged_at is None

    @pytest.mark.asyncio
    async def test_merge_without_plan_counts_no_achievements(self, manager, server, master, bundle):
        branch = await _active(manager, server)
        bundle.store.delete_task_plan(bundle.store.get_task_plan_for_branch(branch.id).id)
        manager.complete_branch(branch)

        manager.merge_branch(branch)

        assert bundle.ledger.history(master.id)[0].message == merge_message("Learn Go", 0)


class TestVersioning:
    @pytest.mark.asyncio
    async def test_starts_at_initial_version(self, manager, master):
        assert manager.current_version() == "v1.0"
        assert manager.version_history() == []

    @pytest.mark.asyncio
    async def test_low_score_keeps_version(self, manager, server, master, bundle, seen):
        branch = await _active(manager, server)
        manager.complete_branch(branch)

        manager.merge_branch(branch)

        assert manager.current_version() == "v1.0"
        assert bundle.store.list_version_records_for_branch(master.id) == []
        assert EventType.VERSION_UPGRADED not in [e.event_type for e in seen]

    @pytest.mark.asyncio
    async def test_completed_learning_goal_is_minor_upgrade(self, manager, server, master, bundle, seen):
        branch = await _active(manager, server, "Learn Go", "Tour", "Build", "Ship")
        _complete_all_tasks(bundle, branch)
        manager.complete_branch(branch)

        manager.merge_branch(branch)

        assert manager.current_version() == "v1.1"
        [record] = manager.version_history()
        assert record.branch_id == master.id
        assert record.trigger_branch_name == "Learn Go"
        assert record.description == "high completion (100%), important life area"
        assert not record.is_important_milestone
        assert record.achievement_count == 1
        # three task commits, the completion milestone and the merge milestone
        assert record.total_commits_at_upgrade == 5

        kinds = [e.event_type for e in seen]
        assert kinds.index(EventType.VERSION_UPGRADED) == kinds.index(EventType.BRANCH_MERGED) + 1
        assert seen[-1].payload == {"branch_id": str(branch.id), "version": "v1.1", "major": False}

    @pytest.mark.asyncio
    async def test_long_running_goal_is_major_upgrade(self, manager, server, master, bundle):
        branch = await _active(manager, server, "Learn Go", "Tour", "Build")
        _complete_all_tasks(bundle, branch)
        stored = manager.get_branch(branch.id)
        bundle.store.update_branch(
            stored.model_copy(update={"created_at": datetime.now(UTC) - timedelta(days=10)})
        )
        manager.complete_branch(branch)

        manager.merge_branch(branch)

        [record] = manager.version_history()
        assert record.version == "v2.0"
        assert record.is_important_milestone
        assert "long-term effort (10 days)" in record.description

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, manager, server, master, bundle):
        for name in ("Learn Go", "Learn Rust"):
            branch = await _active(manager, server, name, "Tour")
            _complete_all_tasks(bundle, branch)
            manager.complete_branch(branch)
            manager.merge_branch(branch)

        assert [r.version for r in manager.version_history()] == ["v1.2", "v1.1"]
        assert [r.achievement_count for r in manager.version_history()] == [2, 1]
        assert manager.current_version() == "v1.2"

    @pytest.mark.asyncio
    async def test_disabled(self, manager, server, master, bundle):
        manager.versioning.config = manager.versioning.config.model_copy(update={"enabled": False})
        branch = await _active(manager, server, "Learn Go", "Tour")
        _complete_all_tasks(bundle, branch)
        manager.complete_branch(branch)

        manager.merge_branch(branch)

        assert manager.current_version() == "v1.0"

    @pytest.mark.asyncio
    async def test_merge_rolls_back_when_version_write_fails(self, manager, server, master, bundle, monkeypatch):
        branch = await _active(manager, server, "Learn Go", "Tour")
        _complete_all_tasks(bundle, branch)
        manager.complete_branch(branch)

        def broken(record):
            raise RepositoryError("disk full")

        monkeypatch.setattr(bundle.store, "create_version_record", broken)
        with pytest.raises(RepositoryError):
            manager.merge_branch(branch)

        assert manager.get_branch(branch.id).merged_at is None
        assert bundle.ledger.count(master.id) == 0


class TestRegenerate:
    @pytest.mark.asyncio
    async def test_replaces_plan(self, manager, server, master, bundle, seen):
        branch = await _active(manager, server, "Learn Go", "Tour", "Build")
        old = bundle.store.get_task_plan_for_branch(branch.id)
        bundle.editor.toggle_task(old, old.tasks[0].id)

        server.reply(plan_json("Read", "Write", "Ship", "Share"))
        new = await manager.regenerate_task_plan(branch)

        assert [t.title for t in new.ordered_tasks()] == ["Read", "Write", "Ship", "Share"]
        assert bundle.store.get_task_plan(old.id) is None
        assert bundle.store.get_task_plan_for_branch(branch.id).id == new.id
        assert manager.get_branch(branch.id).progress == 0.0
        assert seen[-1].event_type is EventType.PLAN_REGENERATED

    @pytest.mark.asyncio
    async def test_failure_keeps_old_plan(self, manager, server, master, bundle, sleeper):
        branch = await _active(manager, server)
        old = bundle.store.get_task_plan_for_branch(branch.id)

        server.fail(500)
        with pytest.raises(ServerError):
            await manager.regenerate_task_plan(branch)

        assert bundle.store.get_task_plan_for_branch(branch.id) == old
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_retry_when_enabled(self, manager, server, master, bundle, sleeper):
        branch = await _active(manager, server)
        manager.config = manager.config.model_copy(update={"retry_on_regenerate": True})

        server.fail(500).reply(plan_json("Fresh start"))
        new = await manager.regenerate_task_plan(branch)

        assert [t.title for t in new.tasks] == ["Fresh start"]
        assert sleeper.delays == [1.0]

    @pytest.mark.asyncio
    async def test_without_plan(self, manager, server, master, bundle):
        branch = await _active(manager, server)
        bundle.store.delete_task_plan(bundle.store.get_task_plan_for_branch(branch.id).id)

        assert isinstance(manager.plan_state(branch), NoPlan)
        with pytest.raises(NoTaskPlanError):
            await manager.regenerate_task_plan(branch)

    @pytest.mark.asyncio
    async def test_keeps_transition_made_while_generating(self, manager, server, master, bundle, monkeypatch):
        branch = await _active(manager, server, "Learn Go", "Tour", "Build")
        generate = bundle.generator.generate_plan

        async def complete_meanwhile(*args, **kwargs):
            plan = await generate(*args, **kwargs)
            manager.complete_branch(branch)
            return plan

        monkeypatch.setattr(bundle.generator, "generate_plan", complete_meanwhile)
        server.reply(plan_json("Read", "Write"))
        new = await manager.regenerate_task_plan(branch)

        stored = manager.get_branch(branch.id)
        assert stored.status is BranchStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.progress == 0.0
        assert bundle.store.get_task_plan_for_branch(branch.id).id == new.id


class TestStatistics:
    @pytest.mark.asyncio
    async def test_statistics(self, manager, server, master, bundle):
        branch = await _active(manager, server, "Learn Go", "Tour", "Build")
        plan = bundle.store.get_task_plan_for_branch(branch.id)
        bundle.editor.toggle_task(plan, plan.tasks[0].id)
        bundle.ledger.record("note", CommitType.LEARNING, branch.id)

        stats = manager.get_statistics(branch)

        assert stats.commit_count == 2
        assert stats.total_tasks == 2
        assert stats.completed_tasks == 1
        assert stats.progress == 0.5
        assert stats.remaining_estimated_duration == 60


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_goal_from_creation_to_merge(self, manager, server, master, bundle):
        branch = await _active(manager, server, "Learn X", "One", "Two", "Three")

        plan = _complete_all_tasks(bundle, branch)
        assert plan.completed_tasks_count == 3
        assert manager.get_branch(branch.id).progress == 1.0

        manager.complete_branch(branch)
        manager.merge_branch(branch)

        milestones = bundle.ledger.by_type(master.id, CommitType.MILESTONE)
        assert len(milestones) == 1
        assert "Learn X" in milestones[0].message
        assert "3 achievements" in milestones[0].message

        branch_history = bundle.ledger.history(branch.id)
        assert [c.type for c in branch_history] == [CommitType.TASK_COMPLETE] * 3 + [CommitType.MILESTONE]

        assert manager.current_version() == "v1.1"
